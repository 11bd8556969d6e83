"""Per-request experiment resolution."""

from __future__ import annotations

import typing

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from fastapi_xpr.cache import ConfigCache
from fastapi_xpr.codec import UserState
from fastapi_xpr.experiment import DOMAINS, ResolvedExperiments
from fastapi_xpr.store import CookieUserStore

ReadUser = typing.Callable[[Request, Response], "UserState | None"]
SaveUser = typing.Callable[[str, typing.Mapping[str, ResolvedExperiments], Response], None]


class FeatureQuery:
    """
    `feature(name, fallback=False)`.

    The app domain wins whenever it has a value for `name`, even a falsy one;
    the shared domain fills in the rest.
    """

    def __init__(self, cache: ConfigCache, experiments: dict[str, ResolvedExperiments]) -> None:
        self._cache = cache
        self.experiments = experiments

    def __call__(self, name: str, fallback: typing.Any = False) -> typing.Any:
        app = self._cache.app.feature(name, self.experiments["app"])
        shared = self._cache.shared.feature(name, self.experiments["shared"])
        if app is None and shared is None:
            return fallback
        return app if app is not None else shared

    def override(self, name: str, value: typing.Any, domain: str = "shared") -> None:
        """Pin `name` for this user. The value is saved with the user state and outlives config changes."""
        if domain not in self.experiments:
            raise ValueError(f"unknown experiment domain {domain!r}")
        resolved = self.experiments[domain]
        resolved.features[name] = value
        resolved.dirty_features[name] = value


class AppFeatureQuery(FeatureQuery):
    """Query over the app domain alone, outside of any user."""

    @classmethod
    def for_app(cls, cache: ConfigCache) -> AppFeatureQuery:
        context = cache.app.context_for(None, None)
        return cls(
            cache,
            {
                "app": cache.app.read_for(context),
                "shared": ResolvedExperiments(bucket=None, stamp=cache.shared.stamp),
            },
        )


def resolve(cache: ConfigCache, user: UserState) -> FeatureQuery:
    experiments: dict[str, ResolvedExperiments] = {}
    for name in DOMAINS:
        domain = cache.domains[name]
        context = domain.context_for(user.bucket, user.id)
        experiments[name] = domain.read_for(context, user.dirty_for(name))
    return FeatureQuery(cache, experiments)


class XprMiddleware(BaseHTTPMiddleware):
    """Attaches `request.state.feature` and persists the user's experiment state."""

    def __init__(
        self,
        app: ASGIApp,
        cache: ConfigCache,
        read_user: ReadUser | None = None,
        save_user: SaveUser | None = None,
        store: CookieUserStore | None = None,
    ) -> None:
        super().__init__(app)
        self.cache = cache
        self.store = store or CookieUserStore()
        self.read_user = read_user or self.store.read
        self.save_user = save_user or self.store.save

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # Headers the read hook sets, e.g. clearing a bad cookie.
        pending = Response()
        user = self.read_user(request, pending) or UserState.anonymous()
        query = resolve(self.cache, user)

        request.state.xpr_user = user
        request.state.feature = query
        request.state.experiments = query.experiments

        response = await call_next(request)

        for key, value in pending.raw_headers:
            if key == b"set-cookie":
                response.headers.append("set-cookie", value.decode("latin-1"))
        if user.id:
            self.save_user(user.id, query.experiments, response)
        return response


def get_feature(request: Request) -> FeatureQuery:
    """FastAPI dependency: `feature: FeatureQuery = Depends(get_feature)`."""
    return typing.cast(FeatureQuery, request.state.feature)


__all__ = ("AppFeatureQuery", "FeatureQuery", "ReadUser", "SaveUser", "XprMiddleware", "get_feature", "resolve")
