"""Wiring for an application."""

from __future__ import annotations

import asyncio
import contextlib
import typing

from loguru import logger
from nodnod import Scope, Value

from fastapi_xpr.cache import ConfigCache
from fastapi_xpr.middleware import AppFeatureQuery, ReadUser, SaveUser, XprMiddleware
from fastapi_xpr.remote import HttpRemoteClient, RemoteClient, RemoteConfig
from fastapi_xpr.settings import XprSettings
from fastapi_xpr.store import CookieUserStore

if typing.TYPE_CHECKING:
    from starlette.applications import Starlette


class XprClient:
    """
    Owns the remote client, the config cache and a shared nodnod scope.

    xpr = XprClient(defaults={"app": {"experiments": [...]}})
    app = FastAPI(lifespan=xpr.lifespan)
    xpr.install(app)
    """

    def __init__(
        self,
        settings: XprSettings | None = None,
        remote: RemoteClient | None = None,
        defaults: RemoteConfig | None = None,
    ) -> None:
        self.settings = settings or XprSettings()
        self.remote = remote or HttpRemoteClient(self.settings, defaults=defaults)
        self.cache = ConfigCache(self.remote)
        self.cache.app.buckets = self.cache.shared.buckets = self.settings.buckets
        self.store = CookieUserStore(self.settings)

        self._scope = Scope(detail="xpr")
        self._scope.push(Value(ConfigCache, self.cache))
        self._scope.push(Value(XprClient, self))

    @property
    def scope(self) -> Scope:
        return self._scope

    def install(
        self,
        app: Starlette,
        read_user: ReadUser | None = None,
        save_user: SaveUser | None = None,
    ) -> None:
        app.add_middleware(
            XprMiddleware,
            cache=self.cache,
            read_user=read_user,
            save_user=save_user,
            store=self.store,
        )

    def app_feature(self, name: str, fallback: typing.Any = False) -> typing.Any:
        return AppFeatureQuery.for_app(self.cache)(name, fallback)

    @contextlib.asynccontextmanager
    async def lifespan(self, app: typing.Any = None) -> typing.AsyncIterator[None]:
        await self.cache.announce()

        task: asyncio.Task[None] | None = None
        if self.settings.refresh_interval > 0:
            task = asyncio.create_task(self.cache.run_periodic(self.settings.refresh_interval))
            logger.info("xpr: refreshing every {}s", self.settings.refresh_interval)
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task


__all__ = ("XprClient",)
