"""nodnod nodes for experiment-aware routes."""

from nodnod import scalar_node
from starlette.requests import Request

from fastapi_xpr.cache import ConfigCache
from fastapi_xpr.middleware import AppFeatureQuery, FeatureQuery


@scalar_node
class Features:
    """The request's feature query; needs `XprMiddleware` installed."""

    @classmethod
    def __compose__(cls, request: Request) -> FeatureQuery:
        return request.state.feature


@scalar_node
class AppFeatures:
    """App-domain lookups that do not depend on the user."""

    @classmethod
    def __compose__(cls, cache: ConfigCache) -> AppFeatureQuery:
        return AppFeatureQuery.for_app(cache)


__all__ = ("AppFeatures", "Features")
