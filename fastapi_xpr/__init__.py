"""Per-user experiment flags for FastAPI."""

from fastapi_xpr.cache import ConfigCache
from fastapi_xpr.client import XprClient
from fastapi_xpr.codec import DomainUserState, UserState, decode, encode
from fastapi_xpr.experiment import ExperimentDomain, ResolvedExperiments, bucket_for
from fastapi_xpr.middleware import AppFeatureQuery, FeatureQuery, XprMiddleware, get_feature
from fastapi_xpr.nodes import AppFeatures, Features
from fastapi_xpr.remote import FetchFailure, HttpRemoteClient, RemoteClient, StaticRemoteClient
from fastapi_xpr.routing import experiment_route
from fastapi_xpr.settings import XprSettings
from fastapi_xpr.store import CookieUserStore

__all__ = (
    "AppFeatureQuery",
    "AppFeatures",
    "ConfigCache",
    "CookieUserStore",
    "DomainUserState",
    "ExperimentDomain",
    "Features",
    "FeatureQuery",
    "FetchFailure",
    "HttpRemoteClient",
    "RemoteClient",
    "ResolvedExperiments",
    "StaticRemoteClient",
    "UserState",
    "XprClient",
    "XprMiddleware",
    "XprSettings",
    "bucket_for",
    "decode",
    "encode",
    "experiment_route",
    "get_feature",
)
