"""Remote experiment server clients."""

from __future__ import annotations

import typing
from dataclasses import dataclass, field

import httpx
import kungfu
from loguru import logger

from fastapi_xpr.settings import XprSettings

RemoteConfig = dict[str, typing.Any]


@dataclass(frozen=True)
class FetchFailure:
    """A failed fetch, carrying the defaults to fall back to."""

    error: BaseException | str
    defaults: RemoteConfig = field(default_factory=dict)


if typing.TYPE_CHECKING:
    FetchResult: typing.TypeAlias = kungfu.Result[RemoteConfig, FetchFailure]


class RemoteClient(typing.Protocol):
    async def load(self) -> FetchResult: ...

    async def announce(self) -> FetchResult: ...

    def get_reference(self) -> str: ...


class HttpRemoteClient:
    """
    Talks to an experiment server over HTTP.

    load:     GET  {url}/api/v1/apps/{app}/{reference}
    announce: POST {url}/api/v1/apps  {"app", "reference", "experiments"}
    """

    def __init__(
        self,
        settings: XprSettings,
        defaults: RemoteConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.defaults: RemoteConfig = defaults or {}
        self._transport = transport

    def get_reference(self) -> str:
        return self.settings.reference

    async def load(self) -> FetchResult:
        return await self._request("GET", f"/api/v1/apps/{self.settings.app}/{self.settings.reference}")

    async def announce(self) -> FetchResult:
        body = {
            "app": self.settings.app,
            "reference": self.settings.reference,
            "experiments": self.defaults,
        }
        return await self._request("POST", "/api/v1/apps", json=body)

    async def _request(self, method: str, path: str, **kwargs: typing.Any) -> FetchResult:
        if not self.settings.url:
            return kungfu.Error(FetchFailure("no experiment server configured", self.defaults))

        try:
            async with httpx.AsyncClient(
                base_url=self.settings.url.rstrip("/"),
                timeout=self.settings.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("xpr: {} {} failed: {!r}", method, path, exc)
            return kungfu.Error(FetchFailure(exc, self.defaults))

        if not isinstance(payload, dict):
            return kungfu.Error(FetchFailure(f"unexpected payload: {type(payload).__name__}", self.defaults))
        return kungfu.Ok(payload)


class StaticRemoteClient:
    """Serves a fixed configuration; `fail=True` makes every fetch fail with it as defaults."""

    def __init__(self, config: RemoteConfig, reference: str = "local", fail: bool = False) -> None:
        self.config = config
        self.reference = reference
        self.fail = fail
        self.calls = 0

    def get_reference(self) -> str:
        return self.reference

    async def load(self) -> FetchResult:
        self.calls += 1
        if self.fail:
            return kungfu.Error(FetchFailure("static client set to fail", self.config))
        return kungfu.Ok(self.config)

    async def announce(self) -> FetchResult:
        return await self.load()


__all__ = (
    "FetchFailure",
    "HttpRemoteClient",
    "RemoteClient",
    "RemoteConfig",
    "StaticRemoteClient",
)
