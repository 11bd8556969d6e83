"""Memoized experiment configuration."""

from __future__ import annotations

import asyncio
import typing

import kungfu
from loguru import logger

from fastapi_xpr.experiment import DOMAINS, ExperimentDomain, Rule

if typing.TYPE_CHECKING:
    from fastapi_xpr.remote import FetchResult, RemoteClient, RemoteConfig


class ConfigCache:
    """
    Last known good configuration for the `app` and `shared` domains.

    A failed refresh applies its defaults only until the first fetch lands;
    after that, stale data wins over defaults.
    """

    def __init__(
        self,
        remote: RemoteClient,
        app: ExperimentDomain | None = None,
        shared: ExperimentDomain | None = None,
    ) -> None:
        self.remote = remote
        self.app = app or ExperimentDomain("app")
        self.shared = shared or ExperimentDomain("shared")
        self._last_fetch: RemoteConfig | None = None
        self._fetched = False
        self._hashes: dict[str, str | None] = {name: None for name in DOMAINS}

    @property
    def domains(self) -> dict[str, ExperimentDomain]:
        return {"app": self.app, "shared": self.shared}

    @property
    def fetched(self) -> bool:
        return self._fetched

    @property
    def last_fetch(self) -> RemoteConfig | None:
        return self._last_fetch

    @property
    def hashes(self) -> dict[str, str | None]:
        return dict(self._hashes)

    @property
    def reference(self) -> str:
        return self.remote.get_reference()

    async def refresh(self, fetch: typing.Callable[[], typing.Awaitable[FetchResult]]) -> None:
        match await fetch():
            case kungfu.Ok(config):
                self.apply_config(config, optional=False)
            case kungfu.Error(failure):
                logger.warning("xpr: experiment fetch failed: {}", failure.error)
                self.apply_config(failure.defaults, optional=True)

    async def load(self) -> None:
        await self.refresh(self.remote.load)

    async def announce(self) -> None:
        await self.refresh(self.remote.announce)

    def apply_config(self, config: RemoteConfig, optional: bool = False) -> None:
        if optional and self._fetched:
            logger.debug("xpr: keeping last good configuration over defaults")
            return

        reference = self.remote.get_reference()
        staged: dict[str, tuple[dict[str, Rule], str]] = {}
        for name, domain in self.domains.items():
            raw = config.get(name)
            if raw is None:
                continue
            try:
                staged[name] = domain.compile(raw, reference)
            except TypeError as exc:
                logger.warning("xpr: ignoring {} config: {}", name, exc)

        hashes = dict(self._hashes)
        for name, (rules, stamp) in staged.items():
            self.domains[name].install(rules, stamp)
            hashes[name] = stamp
        self._hashes, self._last_fetch, self._fetched = hashes, config, True
        logger.info("xpr: configuration applied (optional={}) stamps={}", optional, hashes)

    async def run_periodic(self, interval: float) -> None:
        """Reload every `interval` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await self.load()


__all__ = ("ConfigCache",)
