import asyncio

import kungfu
import pytest

from fastapi_xpr.cache import ConfigCache
from fastapi_xpr.experiment import ExperimentDomain
from fastapi_xpr.remote import FetchFailure, StaticRemoteClient

GOOD = {
    "app": {"experiments": [{"name": "exp1", "default": True}]},
    "shared": {"experiments": [{"name": "shExp1", "default": False}]},
}
DEFAULTS = {"app": {"experiments": [{"name": "exp1", "default": False}]}}


class TestApplyConfig:
    def test_first_apply(self) -> None:
        cache = ConfigCache(StaticRemoteClient(GOOD))
        assert not cache.fetched
        assert cache.hashes == {"app": None, "shared": None}

        cache.apply_config(GOOD)
        assert cache.fetched
        assert cache.last_fetch is GOOD
        assert cache.hashes == {"app": cache.app.stamp, "shared": cache.shared.stamp}
        assert None not in cache.hashes.values()

    def test_optional_does_not_regress(self) -> None:
        cache = ConfigCache(StaticRemoteClient(GOOD))
        cache.apply_config(GOOD)
        hashes = cache.hashes

        cache.apply_config(DEFAULTS, optional=True)
        assert cache.last_fetch is GOOD
        assert cache.hashes == hashes

        cache.apply_config(DEFAULTS, optional=False)
        assert cache.last_fetch is DEFAULTS
        assert cache.hashes["app"] != hashes["app"]

    def test_optional_before_fetch(self) -> None:
        cache = ConfigCache(StaticRemoteClient(GOOD))
        cache.apply_config(DEFAULTS, optional=True)
        assert cache.fetched
        assert cache.last_fetch is DEFAULTS

    def test_absent_domain_keeps_stamp(self) -> None:
        cache = ConfigCache(StaticRemoteClient(GOOD))
        cache.apply_config(DEFAULTS)
        assert cache.hashes["shared"] is None
        assert cache.shared.stamp is None

    def test_bad_shapes_are_skipped(self) -> None:
        config = {
            "app": {"experiments": [{"name": "refs", "references": ["beta"]}, {"name": "exp1", "default": True}]},
            "shared": [],
        }
        cache = ConfigCache(StaticRemoteClient(config))
        cache.apply_config(config)
        assert cache.fetched
        assert set(cache.app.rules()) == {"exp1"}
        assert cache.hashes["app"] == cache.app.stamp
        assert cache.hashes["shared"] is None

    def test_failed_domain_leaves_cache_untouched(self) -> None:
        class Exploding(ExperimentDomain):
            def compile(self, raw, reference=None):  # type: ignore[no-untyped-def]
                raise RuntimeError("boom")

        cache = ConfigCache(StaticRemoteClient(GOOD), shared=Exploding("shared"))
        cache.apply_config(DEFAULTS)
        rules, stamp = cache.app.rules(), cache.app.stamp

        with pytest.raises(RuntimeError):
            cache.apply_config(GOOD)
        assert cache.app.rules() == rules
        assert cache.app.stamp == stamp
        assert cache.last_fetch is DEFAULTS
        assert cache.hashes == {"app": stamp, "shared": None}


class TestRefresh:
    def test_success(self) -> None:
        remote = StaticRemoteClient(GOOD)
        cache = ConfigCache(remote)
        asyncio.run(cache.load())
        assert cache.last_fetch is GOOD
        assert remote.calls == 1

    def test_failure_uses_defaults(self) -> None:
        cache = ConfigCache(StaticRemoteClient(DEFAULTS, fail=True))
        asyncio.run(cache.announce())
        assert cache.fetched
        assert cache.last_fetch is DEFAULTS

    def test_failure_after_success(self) -> None:
        cache = ConfigCache(StaticRemoteClient(GOOD))
        asyncio.run(cache.load())

        async def broken():  # type: ignore[no-untyped-def]
            return kungfu.Error(FetchFailure(ConnectionError("down"), DEFAULTS))

        asyncio.run(cache.refresh(broken))
        assert cache.last_fetch is GOOD

    def test_periodic(self) -> None:
        remote = StaticRemoteClient(GOOD)
        cache = ConfigCache(remote)

        async def run() -> None:
            task = asyncio.create_task(cache.run_periodic(0.01))
            await asyncio.sleep(0.05)
            task.cancel()

        asyncio.run(run())
        assert remote.calls >= 2
        assert cache.fetched
