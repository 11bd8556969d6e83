"""Experiment domains: rule evaluation, buckets and config stamps."""

from __future__ import annotations

import hashlib
import json
import typing
from dataclasses import dataclass, field

from loguru import logger

DEFAULT_BUCKETS = 100
DOMAINS = ("app", "shared")


def _unit(key: str) -> float:
    h = hashlib.sha256(key.encode("utf-8")).hexdigest()
    return int(h[:8], 16) / 0xFFFFFFFF


def bucket_for(user_id: str, buckets: int = DEFAULT_BUCKETS) -> int:
    """Stable bucket in `range(buckets)` for a user id."""
    h = hashlib.sha256(user_id.encode("utf-8")).hexdigest()
    return int(h[:8], 16) % buckets


def stamp_for(raw: typing.Mapping[str, typing.Any]) -> str:
    payload = json.dumps(raw, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ExperimentContext:
    bucket: int | None
    user_id: str | None

    @property
    def key(self) -> str:
        return f"{'' if self.bucket is None else self.bucket}:{self.user_id or ''}"


@dataclass
class ResolvedExperiments:
    """What one domain decided for one request."""

    bucket: int | None
    stamp: str | None
    features: dict[str, typing.Any] = field(default_factory=dict)
    dirty_features: dict[str, typing.Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Rule:
    name: str
    default: typing.Any = False
    percent: float = 0
    users: frozenset[str] = frozenset()
    buckets: frozenset[int] = frozenset()

    @classmethod
    def from_dict(cls, payload: typing.Mapping[str, typing.Any], reference: str | None) -> Rule:
        merged = dict(payload)
        refs = payload.get("references") or {}
        if not isinstance(refs, dict):
            raise TypeError(f"references must be an object, not {type(refs).__name__}")
        if reference is not None and isinstance(refs.get(reference), dict):
            merged.update(refs[reference])
        return cls(
            name=merged["name"],
            default=merged.get("default", False),
            percent=max(0.0, min(100.0, float(merged.get("percent") or 0))),
            users=frozenset(str(u) for u in merged.get("users") or ()),
            buckets=frozenset(int(b) for b in merged.get("buckets") or ()),
        )

    def status(self, context: ExperimentContext) -> typing.Any:
        if context.user_id is not None and context.user_id in self.users:
            return True
        if context.bucket is not None and context.bucket in self.buckets:
            return True
        if self.percent >= 100:
            return True
        if self.percent > 0 and _unit(f"{self.name}:{context.key}") * 100 < self.percent:
            return True
        return self.default


class ExperimentDomain:
    """One namespace of experiments (`app` or `shared`)."""

    def __init__(self, name: str, buckets: int = DEFAULT_BUCKETS) -> None:
        self.name = name
        self.buckets = buckets
        self._rules: dict[str, Rule] = {}
        self._stamp: str | None = None

    @property
    def stamp(self) -> str | None:
        return self._stamp

    def rules(self) -> typing.Mapping[str, Rule]:
        return dict(self._rules)

    def compile(
        self,
        raw: typing.Mapping[str, typing.Any],
        reference: str | None = None,
    ) -> tuple[dict[str, Rule], str]:
        """Rules and stamp for `raw`, without touching the live rule set."""
        if not isinstance(raw, typing.Mapping):
            raise TypeError(f"{self.name} config must be an object, not {type(raw).__name__}")

        entries = raw.get("experiments") or ()
        if not isinstance(entries, (list, tuple)):
            logger.warning("xpr[{}]: experiments must be a list, got {!r}", self.name, entries)
            entries = ()

        rules: dict[str, Rule] = {}
        for entry in entries:
            if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
                logger.warning("xpr[{}]: skipping experiment without a name: {!r}", self.name, entry)
                continue
            try:
                rules[entry["name"]] = Rule.from_dict(entry, reference)
            except (AttributeError, TypeError, ValueError) as exc:
                logger.warning("xpr[{}]: bad rule {!r}: {}", self.name, entry["name"], exc)

        return rules, stamp_for(raw)

    def install(self, rules: dict[str, Rule], stamp: str) -> None:
        self._rules, self._stamp = rules, stamp

    def configure(self, raw: typing.Mapping[str, typing.Any], reference: str | None = None) -> str:
        rules, stamp = self.compile(raw, reference)
        self.install(rules, stamp)
        return stamp

    def context_for(self, bucket: int | None, user_id: str | None) -> ExperimentContext:
        if bucket is None and user_id is not None:
            bucket = bucket_for(user_id, self.buckets)
        return ExperimentContext(bucket=bucket, user_id=user_id)

    def read_for(
        self,
        context: ExperimentContext,
        dirty: typing.Mapping[str, typing.Any] | None = None,
    ) -> ResolvedExperiments:
        dirty = dict(dirty or {})
        features = {name: rule.status(context) for name, rule in self._rules.items()}
        features.update(dirty)
        return ResolvedExperiments(
            bucket=context.bucket,
            stamp=self._stamp,
            features=features,
            dirty_features=dirty,
        )

    def feature(self, name: str, resolved: ResolvedExperiments) -> typing.Any | None:
        return resolved.features.get(name)

    def __repr__(self) -> str:
        return f"<ExperimentDomain {self.name} rules={len(self._rules)} stamp={self._stamp}>"


__all__ = (
    "DOMAINS",
    "ExperimentContext",
    "ExperimentDomain",
    "ResolvedExperiments",
    "Rule",
    "bucket_for",
    "stamp_for",
)
