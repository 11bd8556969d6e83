"""
User state token.

    u:<id>«b:<bucket>╣app:«s:<stamp>«d:<json>║╣shared:«s:<stamp>«d:<json>║

Ids and stamps are embedded raw and must not contain the sentinels.
"""

from __future__ import annotations

import json
import re
import typing
import uuid
from dataclasses import dataclass, field

import kungfu

from fastapi_xpr.experiment import DEFAULT_BUCKETS, DOMAINS, bucket_for

FIELD = "«"
SECTION = "╣"
END = "║"

_BUCKET = re.compile(r"-?[0-9]+")


@dataclass
class DomainUserState:
    stamp: str | None = None
    dirty: dict[str, typing.Any] = field(default_factory=dict)


@dataclass
class UserState:
    id: str | None = None
    bucket: int | None = None
    domains: dict[str, DomainUserState] = field(
        default_factory=lambda: {name: DomainUserState() for name in DOMAINS}
    )

    @classmethod
    def anonymous(cls) -> UserState:
        return cls()

    @classmethod
    def fresh(cls, buckets: int = DEFAULT_BUCKETS) -> UserState:
        user_id = uuid.uuid4().hex
        return cls(id=user_id, bucket=bucket_for(user_id, buckets))

    def dirty_for(self, domain: str) -> dict[str, typing.Any]:
        state = self.domains.get(domain)
        return state.dirty if state is not None else {}


class _Persisted(typing.Protocol):
    stamp: str | None
    dirty_features: dict[str, typing.Any]


def _section(name: str, state: _Persisted) -> str:
    dirty = json.dumps(state.dirty_features, separators=(",", ":"))
    return f"{SECTION}{name}:{FIELD}s:{state.stamp or ''}{FIELD}d:{dirty}{END}"


def encode(user_id: str, data: typing.Mapping[str, typing.Any]) -> str:
    """`data` maps each domain to something with `stamp`, `dirty_features` (and `bucket` for app)."""
    bucket = data["app"].bucket
    token = f"u:{user_id}{FIELD}b:{'' if bucket is None else bucket}"
    for name in DOMAINS:
        token += _section(name, data[name])
    return token


class _Malformed(Exception):
    pass


class _Reader:
    def __init__(self, token: str) -> None:
        self.token = token
        self.pos = 0

    def expect(self, literal: str) -> None:
        if not self.token.startswith(literal, self.pos):
            raise _Malformed(f"expected {literal!r} at {self.pos}")
        self.pos += len(literal)

    def until(self, stop: str) -> str:
        end = self.token.find(stop, self.pos)
        if end < 0:
            raise _Malformed(f"missing {stop!r} after {self.pos}")
        value = self.token[self.pos : end]
        self.pos = end
        return value

    def done(self) -> None:
        if self.pos != len(self.token):
            raise _Malformed(f"trailing data at {self.pos}")


def _parse_bucket(raw: str) -> int | None:
    if not raw:
        return None
    if not _BUCKET.fullmatch(raw):
        raise _Malformed(f"bad bucket {raw!r}")
    return int(raw)


def _parse_dirty(raw: str) -> dict[str, typing.Any]:
    try:
        dirty = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        raise _Malformed(f"bad dirty json: {exc}") from None
    if not isinstance(dirty, dict):
        raise _Malformed("dirty features must be an object")
    return dirty


def _parse(token: str) -> UserState:
    reader = _Reader(token)
    reader.expect("u:")
    user_id = reader.until(FIELD)
    reader.expect(f"{FIELD}b:")
    bucket = _parse_bucket(reader.until(SECTION))

    domains: dict[str, DomainUserState] = {}
    for name in DOMAINS:
        reader.expect(f"{SECTION}{name}:{FIELD}s:")
        stamp = reader.until(FIELD)
        reader.expect(f"{FIELD}d:")
        dirty = _parse_dirty(reader.until(END))
        reader.expect(END)
        domains[name] = DomainUserState(stamp=stamp or None, dirty=dirty)
    reader.done()

    return UserState(id=user_id or None, bucket=bucket, domains=domains)


def decode(token: str) -> kungfu.Result[UserState, str]:
    try:
        return kungfu.Ok(_parse(token))
    except _Malformed as exc:
        return kungfu.Error(str(exc))


def decode_or_default(token: str, default: UserState) -> tuple[UserState, bool]:
    """The decoded state and True, or `default` and False when the token is malformed."""
    match decode(token):
        case kungfu.Ok(state):
            return state, True
        case _:
            return default, False


__all__ = (
    "DomainUserState",
    "UserState",
    "decode",
    "decode_or_default",
    "encode",
)
