import kungfu
import pytest

from fastapi_xpr import cache, codec, middleware
from fastapi_xpr.codec import DomainUserState, UserState, decode, decode_or_default, encode
from fastapi_xpr.experiment import DOMAINS, ResolvedExperiments


def data(app_dirty: dict, shared_dirty: dict, bucket: int | None = 3) -> dict[str, ResolvedExperiments]:  # type: ignore[type-arg]
    return {
        "app": ResolvedExperiments(bucket=bucket, stamp="s1", dirty_features=app_dirty),
        "shared": ResolvedExperiments(bucket=bucket, stamp="s2", dirty_features=shared_dirty),
    }


def decoded(token: str) -> UserState:
    match decode(token):
        case kungfu.Ok(state):
            return state
        case other:
            pytest.fail(f"expected a state, got {other!r}")


class TestEncode:
    def test_format(self) -> None:
        assert encode("u1", data({"a": True}, {})) == 'u:u1«b:3╣app:«s:s1«d:{"a":true}║╣shared:«s:s2«d:{}║'

    def test_missing_bucket_and_stamp(self) -> None:
        exps = data({}, {}, bucket=None)
        exps["shared"].stamp = None
        assert encode("u1", exps) == "u:u1«b:╣app:«s:s1«d:{}║╣shared:«s:«d:{}║"


class TestDecode:
    def test_round_trip(self) -> None:
        state = decoded(encode("u1", data({"a": True, "colour": "blue"}, {"n": 2})))
        assert state.id == "u1"
        assert state.bucket == 3
        assert state.domains == {
            "app": DomainUserState(stamp="s1", dirty={"a": True, "colour": "blue"}),
            "shared": DomainUserState(stamp="s2", dirty={"n": 2}),
        }
        assert state.dirty_for("shared") == {"n": 2}

    def test_empty_fields(self) -> None:
        state = decoded("u:«b:╣app:«s:«d:{}║╣shared:«s:«d:{}║")
        assert state.id is None
        assert state.bucket is None
        assert state.domains["app"].stamp is None

    def test_negative_bucket(self) -> None:
        assert decoded("u:u1«b:-4╣app:«s:«d:{}║╣shared:«s:«d:{}║").bucket == -4

    @pytest.mark.parametrize(
        "token",
        [
            "garbage-not-matching-grammar",
            "",
            "u:u1«b:3╣app:«s:s1«d:{}║",
            "u:u1«b:x╣app:«s:s1«d:{}║╣shared:«s:s2«d:{}║",
            "u:u1«b:3╣app:«s:s1«d:{nope║╣shared:«s:s2«d:{}║",
            "u:u1«b:3╣app:«s:s1«d:[1]║╣shared:«s:s2«d:{}║",
            "u:u1«b:3╣shared:«s:s2«d:{}║╣app:«s:s1«d:{}║",
            "u:u1«b:3╣app:«s:s1«d:{}║╣shared:«s:s2«d:{}║extra",
            "u:u1«b:+3╣app:«s:s1«d:{}║╣shared:«s:s2«d:{}║",
            "u:u1«b: 3╣app:«s:s1«d:{}║╣shared:«s:s2«d:{}║",
            "u:u1«b:\u0663╣app:«s:s1«d:{}║╣shared:«s:s2«d:{}║",
            "u:u1«b:3╣app:«s:s1«d:" + "[" * 100_000 + "║╣shared:«s:s2«d:{}║",
        ],
    )
    def test_malformed(self, token: str) -> None:
        match decode(token):
            case kungfu.Error(reason):
                assert reason
            case other:
                pytest.fail(f"expected an error, got {other!r}")

    def test_default(self) -> None:
        default = UserState.fresh()
        state, ok = decode_or_default("garbage", default)
        assert state is default
        assert not ok

        state, ok = decode_or_default(encode("u1", data({}, {})), default)
        assert ok
        assert state.id == "u1"


class TestUserState:
    def test_fresh(self) -> None:
        a, b = UserState.fresh(10), UserState.fresh(10)
        assert a.id and b.id and a.id != b.id
        assert a.bucket is not None and 0 <= a.bucket < 10

    def test_anonymous(self) -> None:
        state = UserState.anonymous()
        assert state.id is None
        assert state.dirty_for("app") == {}
        assert state.dirty_for("missing") == {}

    def test_domains_come_from_one_place(self) -> None:
        assert tuple(UserState().domains) == DOMAINS
        assert codec.DOMAINS is cache.DOMAINS is middleware.DOMAINS is DOMAINS
