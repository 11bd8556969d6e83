"""Cookie-backed user state."""

from __future__ import annotations

import typing
from urllib.parse import quote, unquote

from loguru import logger
from starlette.requests import Request
from starlette.responses import Response

from fastapi_xpr.codec import UserState, decode_or_default, encode
from fastapi_xpr.settings import XprSettings

if typing.TYPE_CHECKING:
    from fastapi_xpr.experiment import ResolvedExperiments


class CookieUserStore:
    """Keeps the token in a cookie, percent-encoded since the sentinels are not cookie-safe."""

    def __init__(self, settings: XprSettings | None = None) -> None:
        self.settings = settings or XprSettings()

    @property
    def cookie_name(self) -> str:
        return self.settings.cookie_name

    def read(self, request: Request, response: Response) -> UserState:
        raw = request.cookies.get(self.cookie_name)
        default = UserState.fresh(self.settings.buckets)
        if not raw:
            return default

        user, ok = decode_or_default(unquote(raw), default)
        if not ok:
            logger.warning("xpr: discarding malformed {} cookie", self.cookie_name)
            self.clear(response)
        return user

    def save(
        self,
        user_id: str,
        resolved: typing.Mapping[str, ResolvedExperiments],
        response: Response,
    ) -> None:
        response.set_cookie(
            self.cookie_name,
            quote(encode(user_id, resolved), safe=""),
            max_age=self.settings.cookie_max_age,
            httponly=True,
            samesite="lax",
        )

    def clear(self, response: Response) -> None:
        response.delete_cookie(self.cookie_name)


__all__ = ("CookieUserStore",)
