"""Settings for the experiment client."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class XprSettings(BaseSettings):
    """
    Read from `XPR_*` environment variables.

    XPR_URL=https://xpr.example.com XPR_APP=shop uv run uvicorn app:app
    """

    model_config = SettingsConfigDict(env_prefix="XPR_", extra="ignore")

    url: str | None = None
    app: str = "app"
    reference: str = "local"
    timeout: float = Field(10.0, gt=0)
    refresh_interval: float = Field(0.0, ge=0)

    cookie_name: str = "xpr.config"
    cookie_max_age: int = 900
    buckets: int = Field(100, gt=0)
