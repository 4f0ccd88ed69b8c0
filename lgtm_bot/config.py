"""Pydantic-based configuration helpers for the LGTM bot."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Iterable, List

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator


class AppSettings(BaseModel):
    """Settings required to receive Slack events and approve pull requests."""

    bot_token: str = Field(..., alias="SLACK_BOT_TOKEN")
    signing_secret: str = Field(..., alias="SLACK_SIGNING_SECRET")
    database_url: str = Field(
        ...,
        validation_alias=AliasChoices("DATABASE_URL", "POSTGRES_PRISMA_URL", "POSTGRES_URL"),
    )
    allowed_channels: List[str] = Field(default_factory=list, alias="SLACK_ALLOWED_CHANNELS")
    trigger_emoji: str = Field("white_check_mark", alias="TRIGGER_EMOJI")
    skip_signature_verification: bool = Field(False, alias="SKIP_SLACK_VERIFICATION")
    bot_user_id: str | None = Field(None, alias="SLACK_BOT_USER_ID")
    app_name: str = Field("lgtm", alias="APP_NAME")
    github_api_base: str = Field("https://api.github.com", alias="GITHUB_API_BASE")
    github_client_id: str | None = Field(None, alias="GITHUB_CLIENT_ID")
    base_url: str | None = Field(None, alias="BASE_URL")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @field_validator("allowed_channels", mode="before")
    @classmethod
    def _split_channels(cls, value: str | list[str] | None) -> list[str]:
        if value is None:
            return []
        if isinstance(value, list):
            return [item.strip() for item in value if item.strip()]
        return [item.strip() for item in value.split(",") if item.strip()]

    @field_validator("trigger_emoji")
    @classmethod
    def _strip_colons(cls, value: str) -> str:
        cleaned = value.strip().strip(":")
        if not cleaned:
            raise ValueError("TRIGGER_EMOJI must not be empty")
        return cleaned

    @field_validator("bot_user_id", "github_client_id", "base_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        trimmed = value.strip()
        return trimmed or None

    @field_validator("log_level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"


def _format_missing(fields: Iterable[str]) -> str:
    """Return a human-friendly comma-separated list of missing env vars."""

    unique: List[str] = []
    for field in fields:
        if field not in unique:
            unique.append(field)
    return ", ".join(unique)


@lru_cache()
def get_settings() -> AppSettings:
    """Fetch and cache settings from environment variables."""

    try:
        return AppSettings.model_validate(os.environ)
    except ValidationError as exc:  # pragma: no cover - exercised via tests
        problems = [str(error["loc"][0]) for error in exc.errors() if error["loc"]]
        missing = [error for error in exc.errors() if error["type"] == "missing"]
        if missing:
            message = (
                "Missing required environment variables: "
                f"{_format_missing(str(error['loc'][0]) for error in missing)}"
            )
        else:
            message = f"Invalid environment variables: {_format_missing(problems)}"
        raise RuntimeError(message) from exc
