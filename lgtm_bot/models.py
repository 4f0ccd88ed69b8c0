"""SQLAlchemy models for stored GitHub credentials."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from lgtm_bot.db import Base


class UserToken(Base):
    """GitHub access token a Slack user granted through the connect flow."""

    __tablename__ = "user_tokens"

    slack_user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    github_token: Mapped[str] = mapped_column(Text, nullable=False)
    github_username: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )
