"""Lookup and persistence of per-user delegated GitHub credentials."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
import structlog

from lgtm_bot.db import session_scope
from lgtm_bot.models import UserToken

log = structlog.get_logger(__name__)


class CredentialStoreError(Exception):
    """Raised when the credential store cannot be reached."""


@dataclass(frozen=True)
class DelegatedCredential:
    """A Slack user's GitHub token and the GitHub login it belongs to."""

    identity: str
    token: str = field(repr=False)
    display_name: str


class CredentialStore:
    """Credential storage keyed by Slack user id."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def lookup(self, identity: str) -> DelegatedCredential | None:
        """Return the stored credential for *identity*, or None if never connected."""

        try:
            with session_scope(self._session_factory) as session:
                row = session.get(UserToken, identity)
                if row is None:
                    return None
                return DelegatedCredential(
                    identity=row.slack_user_id,
                    token=row.github_token,
                    display_name=row.github_username,
                )
        except SQLAlchemyError as exc:
            log.error("credential_lookup_failed", slack_user_id=identity, error=str(exc))
            raise CredentialStoreError(f"Could not look up credentials for {identity}") from exc

    def save(self, identity: str, *, token: str, display_name: str) -> DelegatedCredential:
        """Store or replace the credential for *identity*."""

        try:
            with session_scope(self._session_factory) as session:
                row = session.get(UserToken, identity)
                if row is None:
                    session.add(UserToken(slack_user_id=identity, github_token=token, github_username=display_name))
                else:
                    row.github_token = token
                    row.github_username = display_name
                    row.updated_at = datetime.now(UTC)
        except SQLAlchemyError as exc:
            log.error("credential_save_failed", slack_user_id=identity, error=str(exc))
            raise CredentialStoreError(f"Could not save credentials for {identity}") from exc
        log.info("credential_saved", slack_user_id=identity, github_user=display_name)
        return DelegatedCredential(identity=identity, token=token, display_name=display_name)

    def delete(self, identity: str) -> bool:
        """Remove the credential for *identity*; return whether one existed."""

        try:
            with session_scope(self._session_factory) as session:
                row = session.get(UserToken, identity)
                if row is None:
                    return False
                session.delete(row)
        except SQLAlchemyError as exc:
            log.error("credential_delete_failed", slack_user_id=identity, error=str(exc))
            raise CredentialStoreError(f"Could not delete credentials for {identity}") from exc
        log.info("credential_deleted", slack_user_id=identity)
        return True
