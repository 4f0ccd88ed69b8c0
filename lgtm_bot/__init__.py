"""LGTM bot package initialisation."""

from .background import run_async  # noqa: F401
from .config import AppSettings, get_settings  # noqa: F401
from .credentials import CredentialStore, DelegatedCredential  # noqa: F401
from .db import Base, build_engine, build_session_factory, create_schema, session_scope  # noqa: F401
from .extraction import PRReference, extract_pr_references, extract_user_mentions  # noqa: F401
from .logging_config import configure_logging  # noqa: F401
from .models import UserToken  # noqa: F401
from .orchestrator import ApprovalOrchestrator  # noqa: F401

__all__ = [
    "AppSettings",
    "get_settings",
    "run_async",
    "Base",
    "build_engine",
    "build_session_factory",
    "create_schema",
    "session_scope",
    "CredentialStore",
    "DelegatedCredential",
    "UserToken",
    "PRReference",
    "extract_pr_references",
    "extract_user_mentions",
    "ApprovalOrchestrator",
    "configure_logging",
]
