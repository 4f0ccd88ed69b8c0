"""Utility script to reset the local credential database.

Usage:
    python scripts/reset_local_db.py

Environment:
    Ensure DATABASE_URL (and other required settings) are available in
    the current shell before running this script.
"""

from __future__ import annotations

from lgtm_bot.config import get_settings
from lgtm_bot.db import Base, build_engine
from lgtm_bot.models import UserToken  # noqa: F401


def reset_database() -> None:
    engine = build_engine(get_settings().database_url)
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    print("Local credential database reset.")


if __name__ == "__main__":
    reset_database()
