"""Tests for the SQLAlchemy-backed credential store."""

from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:  # pragma: no cover
    sys.path.insert(0, str(ROOT))

from lgtm_bot.credentials import CredentialStore, CredentialStoreError, DelegatedCredential  # noqa: E402
from lgtm_bot.db import build_engine, build_session_factory, create_schema, session_scope  # noqa: E402
from lgtm_bot.models import UserToken  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'credentials.db'}")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return CredentialStore(build_session_factory(engine))


def test_lookup_unknown_user_returns_none(store):
    assert store.lookup("U404") is None


def test_save_then_lookup(store):
    store.save("U1", token="gho_abc", display_name="octo")

    credential = store.lookup("U1")

    assert credential == DelegatedCredential(identity="U1", token="gho_abc", display_name="octo")


def test_save_replaces_existing_credential(store, engine):
    store.save("U1", token="gho_old", display_name="octo")
    store.save("U1", token="gho_new", display_name="octo-renamed")

    assert store.lookup("U1").token == "gho_new"
    with session_scope(build_session_factory(engine)) as session:
        rows = session.query(UserToken).all()
        assert len(rows) == 1
        assert rows[0].github_username == "octo-renamed"


def test_delete_reports_whether_a_credential_existed(store):
    store.save("U1", token="gho_abc", display_name="octo")

    assert store.delete("U1") is True
    assert store.delete("U1") is False
    assert store.lookup("U1") is None


def test_lookup_wraps_database_errors(tmp_path):
    unprepared = build_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    store = CredentialStore(build_session_factory(unprepared))

    with pytest.raises(CredentialStoreError):
        store.lookup("U1")

    unprepared.dispose()


@pytest.mark.parametrize(
    "operation",
    [
        lambda store: store.save("U1", token="gho_token", display_name="octo"),
        lambda store: store.delete("U1"),
    ],
    ids=["save", "delete"],
)
def test_writes_wrap_database_errors(tmp_path, operation):
    unprepared = build_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    store = CredentialStore(build_session_factory(unprepared))

    with pytest.raises(CredentialStoreError):
        operation(store)

    unprepared.dispose()


def test_token_is_hidden_from_repr():
    credential = DelegatedCredential(identity="U1", token="gho_secret", display_name="octo")

    assert "gho_secret" not in repr(credential)
