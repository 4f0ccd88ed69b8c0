"""Tests for the Flask application factory."""

import json
from pathlib import Path
import sys
from types import SimpleNamespace
from urllib.parse import urlencode

import pytest
from flask import Response
from structlog.testing import capture_logs

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:  # pragma: no cover
    sys.path.insert(0, str(ROOT))

import app as app_module  # noqa: E402
from lgtm_bot import config, security  # noqa: E402
from lgtm_bot.events import MessageEvent, ReactionEvent  # noqa: E402

TIMESTAMP = "1700000000"

REACTION_BODY = {
    "type": "event_callback",
    "event_id": "Ev123",
    "event": {
        "type": "reaction_added",
        "user": "U1",
        "reaction": "white_check_mark",
        "item": {"type": "message", "channel": "C1", "ts": "1700.0001"},
    },
}


class DummyHandler:
    called = False

    def __init__(self, bolt_app):
        self.bolt_app = bolt_app

    def handle(self, _request):
        DummyHandler.called = True
        return Response("ok", status=200)


@pytest.fixture
def dispatched(monkeypatch):
    calls = []

    def fake_run_async(func, /, *args, trace_id=None, **kwargs):
        calls.append({"func": func, "args": args, "trace_id": trace_id})

    monkeypatch.setattr(app_module, "run_async", fake_run_async)
    return calls


def _seed_env(monkeypatch, tmp_path, **extra):
    for var in ("SKIP_SLACK_VERIFICATION", "SLACK_ALLOWED_CHANNELS", "POSTGRES_URL", "POSTGRES_PRISMA_URL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("SLACK_BOT_TOKEN", "token")
    monkeypatch.setenv("SLACK_SIGNING_SECRET", "secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'app.db'}")
    for key, value in extra.items():
        monkeypatch.setenv(key, value)
    config.get_settings.cache_clear()


def _freeze_clock(monkeypatch, now=TIMESTAMP):
    monkeypatch.setattr(security, "time", SimpleNamespace(time=lambda: int(now)))


def _signed_headers(secret: str, body: str, timestamp: str = TIMESTAMP) -> dict[str, str]:
    signature = security.compute_signature(secret, timestamp, body)
    return {
        security.SLACK_SIGNATURE_HEADER: signature,
        security.SLACK_TIMESTAMP_HEADER: timestamp,
    }


@pytest.fixture
def client(monkeypatch, tmp_path):
    _seed_env(monkeypatch, tmp_path)
    _freeze_clock(monkeypatch)
    monkeypatch.setattr(app_module, "SlackRequestHandler", DummyHandler)
    return app_module.create_app().test_client()


def test_url_verification_is_answered_without_signature(client, dispatched):
    body = json.dumps({"type": "url_verification", "challenge": "abc123"})

    response = client.post("/slack/events", data=body, content_type="application/json")

    assert response.status_code == 200
    assert response.get_json() == {"challenge": "abc123"}
    assert dispatched == []


def test_url_verification_in_form_body(client, dispatched):
    body = urlencode({"type": "url_verification", "challenge": "xyz"})

    response = client.post("/slack/events", data=body, content_type="application/x-www-form-urlencoded")

    assert response.status_code == 200
    assert response.get_json() == {"challenge": "xyz"}


def test_url_verification_without_challenge_is_malformed(client):
    body = json.dumps({"type": "url_verification"})

    response = client.post("/slack/events", data=body, content_type="application/json")

    assert response.status_code == 400
    assert response.get_json() == {"error": "malformed_body"}


def test_signed_reaction_event_is_dispatched(client, dispatched):
    body = json.dumps(REACTION_BODY)

    response = client.post(
        "/slack/events",
        data=body,
        content_type="application/json",
        headers=_signed_headers("secret", body),
    )

    assert response.status_code == 200
    assert response.get_json() == {"ok": True}
    assert len(dispatched) == 1
    call = dispatched[0]
    assert call["func"] is app_module._process_event
    orchestrator, event = call["args"]
    assert orchestrator is client.application.config["SERVICES"].orchestrator
    assert event == ReactionEvent(
        user="U1", channel="C1", message_ts="1700.0001", reaction="white_check_mark", event_id="Ev123"
    )
    assert call["trace_id"]


def test_accepted_event_is_logged_with_its_event_id(client, dispatched):
    body = json.dumps(REACTION_BODY)

    with capture_logs() as logs:
        client.post(
            "/slack/events",
            data=body,
            content_type="application/json",
            headers=_signed_headers("secret", body),
        )

    accepted = [entry for entry in logs if entry.get("event") == "event_accepted"]
    assert len(accepted) == 1
    assert accepted[0]["event_id"] == "Ev123"
    assert accepted[0]["kind"] == "reaction"


def test_nested_payload_form_body_is_dispatched(client, dispatched):
    inner = {
        "type": "event_callback",
        "event": {
            "type": "message",
            "user": "U9",
            "channel": "C1",
            "ts": "1700.0002",
            "text": "<@U1> https://github.com/acme/widgets/pull/42",
        },
    }
    body = urlencode({"payload": json.dumps(inner)})

    response = client.post(
        "/slack/events",
        data=body,
        content_type="application/x-www-form-urlencoded",
        headers=_signed_headers("secret", body),
    )

    assert response.status_code == 200
    (_, event) = dispatched[0]["args"]
    assert isinstance(event, MessageEvent)
    assert event.text == "<@U1> https://github.com/acme/widgets/pull/42"


def test_invalid_signature_returns_unauthorised(client, dispatched):
    body = json.dumps(REACTION_BODY)

    response = client.post(
        "/slack/events",
        data=body,
        content_type="application/json",
        headers=_signed_headers("wrong-secret", body),
    )

    assert response.status_code == 401
    assert response.get_json() == {"error": "invalid_signature"}
    assert dispatched == []


def test_missing_signature_headers_return_unauthorised(client, dispatched):
    response = client.post("/slack/events", data=json.dumps(REACTION_BODY), content_type="application/json")

    assert response.status_code == 401
    assert dispatched == []


def test_stale_timestamp_returns_unauthorised(client, dispatched):
    body = json.dumps(REACTION_BODY)
    stale = str(int(TIMESTAMP) - 301)

    response = client.post(
        "/slack/events",
        data=body,
        content_type="application/json",
        headers=_signed_headers("secret", body, timestamp=stale),
    )

    assert response.status_code == 401
    assert dispatched == []


@pytest.mark.parametrize(
    ("body", "content_type"),
    [
        ("[1, 2, 3]", "application/json"),
        ("not a form", "text/plain"),
        ("", "application/json"),
    ],
)
def test_malformed_body_returns_bad_request(client, dispatched, body, content_type):
    response = client.post("/slack/events", data=body, content_type=content_type)

    assert response.status_code == 400
    assert response.get_json() == {"error": "malformed_body"}
    assert dispatched == []


def test_signed_event_with_missing_fields_is_acknowledged_without_dispatch(client, dispatched):
    body = json.dumps({"type": "event_callback", "event": {"type": "reaction_added", "reaction": "white_check_mark"}})

    response = client.post(
        "/slack/events",
        data=body,
        content_type="application/json",
        headers=_signed_headers("secret", body),
    )

    assert response.status_code == 200
    assert response.get_json() == {"ok": True}
    assert dispatched == []


def test_unsupported_event_is_acknowledged_without_dispatch(client, dispatched):
    body = json.dumps({"type": "event_callback", "event": {"type": "app_home_opened", "user": "U1"}})

    response = client.post(
        "/slack/events",
        data=body,
        content_type="application/json",
        headers=_signed_headers("secret", body),
    )

    assert response.status_code == 200
    assert response.get_json() == {"ok": True}
    assert dispatched == []


def test_skip_verification_accepts_unsigned_events(monkeypatch, tmp_path, dispatched):
    _seed_env(monkeypatch, tmp_path, SKIP_SLACK_VERIFICATION="true")
    monkeypatch.setattr(app_module, "SlackRequestHandler", DummyHandler)
    client = app_module.create_app().test_client()

    response = client.post("/slack/events", data=json.dumps(REACTION_BODY), content_type="application/json")

    assert response.status_code == 200
    assert len(dispatched) == 1


def _warnings(logs):
    return {entry["event"] for entry in logs if entry.get("log_level") == "warning"}


def test_disabled_verification_and_open_channels_are_logged_loudly(monkeypatch, tmp_path, dispatched):
    _seed_env(monkeypatch, tmp_path, SKIP_SLACK_VERIFICATION="true")
    monkeypatch.setattr(app_module, "SlackRequestHandler", DummyHandler)
    monkeypatch.setattr(app_module, "_LOGGING_CONFIGURED", True)

    with capture_logs() as logs:
        client = app_module.create_app().test_client()
        client.post("/slack/events", data=json.dumps(REACTION_BODY), content_type="application/json")

    warnings = _warnings(logs)
    assert "signature_verification_disabled" in warnings
    assert "channel_allow_list_empty" in warnings
    assert "signature_verification_skipped" in warnings


def test_secure_configuration_logs_no_warnings(monkeypatch, tmp_path, dispatched):
    _seed_env(monkeypatch, tmp_path, SLACK_ALLOWED_CHANNELS="C1")
    _freeze_clock(monkeypatch)
    monkeypatch.setattr(app_module, "SlackRequestHandler", DummyHandler)
    monkeypatch.setattr(app_module, "_LOGGING_CONFIGURED", True)
    body = json.dumps(REACTION_BODY)

    with capture_logs() as logs:
        client = app_module.create_app().test_client()
        response = client.post(
            "/slack/events",
            data=body,
            content_type="application/json",
            headers=_signed_headers("secret", body),
        )

    assert response.status_code == 200
    warnings = _warnings(logs)
    assert "signature_verification_disabled" not in warnings
    assert "signature_verification_skipped" not in warnings
    assert "channel_allow_list_empty" not in warnings


def test_slash_commands_route_uses_bolt_handler(client):
    DummyHandler.called = False

    response = client.post("/slack/commands", data="command=%2Flgtm&text=help")

    assert response.status_code == 200
    assert DummyHandler.called is True


def test_process_event_logs_and_swallows_failures():
    class ExplodingOrchestrator:
        def handle(self, event):
            raise RuntimeError("boom")

    event = ReactionEvent(user="U1", channel="C1", message_ts="1.0", reaction="white_check_mark")

    app_module._process_event(ExplodingOrchestrator(), event)
