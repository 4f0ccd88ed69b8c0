"""Application entry point for the LGTM Slack bot."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from flask import Flask, jsonify, request
from slack_bolt import App as SlackApp
from slack_bolt.adapter.flask import SlackRequestHandler
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

from lgtm_bot.background import run_async
from lgtm_bot.commands import (
    CONNECT,
    DISCONNECT,
    STATUS,
    build_authorize_url,
    build_connect_response,
    build_help_text,
    parse_slash_command,
)
from lgtm_bot.config import AppSettings, get_settings
from lgtm_bot.credentials import CredentialStore, CredentialStoreError
from lgtm_bot.db import build_engine, build_session_factory, create_schema, session_scope
from lgtm_bot.events import (
    URL_VERIFICATION,
    InboundEvent,
    MalformedBodyError,
    UnsupportedEvent,
    normalize_event,
    parse_body,
)
from lgtm_bot.github_client import GitHubClient
from lgtm_bot.logging_config import configure_logging
from lgtm_bot.notifications import Notifier
from lgtm_bot.orchestrator import ApprovalOrchestrator
from lgtm_bot.security import (
    SLACK_SIGNATURE_HEADER,
    SLACK_TIMESTAMP_HEADER,
    is_valid_slack_request,
)
from lgtm_bot.slack_client import SlackClient


@dataclass
class Services:
    """Process-wide resources built once by :func:`create_app`."""

    engine: Engine
    session_factory: sessionmaker[Session]
    credential_store: CredentialStore
    slack_client: SlackClient
    notifier: Notifier
    orchestrator: ApprovalOrchestrator


def _build_services(settings: AppSettings) -> Services:
    engine = build_engine(settings.database_url)
    create_schema(engine)
    session_factory = build_session_factory(engine)
    credential_store = CredentialStore(session_factory)
    slack_client = SlackClient(token=settings.bot_token)
    notifier = Notifier(slack_client, app_name=settings.app_name)

    def github_client_factory(token: str) -> GitHubClient:
        return GitHubClient(token, base_url=settings.github_api_base)

    orchestrator = ApprovalOrchestrator(
        slack_client=slack_client,
        notifier=notifier,
        credential_store=credential_store,
        github_client_factory=github_client_factory,
        trigger_emoji=settings.trigger_emoji,
        allowed_channels=settings.allowed_channels,
        bot_user_id=settings.bot_user_id,
    )
    return Services(
        engine=engine,
        session_factory=session_factory,
        credential_store=credential_store,
        slack_client=slack_client,
        notifier=notifier,
        orchestrator=orchestrator,
    )


def _create_bolt_app(settings: AppSettings) -> SlackApp:
    """Initialise the Slack Bolt application used for slash commands."""

    return SlackApp(
        token=settings.bot_token,
        signing_secret=settings.signing_secret,
        token_verification_enabled=False,
        request_verification_enabled=not settings.skip_signature_verification,
    )


def _register_error_handlers(flask_app: Flask) -> None:
    """Register a JSON error handler that attaches a trace identifier."""

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[override]
        trace_id = str(uuid4())
        flask_app.logger.exception(
            "Unhandled application error", extra={"trace_id": trace_id}, exc_info=error
        )
        response = jsonify({"error": "internal_server_error", "trace_id": trace_id})
        response.status_code = 500
        return response


def _handle_lgtm_command(ack, command, *, settings: AppSettings, credential_store: CredentialStore) -> None:
    trace_id = str(uuid4())
    bind_contextvars(trace_id=trace_id)
    log = structlog.get_logger().bind(trace_id=trace_id)
    try:
        user_id = command.get("user_id") or ""
        context = parse_slash_command(command.get("text") or "")
        log = log.bind(slack_user_id=user_id, action=context.action)
        log.info("slash_command_received", command=command.get("command"))

        if context.action == CONNECT:
            if not settings.github_client_id or not settings.base_url:
                log.warning("connect_not_configured")
                ack({"response_type": "ephemeral", "text": "GitHub connect is not configured. Please contact an administrator."})
                return
            authorize_url = build_authorize_url(
                client_id=settings.github_client_id,
                base_url=settings.base_url,
                slack_user_id=user_id,
            )
            ack(build_connect_response(authorize_url))
            return

        if context.action == STATUS:
            try:
                credential = credential_store.lookup(user_id)
            except CredentialStoreError:
                ack({"response_type": "ephemeral", "text": "Could not check your connection right now. Please try again later."})
                return
            if credential is None:
                ack(
                    {
                        "response_type": "ephemeral",
                        "text": f"You have not connected a GitHub account. Use `/{settings.app_name} connect`.",
                    }
                )
            else:
                ack({"response_type": "ephemeral", "text": f"Connected as GitHub user *{credential.display_name}*."})
            return

        if context.action == DISCONNECT:
            try:
                removed = credential_store.delete(user_id)
            except CredentialStoreError:
                ack({"response_type": "ephemeral", "text": "Could not disconnect your account right now. Please try again later."})
                return
            text_reply = "Your GitHub account has been disconnected." if removed else "No GitHub account was connected."
            ack({"response_type": "ephemeral", "text": text_reply})
            return

        ack(
            {
                "response_type": "ephemeral",
                "text": build_help_text(settings.app_name, settings.trigger_emoji, unknown=context.argument),
            }
        )
    finally:
        unbind_contextvars("trace_id")


def _register_slash_handlers(bolt_app: SlackApp, settings: AppSettings, credential_store: CredentialStore) -> None:

    @bolt_app.command(f"/{settings.app_name}")
    def handle_lgtm(ack, command):
        _handle_lgtm_command(ack, command, settings=settings, credential_store=credential_store)


def _process_event(orchestrator: ApprovalOrchestrator, event: InboundEvent) -> None:
    log = structlog.get_logger()
    try:
        orchestrator.handle(event)
    except Exception:
        # Runs on a worker thread; the webhook has already been acknowledged.
        log.exception("event_processing_failed", kind=event.kind)


_LOGGING_CONFIGURED = False


def _load_version() -> str:
    version_file = Path(__file__).resolve().parent / "VERSION"
    if version_file.exists():
        return version_file.read_text(encoding="utf-8").strip()
    return "unknown"


def create_app() -> Flask:
    """Create and configure the Flask application."""

    global _LOGGING_CONFIGURED
    settings = get_settings()
    if not _LOGGING_CONFIGURED:
        configure_logging(settings.log_level)
        _LOGGING_CONFIGURED = True

    startup_log = structlog.get_logger()
    if settings.skip_signature_verification:
        startup_log.warning(
            "signature_verification_disabled",
            detail="SKIP_SLACK_VERIFICATION is set; only use this for local development",
        )
    if not settings.allowed_channels:
        startup_log.warning(
            "channel_allow_list_empty",
            detail="events from every channel will be processed; set SLACK_ALLOWED_CHANNELS",
        )

    services = _build_services(settings)
    bolt_app = _create_bolt_app(settings)
    _register_slash_handlers(bolt_app, settings, services.credential_store)
    handler = SlackRequestHandler(bolt_app)

    flask_app = Flask(__name__)
    flask_app.config["APP_VERSION"] = _load_version()
    flask_app.config["SERVICES"] = services
    flask_app.logger.setLevel(settings.log_level)

    _register_error_handlers(flask_app)

    @flask_app.route("/slack/events", methods=["POST"])
    def slack_events():
        raw_body = request.get_data(as_text=True)
        trace_id = str(uuid4())
        log = structlog.get_logger().bind(
            trace_id=trace_id,
            retry_num=request.headers.get("X-Slack-Retry-Num"),
        )

        try:
            body = parse_body(raw_body, request.content_type)
        except MalformedBodyError as exc:
            log.warning("malformed_body", error=str(exc), content_type=request.content_type)
            return jsonify({"error": "malformed_body"}), 400

        # The ownership handshake is answered before any signature check.
        if body.get("type") == URL_VERIFICATION:
            try:
                verification = normalize_event(body)
            except MalformedBodyError as exc:
                log.warning("malformed_body", error=str(exc))
                return jsonify({"error": "malformed_body"}), 400
            log.info("url_verification_answered")
            return jsonify({"challenge": verification.challenge}), 200

        if settings.skip_signature_verification:
            log.warning("signature_verification_skipped")
        elif not is_valid_slack_request(
            signing_secret=settings.signing_secret,
            timestamp=request.headers.get(SLACK_TIMESTAMP_HEADER, ""),
            body=raw_body,
            signature=request.headers.get(SLACK_SIGNATURE_HEADER, ""),
        ):
            log.warning("signature_invalid")
            return jsonify({"error": "invalid_signature"}), 401

        event = normalize_event(body)
        if isinstance(event, UnsupportedEvent):
            log.debug("event_unsupported", event_type=event.event_type, reason=event.reason)
            return jsonify({"ok": True}), 200

        log.info("event_accepted", kind=event.kind, event_id=event.event_id)
        run_async(_process_event, services.orchestrator, event, trace_id=trace_id)
        return jsonify({"ok": True}), 200

    @flask_app.route("/slack/commands", methods=["POST"])
    def slack_commands():
        return handler.handle(request)

    @flask_app.route("/healthz", methods=["GET"])
    def healthz():
        health: dict[str, object] = {"ok": True}
        health["version"] = flask_app.config.get("APP_VERSION", "unknown")

        try:
            get_settings()
            health["config"] = "valid"
        except Exception as exc:  # pragma: no cover - settings were valid at startup
            health["config"] = "invalid"
            health["config_error"] = str(exc)
            health["ok"] = False

        try:
            with session_scope(services.session_factory) as session:
                session.execute(text("SELECT 1"))
            health["db"] = "up"
        except Exception as exc:
            health["db"] = "down"
            health["db_error"] = str(exc)
            health["ok"] = False

        status = 200 if health["ok"] else 503
        return jsonify(health), status

    return flask_app


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    application = create_app()
    application.run(host="0.0.0.0", port=3000, debug=True)
