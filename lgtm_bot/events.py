"""Parsing of inbound Slack webhook bodies into a closed set of event types.

Slack delivers Events API callbacks as JSON, but the same endpoint can also
receive form-encoded bodies (interactive components wrap their JSON inside a
``payload`` field). :func:`parse_body` reconciles those encodings into one
mapping and :func:`normalize_event` turns that mapping into one of the
immutable event variants below, so the orchestrator never handles raw dicts.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar, Mapping, Union
from urllib.parse import parse_qsl

URL_VERIFICATION = "url_verification"
EVENT_CALLBACK = "event_callback"
REACTION_ADDED = "reaction_added"
MESSAGE = "message"


class MalformedBodyError(ValueError):
    """Raised when a request body cannot be decoded into a Slack event."""


class IncompleteEventError(ValueError):
    """A decodable event lacks a field the bot needs."""


@dataclass(frozen=True)
class UrlVerification:
    """Endpoint ownership handshake sent when the events URL is configured."""

    kind: ClassVar[str] = "url_verification"

    challenge: str


@dataclass(frozen=True)
class ReactionEvent:
    """A reaction added to a channel message."""

    kind: ClassVar[str] = "reaction"

    user: str
    channel: str
    message_ts: str
    reaction: str
    event_id: str | None = None


@dataclass(frozen=True)
class MessageEvent:
    """A plain message posted by a user, candidate for the mention flow."""

    kind: ClassVar[str] = "message_mention"

    user: str
    channel: str
    message_ts: str
    text: str
    event_id: str | None = None


@dataclass(frozen=True)
class UnsupportedEvent:
    """Anything the bot acknowledges but does not act on."""

    kind: ClassVar[str] = "unsupported"

    event_type: str
    reason: str


InboundEvent = Union[UrlVerification, ReactionEvent, MessageEvent, UnsupportedEvent]


def parse_body(raw_body: str | bytes, content_type: str | None = None) -> dict[str, Any]:
    """Decode a webhook body into a mapping.

    JSON is attempted first. Anything else is read as URL-encoded form data;
    when the form carries a ``payload`` field, its JSON value becomes the body.

    Raises:
        MalformedBodyError: The body is neither a JSON object nor valid form data.
    """

    if isinstance(raw_body, bytes):
        try:
            raw_body = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedBodyError("Request body is not valid UTF-8.") from exc

    try:
        decoded = json.loads(raw_body)
    except json.JSONDecodeError:
        return _parse_form(raw_body, content_type)

    if not isinstance(decoded, dict):
        raise MalformedBodyError("JSON body must be an object.")
    return decoded


def _parse_form(raw_body: str, content_type: str | None) -> dict[str, Any]:
    try:
        pairs = parse_qsl(raw_body, keep_blank_values=True, strict_parsing=True)
    except ValueError as exc:
        raise MalformedBodyError(
            f"Body is neither JSON nor form data (content type {content_type or 'unknown'})."
        ) from exc

    if not pairs:
        raise MalformedBodyError("Request body is empty.")

    fields: dict[str, Any] = {}
    for key, value in pairs:
        fields.setdefault(key, value)

    payload = fields.get("payload")
    if payload is None:
        return fields

    try:
        nested = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedBodyError("Form field 'payload' is not valid JSON.") from exc
    if not isinstance(nested, dict):
        raise MalformedBodyError("Form field 'payload' must hold a JSON object.")
    return nested


def normalize_event(body: Mapping[str, Any]) -> InboundEvent:
    """Classify a decoded body into one of the supported event variants.

    Only a ``url_verification`` body without its challenge raises; an
    ``event_callback`` with missing or mistyped fields is returned as an
    :class:`UnsupportedEvent` so Slack does not keep retrying it.
    """

    body_type = body.get("type")

    if body_type == URL_VERIFICATION:
        challenge = body.get("challenge")
        if not isinstance(challenge, str) or not challenge:
            raise MalformedBodyError("url_verification body is missing its challenge.")
        return UrlVerification(challenge=challenge)

    if body_type != EVENT_CALLBACK:
        return UnsupportedEvent(event_type=str(body_type or "unknown"), reason="unsupported body type")

    event = body.get("event")
    if not isinstance(event, Mapping):
        return UnsupportedEvent(event_type=EVENT_CALLBACK, reason="event_callback body is missing its event")

    event_id = body.get("event_id") if isinstance(body.get("event_id"), str) else None
    event_type = event.get("type")

    try:
        if event_type == REACTION_ADDED:
            return _reaction_event(event, event_id)
        if event_type == MESSAGE:
            return _message_event(event, event_id)
    except IncompleteEventError as exc:
        return UnsupportedEvent(event_type=str(event_type), reason=str(exc))
    return UnsupportedEvent(event_type=str(event_type or "unknown"), reason="unsupported event type")


def _reaction_event(event: Mapping[str, Any], event_id: str | None) -> InboundEvent:
    item = event.get("item")
    if not isinstance(item, Mapping):
        raise IncompleteEventError("reaction_added event is missing its item")
    if item.get("type", MESSAGE) != MESSAGE:
        return UnsupportedEvent(event_type=REACTION_ADDED, reason=f"reaction on {item.get('type')}")

    user = _require_str(event, "user")
    reaction = _require_str(event, "reaction")
    channel = _require_str(item, "channel")
    message_ts = _require_str(item, "ts")
    return ReactionEvent(
        user=user,
        channel=channel,
        message_ts=message_ts,
        reaction=reaction,
        event_id=event_id,
    )


def _message_event(event: Mapping[str, Any], event_id: str | None) -> InboundEvent:
    subtype = event.get("subtype")
    if subtype:
        return UnsupportedEvent(event_type=MESSAGE, reason=f"message subtype {subtype}")
    if event.get("bot_id"):
        return UnsupportedEvent(event_type=MESSAGE, reason="message from a bot")

    text = event.get("text") or ""
    if not isinstance(text, str):
        raise IncompleteEventError("message text must be a string")
    return MessageEvent(
        user=_require_str(event, "user"),
        channel=_require_str(event, "channel"),
        message_ts=_require_str(event, "ts"),
        text=text,
        event_id=event_id,
    )


def _require_str(container: Mapping[str, Any], key: str) -> str:
    value = container.get(key)
    if not isinstance(value, str) or not value:
        raise IncompleteEventError(f"event field '{key}' is missing")
    return value
