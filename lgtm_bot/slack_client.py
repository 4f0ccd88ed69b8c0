"""Thin wrapper utilities around the Slack WebClient."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

ALREADY_REACTED = "already_reacted"


def slack_error_code(exc: Exception) -> str:
    """Return the Slack ``error`` field of a failed call, or the exception text."""

    response = getattr(exc, "response", None)
    if response is not None:
        try:
            error = response.get("error")
        except AttributeError:
            error = None
        if error:
            return str(error)
    return str(exc)


class SlackClient:
    """Encapsulate Slack WebClient interactions for easier testing."""

    def __init__(self, *, token: str | None = None, client: WebClient | None = None) -> None:
        if client is None and token is None:
            raise ValueError("Either an instantiated client or a bot token must be provided.")
        self._client = client or WebClient(token=token)

    @property
    def client(self) -> WebClient:
        """Expose the underlying WebClient for advanced use cases."""

        return self._client

    def post_message(
        self,
        *,
        channel: str,
        text: str,
        blocks: Sequence[Mapping[str, Any]] | None = None,
    ) -> Mapping[str, Any]:
        """Post a message to a channel or DM conversation."""

        if blocks is None:
            return self._client.chat_postMessage(channel=channel, text=text)
        return self._client.chat_postMessage(channel=channel, text=text, blocks=list(blocks))

    def add_reaction(self, *, channel: str, ts: str, name: str) -> bool:
        """Add a reaction to a message; an existing identical reaction counts as success."""

        try:
            self._client.reactions_add(channel=channel, timestamp=ts, name=name)
        except SlackApiError as exc:
            if slack_error_code(exc) == ALREADY_REACTED:
                return True
            raise
        return True

    def fetch_message_text(self, *, channel: str, ts: str) -> str | None:
        """Return the text of the message posted at *ts*, or None if it cannot be found."""

        history = self._client.conversations_history(channel=channel, latest=ts, limit=1, inclusive=True)
        for message in history.get("messages") or []:
            if message.get("ts") == ts:
                return message.get("text") or None

        # Thread replies are not part of the channel history. Slack always puts
        # the thread parent first, so the window is narrowed to the reply itself.
        try:
            replies = self._client.conversations_replies(
                channel=channel, ts=ts, oldest=ts, latest=ts, inclusive=True
            )
        except SlackApiError as exc:
            if slack_error_code(exc) == "thread_not_found":
                return None
            raise
        for message in replies.get("messages") or []:
            if message.get("ts") == ts:
                return message.get("text") or None
        return None

    def open_direct_message(self, *, user_id: str) -> str:
        """Open (or reuse) the DM conversation with *user_id* and return its id."""

        response = self._client.conversations_open(users=user_id)
        return response["channel"]["id"]

    def send_direct_message(self, *, user_id: str, text: str) -> Mapping[str, Any]:
        """Send *text* to *user_id* as a direct message."""

        channel_id = self.open_direct_message(user_id=user_id)
        return self.post_message(channel=channel_id, text=text)

    def get_bot_user_id(self) -> str | None:
        """Return the user id the bot token authenticates as."""

        response = self._client.auth_test()
        return response.get("user_id")
