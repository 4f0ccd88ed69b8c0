"""Best-effort direct messages telling users what happened to their approvals."""

from __future__ import annotations

from slack_sdk.errors import SlackClientError
import structlog

from lgtm_bot.extraction import PRReference
from lgtm_bot.slack_client import SlackClient, slack_error_code


def build_onboarding_text(app_name: str) -> str:
    return (
        ":warning: You need to connect your GitHub account first! "
        f"Use `/{app_name} connect` to link your account."
    )


def build_unconnected_mention_text(app_name: str, mentioned_user_id: str) -> str:
    return (
        f":warning: <@{mentioned_user_id}> has not connected their GitHub account. "
        f"They need to use `/{app_name} connect` to link their account."
    )


def build_approval_failure_text(reference: PRReference, github_user: str, reason: str) -> str:
    return f":x: Failed to approve {reference} as {github_user}: {reason}"


class Notifier:
    """Send DMs about the approval flow; failures are logged and swallowed."""

    def __init__(self, slack_client: SlackClient, *, app_name: str) -> None:
        self._slack = slack_client
        self._app_name = app_name

    def send(self, user_id: str, text: str, *, reason: str) -> bool:
        log = structlog.get_logger().bind(recipient=user_id, notification=reason)
        try:
            self._slack.send_direct_message(user_id=user_id, text=text)
        except (SlackClientError, OSError) as exc:
            log.error("notification_failed", error=slack_error_code(exc))
            return False
        log.info("notification_sent")
        return True

    def request_onboarding(self, user_id: str) -> bool:
        """Ask *user_id* to connect their GitHub account."""

        return self.send(user_id, build_onboarding_text(self._app_name), reason="onboarding")

    def report_unconnected_mention(self, requester_id: str, mentioned_user_id: str) -> bool:
        """Tell *requester_id* that a user they mentioned has no stored credential."""

        return self.send(
            requester_id,
            build_unconnected_mention_text(self._app_name, mentioned_user_id),
            reason="unconnected_mention",
        )

    def report_approval_failure(
        self, requester_id: str, reference: PRReference, github_user: str, reason: str
    ) -> bool:
        return self.send(
            requester_id,
            build_approval_failure_text(reference, github_user, reason),
            reason="approval_failed",
        )
