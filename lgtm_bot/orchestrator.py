"""Turn Slack reactions and mentions into GitHub pull request approvals.

The orchestrator receives an already authenticated, normalized event and
works through it sequentially: decide whether the event is a trigger, work
out which Slack users to act as, resolve each user's stored GitHub
credential, then approve every referenced pull request as that user. One
failing user or pull request never stops the others. When at least one pull
request ends up approved (now or previously) the trigger reaction is added
to the message as a completion signal.
"""

from __future__ import annotations

from typing import Callable, Iterable, Sequence

from slack_sdk.errors import SlackClientError
import structlog

from lgtm_bot.approvals import (
    ApprovalOutcome,
    ApprovalStatus,
    RequestSummary,
    has_already_approved,
)
from lgtm_bot.credentials import CredentialStore, CredentialStoreError, DelegatedCredential
from lgtm_bot.events import InboundEvent, MessageEvent, ReactionEvent
from lgtm_bot.extraction import PRReference, extract_pr_references, extract_user_mentions
from lgtm_bot.github_client import GitHubClient, GitHubError, GitHubRateLimitError
from lgtm_bot.notifications import Notifier
from lgtm_bot.slack_client import SlackClient, slack_error_code

GitHubClientFactory = Callable[[str], GitHubClient]


class ApprovalOrchestrator:
    """Dispatch inbound events and run the approval loop for each of them."""

    def __init__(
        self,
        *,
        slack_client: SlackClient,
        notifier: Notifier,
        credential_store: CredentialStore,
        github_client_factory: GitHubClientFactory,
        trigger_emoji: str,
        allowed_channels: Iterable[str] = (),
        bot_user_id: str | None = None,
    ) -> None:
        self._slack = slack_client
        self._notifier = notifier
        self._credentials = credential_store
        self._github_client_factory = github_client_factory
        self._trigger_emoji = trigger_emoji
        self._allowed_channels = frozenset(allowed_channels)
        self._bot_user_id = bot_user_id

    def handle(self, event: InboundEvent) -> RequestSummary | None:
        """Process *event*; return the outcome summary, or None when ignored."""

        if isinstance(event, ReactionEvent):
            return self.handle_reaction(event)
        if isinstance(event, MessageEvent):
            return self.handle_message(event)
        structlog.get_logger().debug("event_ignored", kind=event.kind)
        return None

    def handle_reaction(self, event: ReactionEvent) -> RequestSummary | None:
        log = structlog.get_logger().bind(
            slack_user_id=event.user, channel=event.channel, message_ts=event.message_ts
        )

        if event.reaction != self._trigger_emoji:
            log.debug("reaction_ignored", reaction=event.reaction, reason="not_trigger")
            return None
        if self._is_bot(event.user):
            log.info("reaction_ignored", reason="own_reaction")
            return None
        if not self._is_channel_allowed(event.channel):
            log.info("reaction_ignored", reason="channel_not_allowed")
            return None

        log.info("reaction_trigger_received", reaction=event.reaction)

        credential = self._resolve_credential(event.user)
        if credential is None:
            return None

        try:
            text = self._slack.fetch_message_text(channel=event.channel, ts=event.message_ts)
        except (SlackClientError, OSError) as exc:
            log.error("message_fetch_failed", error=slack_error_code(exc))
            return None
        if not text:
            log.info("message_text_unavailable")
            return None

        references = extract_pr_references(text)
        if not references:
            log.info("no_pull_requests_found")
            return None

        summary = RequestSummary()
        self._approve_as(credential, references, requester_id=event.user, summary=summary)
        self._finish(summary, channel=event.channel, message_ts=event.message_ts)
        return summary

    def handle_message(self, event: MessageEvent) -> RequestSummary | None:
        log = structlog.get_logger().bind(
            slack_user_id=event.user, channel=event.channel, message_ts=event.message_ts
        )

        bot_user_id = self._resolve_bot_user_id()
        if bot_user_id is not None and event.user == bot_user_id:
            log.debug("message_ignored", reason="own_message")
            return None
        if not self._is_channel_allowed(event.channel):
            log.debug("message_ignored", reason="channel_not_allowed")
            return None

        mentions = [user_id for user_id in extract_user_mentions(event.text) if user_id != bot_user_id]
        if not mentions:
            log.debug("message_ignored", reason="no_mentions")
            return None
        references = extract_pr_references(event.text)
        if not references:
            log.debug("message_ignored", reason="no_pull_requests")
            return None

        log.info("mention_trigger_received", mentions=len(mentions), pull_requests=len(references))

        summary = RequestSummary()
        for mentioned_user_id in mentions:
            credential = self._resolve_credential(mentioned_user_id, requester_id=event.user)
            if credential is None:
                continue
            self._approve_as(credential, references, requester_id=event.user, summary=summary)

        self._finish(summary, channel=event.channel, message_ts=event.message_ts)
        return summary

    def _approve_as(
        self,
        credential: DelegatedCredential,
        references: Sequence[PRReference],
        *,
        requester_id: str,
        summary: RequestSummary,
    ) -> None:
        log = structlog.get_logger().bind(slack_user_id=credential.identity, github_user=credential.display_name)
        log.info("approving_pull_requests", pull_requests=[str(reference) for reference in references])

        try:
            github = self._github_client_factory(credential.token)
        except Exception as exc:
            log.exception("github_client_unavailable")
            for reference in references:
                self._record(summary, self._failed(credential, reference, exc), requester_id, credential)
            return

        with github:
            for reference in references:
                try:
                    outcome = self._process_reference(github, credential, reference)
                except Exception as exc:
                    log.exception("approval_crashed", pull_request=str(reference))
                    outcome = self._failed(credential, reference, exc)
                self._record(summary, outcome, requester_id, credential)

    def _record(
        self,
        summary: RequestSummary,
        outcome: ApprovalOutcome,
        requester_id: str,
        credential: DelegatedCredential,
    ) -> None:
        summary.record(outcome)
        if outcome.status is ApprovalStatus.FAILED:
            self._notifier.report_approval_failure(
                requester_id, outcome.reference, credential.display_name, outcome.reason or "unknown error"
            )

    @staticmethod
    def _failed(credential: DelegatedCredential, reference: PRReference, exc: Exception) -> ApprovalOutcome:
        return ApprovalOutcome(
            credential.identity, reference, ApprovalStatus.FAILED, reason=str(exc) or type(exc).__name__
        )

    def _process_reference(
        self, github: GitHubClient, credential: DelegatedCredential, reference: PRReference
    ) -> ApprovalOutcome:
        log = structlog.get_logger().bind(
            slack_user_id=credential.identity,
            github_user=credential.display_name,
            pull_request=str(reference),
        )

        if has_already_approved(github, reference, credential.display_name):
            log.info("approval_skipped", reason="already_approved")
            return ApprovalOutcome(credential.identity, reference, ApprovalStatus.SKIPPED)

        try:
            github.approve_pull_request(reference)
        except GitHubRateLimitError as exc:
            log.warning("approval_rate_limited", error=str(exc), status_code=exc.status_code, reset_at=exc.reset_at)
            return ApprovalOutcome(credential.identity, reference, ApprovalStatus.FAILED, reason=str(exc))
        except GitHubError as exc:
            log.warning("approval_failed", error=str(exc), status_code=exc.status_code)
            return ApprovalOutcome(credential.identity, reference, ApprovalStatus.FAILED, reason=str(exc))

        log.info("approval_succeeded")
        return ApprovalOutcome(credential.identity, reference, ApprovalStatus.APPROVED)

    def _finish(self, summary: RequestSummary, *, channel: str, message_ts: str) -> None:
        log = structlog.get_logger().bind(channel=channel, message_ts=message_ts)
        log.info(
            "approval_summary",
            approved=summary.count(ApprovalStatus.APPROVED),
            skipped=summary.count(ApprovalStatus.SKIPPED),
            failed=summary.count(ApprovalStatus.FAILED),
        )
        if not summary.any_success:
            return

        try:
            self._slack.add_reaction(channel=channel, ts=message_ts, name=self._trigger_emoji)
        except (SlackClientError, OSError) as exc:
            log.error("completion_signal_failed", error=slack_error_code(exc))
            return
        summary.completion_signalled = True
        log.info("completion_signal_added", reaction=self._trigger_emoji)

    def _resolve_credential(self, identity: str, *, requester_id: str | None = None) -> DelegatedCredential | None:
        """Look up *identity*'s credential, notifying someone when it is missing.

        Without a requester the identity is asked to connect its own account;
        with one, the requester is told the mentioned user is not connected.
        """

        log = structlog.get_logger().bind(slack_user_id=identity)
        try:
            credential = self._credentials.lookup(identity)
        except CredentialStoreError:
            log.error("credential_unavailable")
            return None

        if credential is not None:
            return credential

        log.info("credential_missing")
        if requester_id is None:
            self._notifier.request_onboarding(identity)
        else:
            self._notifier.report_unconnected_mention(requester_id, identity)
        return None

    def _is_bot(self, user_id: str) -> bool:
        bot_user_id = self._resolve_bot_user_id()
        return bot_user_id is not None and user_id == bot_user_id

    def _resolve_bot_user_id(self) -> str | None:
        if self._bot_user_id is not None:
            return self._bot_user_id
        try:
            return self._slack.get_bot_user_id()
        except (SlackClientError, OSError) as exc:
            structlog.get_logger().warning("bot_identity_lookup_failed", error=slack_error_code(exc))
            return None

    def _is_channel_allowed(self, channel: str) -> bool:
        return not self._allowed_channels or channel in self._allowed_channels
