"""Approval state checks and per-request outcome bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Protocol

import structlog

from lgtm_bot.extraction import PRReference
from lgtm_bot.github_client import GitHubError

APPROVED_STATE = "APPROVED"

log = structlog.get_logger(__name__)


class ReviewSource(Protocol):
    def list_reviews(self, reference: PRReference) -> list: ...


class ApprovalStatus(str, Enum):
    APPROVED = "approved"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ApprovalOutcome:
    """Result of processing one pull request for one Slack user."""

    identity: str
    reference: PRReference
    status: ApprovalStatus
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (ApprovalStatus.APPROVED, ApprovalStatus.SKIPPED)


@dataclass
class RequestSummary:
    """Outcomes gathered while handling a single webhook delivery."""

    outcomes: List[ApprovalOutcome] = field(default_factory=list)
    completion_signalled: bool = False

    def record(self, outcome: ApprovalOutcome) -> None:
        self.outcomes.append(outcome)

    def count(self, status: ApprovalStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)

    @property
    def any_success(self) -> bool:
        return any(outcome.succeeded for outcome in self.outcomes)


def has_already_approved(client: ReviewSource, reference: PRReference, username: str) -> bool:
    """Return True when *username*'s latest review on *reference* is an approval.

    Reviews come back oldest first, so the last matching entry is the most
    recent one. If the reviews cannot be fetched the answer is False and the
    caller goes ahead with an approval attempt.
    """

    try:
        reviews = client.list_reviews(reference)
    except GitHubError as exc:
        log.warning(
            "review_check_failed",
            pull_request=str(reference),
            github_user=username,
            error=str(exc),
            status_code=exc.status_code,
        )
        return False

    wanted = username.lower()
    own_reviews = [
        review
        for review in reviews
        if ((review.get("user") or {}).get("login") or "").lower() == wanted
    ]
    if not own_reviews:
        return False
    return own_reviews[-1].get("state") == APPROVED_STATE
