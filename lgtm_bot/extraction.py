"""Extraction of pull request links and user mentions from Slack message text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

# Slack wraps links as <url> or <url|display text>.
_SLACK_LINK_RE = re.compile(r"<(https?://[^|>]+)(?:\|[^>]+)?>")
_BARE_URL_RE = re.compile(r"https?://[^\s<>]+")

# https://github.com/{owner}/{repo}/pull/{number}
_GITHUB_PR_RE = re.compile(r"github\.com/([^/]+)/([^/]+)/pull/(\d+)", re.IGNORECASE)
# https://app.graphite.dev/github/pr/{owner}/{repo}/{number}
_GRAPHITE_PR_RE = re.compile(r"graphite\.(?:com|dev)/github/pr/([^/]+)/([^/]+)/(\d+)", re.IGNORECASE)

_PR_PATTERNS = (_GITHUB_PR_RE, _GRAPHITE_PR_RE)

# <@U123> or <@U123|display-name>
_MENTION_RE = re.compile(r"<@([A-Z0-9]+)(?:\|[^>]+)?>")


@dataclass(frozen=True)
class PRReference:
    """Coordinates of a single pull request."""

    owner: str
    repo: str
    number: int

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}"


def extract_urls(text: str) -> List[str]:
    """Return Slack-wrapped URLs followed by bare URLs found in *text*."""

    wrapped = _SLACK_LINK_RE.findall(text or "")
    bare = _BARE_URL_RE.findall(text or "")
    return [*wrapped, *bare]


def parse_pr_url(url: str) -> PRReference | None:
    """Match *url* against the supported pull request URL schemes."""

    for pattern in _PR_PATTERNS:
        match = pattern.search(url)
        if match:
            owner, repo, number = match.groups()
            return PRReference(owner=owner, repo=repo, number=int(number))
    return None


def extract_pr_references(text: str) -> List[PRReference]:
    """Return the distinct pull requests linked from *text* in first-seen order."""

    references: List[PRReference] = []
    seen: set[PRReference] = set()
    for url in extract_urls(text):
        reference = parse_pr_url(url)
        if reference is None or reference in seen:
            continue
        seen.add(reference)
        references.append(reference)
    return references


def extract_user_mentions(text: str) -> List[str]:
    """Return the Slack user ids mentioned in *text*, each once, in order."""

    mentions: List[str] = []
    for user_id in _MENTION_RE.findall(text or ""):
        if user_id not in mentions:
            mentions.append(user_id)
    return mentions
