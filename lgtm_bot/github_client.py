"""Minimal GitHub REST client acting with a user's delegated token."""

from __future__ import annotations

from typing import Any, List, Mapping

import httpx
import structlog

from lgtm_bot.extraction import PRReference

GITHUB_API_BASE_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
REVIEWS_PAGE_SIZE = 100
DEFAULT_TIMEOUT_SECONDS = 15.0

log = structlog.get_logger(__name__)


class GitHubError(Exception):
    """Raised when a GitHub API call fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubAuthError(GitHubError):
    """The delegated token is missing, expired or revoked."""


class GitHubRateLimitError(GitHubError):
    """GitHub rejected the call because the rate limit is exhausted."""

    def __init__(self, message: str, *, status_code: int | None = None, reset_at: int | None = None) -> None:
        super().__init__(message, status_code=status_code)
        self.reset_at = reset_at


class PullRequestNotFoundError(GitHubError):
    """The pull request does not exist or is not visible to the token."""


class GitHubClient:
    """Synchronous client for the handful of pull request endpoints we need.

    One instance is bound to one user's token and is meant to live for the
    duration of a single webhook delivery; use it as a context manager so the
    underlying connection pool is released.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = GITHUB_API_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
                "User-Agent": "lgtm-bot",
            },
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def list_reviews(self, reference: PRReference) -> List[Mapping[str, Any]]:
        """Return every review on the pull request, oldest first."""

        path = f"/repos/{reference.owner}/{reference.repo}/pulls/{reference.number}/reviews"
        reviews: List[Mapping[str, Any]] = []
        page = 1
        while True:
            data = self._request("GET", path, params={"per_page": REVIEWS_PAGE_SIZE, "page": page})
            if not isinstance(data, list):
                raise GitHubError(f"GET {path}: expected a list of reviews")
            reviews.extend(data)
            if len(data) < REVIEWS_PAGE_SIZE:
                break
            page += 1
        return reviews

    def approve_pull_request(self, reference: PRReference) -> Mapping[str, Any]:
        """Submit an APPROVE review on the pull request."""

        path = f"/repos/{reference.owner}/{reference.repo}/pulls/{reference.number}/reviews"
        return self._request("POST", path, json={"event": "APPROVE"})

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise GitHubError(f"{method} {path}: {exc}") from exc
        _raise_for_status(response, context=f"{method} {path}")
        try:
            return response.json()
        except ValueError as exc:
            raise GitHubError(f"{method} {path}: response is not JSON", status_code=response.status_code) from exc


def _raise_for_status(response: httpx.Response, *, context: str) -> None:
    """Map HTTP error statuses to GitHubError subclasses."""

    if response.is_success:
        return

    status = response.status_code
    message = ""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping):
        message = str(body.get("message") or "")
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            details = [item if isinstance(item, str) else str(item.get("message", item)) for item in errors]
            message = f"{message} ({'; '.join(details)})" if message else "; ".join(details)
    detail = message or f"HTTP {status}"

    if status == 401:
        raise GitHubAuthError(detail, status_code=status)
    if status in {403, 429} and response.headers.get("X-RateLimit-Remaining") == "0":
        reset_at = response.headers.get("X-RateLimit-Reset")
        raise GitHubRateLimitError(
            detail,
            status_code=status,
            reset_at=int(reset_at) if reset_at and reset_at.isdigit() else None,
        )
    if status == 404:
        raise PullRequestNotFoundError(detail, status_code=status)
    log.debug("github_request_failed", context=context, status_code=status)
    raise GitHubError(detail, status_code=status)
