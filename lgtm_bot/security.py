"""Utilities for validating Slack request signatures."""

from __future__ import annotations

import hmac
import time
from hashlib import sha256

import structlog

SLACK_SIGNATURE_HEADER = "X-Slack-Signature"
SLACK_TIMESTAMP_HEADER = "X-Slack-Request-Timestamp"
VERSION = "v0"
DEFAULT_TOLERANCE = 60 * 5  # five minutes

log = structlog.get_logger(__name__)


def compute_signature(signing_secret: str, timestamp: str, body: str) -> str:
    """Return Slack-compatible signature for the provided payload."""

    basestring = f"{VERSION}:{timestamp}:{body}".encode("utf-8")
    secret = signing_secret.encode("utf-8")
    digest = hmac.new(secret, basestring, sha256).hexdigest()
    return f"{VERSION}={digest}"


def is_valid_slack_request(
    *, signing_secret: str, timestamp: str, body: str, signature: str, tolerance: int = DEFAULT_TOLERANCE
) -> bool:
    """Validate Slack signature and timestamp to guard against replay attacks."""

    if not timestamp or not signature:
        log.warning("signature_headers_missing")
        return False

    try:
        request_ts = int(timestamp)
    except (TypeError, ValueError):
        log.warning("signature_timestamp_invalid", timestamp=timestamp)
        return False

    age = abs(int(time.time()) - request_ts)
    if age > tolerance:
        log.warning("signature_timestamp_stale", age_seconds=age, tolerance=tolerance)
        return False

    expected = compute_signature(signing_secret, timestamp, body)
    try:
        valid = hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
    except (TypeError, UnicodeEncodeError) as exc:
        log.warning("signature_comparison_failed", error=str(exc))
        return False

    if not valid:
        log.warning("signature_mismatch", received_prefix=signature[:12])
    return valid
