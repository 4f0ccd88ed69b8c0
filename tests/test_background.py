"""Tests for background task utilities."""

from __future__ import annotations

from pathlib import Path
import sys
import threading

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, get_contextvars
from structlog.testing import capture_logs

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:  # pragma: no cover
    sys.path.insert(0, str(ROOT))

from lgtm_bot.background import run_async  # noqa: E402


def test_run_async_propagates_structlog_context():
    """Trace IDs bound in the caller should be visible within the worker thread."""

    clear_contextvars()
    bind_contextvars(trace_id="trace-123")
    captured: dict[str, str] = {}

    future = run_async(lambda: captured.update(get_contextvars()))
    future.result(timeout=1)

    assert captured.get("trace_id") == "trace-123"

    clear_contextvars()


def test_run_async_accepts_explicit_trace_id():
    clear_contextvars()
    captured: dict[str, str] = {}

    future = run_async(lambda: captured.update(get_contextvars()), trace_id="trace-456")
    future.result(timeout=1)

    assert captured.get("trace_id") == "trace-456"
    assert "trace_id" not in get_contextvars()

    clear_contextvars()


def test_run_async_passes_arguments_and_returns_result():
    future = run_async(lambda first, *, second: (first, second, threading.current_thread().name), 1, second=2)

    first, second, thread_name = future.result(timeout=1)

    assert (first, second) == (1, 2)
    assert thread_name.startswith("lgtm-worker")


def test_run_async_preserves_trace_id_in_background_logs():
    """Structured log events from workers should include the propagated trace identifier."""

    clear_contextvars()

    with capture_logs(processors=[structlog.contextvars.merge_contextvars]) as logs:
        future = run_async(lambda: structlog.get_logger().info("background_event"), trace_id="trace-789")
        future.result(timeout=1)

    assert logs, "expected background_event log to be captured"
    event = logs[0]
    assert event.get("event") == "background_event"
    assert event.get("trace_id") == "trace-789"

    clear_contextvars()
