"""Run webhook follow-up work off the request thread."""

from contextvars import copy_context
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from structlog.contextvars import bind_contextvars, get_contextvars


# Approvals for one event run sequentially inside a single worker; the pool
# only lets separate deliveries overlap.
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="lgtm-worker")


def run_async(
    func: Callable[..., Any],
    /,
    *args: Any,
    trace_id: str | None = None,
    **kwargs: Any,
) -> Future:
    """Submit *func* to the shared pool, carrying the caller's structlog context."""

    context = copy_context()

    if trace_id is not None and context.run(lambda: get_contextvars().get("trace_id")) != trace_id:
        context.run(lambda: bind_contextvars(trace_id=trace_id))

    def runner() -> Any:
        return context.run(func, *args, **kwargs)

    return _executor.submit(runner)
