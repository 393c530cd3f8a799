"""Tracing SDK - single entry point for enabling trace capture.

Example:
    from semflow.sdk import enable_tracing

    with enable_tracing("ann@example.com") as ctx:
        result = await summarize.call({"text": "..."}, context=ctx)
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from semflow.adapters.trace_sinks import FileTraceSink, HttpTraceSink, ListTraceSink
from semflow.callbacks.base import Callback
from semflow.callbacks.tracing import TracingCallback
from semflow.config import get_settings
from semflow.context import CallContext
from semflow.services import TraceSink


def default_trace_sink() -> TraceSink:
    """Pick a sink from settings: trace URL, then trace directory, then memory."""
    settings = get_settings()
    if settings.trace_url:
        return HttpTraceSink(settings.trace_url, timeout=settings.http_timeout)
    if settings.trace_dir:
        return FileTraceSink(Path(settings.trace_dir) / "traces.jsonl")
    return ListTraceSink()


@contextmanager
def enable_tracing(
    username: str | None = None,
    trace_sink: TraceSink | None = None,
    workspace_id: int | None = None,
    callbacks: list[Callback] | None = None,
) -> Generator[CallContext, None, None]:
    """Yield a ``CallContext`` carrying a fresh ``TracingCallback``.

    Pass the context to one top-level call. The trace is upserted to the sink
    when that call completes.

    Args:
        username: recorded alongside the trace
        trace_sink: where traces go; defaults to ``default_trace_sink()``
        workspace_id: attached to the trace record
        callbacks: extra callbacks to run before the tracing callback
    """
    tracing = TracingCallback(
        trace_sink if trace_sink is not None else default_trace_sink(),
        username=username,
        workspace_id=workspace_id,
    )
    yield CallContext(callbacks=[*(callbacks or []), tracing])
