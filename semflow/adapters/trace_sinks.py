"""Trace sinks: where closed trace trees are persisted."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import httpx

from semflow.models.trace import TraceRecord

logger = logging.getLogger(__name__)


class ListTraceSink:
    """Stores traces in a list."""

    def __init__(self) -> None:
        self.traces: list[tuple[TraceRecord, str | None]] = []

    def upsert_trace(self, record: TraceRecord, username: str | None) -> None:
        self.traces.append((record, username))

    @property
    def records(self) -> list[TraceRecord]:
        return [record for record, _ in self.traces]

    def clear(self) -> None:
        self.traces.clear()


class FileTraceSink:
    """Appends traces to a JSONL file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def upsert_trace(self, record: TraceRecord, username: str | None) -> None:
        with open(self.path, "a") as f:
            f.write(record.model_dump_json() + "\n")


class HttpTraceSink:
    """Posts traces to the trace API. Network failures are logged, never raised.

    Inside a running event loop the POST is handed to the loop's default
    executor so the calling task is not blocked; ``flush()`` waits for the
    posts still in flight. Outside a loop the POST happens inline.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self._pending: set[asyncio.Future] = set()

    def upsert_trace(self, record: TraceRecord, username: str | None) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._post(record, username)
            return
        future = loop.run_in_executor(None, self._post, record, username)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for every POST started from the running loop."""
        if self._pending:
            await asyncio.gather(*self._pending)

    def _post(self, record: TraceRecord, username: str | None) -> None:
        url = f"{self.base_url}/api/traces"
        params = {"username": username} if username else None
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(url, params=params, json=record.model_dump(mode="json"))
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("failed to upsert trace %r: %s", record.name, e)
