"""Stack-like builder for a nested trace tree.

Frames are plain dicts. ``push`` appends a frame at the current level and
``down`` descends into the last pushed frame, so that subsequent pushes become
its children; ``up`` returns to the parent level.

    tracer = Tracer("summarize - 2024-01-01T00:00:00+00:00")
    tracer.push({"id": "1", "type": "call-function"}).down()
    tracer.push({"id": "2", "type": "call-model"})
    tracer.up().add_property("success", True)
    record = tracer.close()
"""

from __future__ import annotations

from typing import Any

from semflow.models.trace import TraceRecord


class Tracer:
    def __init__(
        self,
        name: str,
        trace_type: str = "semfn",
        workspace_id: int | None = None,
    ) -> None:
        self.name = name
        self.trace_type = trace_type
        self.workspace_id = workspace_id
        self._trace: list[dict[str, Any]] = []
        # ancestors of the current level, outermost first
        self._path: list[dict[str, Any]] = []

    @property
    def depth(self) -> int:
        return len(self._path)

    def current_trace(self) -> list[dict[str, Any]]:
        """Frames at the current level."""
        if not self._path:
            return self._trace
        return self._path[-1].setdefault("children", [])

    def current_step(self) -> dict[str, Any] | None:
        """Last frame pushed at the current level."""
        frames = self.current_trace()
        return frames[-1] if frames else None

    def push(self, step: dict[str, Any]) -> Tracer:
        self.current_trace().append(step)
        return self

    def down(self) -> Tracer:
        step = self.current_step()
        if step is None:
            raise ValueError("no step to descend into")
        self._path.append(step)
        return self

    def up(self) -> Tracer:
        if not self._path:
            raise ValueError("already at the top of the trace")
        self._path.pop()
        return self

    def add_property(self, key: str, value: Any) -> Tracer:
        step = self.current_step()
        if step is None:
            raise ValueError("no current step")
        step[key] = value
        return self

    def add_parent_property(self, key: str, value: Any) -> Tracer:
        """Set a property on the frame that contains the current level."""
        if not self._path:
            raise ValueError("current level has no parent")
        self._path[-1][key] = value
        return self

    def close(self) -> TraceRecord:
        """Return the validated trace record. Open frames are left as they are."""
        self._path.clear()
        return TraceRecord(
            name=self.name,
            trace_type=self.trace_type,
            trace=self._trace,
            workspace_id=self.workspace_id,
        )
