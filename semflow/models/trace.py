"""Trace record models produced by the Tracer.

A trace is a tree of frames. Each frame is a plain dict (``{"id", "type", ...}``)
so that callbacks can attach arbitrary properties; the record that wraps the
tree is validated.
"""

from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, model_validator


class TraceFrameType(str, Enum):
    """Types of frames in a trace."""

    call_agent = "call-agent"
    call_composition = "call-composition"
    call_function = "call-function"
    call_implementation = "call-implementation"
    call_model = "call-model"
    call_custom_model = "call-custom-model"
    call_prompt_template = "call-prompt-template"
    check_input_guardrails = "check-input-guardrails"
    enrichment_pipeline = "enrichment-pipeline"
    feature_store_enrichment = "feature-store-enrichment"
    metric_store_enrichment = "metric-store-enrichment"
    semantic_search_enrichment = "semantic-search-enrichment"
    function_enrichment = "function-enrichment"
    sql_enrichment = "sql-enrichment"
    graph_enrichment = "graph-enrichment"
    output_processing_pipeline = "output-processing-pipeline"
    output_guardrail = "output-guardrail"
    output_parser = "output-parser"
    rulesets_guardrail = "rulesets-guardrail"
    batch_bin = "batch-bin"
    index_pipeline = "index-pipeline"
    validate_args = "validate-args"
    map_args = "map-args"
    map_response = "map-response"
    select_experiment = "select-experiment"
    lookup_cache = "lookup-cache"
    evaluate_turn = "evaluate-turn"
    observe_model = "observe-model"
    function_call = "function-call"
    plan = "plan"
    parse_plan = "parse-plan"
    execute_plan = "execute-plan"
    evaluate_step = "evaluate-step"
    evaluate_response = "evaluate-response"
    error = "error"


# top-level trace kinds, named after whatever opened the trace
TRACE_TYPES = {"semfn", "composition", "agent"}


class TraceRecord(BaseModel):
    """A closed trace tree, ready to be persisted by a trace sink."""

    name: str
    trace_type: str = "semfn"
    trace: list[dict[str, Any]]
    workspace_id: int | None = None

    @model_validator(mode="after")
    def validate_frames(self) -> Self:
        """Every frame in the tree needs a known ``type``."""
        if self.trace_type not in TRACE_TYPES:
            raise ValueError(f"trace_type must be one of {TRACE_TYPES}")
        self._validate_frames(self.trace)
        return self

    def _validate_frames(self, frames: list[dict[str, Any]]) -> None:
        valid = {t.value for t in TraceFrameType}
        for frame in frames:
            frame_type = frame.get("type")
            if frame_type not in valid:
                raise ValueError(f"unknown trace frame type: {frame_type!r}")
            children = frame.get("children")
            if children is not None:
                self._validate_frames(children)

    def iter_frames(self):
        """Depth-first iteration over every frame in the tree."""
        stack = list(reversed(self.trace))
        while stack:
            frame = stack.pop()
            yield frame
            stack.extend(reversed(frame.get("children") or []))
