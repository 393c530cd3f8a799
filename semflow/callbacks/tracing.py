"""Callback that records every stage boundary into a nested trace tree.

Mapping:
- ``*_start``  -> push a frame of the stage's type and descend into it
- ``*_end``    -> ascend, then stamp timing, ``success`` and ``response``/``errors``
- ``*_error``  -> push an ``error`` frame inside the failing stage
- point events (argument validation, mapping, experiment selection, plan
  parsing) -> push a frame without descending

Agent, composition and semantic function calls nest. When the outermost one
ends, the trace is closed and handed to the trace sink exactly once.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic_core import to_jsonable_python

from semflow.callbacks.base import Callback
from semflow.models.trace import TraceFrameType, TraceRecord
from semflow.services import TraceSink
from semflow.tracer import Tracer
from semflow.utils.identifiers import (
    generate_frame_id,
    now_millis,
    readable_elapsed,
    utc_timestamp,
)

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    return to_jsonable_python(value, fallback=str)


class TracingCallback(Callback):
    """Builds one trace per top-level call and upserts it to ``trace_sink``.

    Create a fresh instance for every top-level call (``enable_tracing`` does
    this); concurrent calls must not share one.
    """

    def __init__(
        self,
        trace_sink: TraceSink,
        username: str | None = None,
        workspace_id: int | None = None,
    ) -> None:
        self.trace_sink = trace_sink
        self.username = username
        self.workspace_id = workspace_id
        self.tracer: Tracer | None = None
        self.call_depth = 0
        self.records: list[TraceRecord] = []

    # --- frame helpers ---

    def _ensure_tracer(self, name: str | None, trace_type: str) -> Tracer:
        if self.tracer is None:
            self.tracer = Tracer(
                f"{name or trace_type} - {utc_timestamp()}",
                trace_type=trace_type,
                workspace_id=self.workspace_id,
            )
        return self.tracer

    def _start(
        self,
        frame_type: TraceFrameType,
        trace_type: str = "semfn",
        name: str | None = None,
        **props: Any,
    ) -> None:
        tracer = self._ensure_tracer(name, trace_type)
        frame: dict[str, Any] = {"id": generate_frame_id(), "type": frame_type.value}
        if name is not None:
            frame["name"] = name
        for key, value in props.items():
            frame[key] = _jsonable(value)
        frame["startTime"] = now_millis()
        tracer.push(frame).down()

    def _end(self, response: Any = None, errors: list | None = None, **props: Any) -> None:
        tracer = self.tracer
        if tracer is None or tracer.depth == 0:
            logger.warning("trace end without a matching start")
            return
        tracer.up()
        end = now_millis()
        elapsed = end - tracer.current_step().get("startTime", end)
        tracer.add_property("endTime", end)
        tracer.add_property("elapsedMillis", elapsed)
        tracer.add_property("elapsedReadable", readable_elapsed(elapsed))
        tracer.add_property("success", not errors)
        for key, value in props.items():
            tracer.add_property(key, _jsonable(value))
        if errors:
            tracer.add_property("errors", _jsonable(errors))
        else:
            tracer.add_property("response", _jsonable(response))

    def _event(self, frame_type: TraceFrameType, **props: Any) -> None:
        tracer = self._ensure_tracer(None, "semfn")
        frame: dict[str, Any] = {"id": generate_frame_id(), "type": frame_type.value}
        for key, value in props.items():
            frame[key] = _jsonable(value)
        frame["time"] = now_millis()
        tracer.push(frame)

    def _error(self, errors: list) -> None:
        self._event(TraceFrameType.error, errors=errors)

    def _enter_call(self) -> None:
        self.call_depth += 1

    def _exit_call(self) -> None:
        self.call_depth -= 1
        if self.call_depth > 0 or self.tracer is None:
            return
        record = self.tracer.close()
        self.tracer = None
        self.records.append(record)
        self.trace_sink.upsert_trace(record, self.username)

    # --- semantic functions ---

    def on_semantic_function_start(self, *, name: str, args: Any, **kwargs: Any) -> None:
        self._enter_call()
        self._start(TraceFrameType.call_function, "semfn", name=name, args=args, **kwargs)

    def on_semantic_function_end(
        self, *, name: str, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors, **kwargs)
        self._exit_call()

    def on_semantic_function_error(self, *, name: str, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_validate_arguments(self, *, result: Any, **kwargs: Any) -> None:
        self._event(TraceFrameType.validate_args, result=result)

    def on_experiment(self, *, experiments: list, implementation: str | None, **kwargs: Any) -> None:
        self._event(
            TraceFrameType.select_experiment,
            experiments=experiments,
            implementation=implementation,
        )

    def on_semantic_function_implementation_start(
        self, *, model_key: str, args: Any, **kwargs: Any
    ) -> None:
        self._start(TraceFrameType.call_implementation, model_key=model_key, args=args, **kwargs)

    def on_semantic_function_implementation_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors, **kwargs)

    def on_semantic_function_implementation_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_map_arguments(
        self,
        *,
        source: dict | None,
        args: Any,
        mapped: Any = None,
        mapping_template: Any = None,
        is_batch: bool = False,
        errors: list | None = None,
        **kwargs: Any,
    ) -> None:
        self._event(
            TraceFrameType.map_args,
            source=source,
            args=args,
            mapped=mapped,
            mappingTemplate=mapping_template,
            isBatch=is_batch,
            success=not errors,
            errors=errors,
        )

    def on_map_return_type(
        self,
        *,
        response: Any,
        mapped: Any = None,
        mapping_template: Any = None,
        errors: list | None = None,
        **kwargs: Any,
    ) -> None:
        self._event(
            TraceFrameType.map_response,
            response=response,
            mapped=mapped,
            mappingTemplate=mapping_template,
            success=not errors,
            errors=errors,
        )

    def on_batch_bin_start(self, *, index: int, size: int, **kwargs: Any) -> None:
        self._start(TraceFrameType.batch_bin, index=index, size=size)

    def on_batch_bin_end(
        self, *, index: int, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    # --- models ---

    def on_model_start(self, *, request: Any, provider: str | None = None, **kwargs: Any) -> None:
        self._start(TraceFrameType.call_model, request=request, provider=provider)

    def on_model_end(self, *, response: Any = None, errors: list | None = None, **kwargs: Any) -> None:
        self._end(response, errors, **kwargs)

    def on_model_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_lookup_cache(
        self, *, model: str, prompt: str, hit: bool, response: Any = None, **kwargs: Any
    ) -> None:
        self._event(
            TraceFrameType.lookup_cache, model=model, prompt=prompt, hit=hit, response=response
        )

    def on_custom_model_start(self, *, args: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.call_custom_model, args=args, **kwargs)

    def on_custom_model_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    # --- input guardrails ---

    def on_input_guardrail_start(self, *, messages: list, **kwargs: Any) -> None:
        self._start(TraceFrameType.check_input_guardrails, messages=messages, **kwargs)

    def on_input_guardrail_end(self, *, errors: list | None = None, **kwargs: Any) -> None:
        self._end(None, errors)

    def on_input_guardrail_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    # --- prompt enrichment ---

    def on_prompt_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.enrichment_pipeline, args=args)

    def on_prompt_enrichment_end(
        self, *, messages: list | None = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(messages, errors)

    def on_prompt_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_prompt_template_start(self, *, messages: list, args: Any = None, **kwargs: Any) -> None:
        self._start(TraceFrameType.call_prompt_template, messages=messages, args=args, **kwargs)

    def on_prompt_template_end(
        self, *, messages: list | None = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(messages, errors)

    def on_prompt_template_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_feature_store_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.feature_store_enrichment, args=args)

    def on_feature_store_enrichment_end(
        self, *, args: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(args, errors)

    def on_feature_store_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_metric_store_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.metric_store_enrichment, args=args)

    def on_metric_store_enrichment_end(
        self, *, args: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(args, errors)

    def on_metric_store_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_semantic_search_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.semantic_search_enrichment, args=args)

    def on_semantic_search_enrichment_end(
        self, *, args: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(args, errors)

    def on_semantic_search_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_function_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.function_enrichment, args=args)

    def on_function_enrichment_end(
        self, *, args: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(args, errors)

    def on_function_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_sql_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.sql_enrichment, args=args)

    def on_sql_enrichment_end(
        self, *, args: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(args, errors)

    def on_sql_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_graph_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.graph_enrichment, args=args)

    def on_graph_enrichment_end(
        self, *, args: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(args, errors)

    def on_graph_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    # --- output processing ---

    def on_output_processing_start(self, *, response: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.output_processing_pipeline, input=response)

    def on_output_processing_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    def on_output_processing_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_output_guardrail_start(self, *, key: str, response: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.output_guardrail, key=key, input=response)

    def on_output_guardrail_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    def on_output_guardrail_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_output_parser_start(self, *, key: str, response: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.output_parser, key=key, input=response)

    def on_output_parser_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    def on_output_parser_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_rulesets_guardrail_start(self, *, rulesets: list, response: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.rulesets_guardrail, rulesets=rulesets, input=response)

    def on_rulesets_guardrail_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    def on_rulesets_guardrail_error(self, *, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    # --- compositions ---

    def on_composition_start(self, *, name: str, args: Any, **kwargs: Any) -> None:
        self._enter_call()
        self._start(TraceFrameType.call_composition, "composition", name=name, args=args, **kwargs)

    def on_composition_end(
        self, *, name: str, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors, **kwargs)
        self._exit_call()

    def on_composition_error(self, *, name: str, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_index_pipeline_start(self, *, request: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.index_pipeline, request=request)

    def on_index_pipeline_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    # --- agents ---

    def on_agent_start(self, *, name: str, goal: str, **kwargs: Any) -> None:
        self._enter_call()
        self._start(TraceFrameType.call_agent, "agent", name=name, goal=goal, **kwargs)

    def on_agent_end(
        self, *, name: str, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)
        self._exit_call()

    def on_agent_error(self, *, name: str, errors: list, **kwargs: Any) -> None:
        self._error(errors)

    def on_evaluate_turn_start(self, *, index: int, **kwargs: Any) -> None:
        self._start(TraceFrameType.evaluate_turn, index=index)

    def on_evaluate_turn_end(
        self, *, index: int, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    def on_observe_model_start(self, *, request: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.observe_model, request=request)

    def on_observe_model_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    def on_function_call_start(self, *, name: str, args: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.function_call, name=name, args=args)

    def on_function_call_end(
        self, *, name: str, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    def on_model_start_plan(self, *, request: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.plan, request=request)

    def on_model_end_plan(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    def on_parse_plan(self, *, plan: list[str], **kwargs: Any) -> None:
        self._event(TraceFrameType.parse_plan, plan=plan)

    def on_execute_plan_start(self, *, plan: list[str], **kwargs: Any) -> None:
        self._start(TraceFrameType.execute_plan, plan=plan)

    def on_execute_plan_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    def on_evaluate_step_start(self, *, step: str, index: int, **kwargs: Any) -> None:
        self._start(TraceFrameType.evaluate_step, step=step, index=index)

    def on_evaluate_step_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors)

    def on_evaluate_response_start(self, *, question: str, response: Any, **kwargs: Any) -> None:
        self._start(TraceFrameType.evaluate_response, question=question, input=response)

    def on_evaluate_response_end(
        self, *, valid: bool | None = None, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        self._end(response, errors, valid=valid)
