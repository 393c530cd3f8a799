"""Callback interface observed at every stage boundary.

Hooks are invoked with keyword arguments only. Start hooks are paired with
exactly one end hook; a stage that fails calls its ``*_error`` hook (when the
failure originated in that stage) and then its ``*_end`` hook with ``errors``
before re-raising. Every hook accepts ``**kwargs`` so that payloads can grow
without breaking subclasses.
"""

from typing import Any


class Callback:
    """No-op base class. Override the hooks you care about."""

    # semantic functions

    def on_semantic_function_start(self, *, name: str, args: Any, **kwargs: Any) -> None:
        pass

    def on_semantic_function_end(
        self, *, name: str, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_semantic_function_error(self, *, name: str, errors: list, **kwargs: Any) -> None:
        pass

    def on_validate_arguments(self, *, result: Any, **kwargs: Any) -> None:
        pass

    def on_experiment(self, *, experiments: list, implementation: str | None, **kwargs: Any) -> None:
        pass

    def on_semantic_function_implementation_start(
        self, *, model_key: str, args: Any, **kwargs: Any
    ) -> None:
        pass

    def on_semantic_function_implementation_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_semantic_function_implementation_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

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
        pass

    def on_map_return_type(
        self,
        *,
        response: Any,
        mapped: Any = None,
        mapping_template: Any = None,
        errors: list | None = None,
        **kwargs: Any,
    ) -> None:
        pass

    def on_batch_bin_start(self, *, index: int, size: int, **kwargs: Any) -> None:
        pass

    def on_batch_bin_end(
        self, *, index: int, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    # models

    def on_model_start(self, *, request: Any, provider: str | None = None, **kwargs: Any) -> None:
        pass

    def on_model_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_model_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    def on_lookup_cache(
        self, *, model: str, prompt: str, hit: bool, response: Any = None, **kwargs: Any
    ) -> None:
        pass

    def on_custom_model_start(self, *, args: Any, **kwargs: Any) -> None:
        pass

    def on_custom_model_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    # input guardrails

    def on_input_guardrail_start(self, *, messages: list, **kwargs: Any) -> None:
        pass

    def on_input_guardrail_end(self, *, errors: list | None = None, **kwargs: Any) -> None:
        pass

    def on_input_guardrail_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    # prompt enrichment

    def on_prompt_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        pass

    def on_prompt_enrichment_end(
        self, *, messages: list | None = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_prompt_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    def on_prompt_template_start(self, *, messages: list, args: Any = None, **kwargs: Any) -> None:
        pass

    def on_prompt_template_end(
        self, *, messages: list | None = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_prompt_template_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    def on_feature_store_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        pass

    def on_feature_store_enrichment_end(
        self, *, args: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_feature_store_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    def on_metric_store_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        pass

    def on_metric_store_enrichment_end(
        self, *, args: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_metric_store_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    def on_semantic_search_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        pass

    def on_semantic_search_enrichment_end(
        self, *, args: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_semantic_search_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    def on_function_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        pass

    def on_function_enrichment_end(
        self, *, args: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_function_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    def on_sql_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        pass

    def on_sql_enrichment_end(
        self, *, args: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_sql_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    def on_graph_enrichment_start(self, *, args: Any, **kwargs: Any) -> None:
        pass

    def on_graph_enrichment_end(
        self, *, args: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_graph_enrichment_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    # output processing

    def on_output_processing_start(self, *, response: Any, **kwargs: Any) -> None:
        pass

    def on_output_processing_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_output_processing_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    def on_output_guardrail_start(self, *, key: str, response: Any, **kwargs: Any) -> None:
        pass

    def on_output_guardrail_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_output_guardrail_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    def on_output_parser_start(self, *, key: str, response: Any, **kwargs: Any) -> None:
        pass

    def on_output_parser_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_output_parser_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    def on_rulesets_guardrail_start(self, *, rulesets: list, response: Any, **kwargs: Any) -> None:
        pass

    def on_rulesets_guardrail_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_rulesets_guardrail_error(self, *, errors: list, **kwargs: Any) -> None:
        pass

    # compositions

    def on_composition_start(self, *, name: str, args: Any, **kwargs: Any) -> None:
        pass

    def on_composition_end(
        self, *, name: str, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_composition_error(self, *, name: str, errors: list, **kwargs: Any) -> None:
        pass

    def on_index_pipeline_start(self, *, request: Any, **kwargs: Any) -> None:
        pass

    def on_index_pipeline_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    # agents

    def on_agent_start(self, *, name: str, goal: str, **kwargs: Any) -> None:
        pass

    def on_agent_end(
        self, *, name: str, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_agent_error(self, *, name: str, errors: list, **kwargs: Any) -> None:
        pass

    def on_evaluate_turn_start(self, *, index: int, **kwargs: Any) -> None:
        pass

    def on_evaluate_turn_end(
        self, *, index: int, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_observe_model_start(self, *, request: Any, **kwargs: Any) -> None:
        pass

    def on_observe_model_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_function_call_start(self, *, name: str, args: Any, **kwargs: Any) -> None:
        pass

    def on_function_call_end(
        self, *, name: str, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_model_start_plan(self, *, request: Any, **kwargs: Any) -> None:
        pass

    def on_model_end_plan(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_parse_plan(self, *, plan: list[str], **kwargs: Any) -> None:
        pass

    def on_execute_plan_start(self, *, plan: list[str], **kwargs: Any) -> None:
        pass

    def on_execute_plan_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_evaluate_step_start(self, *, step: str, index: int, **kwargs: Any) -> None:
        pass

    def on_evaluate_step_end(
        self, *, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass

    def on_evaluate_response_start(self, *, question: str, response: Any, **kwargs: Any) -> None:
        pass

    def on_evaluate_response_end(
        self, *, valid: bool | None = None, response: Any = None, errors: list | None = None, **kwargs: Any
    ) -> None:
        pass


# every hook name, in declaration order
HOOKS: tuple[str, ...] = tuple(name for name in vars(Callback) if name.startswith("on_"))
