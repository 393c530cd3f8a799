"""Ordered post-processing of model responses.

Each step receives a response and returns a (possibly rewritten) copy. Steps
run strictly in order; the first failure aborts the pipeline.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from semflow.callbacks.base import Callback
from semflow.context import CallContext, ensure_context
from semflow.errors import GuardrailError, ParserError, error_list
from semflow.models.chat import ChatResponse
from semflow.models.ontology import Ruleset
from semflow.services import GuardrailsService, ParserService, RulesEngineService

logger = logging.getLogger(__name__)


def with_content(response: ChatResponse, content: str) -> ChatResponse:
    """Copy of ``response`` with the first choice's content replaced."""
    updated = response.model_copy(deep=True)
    updated.choices[0].message.content = content
    return updated


class OutputProcessingStep:
    """Base class. Subclasses set ``hook`` and implement ``process``."""

    hook = "output_processing"

    def __init__(self, callbacks: list[Callback] | None = None) -> None:
        self.callbacks = callbacks or []

    def start_payload(self) -> dict[str, Any]:
        return {}

    async def call(self, response: ChatResponse, context: CallContext | None = None) -> ChatResponse:
        context = ensure_context(context)
        ctx = context.extend(self.callbacks)
        ctx.notify(f"on_{self.hook}_start", response=response, **self.start_payload())
        try:
            processed = await self.process(response, context)
        except Exception as e:
            errors = error_list(e)
            ctx.notify(f"on_{self.hook}_error", errors=errors)
            ctx.notify(f"on_{self.hook}_end", errors=errors)
            raise
        ctx.notify(f"on_{self.hook}_end", response=processed)
        return processed

    async def process(self, response: ChatResponse, context: CallContext) -> ChatResponse:
        raise NotImplementedError


class OutputGuardrail(OutputProcessingStep):
    """Scans the response text; the scanner may rewrite it (e.g. redaction)."""

    hook = "output_guardrail"

    def __init__(
        self,
        guardrails_service: GuardrailsService,
        key: str,
        callbacks: list[Callback] | None = None,
    ) -> None:
        super().__init__(callbacks)
        self.guardrails_service = guardrails_service
        self.key = key

    def start_payload(self) -> dict[str, Any]:
        return {"key": self.key}

    async def process(self, response: ChatResponse, context: CallContext) -> ChatResponse:
        result = await self.guardrails_service.scan(self.key, response.content_text)
        if result.error:
            raise GuardrailError(result.error)
        if result.text is not None:
            return with_content(response, result.text)
        return response


class OutputParser(OutputProcessingStep):
    """Parses the response text into JSON with a named parser."""

    hook = "output_parser"

    def __init__(
        self,
        parser_service: ParserService,
        key: str,
        callbacks: list[Callback] | None = None,
    ) -> None:
        super().__init__(callbacks)
        self.parser_service = parser_service
        self.key = key

    def start_payload(self) -> dict[str, Any]:
        return {"key": self.key}

    async def process(self, response: ChatResponse, context: CallContext) -> ChatResponse:
        result = await self.parser_service.parse(self.key, response.content_text)
        if result.error:
            raise ParserError(result.error)
        return with_content(response, json.dumps(result.json_).strip('"'))


class RulesetsGuardrail(OutputProcessingStep):
    """Validates facts extracted from the response against rulesets.

    For each ruleset, the extraction function is asked to fill the JSON Schema
    derived from the ruleset's ontology; the rules engine then reports which
    rulesets the facts satisfy.
    """

    hook = "rulesets_guardrail"

    def __init__(
        self,
        rulesets: list[Ruleset],
        extraction_function: Any,
        rules_engine: RulesEngineService,
        callbacks: list[Callback] | None = None,
    ) -> None:
        super().__init__(callbacks)
        self.rulesets = rulesets
        self.extraction_function = extraction_function
        self.rules_engine = rules_engine

    def start_payload(self) -> dict[str, Any]:
        return {"rulesets": [r.id for r in self.rulesets]}

    async def extract_facts(self, text: str, ruleset: Ruleset, context: CallContext) -> Any:
        result = await self.extraction_function.call(
            {"content": text},
            return_type_schema=ruleset.ontology.to_json_schema(),
            context=context,
        )
        message = result.response.message
        raw = message.function_call.arguments if message.function_call else message.content
        try:
            return json.loads(raw or "{}")
        except json.JSONDecodeError as e:
            raise GuardrailError(f"could not extract facts for ruleset {ruleset.name}: {e}") from e

    async def process(self, response: ChatResponse, context: CallContext) -> ChatResponse:
        text = response.content_text
        for ruleset in self.rulesets:
            facts = await self.extract_facts(text, ruleset, context)
            matches = await self.rules_engine.run(facts)
            logger.debug("ruleset %s matches: %s", ruleset.id, matches)
            if ruleset.id not in matches:
                raise GuardrailError(f"Response failed ruleset {ruleset.name}")
        return response


class OutputProcessingPipeline:
    def __init__(
        self,
        steps: list[OutputProcessingStep] | None = None,
        callbacks: list[Callback] | None = None,
    ) -> None:
        self.steps = steps or []
        self.callbacks = callbacks or []

    async def call(self, response: ChatResponse, context: CallContext | None = None) -> ChatResponse:
        context = ensure_context(context)
        ctx = context.extend(self.callbacks)
        ctx.notify("on_output_processing_start", response=response)
        try:
            for step in self.steps:
                response = await step.call(response, context)
        except Exception as e:
            errors = error_list(e)
            ctx.notify("on_output_processing_error", errors=errors)
            ctx.notify("on_output_processing_end", errors=errors)
            raise
        ctx.notify("on_output_processing_end", response=response)
        return response
