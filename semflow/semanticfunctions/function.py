"""Schema-validated semantic functions with experiment-weighted dispatch."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from semflow.callbacks.base import Callback
from semflow.context import CallContext, ensure_context
from semflow.errors import SchemaError, SemanticFunctionError, error_list
from semflow.models.chat import ChatResponse, FunctionDefinition, Message, content_to_text
from semflow.semanticfunctions.implementation import FunctionResult, SemanticFunctionImplementation
from semflow.validation import validate

logger = logging.getLogger(__name__)


class Experiment(BaseModel):
    """A routing weight for the implementation at the same list index."""

    name: str
    percentage: float


class SemanticFunction:
    """A named callable unit backed by one or more implementations.

    Implementation precedence: explicit ``model_key``, then an experiment
    draw (when experiments are configured), then the implementation flagged
    ``is_default``, then the first one.

    In batch mode only the first element of ``args`` is validated, as a
    representative sample.
    """

    def __init__(
        self,
        name: str,
        implementations: list[SemanticFunctionImplementation],
        id: int | str | None = None,
        description: str | None = None,
        args_schema: dict[str, Any] | None = None,
        return_type: str = "text/plain",
        return_type_schema: dict[str, Any] | None = None,
        experiments: list[Experiment] | None = None,
        callbacks: list[Callback] | None = None,
    ) -> None:
        self.id = id
        self.name = name
        self.description = description
        self.args_schema = args_schema
        self.return_type = return_type
        self.return_type_schema = return_type_schema
        self.experiments = experiments
        self.implementations = implementations
        self.callbacks = callbacks or []

    def _fail(self, ctx: CallContext, error: Exception) -> None:
        ctx.notify("on_semantic_function_error", name=self.name, errors=error_list(error))
        raise error

    def to_function_definition(self) -> FunctionDefinition:
        """Describe this function for model function-calling."""
        return FunctionDefinition(
            name=self.name,
            description=self.description,
            parameters=self.args_schema or {"type": "object", "properties": {}},
        )

    def select_from_experiment(self, ctx: CallContext) -> SemanticFunctionImplementation:
        """Cumulative-weight sample over experiments (aligned with implementations)."""
        candidates = self.implementations[: len(self.experiments)]
        weights = [xp.percentage for xp in self.experiments[: len(candidates)]]
        sample = ctx.random() * sum(weights)
        index = len(candidates) - 1
        for i, weight in enumerate(weights):
            sample -= weight
            if sample < 0:
                index = i
                break
        impl = candidates[index]
        experiments = [
            {**xp.model_dump(), "implementation": candidates[i].key}
            for i, xp in enumerate(self.experiments[: len(candidates)])
        ]
        ctx.notify("on_experiment", experiments=experiments, implementation=impl.key)
        return impl

    def get_implementation(
        self, model_key: str | None, ctx: CallContext
    ) -> SemanticFunctionImplementation | None:
        if model_key:
            return next((i for i in self.implementations if i.key == model_key), None)
        if self.experiments:
            return self.select_from_experiment(ctx)
        default = next((i for i in self.implementations if i.is_default), None)
        return default or self.implementations[0]

    async def call(
        self,
        args: Any,
        messages: list[Message] | None = None,
        history: list[Message] | None = None,
        extra_system_prompt: str | None = None,
        model_key: str | None = None,
        model_params: dict[str, Any] | None = None,
        functions: list[FunctionDefinition] | None = None,
        is_batch: bool = False,
        return_type_schema: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        context: CallContext | None = None,
    ) -> FunctionResult:
        context = ensure_context(context)
        ctx = context.extend(self.callbacks)
        ctx.notify(
            "on_semantic_function_start",
            name=self.name,
            args=args,
            history=history,
            experiments=self.experiments,
            model_key=model_key,
            model_params=model_params,
            is_batch=is_batch,
        )
        try:
            if not self.implementations:
                self._fail(ctx, SemanticFunctionError("no implementations"))

            if self.args_schema:
                instance = args[0] if is_batch and isinstance(args, list) and args else args
                validation = validate(instance, self.args_schema)
                ctx.notify("on_validate_arguments", result=validation)
                if not validation.valid:
                    self._fail(ctx, SchemaError(validation))

            impl = self.get_implementation(model_key, ctx)
            if impl is None:
                self._fail(
                    ctx,
                    SemanticFunctionError(
                        f"implementation not found. check if `model_key` is correct: {model_key}"
                    ),
                )

            result = await impl.call(
                args,
                messages=messages,
                history=history,
                extra_system_prompt=extra_system_prompt,
                model_key=model_key,
                model_params=model_params,
                functions=functions,
                is_batch=is_batch,
                return_type_schema=return_type_schema or self.return_type_schema,
                options=options,
                context=context,
            )
            response = result.response
            if isinstance(response, ChatResponse):
                system_output: Any = response.message
                system_output_text = (
                    None if response.message.function_call else content_to_text(response.message.content)
                )
            else:
                system_output, system_output_text = response, None
            metadata = {
                **result.response_metadata,
                "implementation": impl.key,
                "system_input": {
                    "args": args,
                    "messages": messages,
                    "history": history,
                    "extra_system_prompt": extra_system_prompt,
                },
                "system_output": system_output,
                "system_output_text": system_output_text,
                "function_id": self.id,
                "function_name": self.name,
            }
        except Exception as e:
            ctx.notify("on_semantic_function_end", name=self.name, errors=error_list(e))
            raise
        ctx.notify(
            "on_semantic_function_end",
            name=self.name,
            response=response,
            response_metadata=metadata,
        )
        return FunctionResult(response, metadata)
