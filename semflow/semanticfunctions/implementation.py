"""One model binding for a semantic function.

An implementation assembles the provider-agnostic chat request (running the
optional enrichment pipeline and input guardrails), calls the model, then
runs output processing and the optional return mapping.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from semflow.adapters.tokenizers import Tokenizer, get_default_tokenizer
from semflow.callbacks.base import Callback
from semflow.context import CallContext, ensure_context
from semflow.errors import SemanticFunctionError, error_list
from semflow.guardrails import InputGuardrails
from semflow.llm import ApiModel, ChatModel
from semflow.mapping import map_args, map_return_type
from semflow.models.chat import (
    ChatChoice,
    ChatPrompt,
    ChatRequest,
    ChatResponse,
    FunctionCall,
    FunctionDefinition,
    Message,
    MessageRole,
    PromptContext,
    Usage,
    assistant_message,
    user_message,
)
from semflow.outputprocessing.pipeline import OutputProcessingPipeline
from semflow.promptenrichment.pipeline import PromptEnrichmentPipeline
from semflow.utils.text import ALL_PROPS, PARA_DELIM, bin_pack_texts_in_order, get_input, hash_str

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_WINDOW = 4096

DEFAULT_MAX_TOKENS = 1024

# share of the context window a batch bin may fill
BATCH_CONTEXT_FRACTION = 0.9

OUTPUT_FORMATTER = "output_formatter"
OUTPUT_FORMATTER_DESCRIPTION = (
    "Output formatter. Should always be used to format your response to the user."
)

TOKEN_KEYS = ("prompt_tokens", "completion_tokens", "total_tokens")


@dataclass
class FunctionResult:
    """What semantic functions and implementations return.

    ``response`` is a ``ChatResponse`` unless a return mapping reshaped it.
    """

    response: Any
    response_metadata: dict[str, Any] = field(default_factory=dict)


def _add_tokens(totals: dict[str, int], metadata: dict[str, Any] | None) -> None:
    for key in TOKEN_KEYS:
        totals[key] = totals.get(key, 0) + int((metadata or {}).get(key) or 0)


def _non_system(messages: list[Message]) -> list[Message]:
    return [m for m in messages if m.role != MessageRole.system]


def _system_context(messages: list[Message]) -> PromptContext | None:
    system_prompt = PARA_DELIM.join(
        m.content for m in messages if m.role == MessageRole.system and isinstance(m.content, str)
    )
    return PromptContext(system_prompt=system_prompt) if system_prompt else None


def _image_urls(args: Any) -> list[str]:
    if not isinstance(args, dict):
        return []
    if args.get("image_urls"):
        return list(args["image_urls"])
    if args.get("image_url"):
        return [args["image_url"]]
    return []


def _vision_content(text: str, image_urls: list[str]) -> list[dict[str, Any]]:
    return [
        {"type": "text", "text": text},
        *({"type": "image_url", "image_url": {"url": url}} for url in image_urls),
    ]


def _max_tokens(model_params: dict[str, Any]) -> int:
    try:
        return int(model_params["max_tokens"])
    except (KeyError, TypeError, ValueError):
        return DEFAULT_MAX_TOKENS


class SemanticFunctionImplementation:
    """Binds a model and its optional pipelines.

    Args:
        model: a ``ChatModel`` (``gpt`` / ``completion``) or ``ApiModel``
        is_default: chosen when no model key or experiment picks another
        args_mapping_template: mapping applied to args before anything else
        return_mapping_template: mapping applied to the processed response
        rewrite_query: rewrite ``args[index_content_property_path]`` with
            ``query_rewrite_function`` before enrichment
        tokenizer: used to bin-pack batch inputs
    """

    def __init__(
        self,
        model: ChatModel | ApiModel,
        is_default: bool = False,
        args_mapping_template: Any = None,
        return_mapping_template: Any = None,
        index_content_property_path: str | None = None,
        rewrite_query: bool = False,
        query_rewrite_function: Any = None,
        prompt_enrichment_pipeline: PromptEnrichmentPipeline | None = None,
        input_guardrails: InputGuardrails | None = None,
        output_processing_pipeline: OutputProcessingPipeline | None = None,
        tokenizer: Tokenizer | None = None,
        callbacks: list[Callback] | None = None,
    ) -> None:
        self.model = model
        self.is_default = is_default
        self.args_mapping_template = args_mapping_template
        self.return_mapping_template = return_mapping_template
        self.index_content_property_path = index_content_property_path
        self.rewrite_query = rewrite_query
        self.query_rewrite_function = query_rewrite_function
        self.prompt_enrichment_pipeline = prompt_enrichment_pipeline
        self.input_guardrails = input_guardrails
        self.output_processing_pipeline = output_processing_pipeline
        self._tokenizer = tokenizer
        self.callbacks = callbacks or []

    @property
    def key(self) -> str:
        return self.model.model

    @property
    def tokenizer(self) -> Tokenizer:
        if self._tokenizer is None:
            self._tokenizer = get_default_tokenizer()
        return self._tokenizer

    def _fail(self, ctx: CallContext, message: str) -> None:
        ctx.notify("on_semantic_function_implementation_error", errors=[{"message": message}])
        raise SemanticFunctionError(message)

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
        model_key = model_key or self.key
        model_params = dict(model_params or {})
        options = options or {}
        ctx.notify(
            "on_semantic_function_implementation_start",
            model_key=model_key,
            args=args,
            history=history,
            model_type=self.model.model_type,
            model_params=model_params,
            is_batch=is_batch,
            options=options,
        )
        try:
            if self.args_mapping_template is not None:
                args = map_args(self.args_mapping_template, args, ctx, is_batch)

            request_options = dict(
                messages=messages,
                history=history,
                extra_system_prompt=extra_system_prompt,
                model_key=model_key,
                model_params=model_params,
                functions=functions,
                return_type_schema=return_type_schema,
                is_batch=is_batch,
            )
            if self.model.model_type in ("gpt", "completion"):
                context_window = self.model.context_window or DEFAULT_CONTEXT_WINDOW
                max_tokens = _max_tokens(model_params)
                if is_batch and isinstance(args, list):
                    response, metadata = await self._run_batch(
                        args, context_window, max_tokens, options, request_options, ctx, context
                    )
                else:
                    response, metadata = await self._run(
                        args, context_window, max_tokens, options, request_options, ctx, context
                    )
                metadata["provider"] = self.model.provider
            elif self.model.model_type == "api":
                result = await self.model.call(args, is_batch, context)
                response, metadata = result.response, result.response_metadata
            else:
                self._fail(ctx, f"model type {self.model.model_type} not supported")

            if self.output_processing_pipeline is not None and self.output_processing_pipeline.steps:
                response = await self.output_processing_pipeline.call(response, context)

            if self.return_mapping_template is not None:
                source = response.model_dump(mode="json") if isinstance(response, BaseModel) else response
                response = map_return_type(self.return_mapping_template, source, ctx)
        except Exception as e:
            ctx.notify(
                "on_semantic_function_implementation_end",
                model_key=model_key,
                errors=error_list(e),
            )
            raise
        ctx.notify(
            "on_semantic_function_implementation_end",
            model_key=model_key,
            response=response,
            response_metadata=metadata,
        )
        return FunctionResult(response, metadata)

    async def _rewrite(self, args: Any, totals: dict[str, int], context: CallContext) -> Any:
        path = self.index_content_property_path
        if not path or not isinstance(args, dict) or not args.get(path):
            return args
        logger.debug("rewrite query before: %s", args[path])
        result = await self.query_rewrite_function.call(
            {"content": args[path]}, model_params={"n": 1}, context=context
        )
        _add_tokens(totals, result.response_metadata)
        args = {**args, path: result.response.content_text}
        logger.debug("rewrite query after: %s", args[path])
        return args

    async def _run(
        self,
        args: Any,
        context_window: int,
        max_tokens: int,
        options: dict[str, Any],
        request_options: dict[str, Any],
        ctx: CallContext,
        context: CallContext,
    ) -> tuple[ChatResponse, dict[str, Any]]:
        messages = request_options["messages"]
        history = request_options["history"]
        totals: dict[str, int] = {}
        enrichment_metadata: dict[str, Any] = {}
        prompt_context: PromptContext | None = None
        hist: list[Message] | None = None

        if self.rewrite_query and self.query_rewrite_function is not None:
            args = await self._rewrite(args, totals, context)

        image_urls = _image_urls(args)
        if self.prompt_enrichment_pipeline is not None:
            enrichment = await self.prompt_enrichment_pipeline.call(
                args,
                request_options["is_batch"],
                messages=messages,
                context_window=context_window,
                max_tokens=max_tokens,
                max_output_tokens=self.model.max_output_tokens,
                model_key=request_options["model_key"],
                context=context,
            )
            enrichment_metadata = enrichment.response_metadata
            _add_tokens(totals, enrichment_metadata)
            prompts = _non_system(enrichment.messages)
            if not prompts:
                self._fail(ctx, "no prompt")
            if image_urls:
                # vision requests carry neither history nor system context
                last = prompts[-1]
                prompts[-1] = last.model_copy(
                    update={"content": _vision_content(str(last.content or ""), image_urls)}
                )
            else:
                prompt_context = _system_context(enrichment.messages)
                if history:
                    hist = _non_system(history)
        else:
            if messages:
                prompts = list(messages)
            else:
                text = get_input(args, options=options)
                if not text:
                    self._fail(ctx, "Cannot parse args")
                content = _vision_content(text, image_urls) if image_urls else text
                prompts = [user_message(content)]
            if history and not image_urls:
                hist = _non_system(history)

        extra_system_prompt = request_options["extra_system_prompt"]
        if extra_system_prompt:
            if prompt_context is not None:
                prompt_context = PromptContext(
                    system_prompt=prompt_context.system_prompt + PARA_DELIM + extra_system_prompt
                )
            else:
                prompt_context = PromptContext(system_prompt=extra_system_prompt)

        if self.input_guardrails is not None and self.input_guardrails.keys:
            await self.input_guardrails.call(prompts, context)

        functions = request_options["functions"]
        return_type_schema = request_options["return_type_schema"]
        if return_type_schema and not functions:
            functions = [
                FunctionDefinition(
                    name=OUTPUT_FORMATTER,
                    description=OUTPUT_FORMATTER_DESCRIPTION,
                    parameters=return_type_schema,
                )
            ]

        request = ChatRequest(
            model=request_options["model_key"],
            model_params=request_options["model_params"],
            functions=functions,
            prompt=ChatPrompt(context=prompt_context, history=hist, messages=prompts),
        )
        result = await self.model.call(request, context)
        _add_tokens(totals, result.response_metadata)
        metadata = {
            **enrichment_metadata,
            **result.response_metadata,
            **totals,
            "hist": hist,
            "prompts": prompts,
        }
        return result.response, metadata

    async def _run_batch(
        self,
        args: list[Any],
        context_window: int,
        max_tokens: int,
        options: dict[str, Any],
        request_options: dict[str, Any],
        ctx: CallContext,
        context: CallContext,
    ) -> tuple[ChatResponse, dict[str, Any]]:
        max_tokens_per_chat = context_window * BATCH_CONTEXT_FRACTION - max_tokens
        all_props = options.get("content_prop") == ALL_PROPS
        result_key = options.get("batch_result_key")

        texts = get_input(args, is_batch=True, options=options) or []
        hashes: list[str | None] = []
        deduped: list[Any] = []
        seen: set[str] = set()
        for i, text in enumerate(texts):
            if isinstance(text, str) and text.strip():
                digest = hash_str(text)
                if digest not in seen:
                    seen.add(digest)
                    deduped.append(args[i] if all_props else text)
                hashes.append(digest)
            else:
                hashes.append(None)

        bins = bin_pack_texts_in_order(
            deduped, max_tokens_per_chat, lambda t: len(self.tokenizer.encode(t))
        )
        logger.debug("batch of %d inputs packed into %d bin(s)", len(args), len(bins))

        data: list[Any] = [None] * len(hashes)
        totals: dict[str, int] = {}
        hist: list[Message] = []
        prompts: list[Message] = []
        last: ChatResponse | None = None
        for index, items in enumerate(bins):
            bin_args = items if all_props else {"text": items}
            ctx.notify("on_batch_bin_start", index=index, size=len(items))
            try:
                response, metadata = await self._run(
                    bin_args, context_window, max_tokens, options, request_options, ctx, context
                )
            except Exception as e:
                ctx.notify("on_batch_bin_end", index=index, errors=error_list(e))
                raise
            ctx.notify("on_batch_bin_end", index=index, response=response)
            last = response
            _add_tokens(totals, metadata)
            hist.extend(metadata.get("hist") or [])
            prompts.extend(metadata.get("prompts") or [])
            try:
                results = response.message.function_call.parsed_arguments()["results"]
                values = [el.get(result_key) if result_key else el for el in results]
            except (AttributeError, KeyError, TypeError, json.JSONDecodeError) as e:
                logger.error("Error parsing response (bin %d): %s", index + 1, e)
                continue
            for item, value in zip(items, values):
                digest = hash_str(json.dumps(item, sort_keys=True) if all_props else item)
                for k, h in enumerate(hashes):
                    if h == digest:
                        data[k] = value

        response = ChatResponse(
            model=last.model if last else request_options["model_key"],
            choices=[
                ChatChoice(
                    message=assistant_message(
                        None, FunctionCall(name="json", arguments=json.dumps(data))
                    ),
                    finish_reason="function_call",
                )
            ],
            usage=Usage(**totals) if totals else None,
        )
        return response, {**totals, "hist": hist, "prompts": prompts}
