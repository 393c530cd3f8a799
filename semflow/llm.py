"""Model bindings used by semantic function implementations."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from semflow.context import CallContext, ensure_context
from semflow.errors import error_list
from semflow.models.chat import (
    ChatChoice,
    ChatRequest,
    ChatResponse,
    assistant_message,
    content_to_text,
    text_response,
)
from semflow.services import ModelService, SemanticCacheService

logger = logging.getLogger(__name__)

DEFAULT_MODEL_PARAMS: dict[str, Any] = {"max_tokens": 140, "n": 1, "temperature": 0.5}

CACHE_HIT = "cache-hit"


@dataclass
class ModelResult:
    response: ChatResponse
    response_metadata: dict[str, Any] = field(default_factory=dict)


def response_metadata_for(request: Any, response: ChatResponse) -> dict[str, Any]:
    """Model input/output summary and token counts for a completed call."""
    message = response.message
    if message.function_call is not None:
        output_type = "function_call"
        output_text = message.function_call.arguments
    else:
        output_type = "content"
        output_text = content_to_text(message.content)
    usage = response.usage
    return {
        "model_input": request,
        "output_type": output_type,
        "model_output_text": output_text,
        "prompt_tokens": usage.prompt_tokens if usage else 0,
        "completion_tokens": usage.completion_tokens if usage else 0,
        "total_tokens": usage.total_tokens if usage else 0,
    }


@dataclass
class ChatModel:
    """A chat model bound to a provider.

    ``context_window`` and ``max_output_tokens`` feed prompt budgeting; leave
    them unset when unknown.

    With ``semantic_cache_enabled``, the last prompt message is looked up in
    ``semantic_cache`` first; a hit is returned without calling the provider
    and every fresh answer is stored.
    """

    model: str
    provider: str
    model_service: ModelService
    model_type: str = "gpt"
    context_window: int | None = None
    max_output_tokens: int | None = None
    semantic_cache: SemanticCacheService | None = None
    semantic_cache_enabled: bool = False

    @property
    def uses_cache(self) -> bool:
        return self.semantic_cache is not None and self.semantic_cache_enabled

    async def call(self, request: ChatRequest, context: CallContext | None = None) -> ModelResult:
        ctx = ensure_context(context)
        request = request.model_copy(
            update={
                "model": request.model or self.model,
                "model_params": {**DEFAULT_MODEL_PARAMS, **request.model_params},
            }
        )
        prompt = ""
        embedding = None
        if self.uses_cache:
            prompt, embedding, cached = await self.lookup_cache(request, ctx)
            if cached is not None:
                return ModelResult(cached, response_metadata_for(request.model_dump(mode="json"), cached))
        ctx.notify("on_model_start", request=request, provider=self.provider)
        try:
            response = await self.model_service.create_chat_completion(self.provider, request)
        except Exception as e:
            errors = error_list(e)
            ctx.notify("on_model_error", errors=errors)
            ctx.notify("on_model_end", errors=errors)
            raise
        if self.uses_cache:
            for choice in response.choices:
                if choice.message.function_call is None:
                    text = content_to_text(choice.message.content)
                    await self.semantic_cache.set(prompt, text, embedding)
        metadata = response_metadata_for(request.model_dump(mode="json"), response)
        ctx.notify("on_model_end", response=response, response_metadata=metadata)
        return ModelResult(response, metadata)

    async def lookup_cache(
        self, request: ChatRequest, ctx: CallContext
    ) -> tuple[str, list[float] | None, ChatResponse | None]:
        """Return ``(prompt, embedding, response)``; ``response`` is set on a hit."""
        messages = request.prompt.messages
        prompt = content_to_text(messages[-1].content) if messages else ""
        n = request.model_params.get("n") or 1
        lookup = await self.semantic_cache.get(prompt, n)
        response = None
        if lookup.hits:
            response = ChatResponse(
                model=request.model,
                choices=[
                    ChatChoice(index=i, message=assistant_message(hit.content), finish_reason=CACHE_HIT)
                    for i, hit in enumerate(lookup.hits)
                ],
            )
        logger.debug("lookup cache for %s: %d hit(s)", request.model, len(lookup.hits))
        ctx.notify(
            "on_lookup_cache",
            model=request.model,
            prompt=prompt,
            hit=response is not None,
            response=response,
        )
        return prompt, lookup.embedding, response


ApiEndpoint = Callable[[Any, bool], Awaitable[Any]]


@dataclass
class ApiModel:
    """A custom model behind an async endpoint ``(args, is_batch) -> result``."""

    model: str
    endpoint: ApiEndpoint
    model_type: str = "api"

    async def call(
        self, args: Any, is_batch: bool = False, context: CallContext | None = None
    ) -> ModelResult:
        ctx = ensure_context(context)
        ctx.notify("on_custom_model_start", args=args, model=self.model, is_batch=is_batch)
        try:
            result = await self.endpoint(args, is_batch)
        except Exception as e:
            ctx.notify("on_custom_model_end", errors=error_list(e))
            raise
        if isinstance(result, ChatResponse):
            response = result
        else:
            text = result if isinstance(result, str) else json.dumps(result)
            response = text_response(text, model=self.model)
        metadata = response_metadata_for(args, response)
        ctx.notify("on_custom_model_end", response=response)
        return ModelResult(response, metadata)
