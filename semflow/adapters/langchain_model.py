"""Model service backed by LangChain chat models.

Translates ``ChatRequest`` into LangChain messages, invokes the chat model and
translates the ``AIMessage`` back into a ``ChatResponse``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    FunctionMessage,
    HumanMessage,
    SystemMessage,
)

from semflow.config import get_settings
from semflow.errors import SemanticFunctionError
from semflow.models.chat import (
    ChatChoice,
    ChatRequest,
    ChatResponse,
    FunctionCall,
    Message,
    MessageRole,
    Usage,
    assistant_message,
)

logger = logging.getLogger(__name__)

ModelFactory = Callable[[str, str], BaseChatModel]


def default_model_factory(provider: str, model: str) -> BaseChatModel:
    """Build a chat model for ``provider``. Only OpenAI is built in."""
    if provider == "openai":
        from langchain_openai import ChatOpenAI

        kwargs: dict[str, Any] = {"model": model}
        api_key = get_settings().openai_api_key
        if api_key:
            kwargs["api_key"] = api_key
        return ChatOpenAI(**kwargs)
    raise SemanticFunctionError(f"unsupported model provider: {provider}")


def to_langchain_message(message: Message) -> BaseMessage:
    content = message.content if message.content is not None else ""
    if message.role == MessageRole.system:
        return SystemMessage(content=content)
    if message.role == MessageRole.assistant:
        additional_kwargs: dict[str, Any] = {}
        if message.function_call is not None:
            additional_kwargs["function_call"] = message.function_call.model_dump()
        return AIMessage(content=content, additional_kwargs=additional_kwargs)
    if message.role in (MessageRole.function, MessageRole.tool):
        return FunctionMessage(content=content, name=message.name or "function")
    return HumanMessage(content=content)


def to_langchain_messages(request: ChatRequest) -> list[BaseMessage]:
    prompt = request.prompt
    messages: list[BaseMessage] = []
    if prompt.context is not None and prompt.context.system_prompt:
        messages.append(SystemMessage(content=prompt.context.system_prompt))
    for message in [*(prompt.history or []), *prompt.messages]:
        messages.append(to_langchain_message(message))
    return messages


def from_langchain_message(result: AIMessage, model: str | None = None) -> ChatResponse:
    """Translate an ``AIMessage`` into a single-choice ``ChatResponse``."""
    function_call = None
    if result.tool_calls:
        call = result.tool_calls[0]
        function_call = FunctionCall(name=call["name"], arguments=json.dumps(call["args"]))
    elif "function_call" in result.additional_kwargs:
        raw = result.additional_kwargs["function_call"]
        function_call = FunctionCall(name=raw["name"], arguments=raw.get("arguments") or "{}")

    content = result.content
    if isinstance(content, list):
        content = "".join(
            part if isinstance(part, str) else part.get("text", "") for part in content
        )

    usage = None
    if result.usage_metadata:
        usage = Usage(
            prompt_tokens=result.usage_metadata.get("input_tokens", 0),
            completion_tokens=result.usage_metadata.get("output_tokens", 0),
            total_tokens=result.usage_metadata.get("total_tokens", 0),
        )

    finish_reason = result.response_metadata.get("finish_reason")
    if finish_reason is None:
        finish_reason = "function_call" if function_call else "stop"
    return ChatResponse(
        model=result.response_metadata.get("model_name", model),
        choices=[
            ChatChoice(
                message=assistant_message(content or None, function_call),
                finish_reason=finish_reason,
            )
        ],
        usage=usage,
    )


class LangChainModelService:
    """``ModelService`` over LangChain chat models.

    Args:
        models: chat model per provider, used as-is regardless of the
            requested model name (handy for fakes)
        model_factory: builds a chat model for ``(provider, model)`` when
            ``models`` has no entry; results are cached
    """

    def __init__(
        self,
        models: dict[str, BaseChatModel] | None = None,
        model_factory: ModelFactory | None = None,
    ) -> None:
        self.models = dict(models or {})
        self.model_factory = model_factory or default_model_factory
        self._cache: dict[tuple[str, str], BaseChatModel] = {}

    def get_model(self, provider: str, model: str) -> BaseChatModel:
        if provider in self.models:
            return self.models[provider]
        key = (provider, model)
        if key not in self._cache:
            self._cache[key] = self.model_factory(provider, model)
        return self._cache[key]

    async def create_chat_completion(self, provider: str, request: ChatRequest) -> ChatResponse:
        chat_model: Any = self.get_model(provider, request.model)
        if request.functions:
            chat_model = chat_model.bind_tools(
                [f.model_dump(exclude_none=True) for f in request.functions]
            )
        params = dict(request.model_params)
        stop = params.pop("stop", None)
        params.pop("n", None)
        messages = to_langchain_messages(request)
        logger.debug("invoking %s/%s with %d messages", provider, request.model, len(messages))
        result = await chat_model.ainvoke(messages, stop=stop, **params)
        return from_langchain_message(result, request.model)
