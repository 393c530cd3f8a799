"""Provider-agnostic chat request / response models.

These are the shapes exchanged with the model service. Vendor adapters
translate them to and from their own wire formats.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from semflow.utils.identifiers import generate_response_id, utc_timestamp


class MessageRole(str, Enum):
    """Chat message roles."""

    system = "system"
    user = "user"
    assistant = "assistant"
    function = "function"
    tool = "tool"


class FunctionCall(BaseModel):
    """A function call emitted by the model; ``arguments`` is a JSON string."""

    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> Any:
        """Decode the arguments JSON (raises json.JSONDecodeError)."""
        return json.loads(self.arguments)


class Message(BaseModel):
    """One chat message. ``content`` is text or a list of content parts."""

    role: MessageRole
    content: str | list[dict[str, Any]] | None = None
    name: str | None = None
    function_call: FunctionCall | None = None
    citation_metadata: dict[str, Any] | None = None


class FunctionDefinition(BaseModel):
    """A function (tool) offered to the model."""

    name: str
    description: str | None = None
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class PromptContext(BaseModel):
    """System-level context sent alongside the conversation."""

    system_prompt: str


class ChatPrompt(BaseModel):
    context: PromptContext | None = None
    history: list[Message] | None = None
    messages: list[Message]


class ChatRequest(BaseModel):
    """Request passed to ``ModelService.create_chat_completion``."""

    model: str
    model_params: dict[str, Any] = Field(default_factory=dict)
    prompt: ChatPrompt
    functions: list[FunctionDefinition] | None = None


class ChatChoice(BaseModel):
    index: int = 0
    message: Message
    finish_reason: str | None = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResponse(BaseModel):
    """Model output. ``choices[0].message`` is what every consumer reads."""

    id: str = Field(default_factory=generate_response_id)
    created: str = Field(default_factory=utc_timestamp)
    model: str | None = None
    choices: list[ChatChoice]
    usage: Usage | None = None

    @property
    def message(self) -> Message:
        """Shortcut for the first choice's message."""
        return self.choices[0].message

    @property
    def content_text(self) -> str:
        return content_to_text(self.message.content)


def content_to_text(content: str | list[dict[str, Any]] | None) -> str:
    """Flatten message content (text or content parts) into plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    texts = []
    for part in content:
        if part.get("type") == "text":
            texts.append(part.get("text", ""))
    return "\n".join(texts)


def system_message(content: str) -> Message:
    return Message(role=MessageRole.system, content=content)


def user_message(content: str | list[dict[str, Any]]) -> Message:
    return Message(role=MessageRole.user, content=content)


def assistant_message(content: str | None, function_call: FunctionCall | None = None) -> Message:
    return Message(role=MessageRole.assistant, content=content, function_call=function_call)


def function_message(content: str, name: str) -> Message:
    return Message(role=MessageRole.function, content=content, name=name)


def text_response(content: str, model: str | None = None) -> ChatResponse:
    """Build a single-choice assistant response (used for synthetic responses)."""
    return ChatResponse(
        model=model,
        choices=[ChatChoice(message=assistant_message(content), finish_reason="stop")],
    )
