"""Prompt template filling with token-budget-aware context truncation.

Enrichment steps append retrieved context to ``args["context"]`` as blocks::

    *** some retrieved text ***
    Citation: {"source": "doc-1"}

separated by blank lines. When the filled prompt would not fit the model's
context window, whole blocks are dropped from the newest end first, and only
the oldest surviving block's text is ever cut. A citation is never split and
never left without its text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from langchain_core.prompts.string import DEFAULT_FORMATTER_MAPPING, get_template_variables

from semflow.adapters.tokenizers import Tokenizer, get_default_tokenizer
from semflow.callbacks.base import Callback
from semflow.context import CallContext, ensure_context
from semflow.errors import SchemaError, SemanticFunctionError, error_list
from semflow.models.chat import Message
from semflow.utils.text import PARA_DELIM
from semflow.validation import validate

logger = logging.getLogger(__name__)

CITATION_DELIM = "\nCitation:"

# fixed discount per dropped citation while estimating how many blocks to drop
CITATION_TOKEN_OVERHEAD = 40

TEMPLATE_FORMATS = ("f-string", "mustache")


@dataclass
class ContextBlock:
    text: str
    citation: str | None = None

    def render(self) -> str:
        if self.citation is None:
            return self.text
        return self.text + CITATION_DELIM + self.citation


def split_context_blocks(context: str) -> list[ContextBlock]:
    """Split a rendered context into ``(text, citation)`` blocks, oldest first."""
    parts = context.split(CITATION_DELIM)
    blocks: list[ContextBlock] = []
    text = parts[0]
    trailing = True
    for part in parts[1:]:
        citation, sep, rest = part.partition(PARA_DELIM)
        blocks.append(ContextBlock(text, citation))
        text = rest
        trailing = bool(sep)
    if trailing:
        blocks.append(ContextBlock(text))
    return blocks


def render_context_blocks(blocks: list[ContextBlock]) -> str:
    return PARA_DELIM.join(block.render() for block in blocks)


def _count(tokenizer: Tokenizer, text: str) -> int:
    return len(tokenizer.encode(text))


def _shrink(block: ContextBlock, n_tokens: int, tokenizer: Tokenizer) -> ContextBlock:
    """Drop at least one and up to ``n_tokens`` tokens from the end of the block's text."""
    tokens = tokenizer.encode(block.text)
    keep = max(min(len(tokens) - n_tokens, len(tokens) - 1), 0)
    return ContextBlock(tokenizer.decode(tokens[:keep]), block.citation)


def truncate_context(context: str, available: int, tokenizer: Tokenizer) -> str:
    """Cut ``context`` down to at most ``available`` tokens."""
    if available <= 0:
        return ""
    size = _count(tokenizer, context)
    if size <= available:
        return context

    blocks = split_context_blocks(context)
    deficit = size - available
    while deficit > 0 and len(blocks) > 1:
        block = blocks.pop()
        deficit -= _count(tokenizer, block.text)
        if block.citation is not None:
            deficit -= CITATION_TOKEN_OVERHEAD
    if deficit > 0:
        blocks[0] = _shrink(blocks[0], deficit, tokenizer)
    logger.debug("context estimate kept %d block(s), deficit %d", len(blocks), deficit)

    while True:
        if not blocks or not blocks[0].text.strip():
            return ""
        rendered = render_context_blocks(blocks)
        size = _count(tokenizer, rendered)
        if size <= available:
            return rendered
        if len(blocks) > 1:
            blocks.pop()
        else:
            blocks[0] = _shrink(blocks[0], size - available, tokenizer)


def fill_template(template: str, args: dict[str, Any], template_format: str = "f-string") -> str:
    """Fill one template, raising SemanticFunctionError on a missing variable."""
    if template_format not in TEMPLATE_FORMATS:
        raise SemanticFunctionError(f"unsupported template format: {template_format}")
    try:
        variables = get_template_variables(template, template_format)
    except ValueError as e:
        raise SemanticFunctionError(f"invalid template: {e}") from e
    for name in variables:
        if name not in args:
            raise SemanticFunctionError(f"missing template variable: {name}")
    return DEFAULT_FORMATTER_MAPPING[template_format](template, **args)


class PromptTemplate:
    """A list of message templates plus an optional argument schema.

    Args:
        messages: messages whose string content is a template
        args_schema: JSON Schema the arguments must satisfy
        snippets: named text fragments available to every template; they
            override arguments of the same name
        template_format: ``"f-string"`` or ``"mustache"``
        tokenizer: used for context budgeting (defaults to tiktoken)
    """

    def __init__(
        self,
        messages: list[Message],
        args_schema: dict[str, Any] | None = None,
        snippets: dict[str, str] | None = None,
        template_format: str = "f-string",
        tokenizer: Tokenizer | None = None,
        callbacks: list[Callback] | None = None,
        prompt_set_id: int | str | None = None,
        prompt_set_name: str | None = None,
    ) -> None:
        if template_format not in TEMPLATE_FORMATS:
            raise ValueError(f"template_format must be one of {TEMPLATE_FORMATS}")
        self.messages = messages
        self.args_schema = args_schema
        self.snippets = snippets or {}
        self.template_format = template_format
        self._tokenizer = tokenizer
        self.callbacks = callbacks or []
        self.prompt_set_id = prompt_set_id
        self.prompt_set_name = prompt_set_name

    @property
    def tokenizer(self) -> Tokenizer:
        if self._tokenizer is None:
            self._tokenizer = get_default_tokenizer()
        return self._tokenizer

    def _fill_messages(self, args: dict[str, Any]) -> list[Message]:
        filled = []
        for message in self.messages:
            if isinstance(message.content, str):
                content = fill_template(message.content, args, self.template_format)
                filled.append(message.model_copy(update={"content": content}))
            else:
                filled.append(message.model_copy())
        return filled

    def _budget_context(
        self,
        fill_args: dict[str, Any],
        context_window: int,
        max_tokens: int | None,
        max_output_tokens: int | None,
    ) -> str:
        blank = self._fill_messages({**fill_args, "context": ""})
        pre_context_length = sum(
            _count(self.tokenizer, m.content) for m in blank if isinstance(m.content, str)
        )
        max_tokens = max_tokens or 0
        reserved = min(max_tokens, max_output_tokens) if max_output_tokens else max_tokens
        available = context_window - pre_context_length - reserved
        logger.debug(
            "context budget: window=%d pre=%d reserved=%d available=%d",
            context_window,
            pre_context_length,
            reserved,
            available,
        )
        return truncate_context(fill_args["context"], available, self.tokenizer)

    async def call(
        self,
        args: Any,
        is_batch: bool = False,
        context_window: int | None = None,
        max_tokens: int | None = None,
        max_output_tokens: int | None = None,
        context: CallContext | None = None,
    ) -> list[Message]:
        """Fill every message template with ``{**args, **snippets}``."""
        ctx = ensure_context(context).extend(self.callbacks)
        ctx.notify(
            "on_prompt_template_start",
            messages=self.messages,
            args=args,
            prompt_set_id=self.prompt_set_id,
            prompt_set_name=self.prompt_set_name,
        )
        try:
            if self.args_schema:
                result = validate(args, self.args_schema)
                ctx.notify("on_validate_arguments", result=result)
                if not result.valid:
                    raise SchemaError(result)
            fill_args = dict(args) if isinstance(args, dict) else {"content": args}
            fill_args.update(self.snippets)
            if isinstance(fill_args.get("context"), str) and context_window:
                fill_args["context"] = self._budget_context(
                    fill_args, context_window, max_tokens, max_output_tokens
                )
            messages = self._fill_messages(fill_args)
        except Exception as e:
            errors = error_list(e)
            ctx.notify("on_prompt_template_error", errors=errors)
            ctx.notify("on_prompt_template_end", errors=errors)
            raise
        ctx.notify("on_prompt_template_end", messages=messages)
        return messages
