"""Input guardrails checked on assembled prompt messages before a model call."""

from __future__ import annotations

import logging

from semflow.callbacks.base import Callback
from semflow.context import CallContext, ensure_context
from semflow.errors import GuardrailError, error_list
from semflow.models.chat import Message, content_to_text
from semflow.services import GuardrailsService
from semflow.utils.text import PARA_DELIM

logger = logging.getLogger(__name__)


class InputGuardrails:
    """Scans the joined message text with every configured guardrail key."""

    def __init__(
        self,
        guardrails_service: GuardrailsService,
        keys: list[str],
        callbacks: list[Callback] | None = None,
    ) -> None:
        self.guardrails_service = guardrails_service
        self.keys = keys
        self.callbacks = callbacks or []

    async def call(self, messages: list[Message], context: CallContext | None = None) -> None:
        ctx = ensure_context(context).extend(self.callbacks)
        ctx.notify("on_input_guardrail_start", messages=messages, keys=self.keys)
        text = PARA_DELIM.join(content_to_text(m.content) for m in messages)
        try:
            for key in self.keys:
                result = await self.guardrails_service.scan(key, text)
                if result.error:
                    logger.warning("input guardrail %s failed: %s", key, result.error)
                    raise GuardrailError(result.error)
        except Exception as e:
            errors = error_list(e)
            ctx.notify("on_input_guardrail_error", errors=errors)
            ctx.notify("on_input_guardrail_end", errors=errors)
            raise
        ctx.notify("on_input_guardrail_end")
