"""Callback that writes every stage boundary to a standard logger."""

from __future__ import annotations

import logging
from typing import Any

from semflow.callbacks.base import HOOKS, Callback


def _summarize(value: Any, limit: int) -> str:
    text = repr(value)
    if len(text) > limit:
        return text[:limit] + "..."
    return text


class LoggingCallback(Callback):
    """Logs ``start`` / ``end`` at ``level`` and failures at ERROR.

    Payload values are rendered with ``repr`` and cut at ``max_chars``.
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        level: int = logging.DEBUG,
        max_chars: int = 500,
    ) -> None:
        self.logger = logger or logging.getLogger("semflow.trace")
        self.level = level
        self.max_chars = max_chars

    def log_hook(self, hook: str, payload: dict[str, Any]) -> None:
        errors = payload.get("errors")
        if hook.endswith("_error") or errors:
            self.logger.error("%s errors=%s", hook, _summarize(errors, self.max_chars))
            return
        if not self.logger.isEnabledFor(self.level):
            return
        rendered = " ".join(
            f"{key}={_summarize(value, self.max_chars)}"
            for key, value in payload.items()
            if value is not None
        )
        self.logger.log(self.level, "%s %s", hook, rendered)


def _make_hook(hook: str):
    def method(self: LoggingCallback, **kwargs: Any) -> None:
        self.log_hook(hook, kwargs)

    method.__name__ = hook
    return method


for _hook in HOOKS:
    setattr(LoggingCallback, _hook, _make_hook(_hook))
