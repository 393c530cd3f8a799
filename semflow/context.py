"""Call-scoped context threaded explicitly through every call.

Components never store per-call state on themselves. Each public ``call`` /
``run`` takes a ``CallContext`` and derives a local view with its own
callbacks appended::

    ctx = (context or CallContext()).extend(self.callbacks)
    ctx.notify("on_semantic_function_start", name=self.name, args=args)

Nested components receive the incoming context, not the extended one, so a
component's own callbacks only observe that component.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from semflow.callbacks.base import Callback

logger = logging.getLogger(__name__)


@dataclass
class CallContext:
    callbacks: list[Callback] = field(default_factory=list)
    rng: random.Random | None = None

    def extend(self, extra_callbacks: list[Callback] | None) -> CallContext:
        """Return a new context with ``extra_callbacks`` appended."""
        if not extra_callbacks:
            return CallContext(callbacks=list(self.callbacks), rng=self.rng)
        return CallContext(callbacks=[*self.callbacks, *extra_callbacks], rng=self.rng)

    def random(self) -> float:
        """Draw from the context RNG, or the module RNG if none is set."""
        if self.rng is not None:
            return self.rng.random()
        return random.random()

    def notify(self, hook: str, **kwargs: Any) -> None:
        """Invoke ``hook`` on every callback, in registration order."""
        for callback in self.callbacks:
            method = getattr(callback, hook, None)
            if method is None:
                logger.debug("callback %s has no hook %s", type(callback).__name__, hook)
                continue
            method(**kwargs)


def ensure_context(context: CallContext | None) -> CallContext:
    return context if context is not None else CallContext()
