"""Stage-boundary callbacks."""

from semflow.callbacks.base import HOOKS, Callback
from semflow.callbacks.logging import LoggingCallback
from semflow.callbacks.tracing import TracingCallback

__all__ = ["HOOKS", "Callback", "LoggingCallback", "TracingCallback"]
