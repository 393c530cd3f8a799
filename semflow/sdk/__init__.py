"""SDK entry points."""

from semflow.sdk.prompt_sets import HttpPromptSetsClient, PromptSetsError
from semflow.sdk.tracing import default_trace_sink, enable_tracing

__all__ = [
    "HttpPromptSetsClient",
    "PromptSetsError",
    "default_trace_sink",
    "enable_tracing",
]
