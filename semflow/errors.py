"""Exception types raised by the execution core.

Every error carries an ``errors`` list of ``{"message": ...}`` dicts so that
callbacks and the outermost boundary can report failures without inspecting
exception types.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from semflow.validation import ValidationResult


class SemflowError(Exception):
    """Base class for all semflow errors."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [{"message": message}]


class SchemaError(SemflowError):
    """Raised when arguments fail JSON Schema validation."""

    def __init__(self, validation_result: ValidationResult) -> None:
        messages = [e["message"] for e in validation_result.errors]
        super().__init__(
            "Invalid arguments: " + "; ".join(messages),
            errors=list(validation_result.errors),
        )
        self.validation_result = validation_result


class SemanticFunctionError(SemflowError):
    """Raised for dispatch failures: no implementation, bad model type, empty prompt."""


class GuardrailError(SemflowError):
    """Raised when an input or output guardrail reports a violation."""


class ParserError(SemflowError):
    """Raised when a structured output parser fails."""


class CompositionError(SemflowError):
    """Raised when a composition graph cannot be resolved."""


class MappingError(SemflowError):
    """Raised when a mapping template is malformed or cannot be evaluated."""


class AgentError(SemflowError):
    """Raised when an agent run cannot continue."""


def error_list(err: BaseException) -> list[dict[str, Any]]:
    """Return the ``errors`` list attached to an exception, or wrap its message."""
    errors = getattr(err, "errors", None)
    if isinstance(errors, list) and errors:
        return errors
    return [{"message": str(err)}]


async def run_safely(awaitable) -> Any:
    """Await a top-level call and convert a failure into an ``{"errors": [...]}`` result.

    Only the outermost boundary should use this; everything beneath re-raises.
    """
    try:
        return await awaitable
    except Exception as e:
        return {"errors": error_list(e)}
