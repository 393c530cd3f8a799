"""JSON Schema validation of call arguments."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft7Validator


@dataclass
class ValidationResult:
    instance: Any
    schema: dict[str, Any] | None
    valid: bool
    errors: list[dict[str, Any]] = field(default_factory=list)


def validate(instance: Any, schema: dict[str, Any] | None) -> ValidationResult:
    """Validate ``instance`` against ``schema``. A missing schema always passes."""
    if not schema:
        return ValidationResult(instance, schema, True)
    validator = Draft7Validator(schema)
    errors = [
        {
            "message": error.message,
            "path": "/".join(str(p) for p in error.absolute_path),
            "validator": error.validator,
        }
        for error in sorted(validator.iter_errors(instance), key=lambda e: [str(p) for p in e.absolute_path])
    ]
    return ValidationResult(instance, schema, not errors, errors)
