"""Semantic functions and their implementations."""

from semflow.semanticfunctions.function import Experiment, SemanticFunction
from semflow.semanticfunctions.implementation import (
    DEFAULT_CONTEXT_WINDOW,
    DEFAULT_MAX_TOKENS,
    FunctionResult,
    SemanticFunctionImplementation,
)

__all__ = [
    "DEFAULT_CONTEXT_WINDOW",
    "DEFAULT_MAX_TOKENS",
    "Experiment",
    "FunctionResult",
    "SemanticFunction",
    "SemanticFunctionImplementation",
]
