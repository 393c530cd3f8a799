"""Output processing pipeline and steps."""

from semflow.outputprocessing.pipeline import (
    OutputGuardrail,
    OutputParser,
    OutputProcessingPipeline,
    OutputProcessingStep,
    RulesetsGuardrail,
)

__all__ = [
    "OutputGuardrail",
    "OutputParser",
    "OutputProcessingPipeline",
    "OutputProcessingStep",
    "RulesetsGuardrail",
]
