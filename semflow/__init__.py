"""semflow - semantic functions, compositions and agents over LLMs."""

from semflow.agents import AgentServices, MKRLAgent, PlanAndExecuteAgent, create_agent
from semflow.callbacks import Callback, LoggingCallback, TracingCallback
from semflow.compositions import Composition, CompositionResult
from semflow.config import Settings, configure_logging, get_settings
from semflow.context import CallContext
from semflow.errors import (
    AgentError,
    CompositionError,
    GuardrailError,
    MappingError,
    ParserError,
    SchemaError,
    SemanticFunctionError,
    SemflowError,
)
from semflow.guardrails import InputGuardrails
from semflow.llm import ApiModel, ChatModel
from semflow.outputprocessing import OutputProcessingPipeline
from semflow.promptenrichment import PromptEnrichmentPipeline, PromptTemplate
from semflow.sdk import enable_tracing
from semflow.semanticfunctions import Experiment, SemanticFunction, SemanticFunctionImplementation
from semflow.tracer import Tracer

__all__ = [
    # Semantic functions
    "Experiment",
    "SemanticFunction",
    "SemanticFunctionImplementation",
    "ApiModel",
    "ChatModel",
    # Pipelines
    "InputGuardrails",
    "OutputProcessingPipeline",
    "PromptEnrichmentPipeline",
    "PromptTemplate",
    # Compositions
    "Composition",
    "CompositionResult",
    # Agents
    "AgentServices",
    "MKRLAgent",
    "PlanAndExecuteAgent",
    "create_agent",
    # Tracing
    "CallContext",
    "Callback",
    "LoggingCallback",
    "Tracer",
    "TracingCallback",
    "enable_tracing",
    # Configuration
    "Settings",
    "configure_logging",
    "get_settings",
    # Errors
    "AgentError",
    "CompositionError",
    "GuardrailError",
    "MappingError",
    "ParserError",
    "SchemaError",
    "SemanticFunctionError",
    "SemflowError",
]
