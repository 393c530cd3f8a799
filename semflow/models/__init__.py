"""Pydantic data models."""

from semflow.models.agent import (
    AgentConfig,
    AgentKind,
    MKRLAgentConfig,
    PlanAndExecuteAgentConfig,
    Step,
)
from semflow.models.chat import (
    ChatChoice,
    ChatPrompt,
    ChatRequest,
    ChatResponse,
    FunctionCall,
    FunctionDefinition,
    Message,
    MessageRole,
    PromptContext,
    Usage,
    content_to_text,
)
from semflow.models.ontology import (
    OntologyEdge,
    OntologyGraph,
    OntologyNode,
    OntologyProperty,
    Ruleset,
)
from semflow.models.services import (
    CacheHit,
    CacheLookup,
    IndexBuildRequest,
    IndexInfo,
    ParseResult,
    PromptSet,
    PromptSetMessage,
    ScanResult,
    SearchHit,
)
from semflow.models.trace import TraceFrameType, TraceRecord

__all__ = [
    # Agents
    "AgentConfig",
    "AgentKind",
    "MKRLAgentConfig",
    "PlanAndExecuteAgentConfig",
    "Step",
    # Chat
    "ChatChoice",
    "ChatPrompt",
    "ChatRequest",
    "ChatResponse",
    "FunctionCall",
    "FunctionDefinition",
    "Message",
    "MessageRole",
    "PromptContext",
    "Usage",
    "content_to_text",
    # Ontology
    "OntologyEdge",
    "OntologyGraph",
    "OntologyNode",
    "OntologyProperty",
    "Ruleset",
    # Service payloads
    "CacheHit",
    "CacheLookup",
    "IndexBuildRequest",
    "IndexInfo",
    "ParseResult",
    "PromptSet",
    "PromptSetMessage",
    "ScanResult",
    "SearchHit",
    # Traces
    "TraceFrameType",
    "TraceRecord",
]
