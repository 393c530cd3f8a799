"""Protocols for the external collaborators the execution core talks to.

Every network-bound method is a coroutine. Concrete implementations live in
``semflow.adapters`` (LangChain-backed) or in the host application.
"""

from typing import Any, Protocol

from semflow.models.chat import ChatRequest, ChatResponse
from semflow.models.services import (
    CacheLookup,
    IndexBuildRequest,
    IndexInfo,
    ParseResult,
    PromptSet,
    ScanResult,
    SearchHit,
)


class ModelService(Protocol):
    """Chat completion provider."""

    async def create_chat_completion(self, provider: str, request: ChatRequest) -> ChatResponse:
        ...


class ToolService(Protocol):
    """Named tools callable by agents and composition tool nodes."""

    async def call(self, name: str, args: Any) -> Any:
        ...

    def get_tools_list(self, names: list[str] | None = None) -> str:
        ...

    def get_tool_names(self, names: list[str] | None = None) -> str:
        ...

    def get_all_metadata(self, names: list[str] | None = None) -> list[dict[str, Any]]:
        ...


class VectorStoreService(Protocol):
    async def search(
        self,
        provider: str,
        index_name: str,
        query: Any,
        attrs: list[str] | None,
        logical_type: str | None,
        params: dict[str, Any],
    ) -> list[SearchHit]:
        ...


class EmbeddingService(Protocol):
    async def embed(self, provider: str, model: str, text: str) -> list[float]:
        ...


class SemanticCacheService(Protocol):
    """Answers keyed by prompt similarity."""

    async def get(self, prompt: str, n: int) -> CacheLookup:
        ...

    async def set(self, prompt: str, content: str, embedding: list[float] | None) -> None:
        ...


class RerankerService(Protocol):
    async def rerank(self, query: str, texts: list[str], top_n: int) -> list[int]:
        """Return indexes into ``texts`` in the new order."""
        ...


class GuardrailsService(Protocol):
    async def scan(self, key: str, text: str) -> ScanResult:
        ...


class ParserService(Protocol):
    async def parse(self, key: str, text: str) -> ParseResult:
        ...


class RulesEngineService(Protocol):
    async def run(self, facts: Any) -> list[str]:
        """Return the ids of the rulesets matching ``facts``."""
        ...


class FeatureStoreService(Protocol):
    async def get_online_features(
        self, featurestore: dict[str, Any], params: dict[str, Any], entity_id: Any
    ) -> dict[str, Any]:
        ...


class MetricStoreService(Protocol):
    async def get_metrics(
        self, metricstore: dict[str, Any], params: dict[str, Any], args: Any
    ) -> dict[str, Any]:
        ...


class SqlSourceService(Protocol):
    async def get_ddl(self, info: dict[str, Any]) -> str:
        ...

    async def get_sample(self, info: dict[str, Any]) -> str:
        ...


class GraphStoreService(Protocol):
    async def get_schema(self, info: dict[str, Any]) -> Any:
        ...


class PromptSetsService(Protocol):
    async def get_prompt_sets_by_skill(self, workspace_id: int | None, skill: str) -> list[PromptSet]:
        ...


class IndexesService(Protocol):
    async def get_index_by_name(self, name: str) -> IndexInfo | None:
        ...


class IndexPipelineService(Protocol):
    async def run(self, request: IndexBuildRequest) -> Any:
        ...


class TraceSink(Protocol):
    """Receives closed trace trees."""

    def upsert_trace(self, record: Any, username: str | None) -> None:
        ...
