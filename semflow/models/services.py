"""Result and request shapes exchanged with external collaborators."""

from typing import Any

from pydantic import BaseModel, Field


class ScanResult(BaseModel):
    """Guardrails service result. ``error`` set means the scan failed."""

    error: str | None = None
    text: str | None = None  # possibly rewritten (e.g. redacted) text


class ParseResult(BaseModel):
    """Parser service result."""

    json_: Any = Field(default=None, alias="json")
    error: str | None = None

    model_config = {"populate_by_name": True}


class SearchHit(BaseModel):
    """One vector store hit.

    Stores report either a similarity ``score`` (higher is better) or a
    distance ``dist`` (lower is better).
    """

    text: str
    score: float | None = None
    dist: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PromptSetMessage(BaseModel):
    prompt: str
    role: str | None = None


class PromptSet(BaseModel):
    """A named group of prompt templates tagged with a skill."""

    id: int | str
    name: str
    skill: str | None = None
    prompts: list[PromptSetMessage]


class IndexInfo(BaseModel):
    """Index descriptor returned by the indexes service."""

    name: str
    vector_store_provider: str | None = None
    embedding_provider: str | None = None
    embedding_model: str | None = None


class IndexBuildRequest(BaseModel):
    """Configuration collected from a composition's RAG nodes."""

    data_source: Any = None
    index: Any = None
    loader: dict[str, Any] | None = None
    extractors: list[dict[str, Any]] = Field(default_factory=list)
    embedding_model: dict[str, Any] | None = None
    vector_store_provider: str | None = None
    new_index_name: str | None = None
    graph_store_provider: str | None = None

    @property
    def has_source_and_index(self) -> bool:
        return self.data_source is not None and self.index is not None

    @property
    def has_rag_pipeline(self) -> bool:
        has_store = self.vector_store_provider is not None or self.graph_store_provider is not None
        return self.loader is not None and bool(self.extractors) and has_store

    @property
    def is_complete(self) -> bool:
        return self.has_source_and_index or self.has_rag_pipeline


class CacheHit(BaseModel):
    content: str
    score: float | None = None


class CacheLookup(BaseModel):
    """Semantic cache result: the prompt's embedding and any stored answers."""

    embedding: list[float] | None = None
    hits: list[CacheHit] = Field(default_factory=list)
