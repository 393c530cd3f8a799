"""Sequential enrichment of call arguments before prompting.

Each step takes the argument bag and returns a new one (never mutating its
input), plus optional response metadata such as citation sources or token
counts. The pipeline then fills its prompt template with the final args.
"""

from __future__ import annotations

import copy
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any

from semflow.callbacks.base import Callback
from semflow.context import CallContext, ensure_context
from semflow.errors import SemanticFunctionError, error_list
from semflow.models.chat import Message, content_to_text
from semflow.models.services import SearchHit
from semflow.promptenrichment.template import PromptTemplate
from semflow.services import (
    EmbeddingService,
    FeatureStoreService,
    GraphStoreService,
    MetricStoreService,
    RerankerService,
    SqlSourceService,
    VectorStoreService,
)
from semflow.utils.paths import get_path, set_path
from semflow.utils.text import PARA_DELIM

logger = logging.getLogger(__name__)

# vector stores that embed the query themselves
SERVER_SIDE_EMBEDDING_PROVIDERS = {"redis", "elasticsearch"}

# summed across steps
METRIC_KEYS = ("prompt_tokens", "completion_tokens", "total_tokens", "cost")


@dataclass
class EnrichmentStepResult:
    args: Any
    response_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class EnrichmentResult:
    messages: list[Message]
    response_metadata: dict[str, Any] = field(default_factory=dict)
    args: Any = None


def append_context(args: dict[str, Any], path: str, text: str) -> dict[str, Any]:
    """Return a copy of ``args`` with ``text`` appended at ``path``."""
    if not isinstance(args, dict):
        raise SemanticFunctionError("enrichment requires object arguments")
    updated = copy.deepcopy(args)
    existing = get_path(updated, path)
    if existing is None or existing == "":
        return set_path(updated, path, text)
    if not isinstance(existing, str):
        raise SemanticFunctionError(
            f"existing context found at {path} is an incompatible type"
        )
    return set_path(updated, path, existing + PARA_DELIM + text)


class EnrichmentStep:
    """Base class. Subclasses set ``hook`` and implement ``enrich``."""

    hook = "enrichment"

    def __init__(self, callbacks: list[Callback] | None = None) -> None:
        self.callbacks = callbacks or []

    async def call(
        self, args: Any, is_batch: bool = False, context: CallContext | None = None
    ) -> EnrichmentStepResult:
        context = ensure_context(context)
        ctx = context.extend(self.callbacks)
        ctx.notify(f"on_{self.hook}_start", args=args, is_batch=is_batch)
        try:
            result = await self.enrich(args, is_batch, context)
        except Exception as e:
            errors = error_list(e)
            ctx.notify(f"on_{self.hook}_error", errors=errors)
            ctx.notify(f"on_{self.hook}_end", errors=errors)
            raise
        ctx.notify(
            f"on_{self.hook}_end",
            args=result.args,
            response_metadata=result.response_metadata,
        )
        return result

    async def enrich(self, args: Any, is_batch: bool, context: CallContext) -> EnrichmentStepResult:
        raise NotImplementedError


class FeatureStoreEnrichment(EnrichmentStep):
    """Merges online features for the entity named by ``entity_id`` into args."""

    hook = "feature_store_enrichment"

    def __init__(
        self,
        feature_store_service: FeatureStoreService,
        featurestore: dict[str, Any],
        params: dict[str, Any] | None = None,
        callbacks: list[Callback] | None = None,
    ) -> None:
        super().__init__(callbacks)
        self.feature_store_service = feature_store_service
        self.featurestore = featurestore
        self.params = params or {}

    async def enrich(self, args: Any, is_batch: bool, context: CallContext) -> EnrichmentStepResult:
        if "entity_id" in args:
            entity_id = args["entity_id"]
        else:
            entity_id = args.get("entityId")
        features = await self.feature_store_service.get_online_features(
            self.featurestore, self.params, entity_id
        )
        return EnrichmentStepResult({**args, **(features or {})})


class MetricStoreEnrichment(EnrichmentStep):
    hook = "metric_store_enrichment"

    def __init__(
        self,
        metric_store_service: MetricStoreService,
        metricstore: dict[str, Any],
        params: dict[str, Any] | None = None,
        callbacks: list[Callback] | None = None,
    ) -> None:
        super().__init__(callbacks)
        self.metric_store_service = metric_store_service
        self.metricstore = metricstore
        self.params = params or {}

    async def enrich(self, args: Any, is_batch: bool, context: CallContext) -> EnrichmentStepResult:
        metrics = await self.metric_store_service.get_metrics(self.metricstore, self.params, args)
        return EnrichmentStepResult({**args, **(metrics or {})})


def sort_hits(hits: list[SearchHit]) -> list[SearchHit]:
    """Best first: ascending distance if any hit has one, else descending score."""
    if any(hit.dist is not None for hit in hits):
        return sorted(hits, key=lambda h: h.dist if h.dist is not None else math.inf)
    return sorted(hits, key=lambda h: h.score if h.score is not None else -math.inf, reverse=True)


def format_hit(hit: SearchHit) -> tuple[str, dict[str, Any]]:
    citation = dict(hit.metadata)
    if hit.score is not None:
        citation["score"] = hit.score
    if hit.dist is not None:
        citation["dist"] = hit.dist
    return f"*** {hit.text} *** \nCitation: {json.dumps(citation)}", citation


class SemanticSearchEnrichment(EnrichmentStep):
    """Appends vector store hits, with citations, to the args context.

    Args:
        index_params: ``k`` (number of hits) and ``all_results`` (query ``*``)
        index_content_property_path: where to read the query from; unset or
            ``"root"`` means the whole argument bag
        index_context_property_path: where to append the formatted hits
    """

    hook = "semantic_search_enrichment"

    def __init__(
        self,
        vector_store_service: VectorStoreService,
        index_name: str,
        vector_store_provider: str,
        embedding_service: EmbeddingService | None = None,
        embedding_provider: str | None = None,
        embedding_model: str | None = None,
        index_params: dict[str, Any] | None = None,
        index_content_property_path: str | None = None,
        index_context_property_path: str = "context",
        attrs: list[str] | None = None,
        logical_type: str | None = None,
        reranker_service: RerankerService | None = None,
        rerank_top_n: int = 3,
        callbacks: list[Callback] | None = None,
    ) -> None:
        super().__init__(callbacks)
        self.vector_store_service = vector_store_service
        self.index_name = index_name
        self.vector_store_provider = vector_store_provider
        self.embedding_service = embedding_service
        self.embedding_provider = embedding_provider
        self.embedding_model = embedding_model
        self.index_params = index_params or {}
        self.index_content_property_path = index_content_property_path
        self.index_context_property_path = index_context_property_path
        self.attrs = attrs
        self.logical_type = logical_type
        self.reranker_service = reranker_service
        self.rerank_top_n = rerank_top_n

    def get_query(self, args: Any) -> Any:
        if self.index_params.get("all_results"):
            return "*"
        path = self.index_content_property_path
        if not path or path == "root":
            return args
        return get_path(args, path)

    async def enrich(self, args: Any, is_batch: bool, context: CallContext) -> EnrichmentStepResult:
        query = self.get_query(args)
        query_text = query if isinstance(query, str) else json.dumps(query)

        query_embedding = None
        if (
            query != "*"
            and self.embedding_service is not None
            and self.vector_store_provider not in SERVER_SIDE_EMBEDDING_PROVIDERS
        ):
            query_embedding = await self.embedding_service.embed(
                self.embedding_provider, self.embedding_model, query_text
            )

        hits = await self.vector_store_service.search(
            self.vector_store_provider,
            self.index_name,
            query,
            self.attrs,
            self.logical_type,
            {"k": self.index_params.get("k", 4), "query_embedding": query_embedding},
        )
        hits = sort_hits(hits)

        if self.reranker_service is not None and hits:
            top = hits[: self.rerank_top_n]
            order = await self.reranker_service.rerank(query_text, [h.text for h in top], len(top))
            hits = [top[i] for i in order] + hits[self.rerank_top_n:]

        if not hits:
            logger.debug("no hits from index %s", self.index_name)
            return EnrichmentStepResult(args, {"sources": []})

        texts, sources = [], []
        for hit in hits:
            text, citation = format_hit(hit)
            texts.append(text)
            sources.append(citation)
        updated = append_context(args, self.index_context_property_path, PARA_DELIM.join(texts))
        return EnrichmentStepResult(updated, {"sources": sources})


class FunctionEnrichment(EnrichmentStep):
    """Replaces the context with the output of another semantic function."""

    hook = "function_enrichment"

    def __init__(
        self,
        semantic_function: Any,
        context_property_path: str = "context",
        content_property_path: str = "content",
        model_key: str | None = None,
        model_params: dict[str, Any] | None = None,
        callbacks: list[Callback] | None = None,
    ) -> None:
        super().__init__(callbacks)
        self.semantic_function = semantic_function
        self.context_property_path = context_property_path
        self.content_property_path = content_property_path
        self.model_key = model_key
        self.model_params = model_params

    async def enrich(self, args: Any, is_batch: bool, context: CallContext) -> EnrichmentStepResult:
        value = get_path(args, self.context_property_path)
        result = await self.semantic_function.call(
            {self.content_property_path: value},
            model_key=self.model_key,
            model_params=self.model_params,
            context=context,
        )
        message = result.response.message
        if message.function_call is not None and not message.content:
            content = message.function_call.arguments
        else:
            content = content_to_text(message.content)
        updated = set_path(copy.deepcopy(args), self.context_property_path, content)
        metadata = {
            key: result.response_metadata[key]
            for key in METRIC_KEYS
            if key in result.response_metadata
        }
        return EnrichmentStepResult(updated, metadata)


class SqlEnrichment(EnrichmentStep):
    """Appends a table DDL (``schema`` / ``ddl``) or a data ``sample`` as context."""

    hook = "sql_enrichment"

    def __init__(
        self,
        sql_service: SqlSourceService,
        info: dict[str, Any],
        sql_type: str = "schema",
        context_property_path: str = "context",
        callbacks: list[Callback] | None = None,
    ) -> None:
        super().__init__(callbacks)
        self.sql_service = sql_service
        self.info = info
        self.sql_type = sql_type
        self.context_property_path = context_property_path

    async def enrich(self, args: Any, is_batch: bool, context: CallContext) -> EnrichmentStepResult:
        if self.sql_type in ("schema", "ddl"):
            text = await self.sql_service.get_ddl(self.info)
        elif self.sql_type == "sample":
            text = await self.sql_service.get_sample(self.info)
        else:
            raise SemanticFunctionError(f"unsupported sql type: {self.sql_type}")
        return EnrichmentStepResult(append_context(args, self.context_property_path, text))


class GraphEnrichment(EnrichmentStep):
    """Appends a knowledge graph schema as context."""

    hook = "graph_enrichment"

    def __init__(
        self,
        graph_service: GraphStoreService,
        info: dict[str, Any],
        context_property_path: str = "context",
        callbacks: list[Callback] | None = None,
    ) -> None:
        super().__init__(callbacks)
        self.graph_service = graph_service
        self.info = info
        self.context_property_path = context_property_path

    async def enrich(self, args: Any, is_batch: bool, context: CallContext) -> EnrichmentStepResult:
        schema = await self.graph_service.get_schema(self.info)
        text = schema if isinstance(schema, str) else json.dumps(schema)
        return EnrichmentStepResult(append_context(args, self.context_property_path, text))


def merge_metadata(total: dict[str, Any], metadata: dict[str, Any]) -> dict[str, Any]:
    """Sum token counts and costs; concatenate sources; later scalars win."""
    merged = dict(total)
    for key, value in metadata.items():
        if key in METRIC_KEYS and isinstance(value, (int, float)):
            merged[key] = merged.get(key, 0) + value
        elif key == "sources" and isinstance(value, list):
            merged["sources"] = [*merged.get("sources", []), *value]
        else:
            merged[key] = value
    return merged


class PromptEnrichmentPipeline:
    """Runs enrichment steps in order, then fills the prompt template.

    Explicit ``messages`` passed to ``call`` are appended after the filled
    template messages.
    """

    def __init__(
        self,
        steps: list[EnrichmentStep] | None = None,
        prompt_template: PromptTemplate | None = None,
        callbacks: list[Callback] | None = None,
    ) -> None:
        self.steps = steps or []
        self.prompt_template = prompt_template
        self.callbacks = callbacks or []

    async def call(
        self,
        args: Any,
        is_batch: bool = False,
        messages: list[Message] | None = None,
        context_window: int | None = None,
        max_tokens: int | None = None,
        max_output_tokens: int | None = None,
        model_key: str | None = None,
        context: CallContext | None = None,
    ) -> EnrichmentResult:
        context = ensure_context(context)
        ctx = context.extend(self.callbacks)
        ctx.notify("on_prompt_enrichment_start", args=args, is_batch=is_batch, model_key=model_key)
        try:
            metadata: dict[str, Any] = {}
            for step in self.steps:
                result = await step.call(args, is_batch, context=context)
                args = result.args
                metadata = merge_metadata(metadata, result.response_metadata)
            filled: list[Message] = []
            if self.prompt_template is not None:
                filled = await self.prompt_template.call(
                    args,
                    is_batch,
                    context_window=context_window,
                    max_tokens=max_tokens,
                    max_output_tokens=max_output_tokens,
                    context=context,
                )
            filled = [*filled, *(messages or [])]
        except Exception as e:
            errors = error_list(e)
            ctx.notify("on_prompt_enrichment_error", errors=errors)
            ctx.notify("on_prompt_enrichment_end", errors=errors)
            raise
        ctx.notify("on_prompt_enrichment_end", messages=filled, response_metadata=metadata)
        return EnrichmentResult(filled, metadata, args)
