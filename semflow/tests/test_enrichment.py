"""Tests for the prompt enrichment steps and pipeline."""

import asyncio
import json

import pytest

from semflow.adapters.tokenizers import WhitespaceTokenizer
from semflow.context import CallContext
from semflow.errors import SemanticFunctionError
from semflow.models.chat import text_response, user_message
from semflow.models.services import SearchHit
from semflow.promptenrichment import (
    FeatureStoreEnrichment,
    FunctionEnrichment,
    GraphEnrichment,
    MetricStoreEnrichment,
    PromptEnrichmentPipeline,
    PromptTemplate,
    SemanticSearchEnrichment,
    SqlEnrichment,
)
from semflow.promptenrichment.pipeline import append_context, merge_metadata, sort_hits
from semflow.semanticfunctions.implementation import FunctionResult


class FakeVectorStore:
    def __init__(self, hits):
        self.hits = hits
        self.searches = []

    async def search(self, provider, index_name, query, attrs, logical_type, params):
        self.searches.append(
            {"provider": provider, "index": index_name, "query": query, "params": params}
        )
        return list(self.hits)


class FakeEmbeddings:
    def __init__(self):
        self.texts = []

    async def embed(self, provider, model, text):
        self.texts.append(text)
        return [0.1, 0.2]


class RecordingCallback:
    def __init__(self):
        self.hooks = []

    def __getattr__(self, name):
        if not name.startswith("on_"):
            raise AttributeError(name)

        def hook(**kwargs):
            self.hooks.append((name, kwargs))

        return hook

    def names(self):
        return [name for name, _ in self.hooks]


HITS = [
    SearchHit(text="far", dist=0.9, metadata={"source": "b.txt"}),
    SearchHit(text="near", dist=0.1, metadata={"source": "a.txt"}),
]


class TestAppendContext:
    """Test context accumulation."""

    def test_sets_when_empty(self):
        """An empty path is set to the new text."""
        assert append_context({}, "context", "x") == {"context": "x"}

    def test_appends_with_blank_line(self):
        """Existing text is kept and separated by a blank line."""
        assert append_context({"context": "a"}, "context", "b") == {"context": "a\n\nb"}

    def test_does_not_mutate(self):
        """The input bag is left untouched."""
        args = {"nested": {"context": "a"}}
        append_context(args, "nested.context", "b")
        assert args == {"nested": {"context": "a"}}

    def test_incompatible_existing_value(self):
        """Non-string context cannot be appended to."""
        with pytest.raises(SemanticFunctionError, match="incompatible"):
            append_context({"context": ["a"]}, "context", "b")


class TestSemanticSearchEnrichment:
    """Test vector search enrichment."""

    def test_hits_become_cited_context(self):
        """Hits are sorted best first and appended with citations."""
        store = FakeVectorStore(HITS)
        embeddings = FakeEmbeddings()
        step = SemanticSearchEnrichment(
            store,
            "docs",
            "chroma",
            embedding_service=embeddings,
            embedding_provider="openai",
            embedding_model="text-embedding-3-small",
            index_content_property_path="content",
            index_params={"k": 2},
        )
        result = asyncio.run(step.call({"content": "question"}))

        context = result.args["context"]
        assert context.index("near") < context.index("far")
        assert '\nCitation: {"source": "a.txt", "dist": 0.1}' in context
        assert [s["source"] for s in result.response_metadata["sources"]] == ["a.txt", "b.txt"]
        assert embeddings.texts == ["question"]
        assert store.searches[0]["params"] == {"k": 2, "query_embedding": [0.1, 0.2]}

    def test_server_side_embedding(self):
        """Stores that embed queries themselves get no client-side embedding."""
        store = FakeVectorStore(HITS)
        embeddings = FakeEmbeddings()
        step = SemanticSearchEnrichment(store, "docs", "redis", embedding_service=embeddings)
        asyncio.run(step.call({"content": "q"}))

        assert embeddings.texts == []
        assert store.searches[0]["params"]["query_embedding"] is None

    def test_all_results(self):
        """all_results queries with '*' and skips embedding."""
        store = FakeVectorStore([])
        embeddings = FakeEmbeddings()
        step = SemanticSearchEnrichment(
            store, "docs", "chroma", embedding_service=embeddings, index_params={"all_results": True}
        )
        result = asyncio.run(step.call({"content": "q"}))

        assert store.searches[0]["query"] == "*"
        assert embeddings.texts == []
        assert result.args == {"content": "q"}
        assert result.response_metadata == {"sources": []}

    def test_root_query_is_whole_args(self):
        """Without a content path the whole argument bag is the query."""
        store = FakeVectorStore([])
        step = SemanticSearchEnrichment(store, "docs", "chroma")
        asyncio.run(step.call({"a": 1}))
        assert store.searches[0]["query"] == {"a": 1}

    def test_reranker(self):
        """The reranker reorders the top hits."""

        class Reranker:
            async def rerank(self, query, texts, top_n):
                return list(reversed(range(len(texts))))

        step = SemanticSearchEnrichment(
            FakeVectorStore(HITS), "docs", "chroma", reranker_service=Reranker()
        )
        result = asyncio.run(step.call({"content": "q"}))
        assert result.args["context"].startswith("*** far ***")

    def test_sort_by_score(self):
        """Without distances, higher scores come first."""
        hits = [SearchHit(text="low", score=0.2), SearchHit(text="high", score=0.8)]
        assert [h.text for h in sort_hits(hits)] == ["high", "low"]

    def test_hooks(self):
        """The step reports start and end with the enriched args."""
        callback = RecordingCallback()
        step = SemanticSearchEnrichment(FakeVectorStore(HITS), "docs", "chroma", callbacks=[callback])
        asyncio.run(step.call({"content": "q"}))

        assert callback.names() == [
            "on_semantic_search_enrichment_start",
            "on_semantic_search_enrichment_end",
        ]
        assert "context" in callback.hooks[-1][1]["args"]


class TestOtherSteps:
    """Test feature, metric, function, SQL and graph enrichment."""

    def test_feature_store(self):
        """Features for entity_id are merged into args."""

        class Features:
            async def get_online_features(self, featurestore, params, entity_id):
                return {"plan": "gold", "id_seen": entity_id}

        step = FeatureStoreEnrichment(Features(), {"name": "fs"})
        result = asyncio.run(step.call({"entityId": 7}))
        assert result.args == {"entityId": 7, "plan": "gold", "id_seen": 7}

    def test_metric_store(self):
        """Metrics are merged into args."""

        class Metrics:
            async def get_metrics(self, metricstore, params, args):
                return {"revenue": 10}

        result = asyncio.run(MetricStoreEnrichment(Metrics(), {}).call({"q": 1}))
        assert result.args == {"q": 1, "revenue": 10}

    def test_function_enrichment(self):
        """The context is replaced by another function's output."""

        class Summarizer:
            def __init__(self):
                self.args = None

            async def call(self, args, **kwargs):
                self.args = args
                return FunctionResult(text_response("short"), {"total_tokens": 5, "other": 1})

        summarizer = Summarizer()
        step = FunctionEnrichment(summarizer)
        result = asyncio.run(step.call({"context": "a very long text", "content": "q"}))

        assert summarizer.args == {"content": "a very long text"}
        assert result.args == {"context": "short", "content": "q"}
        assert result.response_metadata == {"total_tokens": 5}

    def test_sql_ddl_and_sample(self):
        """DDL and samples are appended as context."""

        class Sql:
            async def get_ddl(self, info):
                return "CREATE TABLE t (a int)"

            async def get_sample(self, info):
                return "a\n1"

        ddl = asyncio.run(SqlEnrichment(Sql(), {"table": "t"}).call({}))
        assert ddl.args == {"context": "CREATE TABLE t (a int)"}
        sample = asyncio.run(SqlEnrichment(Sql(), {"table": "t"}, sql_type="sample").call({}))
        assert sample.args == {"context": "a\n1"}

    def test_sql_unsupported_type(self):
        """Unknown SQL enrichment types fail and notify."""
        callback = RecordingCallback()
        step = SqlEnrichment(object(), {}, sql_type="explain", callbacks=[callback])
        with pytest.raises(SemanticFunctionError):
            asyncio.run(step.call({}))
        assert callback.names()[-2:] == ["on_sql_enrichment_error", "on_sql_enrichment_end"]

    def test_graph_schema(self):
        """Structured graph schemas are serialized to JSON."""

        class Graph:
            async def get_schema(self, info):
                return {"nodes": ["Person"]}

        result = asyncio.run(GraphEnrichment(Graph(), {}).call({}))
        assert json.loads(result.args["context"]) == {"nodes": ["Person"]}


class TestPromptEnrichmentPipeline:
    """Test step sequencing and template filling."""

    def test_steps_then_template(self):
        """Steps run in order and the template sees the enriched args."""

        class Sql:
            async def get_ddl(self, info):
                return "DDL"

        class Graph:
            async def get_schema(self, info):
                return "GRAPH"

        pipeline = PromptEnrichmentPipeline(
            steps=[SqlEnrichment(Sql(), {}), GraphEnrichment(Graph(), {})],
            prompt_template=PromptTemplate([user_message("{context}\n\nQ: {content}")]),
        )
        args = {"content": "why?"}
        result = asyncio.run(pipeline.call(args, messages=[user_message("extra")]))

        assert [m.content for m in result.messages] == ["DDL\n\nGRAPH\n\nQ: why?", "extra"]
        assert result.args["context"] == "DDL\n\nGRAPH"
        assert args == {"content": "why?"}

    def test_context_budget_is_forwarded(self):
        """Window and token settings reach the template."""
        store = FakeVectorStore([SearchHit(text="w " * 50, score=1.0, metadata={"s": 1})])
        pipeline = PromptEnrichmentPipeline(
            steps=[SemanticSearchEnrichment(store, "docs", "chroma")],
            prompt_template=PromptTemplate([user_message("{context}")], tokenizer=WhitespaceTokenizer()),
        )
        result = asyncio.run(pipeline.call({"content": "q"}, context_window=30, max_tokens=10))
        assert len(result.messages[0].content.split()) <= 20

    def test_metadata_merge(self):
        """Token counts add up and sources accumulate."""
        total = merge_metadata({}, {"total_tokens": 3, "sources": [{"a": 1}]})
        total = merge_metadata(total, {"total_tokens": 4, "sources": [{"b": 2}], "model": "m"})
        assert total == {"total_tokens": 7, "sources": [{"a": 1}, {"b": 2}], "model": "m"}

    def test_failure_notifies(self):
        """A failing step reports the pipeline error and end, then re-raises."""

        class Broken:
            async def get_schema(self, info):
                raise RuntimeError("graph down")

        callback = RecordingCallback()
        pipeline = PromptEnrichmentPipeline(steps=[GraphEnrichment(Broken(), {})])
        with pytest.raises(RuntimeError):
            asyncio.run(pipeline.call({}, context=CallContext(callbacks=[callback])))

        assert callback.names()[-2:] == ["on_prompt_enrichment_error", "on_prompt_enrichment_end"]
        assert callback.hooks[-1][1]["errors"] == [{"message": "graph down"}]
