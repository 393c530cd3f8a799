"""Tests for the trace builder, the tracing callback and trace sinks."""

import asyncio
import json
import time

import httpx
import pytest

from semflow.adapters.trace_sinks import FileTraceSink, HttpTraceSink, ListTraceSink
from semflow.callbacks import LoggingCallback, TracingCallback
from semflow.compositions import Composition, edge, function_node, output_node, request_node
from semflow.context import CallContext
from semflow.errors import SemanticFunctionError
from semflow.llm import ChatModel
from semflow.models.chat import text_response
from semflow.models.services import CacheHit, CacheLookup
from semflow.models.trace import TraceRecord
from semflow.sdk import enable_tracing
from semflow.semanticfunctions import SemanticFunction, SemanticFunctionImplementation
from semflow.tracer import Tracer


class FakeModelService:
    async def create_chat_completion(self, provider, request):
        return text_response("ok", model=request.model)


def make_function(name="summarize"):
    impl = SemanticFunctionImplementation(ChatModel("gpt-4o-mini", "openai", FakeModelService()))
    return SemanticFunction(name, [impl])


class TestTracer:
    """Test the push/down/up frame builder."""

    def test_nesting(self):
        """Frames pushed after down() become children of the last frame."""
        tracer = Tracer("t")
        tracer.push({"id": "1", "type": "call-function"}).down()
        tracer.push({"id": "2", "type": "call-model"})
        tracer.up().add_property("success", True)
        record = tracer.close()

        assert record.trace == [
            {
                "id": "1",
                "type": "call-function",
                "children": [{"id": "2", "type": "call-model"}],
                "success": True,
            }
        ]

    def test_up_at_top(self):
        """Ascending past the root is an error."""
        with pytest.raises(ValueError):
            Tracer("t").up()

    def test_down_without_step(self):
        """Descending needs a frame to descend into."""
        with pytest.raises(ValueError):
            Tracer("t").down()

    def test_add_parent_property(self):
        """Parent properties land on the enclosing frame."""
        tracer = Tracer("t")
        tracer.push({"id": "1", "type": "plan"}).down()
        tracer.push({"id": "2", "type": "parse-plan"})
        tracer.add_parent_property("steps", 2)
        assert tracer.current_trace()[0]["id"] == "2"
        tracer.up()
        assert tracer.current_step()["steps"] == 2

    def test_record_rejects_unknown_frame(self):
        """Trace records only accept known frame types."""
        with pytest.raises(ValueError):
            TraceRecord(name="t", trace=[{"id": "1", "type": "mystery"}])


class TestTracingCallback:
    """Test trace capture around real calls."""

    def test_semantic_function_trace(self):
        """A function call yields one nested trace upserted once."""
        sink = ListTraceSink()
        with enable_tracing("ann", trace_sink=sink) as ctx:
            asyncio.run(make_function().call({"content": "hi"}, context=ctx))

        assert len(sink.traces) == 1
        record, username = sink.traces[0]
        assert username == "ann"
        assert record.trace_type == "semfn"
        assert record.name.startswith("summarize - ")

        (top,) = record.trace
        assert top["type"] == "call-function"
        assert top["success"] is True
        implementation = top["children"][0]
        assert implementation["type"] == "call-implementation"
        assert implementation["children"][0]["type"] == "call-model"
        assert top["elapsedMillis"] >= 0

    def test_failure_is_recorded(self):
        """A failing call records an error frame and success=False."""
        sink = ListTraceSink()
        with enable_tracing(trace_sink=sink) as ctx:
            with pytest.raises(SemanticFunctionError):
                asyncio.run(SemanticFunction("empty", []).call({"content": "x"}, context=ctx))

        (top,) = sink.records[0].trace
        assert top["success"] is False
        assert top["errors"] == [{"message": "no implementations"}]
        assert top["children"][0]["type"] == "error"

    def test_cache_lookup_is_a_point_event(self):
        """A cache hit shows up as a lookup-cache frame with no model call."""

        class Cache:
            async def get(self, prompt, n):
                return CacheLookup(hits=[CacheHit(content="cached")])

            async def set(self, prompt, content, embedding):
                pass

        model = ChatModel(
            "gpt-4o-mini",
            "openai",
            FakeModelService(),
            semantic_cache=Cache(),
            semantic_cache_enabled=True,
        )
        fn = SemanticFunction("summarize", [SemanticFunctionImplementation(model)])
        sink = ListTraceSink()
        with enable_tracing(trace_sink=sink) as ctx:
            asyncio.run(fn.call({"content": "hi"}, context=ctx))

        (top,) = sink.records[0].trace
        (lookup,) = top["children"][0]["children"]
        assert lookup["type"] == "lookup-cache"
        assert lookup["hit"] is True
        assert lookup["prompt"] == "hi"

    def test_nested_calls_upsert_once(self):
        """Functions inside a composition share the composition's trace."""
        sink = ListTraceSink()
        composition = Composition(
            "pipeline",
            nodes=[
                request_node("req"),
                function_node("f1", make_function("first")),
                function_node("f2", make_function("second")),
                output_node("out"),
            ],
            edges=[
                edge("e1", "req", "f1"),
                edge("e2", "f1", "f2"),
                edge("e3", "f2", "out"),
            ],
        )
        with enable_tracing(trace_sink=sink) as ctx:
            asyncio.run(composition.call({"content": "hi"}, context=ctx))

        assert len(sink.traces) == 1
        record = sink.records[0]
        assert record.trace_type == "composition"
        (top,) = record.trace
        assert top["type"] == "call-composition"
        names = [f["name"] for f in record.iter_frames() if f["type"] == "call-function"]
        assert names == ["first", "second"]

    def test_separate_calls_separate_traces(self):
        """Two top-level calls through one callback produce two traces."""
        sink = ListTraceSink()
        ctx = CallContext(callbacks=[TracingCallback(sink)])
        fn = make_function()
        asyncio.run(fn.call({"content": "a"}, context=ctx))
        asyncio.run(fn.call({"content": "b"}, context=ctx))

        assert len(sink.traces) == 2
        assert sink.records[0].trace[0]["args"] == {"content": "a"}
        assert sink.records[1].trace[0]["args"] == {"content": "b"}

    def test_payloads_are_json_safe(self):
        """Pydantic payloads are converted to plain JSON values."""
        sink = ListTraceSink()
        with enable_tracing(trace_sink=sink) as ctx:
            asyncio.run(make_function().call({"content": "hi"}, context=ctx))
        json.dumps(sink.records[0].trace)


class TestLoggingCallback:
    """Test the logging callback."""

    def test_logs_boundaries(self, caplog):
        """Start and end hooks are logged at the configured level."""
        callback = LoggingCallback(level=20)
        with caplog.at_level("INFO", logger="semflow.trace"):
            asyncio.run(make_function().call({"content": "hi"}, context=CallContext(callbacks=[callback])))

        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith("on_semantic_function_start") for m in messages)
        assert any(m.startswith("on_model_end") for m in messages)

    def test_errors_logged_at_error(self, caplog):
        """Hooks carrying errors are logged at ERROR."""
        callback = LoggingCallback()
        with caplog.at_level("ERROR", logger="semflow.trace"):
            callback.on_agent_end(name="a", errors=[{"message": "boom"}])

        assert caplog.records[0].levelname == "ERROR"
        assert "boom" in caplog.records[0].getMessage()

    def test_long_payloads_are_cut(self, caplog):
        """Payload values are cut at max_chars."""
        callback = LoggingCallback(level=20, max_chars=10)
        with caplog.at_level("INFO", logger="semflow.trace"):
            callback.on_agent_start(name="a", goal="x" * 100)
        assert "..." in caplog.records[0].getMessage()


class TestTraceSinks:
    """Test where traces end up."""

    def setup_method(self):
        self.record = TraceRecord(name="t", trace=[{"id": "1", "type": "call-function"}])

    def test_file_sink_appends_jsonl(self, tmp_path):
        """Each trace is one JSON line."""
        sink = FileTraceSink(tmp_path / "traces" / "traces.jsonl")
        sink.upsert_trace(self.record, "ann")
        sink.upsert_trace(self.record, "ann")

        lines = (tmp_path / "traces" / "traces.jsonl").read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["name"] == "t"

    def test_http_sink_posts(self):
        """Traces are posted with the username as a query parameter."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        sink = HttpTraceSink("http://traces.test/", transport=httpx.MockTransport(handler))
        sink.upsert_trace(self.record, "ann")

        (request,) = seen
        assert request.url.path == "/api/traces"
        assert request.url.params["username"] == "ann"
        assert json.loads(request.content)["name"] == "t"

    def test_http_sink_logs_failures(self, caplog):
        """Server errors are logged, not raised."""
        sink = HttpTraceSink(
            "http://traces.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        sink.upsert_trace(self.record, None)
        assert "failed to upsert trace" in caplog.text

    def test_http_sink_does_not_block_the_loop(self):
        """A slow trace server does not stall other tasks."""
        seen = []

        def handler(request):
            time.sleep(0.3)
            seen.append(request)
            return httpx.Response(200, json={})

        sink = HttpTraceSink("http://traces.test", transport=httpx.MockTransport(handler))

        async def scenario():
            ticks = []

            async def ticker():
                for _ in range(10):
                    ticks.append(time.monotonic())
                    await asyncio.sleep(0.02)

            task = asyncio.create_task(ticker())
            await asyncio.sleep(0)
            sink.upsert_trace(self.record, "ann")
            await task
            await sink.flush()
            return ticks

        ticks = asyncio.run(scenario())

        assert max(b - a for a, b in zip(ticks, ticks[1:])) < 0.15
        assert len(seen) == 1
