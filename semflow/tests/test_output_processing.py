"""Tests for output processing, input guardrails and ontology schemas."""

import asyncio
import json

import pytest

from semflow.context import CallContext
from semflow.errors import GuardrailError, ParserError
from semflow.guardrails import InputGuardrails
from semflow.models.chat import (
    ChatChoice,
    ChatResponse,
    FunctionCall,
    assistant_message,
    system_message,
    text_response,
    user_message,
)
from semflow.models.ontology import (
    OntologyEdge,
    OntologyGraph,
    OntologyNode,
    OntologyProperty,
    Ruleset,
)
from semflow.models.services import ParseResult, ScanResult
from semflow.outputprocessing import (
    OutputGuardrail,
    OutputParser,
    OutputProcessingPipeline,
    RulesetsGuardrail,
)
from semflow.semanticfunctions.implementation import FunctionResult


class Redactor:
    """Guardrail that masks a word, or fails on a banned one."""

    def __init__(self):
        self.scanned = []

    async def scan(self, key, text):
        self.scanned.append((key, text))
        if "forbidden" in text:
            return ScanResult(error=f"{key}: forbidden content")
        return ScanResult(text=text.replace("secret", "[REDACTED]"))


class JsonParser:
    def __init__(self, result=None):
        self.result = result
        self.seen = []

    async def parse(self, key, text):
        self.seen.append((key, text))
        if self.result is not None:
            return self.result
        return ParseResult(json={"text": text})


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


ONTOLOGY = OntologyGraph(
    nodes=[
        OntologyNode(
            label="Person",
            properties=[
                OntologyProperty(name="name", required=True),
                OntologyProperty(name="age", type="int"),
            ],
        ),
        OntologyNode(label="Company", properties=[OntologyProperty(name="name")]),
    ],
    edges=[OntologyEdge(label="WORKS_AT", source="Person", target="Company")],
)


class TestOutputProcessingPipeline:
    """Test step ordering and failure handling."""

    def test_steps_run_in_order(self):
        """The guardrail rewrites the text before the parser sees it."""
        callback = RecordingCallback()
        parser = JsonParser()
        pipeline = OutputProcessingPipeline(
            [OutputGuardrail(Redactor(), "pii"), OutputParser(parser, "json")]
        )
        response = text_response("my secret plan")
        result = asyncio.run(pipeline.call(response, context=CallContext(callbacks=[callback])))

        assert parser.seen == [("json", "my [REDACTED] plan")]
        assert json.loads(result.content_text) == {"text": "my [REDACTED] plan"}
        assert response.content_text == "my secret plan"
        assert callback.names() == [
            "on_output_processing_start",
            "on_output_guardrail_start",
            "on_output_guardrail_end",
            "on_output_parser_start",
            "on_output_parser_end",
            "on_output_processing_end",
        ]
        assert callback.hooks[1][1]["key"] == "pii"

    def test_first_failure_aborts(self):
        """A guardrail violation stops later steps."""
        callback = RecordingCallback()
        parser = JsonParser()
        pipeline = OutputProcessingPipeline(
            [OutputGuardrail(Redactor(), "toxicity"), OutputParser(parser, "json")]
        )
        with pytest.raises(GuardrailError, match="forbidden"):
            asyncio.run(
                pipeline.call(text_response("forbidden words"), context=CallContext(callbacks=[callback]))
            )

        assert parser.seen == []
        assert callback.names() == [
            "on_output_processing_start",
            "on_output_guardrail_start",
            "on_output_guardrail_error",
            "on_output_guardrail_end",
            "on_output_processing_error",
            "on_output_processing_end",
        ]

    def test_empty_pipeline(self):
        """No steps returns the response unchanged."""
        response = text_response("as is")
        assert asyncio.run(OutputProcessingPipeline().call(response)) is response


class TestOutputParser:
    """Test parser output handling."""

    def test_string_result_is_unquoted(self):
        """A bare JSON string becomes plain text."""
        parser = JsonParser(ParseResult(json="plain"))
        result = asyncio.run(OutputParser(parser, "text").call(text_response("x")))
        assert result.content_text == "plain"

    def test_parser_error(self):
        """A parser error raises ParserError."""
        parser = JsonParser(ParseResult(error="not json"))
        with pytest.raises(ParserError, match="not json"):
            asyncio.run(OutputParser(parser, "json").call(text_response("x")))


class TestRulesetsGuardrail:
    """Test fact extraction and ruleset matching."""

    def setup_method(self):
        self.ruleset = Ruleset(id="r1", name="employment", ontology=ONTOLOGY)

    def make_extractor(self, facts):
        class Extractor:
            def __init__(self):
                self.schemas = []

            async def call(self, args, return_type_schema=None, context=None, **kwargs):
                self.schemas.append(return_type_schema)
                message = assistant_message(
                    None, FunctionCall(name="output_formatter", arguments=json.dumps(facts))
                )
                return FunctionResult(ChatResponse(choices=[ChatChoice(message=message)]))

        return Extractor()

    def test_passes_when_ruleset_matches(self):
        """Matching facts leave the response unchanged."""

        class Engine:
            def __init__(self):
                self.facts = None

            async def run(self, facts):
                self.facts = facts
                return ["r1"]

        engine = Engine()
        extractor = self.make_extractor({"Person": [{"name": "Ann"}]})
        step = RulesetsGuardrail([self.ruleset], extractor, engine)
        response = text_response("Ann works at Acme")

        assert asyncio.run(step.call(response)) is response
        assert engine.facts == {"Person": [{"name": "Ann"}]}
        assert extractor.schemas == [ONTOLOGY.to_json_schema()]

    def test_fails_when_ruleset_does_not_match(self):
        """A ruleset missing from the engine's matches is a violation."""

        class Engine:
            async def run(self, facts):
                return []

        step = RulesetsGuardrail([self.ruleset], self.make_extractor({}), Engine())
        with pytest.raises(GuardrailError, match="employment"):
            asyncio.run(step.call(text_response("text")))


class TestOntologySchema:
    """Test ontology to JSON Schema rendering."""

    def test_nodes_and_edges(self):
        """Nodes become arrays of typed objects; edges become tagged relationships."""
        schema = ONTOLOGY.to_json_schema()
        person = schema["properties"]["Person"]["items"]

        assert person["properties"]["age"] == {"type": "integer"}
        assert person["required"] == ["name"]
        relationship = schema["properties"]["relationships"]["items"]
        assert relationship["properties"]["type"] == {"type": "string", "const": "WORKS_AT"}
        assert relationship["required"] == ["source", "target", "type"]

    def test_multiple_edges_use_any_of(self):
        """Several edge types are offered as alternatives."""
        ontology = OntologyGraph(
            edges=[
                OntologyEdge(label="A", source="X", target="Y"),
                OntologyEdge(label="B", source="Y", target="X"),
            ]
        )
        items = ontology.to_json_schema()["properties"]["relationships"]["items"]
        assert len(items["anyOf"]) == 2


class TestInputGuardrails:
    """Test prompt scanning before the model call."""

    def test_scans_joined_messages(self):
        """Every key scans the joined message text."""
        redactor = Redactor()
        callback = RecordingCallback()
        guardrails = InputGuardrails(redactor, ["pii", "toxicity"], callbacks=[callback])
        asyncio.run(guardrails.call([system_message("be nice"), user_message("hello")]))

        assert redactor.scanned == [("pii", "be nice\n\nhello"), ("toxicity", "be nice\n\nhello")]
        assert callback.names() == ["on_input_guardrail_start", "on_input_guardrail_end"]

    def test_violation_raises(self):
        """The first failing key raises GuardrailError."""
        guardrails = InputGuardrails(Redactor(), ["pii"])
        with pytest.raises(GuardrailError, match="pii"):
            asyncio.run(guardrails.call([user_message("forbidden")]))
