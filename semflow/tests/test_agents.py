"""Tests for the agent loops, output parsing and the agent factory."""

import asyncio
import json

import pytest
from langchain_core.agents import AgentAction, AgentFinish
from langchain_core.exceptions import OutputParserException
from pydantic import ValidationError

from semflow.agents import (
    AgentServices,
    MKRLAgent,
    PlanAndExecuteAgent,
    create_agent,
    parse_agent_output,
    parse_numbered_list,
)
from semflow.agents.plan_execute import PLAN_STOP, is_unknown
from semflow.context import CallContext
from semflow.errors import AgentError
from semflow.models.chat import (
    ChatChoice,
    ChatResponse,
    FunctionCall,
    MessageRole,
    assistant_message,
    text_response,
)
from semflow.models.services import ParseResult, PromptSet, PromptSetMessage


class ScriptedModelService:
    """Replays responses in order; repeats the last one when exhausted."""

    def __init__(self, *responses):
        self.responses = [text_response(r) if isinstance(r, str) else r for r in responses]
        self.requests = []

    async def create_chat_completion(self, provider, request):
        self.requests.append((provider, request))
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


class FakePromptSets:
    def __init__(self, prompt_sets):
        self.prompt_sets = prompt_sets
        self.lookups = []

    async def get_prompt_sets_by_skill(self, workspace_id, skill):
        self.lookups.append(skill)
        return [ps for ps in self.prompt_sets if ps.skill == skill]


class FakeTools:
    def __init__(self, results=None, fail=False):
        self.results = results or {}
        self.fail = fail
        self.calls = []

    async def call(self, name, args):
        self.calls.append((name, args))
        if self.fail:
            raise RuntimeError("tool exploded")
        return self.results.get(name, "nothing")

    def get_tools_list(self, names=None):
        return "weather: current weather for a city"

    def get_tool_names(self, names=None):
        return "weather"

    def get_all_metadata(self, names=None):
        return [
            {
                "name": "weather",
                "description": "current weather for a city",
                "parameters": {"type": "object", "properties": {"input": {"type": "string"}}},
            }
        ]


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


REACT_PROMPTS = PromptSet(
    id=1,
    name="react",
    skill="react_plan",
    prompts=[
        PromptSetMessage(role="system", prompt="You can use these tools: {{tools}}"),
        PromptSetMessage(role="user", prompt="{{content}} {{agent_scratchpad}}"),
    ],
)

PLAN_PROMPTS = PromptSet(
    id=2,
    name="planner",
    skill="plan",
    prompts=[
        PromptSetMessage(role="system", prompt="Tools:\n{tool_definitions}"),
        PromptSetMessage(role="user", prompt="Make a plan for: {content}"),
    ],
)


def function_call_response(name, arguments):
    return ChatResponse(
        choices=[ChatChoice(message=assistant_message(None, FunctionCall(name=name, arguments=arguments)))]
    )


def make_services(model_service, tools=None, parser=None):
    return AgentServices(
        model_service=model_service,
        tool_service=tools or FakeTools({"weather": "72F"}),
        prompt_sets_service=FakePromptSets([REACT_PROMPTS, PLAN_PROMPTS]),
        parser_service=parser,
    )


class TestParseAgentOutput:
    """Test the ReAct output grammar."""

    def test_action(self):
        """Action and Action Input are extracted and quotes trimmed."""
        action = parse_agent_output('Thought: look\nAction: weather\nAction Input: "Oslo"')
        assert isinstance(action, AgentAction)
        assert action.tool == "weather"
        assert action.tool_input == "Oslo"

    def test_sql_keeps_quotes(self):
        """SQL action inputs keep their quotes."""
        action = parse_agent_output("Action: sql\nAction Input: SELECT * FROM t WHERE a = \"x\"")
        assert action.tool_input.endswith('"x"')

    def test_final_answer(self):
        """Text after the final answer marker is the output."""
        finish = parse_agent_output("Thought: done\nFinal Answer: 42")
        assert isinstance(finish, AgentFinish)
        assert finish.return_values == {"output": "42"}

    def test_both_markers_is_not_retriable(self):
        """An action plus a final answer is ambiguous."""
        with pytest.raises(OutputParserException) as info:
            parse_agent_output("Action: weather\nAction Input: Oslo\nFinal Answer: 72F")
        assert info.value.send_to_llm is False

    def test_missing_action_is_retriable(self):
        """Free text without an action is fed back to the model."""
        with pytest.raises(OutputParserException) as info:
            parse_agent_output("I am not sure what to do")
        assert info.value.send_to_llm is True
        assert "Missing \"Action:\"" in info.value.observation

    def test_missing_action_input_is_retriable(self):
        """An action without input is fed back to the model."""
        with pytest.raises(OutputParserException) as info:
            parse_agent_output("Action: weather")
        assert info.value.send_to_llm is True
        assert "Action Input" in info.value.observation


class TestParseNumberedList:
    """Test plan parsing."""

    def test_items_in_order(self):
        """Both '1.' and '2)' styles are recognised; other lines are skipped."""
        text = "Plan:\n1. Look up the weather\n2) Summarize it\n\nThat is all."
        assert parse_numbered_list(text) == ["Look up the weather", "Summarize it"]

    def test_no_items(self):
        """Text without a list yields no steps."""
        assert parse_numbered_list("nothing to do") == []


class TestMKRLAgent:
    """Test the ReAct loop."""

    def test_action_then_final_answer(self):
        """A tool observation is fed back and the final answer returned."""
        model = ScriptedModelService(
            "Thought: check\nAction: weather\nAction Input: Oslo",
            "Thought: I know\nFinal Answer: It is 72F",
        )
        tools = FakeTools({"weather": "72F"})
        agent = MKRLAgent("react", make_services(model, tools))
        answer = asyncio.run(agent.run("What is the weather in Oslo", ["weather"]))

        assert answer == "It is 72F"
        assert tools.calls == [("weather", {"input": "Oslo"})]
        _, second = model.requests[1]
        assert second.prompt.messages[0].content == "Observation: 72F\nThought:"
        assert second.prompt.history[-1].role == MessageRole.assistant
        assert second.model_params["stop"] == ["Observation:", "\tObservation:"]

    def test_prompt_set_is_filled(self):
        """The react_plan prompt set is filled with goal and tool list."""
        model = ScriptedModelService("Final Answer: done")
        agent = MKRLAgent("react", make_services(model))
        asyncio.run(agent.run("Say done", ["weather"]))

        _, request = model.requests[0]
        system, user = request.prompt.messages
        assert system.content == "You can use these tools: weather: current weather for a city"
        assert user.content.strip() == "Say done"

    def test_terminates_within_max_iterations(self):
        """Unparseable output loops at most max_iterations times, then returns Done."""
        model = ScriptedModelService("I keep rambling without a format")
        agent = MKRLAgent("react", make_services(model), max_iterations=3)
        callback = RecordingCallback()
        answer = asyncio.run(agent.run("anything", [], context=CallContext(callbacks=[callback])))

        assert answer == "Done"
        assert len(model.requests) == 3
        assert callback.hooks[-1] == ("on_agent_end", {"name": "react", "response": "Done"})

    def test_execution_time_bound(self):
        """A spent time budget stops the loop before any model call."""
        model = ScriptedModelService("Final Answer: never")
        agent = MKRLAgent("react", make_services(model), max_execution_time=0)
        assert asyncio.run(agent.run("anything", [])) == "Done"
        assert model.requests == []

    def test_ambiguous_output_is_an_error(self):
        """Output with both an action and an answer fails the run."""
        model = ScriptedModelService("Action: weather\nAction Input: Oslo\nFinal Answer: sunny")
        callback = RecordingCallback()
        agent = MKRLAgent("react", make_services(model), callbacks=[callback])
        with pytest.raises(AgentError):
            asyncio.run(agent.run("weather?", ["weather"]))

        assert "on_agent_error" in callback.names()
        name, payload = callback.hooks[-1]
        assert name == "on_agent_end"
        assert payload["errors"]

    def test_tool_failure_becomes_observation(self):
        """A failing tool is reported to the model, not raised."""
        model = ScriptedModelService(
            "Action: weather\nAction Input: Oslo",
            "Final Answer: could not check",
        )
        agent = MKRLAgent("react", make_services(model, FakeTools(fail=True)))
        answer = asyncio.run(agent.run("weather?", ["weather"]))

        assert answer == "could not check"
        _, second = model.requests[1]
        assert second.prompt.messages[0].content == "Observation: Invalid tool call\nThought:"

    def test_function_calling(self):
        """With use_functions, function calls run tools and reply as function messages."""
        model = ScriptedModelService(
            function_call_response("weather", json.dumps({"input": "Oslo"})),
            "Final Answer: 72F",
        )
        tools = FakeTools({"weather": "72F"})
        agent = MKRLAgent("react", make_services(model, tools), use_functions=True)
        answer = asyncio.run(agent.run("weather?", ["weather"]))

        assert answer == "72F"
        _, first = model.requests[0]
        assert [f.name for f in first.functions] == ["weather"]
        _, second = model.requests[1]
        reply = second.prompt.messages[0]
        assert reply.role == MessageRole.function
        assert reply.name == "weather"

    def test_missing_prompt_set(self):
        """An agent without a prompt set for its skill fails."""
        model = ScriptedModelService("Final Answer: x")
        agent = MKRLAgent("react", make_services(model), prompt_set_skill="unknown")
        with pytest.raises(AgentError, match="Prompt not found"):
            asyncio.run(agent.run("x", []))

    def test_history_is_per_run(self):
        """Two runs on one agent do not share conversation history."""
        model = ScriptedModelService("Final Answer: ok")
        agent = MKRLAgent("react", make_services(model))
        asyncio.run(agent.run("first", []))
        asyncio.run(agent.run("second", []))

        _, request = model.requests[1]
        assert request.prompt.history == []


class TestPlanAndExecuteAgent:
    """Test plan generation and step execution."""

    def test_plan_then_steps(self):
        """Each plan step gets one model turn; the last step's content is the answer."""
        model = ScriptedModelService(
            "1. Find the city\n2. Describe it",
            "The city is Oslo",
            "Oslo is the capital of Norway",
        )
        callback = RecordingCallback()
        agent = PlanAndExecuteAgent("planner", make_services(model), callbacks=[callback])
        answer = asyncio.run(agent.run("Tell me about a city", ["weather"]))

        assert answer == "Oslo is the capital of Norway"
        _, plan_request = model.requests[0]
        assert plan_request.model_params["stop"] == PLAN_STOP
        assert "weather: current weather for a city" in plan_request.prompt.messages[0].content
        _, step_two = model.requests[2]
        content = step_two.prompt.messages[0].content
        assert "Previous steps:\n1. Find the city\nThe city is Oslo" in content
        assert "Current objective: Describe it" in content

        names = callback.names()
        assert names.index("on_parse_plan") < names.index("on_execute_plan_start")
        assert names.count("on_evaluate_step_start") == 2
        assert names[-1] == "on_agent_end"

    def test_parser_service(self):
        """A configured parser service turns the plan text into steps."""

        class Parser:
            def __init__(self):
                self.keys = []

            async def parse(self, key, text):
                self.keys.append(key)
                return ParseResult(json=["only step"])

        parser = Parser()
        model = ScriptedModelService("whatever the plan says", "done")
        agent = PlanAndExecuteAgent("planner", make_services(model, parser=parser))
        assert asyncio.run(agent.run("goal", [])) == "done"
        assert parser.keys == ["numberedlist"]

    def test_empty_plan(self):
        """A plan with no steps fails the run."""
        model = ScriptedModelService("I cannot plan this")
        agent = PlanAndExecuteAgent("planner", make_services(model))
        with pytest.raises(AgentError, match="Plan is empty"):
            asyncio.run(agent.run("goal", []))

    def test_function_call_step(self):
        """A step that calls a function takes the tool output as its result."""
        model = ScriptedModelService(
            "1. Check the weather",
            function_call_response("weather", json.dumps({"input": "Oslo"})),
        )
        tools = FakeTools({"weather": "72F"})
        agent = PlanAndExecuteAgent("planner", make_services(model, tools), use_functions=True)
        answer = asyncio.run(agent.run("weather in Oslo", ["weather"]))

        assert answer == "72F"
        assert tools.calls == [("weather", {"input": "Oslo"})]

    def test_self_evaluation_retries_once(self):
        """An 'I don't know' verdict repeats the observation once, then accepts it."""
        model = ScriptedModelService(
            "1. Check the weather",
            function_call_response("weather", json.dumps({"input": "Oslo"})),
            "I don't know.",
            "I don't know.",
        )
        tools = FakeTools({"weather": "72F"})
        agent = PlanAndExecuteAgent("planner", make_services(model, tools), use_functions=True)
        answer = asyncio.run(agent.run("weather in Oslo", ["weather"], self_evaluate=True))

        assert answer == "72F"
        assert len(tools.calls) == 2
        oracle_calls = [r for p, r in model.requests if r.model == "gpt-4"]
        assert len(oracle_calls) == 2

    def test_sub_agents_and_functions_are_offered(self):
        """Sub-agents and semantic functions become callable functions."""

        class SubAgent:
            name = "researcher"
            description = "does research"

            async def run(self, goal, allowed_tools=None, **kwargs):
                return "research for " + goal

        model = ScriptedModelService(
            "1. Research",
            function_call_response("researcher", json.dumps({"goal": "Oslo"})),
        )
        agent = PlanAndExecuteAgent(
            "planner", make_services(model), sub_agents=[SubAgent()], use_functions=True
        )
        answer = asyncio.run(agent.run("goal", []))

        assert answer == "research for Oslo"
        _, step = model.requests[1]
        assert "researcher" in [f.name for f in step.functions]

    def test_is_unknown(self):
        """The oracle's refusal is recognised with or without a period."""
        assert is_unknown("I don't know.")
        assert is_unknown(" I don't know ")
        assert not is_unknown("72F")


class TestCreateAgent:
    """Test building agents from tagged configs."""

    def setup_method(self):
        self.services = make_services(ScriptedModelService("Final Answer: x"))

    def test_mkrl_from_dict(self):
        """kind=mkrl builds a ReAct agent with its budgets."""
        agent = create_agent(
            {"kind": "mkrl", "name": "react", "max_iterations": 2, "model": "gpt-4o"},
            self.services,
        )
        assert isinstance(agent, MKRLAgent)
        assert agent.max_iterations == 2
        assert agent.model == "gpt-4o"

    def test_plan_and_execute_from_dict(self):
        """kind=plan_and_execute builds a planning agent."""
        agent = create_agent(
            {"kind": "plan_and_execute", "name": "planner", "evaluation_model": "gpt-4o"},
            self.services,
        )
        assert isinstance(agent, PlanAndExecuteAgent)
        assert agent.evaluation_model == "gpt-4o"

    def test_extras_are_passed(self):
        """Extras such as callbacks reach the agent."""
        callback = RecordingCallback()
        agent = create_agent({"kind": "mkrl", "name": "react"}, self.services, callbacks=[callback])
        assert agent.callbacks == [callback]

    def test_unknown_kind(self):
        """Unknown kinds are rejected by validation."""
        with pytest.raises(ValidationError):
            create_agent({"kind": "assistant", "name": "x"}, self.services)
