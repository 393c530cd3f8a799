"""Plan-and-Execute agent: draft a numbered plan, then work through it."""

from __future__ import annotations

import json
import logging
from typing import Any

from semflow.agents.base import AgentServices, BaseAgent, render_tool_definitions
from semflow.agents.parsing import parse_numbered_list
from semflow.context import CallContext
from semflow.errors import ParserError, error_list
from semflow.models.agent import Step
from semflow.models.chat import (
    ChatPrompt,
    ChatRequest,
    ChatResponse,
    FunctionCall,
    FunctionDefinition,
    Message,
    assistant_message,
    function_message,
    text_response,
    user_message,
)
from semflow.utils.text import PARA_DELIM

logger = logging.getLogger(__name__)

PLAN_OUTPUT_PARSER = "numberedlist"
PLAN_STOP = ["<END_OF_PLAN>"]
STEP_STOP = ["Observation:", "\tObservation:", "\nObservation:"]

MAX_SELF_EVALUATION_RETRIES = 1

ORACLE_PROMPT = """You are an oracle providing direct answers to questions. Answer the question below. Just respond with the answer or I don't know.

{response}

Question:
{question}

Answer:"""

UNKNOWN_ANSWER = "I don't know"

SUB_AGENT_PARAMETERS = {
    "type": "object",
    "properties": {
        "goal": {
            "type": "string",
            "description": "The goal that the agent is tasked to achieve.",
        }
    },
}


def get_step_content(
    previous_steps: list[Step],
    current_step: str,
    call: FunctionCall | None = None,
    function_output: str | None = None,
) -> str:
    """User turn for one plan step, including prior step results."""
    contents = []
    if previous_steps:
        listing = "\n".join(f"{i}. {step}" for i, step in enumerate(previous_steps, start=1))
        contents.append("Previous steps:\n" + listing)
    contents.append("Current objective: " + current_step)
    if call is not None:
        try:
            action_input = call.parsed_arguments().get("input")
        except (json.JSONDecodeError, AttributeError):
            action_input = call.arguments
        action = json.dumps({"action": call.name, "action_input": action_input}, indent=2)
        contents.extend(
            [
                "This was your previous work (but I haven't seen any of it! I only "
                "see what you return as final answer):\nAction:\n```\n" + action + "\n```",
                f"Observation: {function_output}\n",
                "Thought:",
            ]
        )
    return PARA_DELIM.join(contents)


def is_unknown(answer: str) -> bool:
    return answer.strip().rstrip(".").strip() == UNKNOWN_ANSWER


class PlanAndExecuteAgent(BaseAgent):
    """Generates a plan with one model call, then runs one model turn per step.

    When a step's model turn requests a function call, the call's output
    becomes the step result. With ``self_evaluate``, an oracle model checks
    whether that output answers the step; an ``I don't know`` verdict triggers
    at most ``MAX_SELF_EVALUATION_RETRIES`` further observations, and the last
    one is accepted regardless.
    """

    template_format = "f-string"

    def __init__(
        self,
        name: str,
        services: AgentServices,
        prompt_set_skill: str = "plan",
        evaluation_model: str = "gpt-4",
        evaluation_provider: str = "openai",
        **kwargs: Any,
    ) -> None:
        super().__init__(name, services, **kwargs)
        self.prompt_set_skill = prompt_set_skill
        self.evaluation_model = evaluation_model
        self.evaluation_provider = evaluation_provider

    def _get_functions(self, allowed_tools):
        functions = super()._get_functions(allowed_tools)
        for agent in self.sub_agents:
            functions.append(
                FunctionDefinition(
                    name=agent.name,
                    description=getattr(agent, "description", None),
                    parameters=SUB_AGENT_PARAMETERS,
                )
            )
        for func in self.semantic_functions:
            functions.append(func.to_function_definition())
        for composition in self.compositions:
            request = next((n for n in composition.nodes if n.type == "requestNode"), None)
            if request is not None:
                functions.append(
                    FunctionDefinition(
                        name=composition.name,
                        description=getattr(composition, "description", None),
                        parameters=request.args_schema or {"type": "object", "properties": {}},
                    )
                )
        return functions or None

    async def _run(self, goal, allowed_tools, extra, self_evaluate, ctx, context) -> str:
        functions = self._get_functions(allowed_tools)
        history: list[Message] = []
        args = {"content": goal, "tool_definitions": render_tool_definitions(functions)}
        plan = await self._get_plan(args, history, ctx)

        ctx.notify("on_execute_plan_start", plan=plan)
        params = {**self.model_params, "stop": STEP_STOP}
        previous_steps: list[Step] = []
        response: ChatResponse | None = None
        try:
            for index, step in enumerate(plan, start=1):
                message = user_message(get_step_content(previous_steps, step))
                request = ChatRequest(
                    model=self.model,
                    model_params=params,
                    prompt=ChatPrompt(history=list(history), messages=[message]),
                    functions=functions,
                )
                history.append(message)
                ctx.notify("on_evaluate_step_start", step=step, index=index, request=request)
                try:
                    response = await self.services.model_service.create_chat_completion(
                        self.provider, request
                    )
                    call = response.message.function_call
                    if call is not None:
                        response = await self._make_observation(
                            step, call, extra, previous_steps, history, self_evaluate, ctx, context
                        )
                except Exception as e:
                    ctx.notify("on_evaluate_step_end", index=index, errors=error_list(e))
                    raise
                ctx.notify("on_evaluate_step_end", index=index, response=response)
                previous_steps.append(Step(objective=step, result=response.content_text))
        except Exception as e:
            ctx.notify("on_execute_plan_end", errors=error_list(e))
            raise
        ctx.notify("on_execute_plan_end", response=response)
        return response.content_text

    async def _get_plan(self, args: dict[str, Any], history: list[Message], ctx: CallContext) -> list[str]:
        messages = await self._load_prompts(args, ctx)
        request = ChatRequest(
            model=self.model,
            model_params={**self.model_params, "stop": PLAN_STOP},
            prompt=ChatPrompt(messages=messages),
        )
        ctx.notify("on_model_start_plan", request=request, provider=self.provider)
        try:
            response = await self.services.model_service.create_chat_completion(self.provider, request)
            content = response.content_text
            history.append(assistant_message(content))
            plan = await self._parse_plan(content, ctx)
        except Exception as e:
            ctx.notify("on_model_end_plan", errors=error_list(e))
            raise
        ctx.notify("on_model_end_plan", response=plan)
        if not plan:
            self._fail(ctx, "Plan is empty")
        return plan

    async def _parse_plan(self, content: str, ctx: CallContext) -> list[str]:
        parser = self.services.parser_service
        if parser is None:
            plan = parse_numbered_list(content)
        else:
            result = await parser.parse(PLAN_OUTPUT_PARSER, content)
            if result.error:
                raise ParserError(result.error)
            plan = [str(step) for step in result.json_ or []]
        ctx.notify("on_parse_plan", content=content, plan=plan)
        return plan

    async def _make_observation(
        self,
        step: str,
        call: FunctionCall,
        extra: dict[str, Any],
        previous_steps: list[Step],
        history: list[Message],
        self_evaluate: bool,
        ctx: CallContext,
        context: CallContext,
        retry_count: int = 0,
    ) -> ChatResponse:
        output = await self._call_function(call, extra, ctx, context)
        if self.use_functions and self.provider == "openai":
            content = output
        else:
            content = get_step_content(previous_steps, step, call, output)
        history.append(function_message(content, call.name))
        response = text_response(content, self.model)

        if self_evaluate:
            valid = await self._evaluate_response(step, content, ctx)
            if not valid and retry_count < MAX_SELF_EVALUATION_RETRIES:
                return await self._make_observation(
                    step, call, extra, previous_steps, history, self_evaluate, ctx, context,
                    retry_count + 1,
                )
        return response

    async def _evaluate_response(self, question: str, response: str, ctx: CallContext) -> bool:
        """Ask the oracle model whether ``response`` answers ``question``."""
        request = ChatRequest(
            model=self.evaluation_model,
            model_params={"max_tokens": 5, "n": 1},
            prompt=ChatPrompt(
                messages=[user_message(ORACLE_PROMPT.format(response=response, question=question))]
            ),
        )
        ctx.notify("on_evaluate_response_start", question=question, response=response, request=request)
        try:
            result = await self.services.model_service.create_chat_completion(
                self.evaluation_provider, request
            )
        except Exception as e:
            ctx.notify("on_evaluate_response_end", errors=error_list(e))
            raise
        answer = result.content_text
        valid = not is_unknown(answer)
        ctx.notify("on_evaluate_response_end", valid=valid, response=answer)
        return valid
