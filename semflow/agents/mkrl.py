"""ReAct-style agent: Thought / Action / Action Input / Observation turns."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from langchain_core.agents import AgentFinish
from langchain_core.exceptions import OutputParserException

from semflow.agents.base import AgentServices, BaseAgent, make_observation
from semflow.agents.parsing import parse_agent_output
from semflow.config import get_settings
from semflow.context import CallContext
from semflow.errors import error_list
from semflow.models.chat import (
    ChatPrompt,
    ChatRequest,
    FunctionCall,
    Message,
    assistant_message,
    function_message,
    user_message,
)

logger = logging.getLogger(__name__)

STOP = ["Observation:", "\tObservation:"]

SEMANTIC_FUNCTION_TOOL = "semanticFunction"

DONE = "Done"


@dataclass
class _Turn:
    done: bool
    content: str
    name: str | None = None
    reply: Message | None = None


class MKRLAgent(BaseAgent):
    """Runs model turns until a final answer, or until a budget is spent.

    The run ends with ``"Done"`` once ``max_iterations`` turns have been taken
    or ``max_execution_time`` seconds have elapsed; the clock is checked
    between turns, so a single slow model call is never interrupted.
    """

    template_format = "mustache"

    def __init__(
        self,
        name: str,
        services: AgentServices,
        max_iterations: int | None = None,
        max_execution_time: float | None = None,
        prompt_set_skill: str = "react_plan",
        semantic_function: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            name,
            services,
            semantic_functions=[semantic_function] if semantic_function is not None else None,
            **kwargs,
        )
        settings = get_settings()
        self.max_iterations = max_iterations if max_iterations is not None else settings.agent_max_iterations
        self.max_execution_time = (
            max_execution_time if max_execution_time is not None else settings.agent_max_execution_time
        )
        self.prompt_set_skill = prompt_set_skill
        self.semantic_function = semantic_function
        self.model_params = {**self.model_params, "stop": STOP}

    def _get_functions(self, allowed_tools):
        functions = super()._get_functions(allowed_tools)
        if SEMANTIC_FUNCTION_TOOL in allowed_tools and self.semantic_function is not None:
            functions.append(self.semantic_function.to_function_definition())
        return functions or None

    def _should_continue(self, iterations: int, elapsed: float) -> bool:
        if iterations >= self.max_iterations:
            return False
        if elapsed >= self.max_execution_time:
            return False
        return True

    async def _run(self, goal, allowed_tools, extra, self_evaluate, ctx, context) -> str:
        tool_service = self.services.tool_service
        functions = self._get_functions(allowed_tools)
        args = {
            "content": goal,
            "agent_scratchpad": "",
            "tools": tool_service.get_tools_list(allowed_tools) if tool_service else "",
            "tool_names": tool_service.get_tool_names(allowed_tools) if tool_service else "",
        }
        messages = await self._load_prompts(args, ctx)
        history: list[Message] = []

        iterations = 0
        start = time.monotonic()
        while self._should_continue(iterations, time.monotonic() - start):
            request = ChatRequest(
                model=self.model,
                model_params=self.model_params,
                prompt=ChatPrompt(history=list(history), messages=list(messages)),
                functions=functions if self.use_functions else None,
            )
            ctx.notify("on_evaluate_turn_start", index=iterations, request=request)
            try:
                turn = await self._next(request, extra, ctx, context)
            except Exception as e:
                ctx.notify("on_evaluate_turn_end", index=iterations, errors=error_list(e))
                raise
            ctx.notify("on_evaluate_turn_end", index=iterations, response=turn.content, done=turn.done)
            if turn.done:
                return turn.content

            history.extend(messages)
            if turn.reply is not None:
                history.append(turn.reply)
            if self.use_functions and turn.name:
                messages = [function_message(turn.content, turn.name)]
            else:
                messages = [user_message(turn.content)]
            iterations += 1

        logger.info(
            "agent %s stopped after %d iteration(s) in %.1fs",
            self.name,
            iterations,
            time.monotonic() - start,
        )
        return DONE

    async def _next(
        self,
        request: ChatRequest,
        extra: dict[str, Any],
        ctx: CallContext,
        context: CallContext,
    ) -> _Turn:
        ctx.notify("on_observe_model_start", request=request, provider=self.provider)
        try:
            response = await self.services.model_service.create_chat_completion(self.provider, request)
        except Exception as e:
            ctx.notify("on_observe_model_end", errors=error_list(e))
            raise
        ctx.notify("on_observe_model_end", response=response)

        message = response.message
        if self.use_functions and message.function_call is not None:
            output = await self._call_function(message.function_call, extra, ctx, context)
            return _Turn(False, make_observation(output), message.function_call.name, message)
        return await self._process_response(response.content_text, extra, ctx, context)

    async def _process_response(
        self,
        text: str,
        extra: dict[str, Any],
        ctx: CallContext,
        context: CallContext,
    ) -> _Turn:
        try:
            action = parse_agent_output(text)
        except OutputParserException as e:
            logger.warning("%s", e)
            if e.send_to_llm:
                return _Turn(False, make_observation(e.observation), reply=assistant_message(text))
            self._fail(ctx, e.observation or str(e))

        if isinstance(action, AgentFinish):
            return _Turn(True, action.return_values["output"])

        call = FunctionCall(name=action.tool, arguments=json.dumps({"input": action.tool_input}))
        output = await self._call_function(call, extra, ctx, context)
        return _Turn(False, make_observation(output), action.tool, assistant_message(text))
