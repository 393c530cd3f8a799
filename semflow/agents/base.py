"""Shared agent plumbing: services, tool offering, function dispatch, prompts."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from semflow.callbacks.base import Callback
from semflow.context import CallContext, ensure_context
from semflow.errors import AgentError, error_list
from semflow.models.chat import (
    ChatResponse,
    FunctionCall,
    FunctionDefinition,
    Message,
    MessageRole,
)
from semflow.promptenrichment.pipeline import SERVER_SIDE_EMBEDDING_PROVIDERS
from semflow.promptenrichment.template import PromptTemplate
from semflow.services import (
    EmbeddingService,
    IndexesService,
    ModelService,
    ParserService,
    PromptSetsService,
    ToolService,
    VectorStoreService,
)
from semflow.utils.text import PARA_DELIM

logger = logging.getLogger(__name__)

SEARCH_INDEX_TOOL = "searchIndex"
SEARCH_INDEX_K = 5

SEARCH_INDEX_FUNCTION = FunctionDefinition(
    name=SEARCH_INDEX_TOOL,
    description=(
        "a search engine. useful for when you need to answer questions about "
        "current events. input should be a search query."
    ),
    parameters={
        "type": "object",
        "properties": {"input": {"type": "string", "description": "Input text"}},
        "required": ["input"],
    },
)

INVALID_TOOL_CALL = "Invalid tool call"

# used when a semantic function is called as a tool
FUNCTION_TOOL_PARAMS = {"max_tokens": 1024}


class Agent(Protocol):
    name: str

    async def run(
        self,
        goal: str,
        allowed_tools: list[str] | None = None,
        *,
        extra_function_call_params: dict[str, Any] | None = None,
        self_evaluate: bool = False,
        context: CallContext | None = None,
    ) -> str:
        ...


@dataclass
class AgentServices:
    model_service: ModelService
    tool_service: ToolService | None = None
    prompt_sets_service: PromptSetsService | None = None
    parser_service: ParserService | None = None
    vector_store_service: VectorStoreService | None = None
    embedding_service: EmbeddingService | None = None
    indexes_service: IndexesService | None = None


def make_observation(observation: Any) -> str:
    return f"Observation: {observation}\nThought:"


def response_text(response: Any) -> str:
    """Flatten a callee's response into observation text."""
    if isinstance(response, ChatResponse):
        message = response.message
        if message.function_call is not None:
            return message.function_call.arguments
        return response.content_text
    if isinstance(response, str):
        return response
    if isinstance(response, dict) and isinstance(response.get("content"), str):
        return response["content"]
    return json.dumps(response, default=str)


def schemish(parameters: dict[str, Any] | None) -> str:
    """Compact ``{"arg": "type"}`` rendering of a JSON Schema object."""
    properties = (parameters or {}).get("properties") or {}
    return json.dumps({k: v.get("type", "any") for k, v in properties.items()})


def render_tool_definitions(functions: list[FunctionDefinition] | None) -> str:
    return "\n".join(
        f"{f.name}: {f.description}, args: {schemish(f.parameters)}" for f in functions or []
    )


class BaseAgent:
    """Common state and helpers for the agent loops.

    Subclasses implement ``_run``; ``run`` brackets it with the agent start,
    end and error callbacks. Conversation history is local to each run.

    Args:
        semantic_functions: semantic functions callable as tools
        compositions: compositions callable as tools (those with a request node)
        sub_agents: agents callable as tools with a ``goal`` argument
    """

    prompt_set_skill: str = ""
    template_format: str = "f-string"

    def __init__(
        self,
        name: str,
        services: AgentServices,
        description: str | None = None,
        model: str = "gpt-3.5-turbo",
        provider: str = "openai",
        model_params: dict[str, Any] | None = None,
        workspace_id: int | None = None,
        username: str | None = None,
        use_functions: bool = False,
        semantic_functions: list[Any] | None = None,
        compositions: list[Any] | None = None,
        sub_agents: list[Any] | None = None,
        callbacks: list[Callback] | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.services = services
        self.model = model
        self.provider = provider
        self.model_params = {"max_tokens": 1024, **(model_params or {}), "n": 1}
        self.workspace_id = workspace_id
        self.username = username
        self.use_functions = use_functions
        self.semantic_functions = semantic_functions or []
        self.compositions = compositions or []
        self.sub_agents = sub_agents or []
        self.callbacks = callbacks or []

    async def run(
        self,
        goal: str,
        allowed_tools: list[str] | None = None,
        *,
        extra_function_call_params: dict[str, Any] | None = None,
        self_evaluate: bool = False,
        context: CallContext | None = None,
    ) -> str:
        context = ensure_context(context)
        ctx = context.extend(self.callbacks)
        ctx.notify(
            "on_agent_start",
            name=self.name,
            goal=goal,
            allowed_tools=allowed_tools,
            extra_function_call_params=extra_function_call_params,
            self_evaluate=self_evaluate,
        )
        try:
            response = await self._run(
                goal,
                allowed_tools or [],
                extra_function_call_params or {},
                self_evaluate,
                ctx,
                context,
            )
        except Exception as e:
            ctx.notify("on_agent_end", name=self.name, errors=error_list(e))
            raise
        ctx.notify("on_agent_end", name=self.name, response=response)
        return response

    async def _run(
        self,
        goal: str,
        allowed_tools: list[str],
        extra: dict[str, Any],
        self_evaluate: bool,
        ctx: CallContext,
        context: CallContext,
    ) -> str:
        raise NotImplementedError

    def _fail(self, ctx: CallContext, message: str) -> None:
        ctx.notify("on_agent_error", name=self.name, errors=[{"message": message}])
        raise AgentError(message)

    async def _load_prompts(self, args: dict[str, Any], ctx: CallContext) -> list[Message]:
        """Fill the first prompt set registered for this agent's skill."""
        service = self.services.prompt_sets_service
        if service is None:
            self._fail(ctx, "No prompt sets service configured")
        prompt_sets = await service.get_prompt_sets_by_skill(self.workspace_id, self.prompt_set_skill)
        if not prompt_sets:
            self._fail(ctx, "Prompt not found")
        prompt_set = prompt_sets[0]
        template = PromptTemplate(
            messages=[
                Message(role=MessageRole(p.role or "user"), content=p.prompt)
                for p in prompt_set.prompts
            ],
            template_format=self.template_format,
            prompt_set_id=prompt_set.id,
            prompt_set_name=prompt_set.name,
        )
        return await template.call(args, context=ctx)

    def _get_functions(self, allowed_tools: list[str]) -> list[FunctionDefinition] | None:
        functions: list[FunctionDefinition] = []
        if self.services.tool_service is not None:
            for metadata in self.services.tool_service.get_all_metadata(allowed_tools):
                functions.append(
                    FunctionDefinition(
                        name=metadata["name"],
                        description=metadata.get("description"),
                        parameters=metadata.get("parameters") or {"type": "object", "properties": {}},
                    )
                )
        if SEARCH_INDEX_TOOL in allowed_tools:
            functions.append(SEARCH_INDEX_FUNCTION)
        return functions

    def _find(self, items: list[Any], name: str) -> Any:
        return next((item for item in items if getattr(item, "name", None) == name), None)

    async def _call_function(
        self,
        call: FunctionCall,
        extra: dict[str, Any],
        ctx: CallContext,
        context: CallContext,
    ) -> str:
        """Execute a model-requested call. Failures become an observation."""
        try:
            args = call.parsed_arguments()
        except json.JSONDecodeError as e:
            logger.error("error parsing call arguments for %s: %s", call.name, e)
            return "I don't know how to answer that"
        ctx.notify("on_function_call_start", name=call.name, args=args)
        try:
            response = await self._dispatch(call.name, args, extra, context)
        except Exception as e:
            logger.warning("error calling tool %s: %s", call.name, e)
            ctx.notify("on_function_call_end", name=call.name, errors=error_list(e))
            return INVALID_TOOL_CALL
        ctx.notify("on_function_call_end", name=call.name, response=response)
        return response

    async def _dispatch(
        self, name: str, args: Any, extra: dict[str, Any], context: CallContext
    ) -> str:
        if name == SEARCH_INDEX_TOOL:
            return await self._search_index(args, extra)

        func = self._find(self.semantic_functions, name)
        if func is not None:
            result = await func.call(args, model_params=FUNCTION_TOOL_PARAMS, context=context)
            return response_text(result.response)

        composition = self._find(self.compositions, name)
        if composition is not None:
            result = await composition.call(args, context=context)
            return response_text(result.response)

        agent = self._find(self.sub_agents, name)
        if agent is not None:
            goal = args.get("goal") if isinstance(args, dict) else None
            return await agent.run(goal or json.dumps(args), context=context)

        if self.services.tool_service is None:
            raise AgentError(f"No tool service configured for {name}")
        return response_text(await self.services.tool_service.call(name, args))

    async def _search_index(self, args: dict[str, Any], extra: dict[str, Any]) -> str:
        index_name = extra.get("index_name")
        if self.services.indexes_service is None or self.services.vector_store_service is None:
            raise AgentError("searchIndex requires an indexes and a vector store service")
        index = await self.services.indexes_service.get_index_by_name(index_name)
        if index is None:
            raise AgentError(f"Index not found: {index_name}")
        if not index.vector_store_provider:
            raise AgentError("Only vector stores currently support search")
        params: dict[str, Any] = {"k": SEARCH_INDEX_K}
        if index.vector_store_provider not in SERVER_SIDE_EMBEDDING_PROVIDERS:
            if self.services.embedding_service is None:
                raise AgentError("searchIndex requires an embedding service")
            params["query_embedding"] = await self.services.embedding_service.embed(
                index.embedding_provider, index.embedding_model, args["input"]
            )
        hits = await self.services.vector_store_service.search(
            index.vector_store_provider, index_name, args["input"], None, None, params
        )
        return PARA_DELIM.join(hit.text for hit in hits)
