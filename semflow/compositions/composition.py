"""Composition DAG executor.

Resolution starts at the single output node and recurses through incoming
edges (in edge-list order). Every node is resolved at most once per call; the
per-call cache lives in a ``_Resolution`` and is never shared across calls.
Upstream results are fanned in with ``deep_merge``.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from semflow.callbacks.base import Callback
from semflow.context import CallContext, ensure_context
from semflow.compositions.nodes import (
    INDEX_NODE_TYPES,
    INVOKING_NODE_TYPES,
    AgentNode,
    CompositionNode,
    Edge,
    FunctionNode,
    LoopNode,
    MapperNode,
    Node,
    ToolNode,
)
from semflow.errors import CompositionError, error_list
from semflow.mapping import map_args
from semflow.models.chat import ChatResponse
from semflow.models.services import IndexBuildRequest
from semflow.services import IndexPipelineService, ToolService
from semflow.utils.merge import deep_merge
from semflow.utils.paths import get_path, set_path
from semflow.utils.text import get_input

logger = logging.getLogger(__name__)

JSON_RETURN_TYPE = "application/json"


@dataclass
class CompositionResult:
    response: Any
    index_result: Any = None


@dataclass
class _Resolution:
    """State for one ``Composition.call``."""

    args: Any
    model_key: str | None
    model_params: dict[str, Any] | None
    is_batch: bool
    ctx: CallContext
    context: CallContext
    cache: dict[str, Any] = field(default_factory=dict)
    in_progress: set[str] = field(default_factory=set)
    index_request: IndexBuildRequest = field(default_factory=IndexBuildRequest)


def function_result_to_args(func: Any, response: Any) -> Any:
    """Turn a semantic function response into mergeable node output."""
    if not isinstance(response, ChatResponse):
        return response if isinstance(response, dict) else {"content": response}
    message = response.message
    if getattr(func, "return_type", None) == JSON_RETURN_TYPE:
        try:
            if getattr(func, "return_type_schema", None) and message.function_call:
                return json.loads(message.function_call.arguments)
            return json.loads(response.content_text)
        except json.JSONDecodeError as e:
            logger.error("error parsing json response from %s: %s", getattr(func, "name", func), e)
            return {}
    return {"content": message.content}


class Composition:
    """A named DAG of nodes.

    Args:
        tool_service: resolves ``toolNode`` tool names
        index_pipeline_service: runs the index build collected from RAG nodes
    """

    def __init__(
        self,
        name: str,
        nodes: list[Node],
        edges: list[Edge],
        tool_service: ToolService | None = None,
        index_pipeline_service: IndexPipelineService | None = None,
        callbacks: list[Callback] | None = None,
    ) -> None:
        self.name = name
        self.nodes = nodes
        self.edges = edges
        self.tool_service = tool_service
        self.index_pipeline_service = index_pipeline_service
        self.callbacks = callbacks or []
        self._nodes_by_id: dict[str, Node] = {node.id: node for node in nodes}

    def _fail(self, ctx: CallContext, message: str) -> None:
        ctx.notify("on_composition_error", name=self.name, errors=[{"message": message}])
        raise CompositionError(message)

    def get_output_node(self, ctx: CallContext) -> Node:
        outputs = [node for node in self.nodes if node.type == "outputNode"]
        if not outputs:
            self._fail(ctx, "No output node found")
        if len(outputs) > 1:
            self._fail(ctx, "Multiple output nodes found")
        return outputs[0]

    def check_edges(self, output: Node, ctx: CallContext) -> None:
        """Fail unless every edge joins known nodes and one of them feeds ``output``."""
        for e in self.edges:
            if e.source not in self._nodes_by_id:
                self._fail(ctx, f"Source node ({e.source}) not found.")
            if e.target not in self._nodes_by_id:
                self._fail(ctx, f"Target node ({e.target}) not found.")
        if not any(e.target == output.id for e in self.edges):
            self._fail(ctx, f"Output node ({output.id}) has no incoming edge")

    def get_sources(self, node: Node) -> list[Node]:
        return [self._nodes_by_id[e.source] for e in self.edges if e.target == node.id]

    async def call(
        self,
        args: Any,
        model_key: str | None = None,
        model_params: dict[str, Any] | None = None,
        is_batch: bool = False,
        context: CallContext | None = None,
    ) -> CompositionResult:
        context = ensure_context(context)
        ctx = context.extend(self.callbacks)
        ctx.notify(
            "on_composition_start",
            name=self.name,
            args=args,
            model_key=model_key,
            model_params=model_params,
            is_batch=is_batch,
        )
        try:
            output = self.get_output_node(ctx)
            self.check_edges(output, ctx)
            res = _Resolution(args, model_key, model_params, is_batch, ctx, context)
            response = await self._resolve(output, res)
            index_result = await self._run_index_pipeline(res)
        except Exception as e:
            ctx.notify("on_composition_end", name=self.name, errors=error_list(e))
            raise
        ctx.notify("on_composition_end", name=self.name, response=response)
        return CompositionResult(response, index_result)

    async def _resolve(self, node: Node, res: _Resolution) -> Any:
        if node.id in res.cache:
            return res.cache[node.id]
        if node.id in res.in_progress:
            self._fail(res.ctx, f"Cycle detected at node {node.id}")
        res.in_progress.add(node.id)

        if node.type in ("requestNode", "scheduleNode"):
            result = res.args
        else:
            sources = self.get_sources(node)
            merged: Any = {}
            for source in sources:
                value = await self._resolve(source, res)
                if isinstance(node, MapperNode):
                    value = self._map(node, source, value, res)
                merged = deep_merge(merged, value)
            logger.debug("%s %s merged: %s", node.type, node.id, merged)

            if node.type in INDEX_NODE_TYPES:
                self._register_index_config(node, res)
                result = {}
            elif node.type in INVOKING_NODE_TYPES:
                loop = next((s for s in sources if isinstance(s, LoopNode)), None)
                if loop is None:
                    result = await self._invoke(node, merged, res)
                else:
                    result = await self._invoke_loop(node, loop, merged, res)
            else:
                # loop, joiner, mapper and output nodes pass the merge through
                result = merged

        res.in_progress.discard(node.id)
        res.cache[node.id] = result
        return result

    def _map(self, node: MapperNode, source_node: Node, value: Any, res: _Resolution) -> Any:
        source: dict[str, Any] = {"type": source_node.type.removesuffix("Node")}
        if isinstance(source_node, FunctionNode):
            source["name"] = getattr(source_node.func, "name", None)
        return map_args(node.mapping_template, value, res.ctx, res.is_batch, source=source)

    async def _invoke_loop(self, node: Node, loop: LoopNode, merged: Any, res: _Resolution) -> Any:
        items = get_path(merged, loop.loop_var)
        if not isinstance(items, list):
            self._fail(res.ctx, f"Loop variable {loop.loop_var} is not a list")
        results = []
        for item in items:
            args = set_path(copy.deepcopy(merged), loop.loop_var, item)
            results.append(await self._invoke(node, args, res))
        return {loop.aggregation_var: results}

    async def _invoke(self, node: Node, args: Any, res: _Resolution) -> Any:
        if isinstance(node, FunctionNode):
            result = await node.func.call(
                args,
                model_key=res.model_key,
                model_params=res.model_params,
                context=res.context,
            )
            return function_result_to_args(node.func, result.response)
        if isinstance(node, ToolNode):
            if self.tool_service is None:
                self._fail(res.ctx, f"No tool service configured for tool {node.tool}")
            response = await self.tool_service.call(node.tool, args)
            return {"response": response}
        if isinstance(node, CompositionNode):
            result = await node.composition.call(
                args,
                model_key=res.model_key,
                model_params=res.model_params,
                context=res.context,
            )
            return result.response
        if isinstance(node, AgentNode):
            goal = args.get("goal") if isinstance(args, dict) else None
            goal = goal or get_input(args) or json.dumps(args)
            answer = await node.agent.run(goal, node.allowed_tools, context=res.context)
            return {"content": answer}
        raise CompositionError(f"node type {node.type} cannot be invoked")

    def _register_index_config(self, node: Node, res: _Resolution) -> None:
        request = res.index_request
        if node.type == "sourceNode":
            request.data_source = node.data_source
        elif node.type == "indexNode":
            request.index = node.index
        elif node.type == "loaderNode":
            request.loader = node.loader
        elif node.type == "extractorNode":
            request.extractors.append(node.extractor)
        elif node.type == "embeddingNode":
            request.embedding_model = node.embedding_model
        elif node.type == "vectorStoreNode":
            request.vector_store_provider = node.provider
            request.new_index_name = node.new_index_name
        elif node.type == "graphStoreNode":
            request.graph_store_provider = node.provider

    async def _run_index_pipeline(self, res: _Resolution) -> Any:
        request = res.index_request
        if not request.is_complete:
            return None
        if self.index_pipeline_service is None:
            self._fail(res.ctx, "No index pipeline service configured")
        res.ctx.notify("on_index_pipeline_start", request=request)
        try:
            result = await self.index_pipeline_service.run(request)
        except Exception as e:
            res.ctx.notify("on_index_pipeline_end", errors=error_list(e))
            raise
        res.ctx.notify("on_index_pipeline_end", response=result)
        return result
