"""Composition graph nodes and edges.

Nodes are immutable once a composition is assembled. Each node kind is a
pydantic model tagged by ``type``; ``Node`` is the discriminated union.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class _Node(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str


class RequestNode(_Node):
    """Leaf that injects the composition's call arguments."""

    type: Literal["requestNode"] = "requestNode"
    args_schema: dict[str, Any] | None = None


class ScheduleNode(_Node):
    type: Literal["scheduleNode"] = "scheduleNode"
    schedule: str | None = None


class FunctionNode(_Node):
    type: Literal["functionNode"] = "functionNode"
    func: Any


class ToolNode(_Node):
    type: Literal["toolNode"] = "toolNode"
    tool: str


class CompositionNode(_Node):
    type: Literal["compositionNode"] = "compositionNode"
    composition: Any


class AgentNode(_Node):
    type: Literal["agentNode"] = "agentNode"
    agent: Any
    allowed_tools: list[str] | None = None


class MapperNode(_Node):
    """Reshapes each upstream payload with a mapping template."""

    type: Literal["mapperNode"] = "mapperNode"
    mapping_template: Any


class LoopNode(_Node):
    """Marks ``loop_var`` as the iterable for the downstream node.

    The downstream node runs once per element and its results are collected
    under ``aggregation_var``.
    """

    type: Literal["loopNode"] = "loopNode"
    loop_var: str
    aggregation_var: str


class JoinerNode(_Node):
    type: Literal["joinerNode"] = "joinerNode"


class OutputNode(_Node):
    type: Literal["outputNode"] = "outputNode"


# index build configuration

class SourceNode(_Node):
    type: Literal["sourceNode"] = "sourceNode"
    data_source: Any


class IndexNode(_Node):
    type: Literal["indexNode"] = "indexNode"
    index: Any


class LoaderNode(_Node):
    type: Literal["loaderNode"] = "loaderNode"
    loader: dict[str, Any]


class ExtractorNode(_Node):
    type: Literal["extractorNode"] = "extractorNode"
    extractor: dict[str, Any]


class EmbeddingNode(_Node):
    type: Literal["embeddingNode"] = "embeddingNode"
    embedding_model: dict[str, Any]


class VectorStoreNode(_Node):
    type: Literal["vectorStoreNode"] = "vectorStoreNode"
    provider: str
    new_index_name: str | None = None


class GraphStoreNode(_Node):
    type: Literal["graphStoreNode"] = "graphStoreNode"
    provider: str


Node = Annotated[
    Union[
        RequestNode,
        ScheduleNode,
        FunctionNode,
        ToolNode,
        CompositionNode,
        AgentNode,
        MapperNode,
        LoopNode,
        JoinerNode,
        OutputNode,
        SourceNode,
        IndexNode,
        LoaderNode,
        ExtractorNode,
        EmbeddingNode,
        VectorStoreNode,
        GraphStoreNode,
    ],
    Field(discriminator="type"),
]

INVOKING_NODE_TYPES = {"functionNode", "toolNode", "compositionNode", "agentNode"}

INDEX_NODE_TYPES = {
    "sourceNode",
    "indexNode",
    "loaderNode",
    "extractorNode",
    "embeddingNode",
    "vectorStoreNode",
    "graphStoreNode",
}


class Edge(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    source: str
    target: str
    source_handle: str | None = None


def request_node(id: str, args_schema: dict[str, Any] | None = None) -> RequestNode:
    return RequestNode(id=id, args_schema=args_schema)


def schedule_node(id: str, schedule: str | None = None) -> ScheduleNode:
    return ScheduleNode(id=id, schedule=schedule)


def function_node(id: str, func: Any) -> FunctionNode:
    return FunctionNode(id=id, func=func)


def tool_node(id: str, tool: str) -> ToolNode:
    return ToolNode(id=id, tool=tool)


def composition_node(id: str, composition: Any) -> CompositionNode:
    return CompositionNode(id=id, composition=composition)


def agent_node(id: str, agent: Any, allowed_tools: list[str] | None = None) -> AgentNode:
    return AgentNode(id=id, agent=agent, allowed_tools=allowed_tools)


def mapper_node(id: str, mapping_template: Any) -> MapperNode:
    return MapperNode(id=id, mapping_template=mapping_template)


def loop_node(id: str, loop_var: str, aggregation_var: str) -> LoopNode:
    return LoopNode(id=id, loop_var=loop_var, aggregation_var=aggregation_var)


def joiner_node(id: str) -> JoinerNode:
    return JoinerNode(id=id)


def output_node(id: str) -> OutputNode:
    return OutputNode(id=id)


def source_node(id: str, data_source: Any) -> SourceNode:
    return SourceNode(id=id, data_source=data_source)


def index_node(id: str, index: Any) -> IndexNode:
    return IndexNode(id=id, index=index)


def loader_node(id: str, loader: dict[str, Any]) -> LoaderNode:
    return LoaderNode(id=id, loader=loader)


def extractor_node(id: str, extractor: dict[str, Any]) -> ExtractorNode:
    return ExtractorNode(id=id, extractor=extractor)


def embedding_node(id: str, embedding_model: dict[str, Any]) -> EmbeddingNode:
    return EmbeddingNode(id=id, embedding_model=embedding_model)


def vector_store_node(id: str, provider: str, new_index_name: str | None = None) -> VectorStoreNode:
    return VectorStoreNode(id=id, provider=provider, new_index_name=new_index_name)


def graph_store_node(id: str, provider: str) -> GraphStoreNode:
    return GraphStoreNode(id=id, provider=provider)


def edge(id: str, source: str, target: str, source_handle: str | None = None) -> Edge:
    return Edge(id=id, source=source, target=target, source_handle=source_handle)
