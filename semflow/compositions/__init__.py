"""Composition graphs."""

from semflow.compositions.composition import Composition, CompositionResult
from semflow.compositions.nodes import (
    Edge,
    Node,
    agent_node,
    composition_node,
    edge,
    embedding_node,
    extractor_node,
    function_node,
    graph_store_node,
    index_node,
    joiner_node,
    loader_node,
    loop_node,
    mapper_node,
    output_node,
    request_node,
    schedule_node,
    source_node,
    tool_node,
    vector_store_node,
)

__all__ = [
    "Composition",
    "CompositionResult",
    "Edge",
    "Node",
    "agent_node",
    "composition_node",
    "edge",
    "embedding_node",
    "extractor_node",
    "function_node",
    "graph_store_node",
    "index_node",
    "joiner_node",
    "loader_node",
    "loop_node",
    "mapper_node",
    "output_node",
    "request_node",
    "schedule_node",
    "source_node",
    "tool_node",
    "vector_store_node",
]
