"""Causal graph construction: node synthesis, edge resolution, base-id grouping."""

from tracegraph.graph.builder import GraphBuilder, build_graph
from tracegraph.graph.grouping import collapse_groups
from tracegraph.graph.models import (
    REQUEST_NODE_ID,
    ROUTE_NODE_ID,
    Category,
    DroppedEdge,
    Edge,
    Node,
    NodeKind,
    TraceGraph,
)

__all__ = [
    "GraphBuilder",
    "build_graph",
    "collapse_groups",
    "REQUEST_NODE_ID",
    "ROUTE_NODE_ID",
    "Category",
    "DroppedEdge",
    "Edge",
    "Node",
    "NodeKind",
    "TraceGraph",
]
