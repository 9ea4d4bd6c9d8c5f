"""
Graph records: nodes, edges and the built graph.

Nodes and edges are frozen. A layout never writes positions onto them; it
returns separate positioned records (see tracegraph.layout.base) so the same
TraceGraph can be laid out any number of times with any strategy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Iterator, List, Optional, Tuple

import networkx as nx

from tracegraph.trace.models import TaintRange, TraceEvent

REQUEST_NODE_ID = "request"
ROUTE_NODE_ID = "route"
GROUP_SUFFIX = "-group"


class Category(IntEnum):
    """Vertical band a node belongs to, top to bottom."""
    HTTP = 0
    ROUTE = 1
    SOURCE = 2
    DATA_FLOW = 3
    VIOLATION = 4


class NodeKind(str, Enum):
    HTTP_REQUEST = "http-request"
    ROUTE = "route"
    TRACE_EVENT = "trace-event"


def category_for(node_id: str, is_source_event: bool, is_trigger_event: bool) -> Category:
    if node_id == REQUEST_NODE_ID:
        return Category.HTTP
    if node_id == ROUTE_NODE_ID:
        return Category.ROUTE
    if is_source_event:
        return Category.SOURCE
    if is_trigger_event:
        return Category.VIOLATION
    return Category.DATA_FLOW


@dataclass(frozen=True)
class Node:
    """A graph-visualization unit: the request, the route, one event, or a collapsed group."""
    id: str
    kind: NodeKind
    category: Category
    label: str = ""
    method_signature: str = ""
    tainted_data: str = ""
    taint_ranges: Tuple[TaintRange, ...] = ()
    is_source_event: bool = False
    is_trigger_event: bool = False
    is_collapsed_group: bool = False
    member_events: Tuple[TraceEvent, ...] = ()
    base_id: Optional[int] = None
    event: Optional[TraceEvent] = None
    display_type: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def member_ids(self) -> List[str]:
        return [event.object_id for event in self.member_events]


@dataclass(frozen=True)
class Edge:
    source: str
    target: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source, self.target)


DROP_SELF_LOOP = "self-loop"
DROP_CYCLE = "cycle"
DROP_GROUP_CYCLE = "group-cycle"


@dataclass(frozen=True)
class DroppedEdge:
    """An edge the builder or the grouping pass refused, kept so it stays visible."""
    source: str
    target: str
    reason: str


@dataclass(frozen=True)
class TraceGraph:
    """
    Output of the graph builder. Node order is request, route, then events
    in time order (collapsed groups appended after the surviving events).

    `dropped_edges` lists every candidate edge refused to keep the graph
    acyclic, including edges that only closed a cycle once grouping
    redirected them onto a group node.
    """
    nodes: Tuple[Node, ...]
    edges: Tuple[Edge, ...]
    dropped_edges: Tuple[DroppedEdge, ...] = ()

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def has_node(self, node_id: str) -> bool:
        return self.node(node_id) is not None

    def parents(self, node_id: str) -> List[str]:
        """Sources of incoming edges, in edge order."""
        return [edge.source for edge in self.edges if edge.target == node_id]

    def children(self, node_id: str) -> List[str]:
        """Targets of outgoing edges, in edge order."""
        return [edge.target for edge in self.edges if edge.source == node_id]

    def to_networkx(self) -> nx.DiGraph:
        """A fresh DiGraph with node attributes `category` and `kind`."""
        graph = nx.DiGraph()
        for node in self.nodes:
            graph.add_node(node.id, category=int(node.category), kind=node.kind.value)
        for edge in self.edges:
            graph.add_edge(edge.source, edge.target)
        return graph
