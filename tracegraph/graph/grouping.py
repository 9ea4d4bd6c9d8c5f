"""
Node grouping (collapse) pass.

Events that share a base id come from the same underlying object. Sources
of a base id always stay visible; when more than one non-source event
shares the base id they are replaced by a single "{baseId}-group" node.

Edge redirection maps both endpoints through the member -> group table, so
an edge between members of two different groups becomes a group -> group
edge. Source -> member edges inside a group are replaced by one
source -> group edge per source; member -> member edges inside a group
disappear.

Grouping never fails. Acyclicity wins over edge conservation: when members
sit on both sides of an outside node, one redirected edge would close a
cycle through the group. That edge is refused, logged, appended to
TraceGraph.dropped_edges and listed under the group node's
details["dropped_edges"], so no edge disappears without a record.
"""

import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Dict, List, Set, Tuple

import networkx as nx

from tracegraph.graph.models import (
    DROP_GROUP_CYCLE,
    GROUP_SUFFIX,
    REQUEST_NODE_ID,
    ROUTE_NODE_ID,
    DroppedEdge,
    Edge,
    Node,
    NodeKind,
    TraceGraph,
)

logger = logging.getLogger(__name__)


def group_id_for(base_id: int) -> str:
    return f"{base_id}{GROUP_SUFFIX}"


def partition_by_base_id(nodes: Tuple[Node, ...]) -> "OrderedDict[int, Tuple[List[Node], List[Node]]]":
    """base id -> (sources, others), both in node order."""
    groups: "OrderedDict[int, Tuple[List[Node], List[Node]]]" = OrderedDict()
    for node in nodes:
        if node.kind is not NodeKind.TRACE_EVENT or node.is_collapsed_group or node.base_id is None:
            continue
        sources, others = groups.setdefault(node.base_id, ([], []))
        if node.is_source_event:
            sources.append(node)
        else:
            others.append(node)
    return groups


def _group_node(base_id: int, others: List[Node]) -> Node:
    first = others[0]
    details = dict(first.details)
    details.update({
        "collapsed_group": True,
        "group_size": len(others),
        "object_ids": [node.id for node in others],
    })
    return Node(
        id=group_id_for(base_id),
        kind=first.kind,
        category=first.category,
        label=first.label,
        method_signature=f"{len(others)} events on {base_id}",
        tainted_data=first.tainted_data,
        taint_ranges=first.taint_ranges,
        is_source_event=False,
        is_trigger_event=any(node.is_trigger_event for node in others),
        is_collapsed_group=True,
        member_events=tuple(node.event for node in others if node.event is not None),
        base_id=base_id,
        event=first.event,
        display_type=first.display_type,
        details=details,
    )


def collapse_groups(graph: TraceGraph) -> TraceGraph:
    """Return a new graph with multi-event base-id groups collapsed."""
    groups = partition_by_base_id(graph.nodes)

    member_to_group: Dict[str, str] = {}
    group_sources: Dict[str, Set[str]] = {}
    group_nodes: List[Node] = []
    source_edges: List[Edge] = []

    for base_id, (sources, others) in groups.items():
        if len(others) <= 1:
            continue
        group = _group_node(base_id, others)
        group_nodes.append(group)
        group_sources[group.id] = {node.id for node in sources}
        for node in others:
            member_to_group[node.id] = group.id
        source_edges.extend(Edge(node.id, group.id) for node in sources)
        logger.debug(f"[Grouping] Collapsed {len(others)} events into {group.id} ({len(sources)} sources)")

    if not group_nodes:
        return graph

    nodes = [node for node in graph.nodes if node.id not in member_to_group]
    nodes.extend(group_nodes)

    redirected: List[Edge] = []
    for edge in graph.edges:
        target_group = member_to_group.get(edge.target)
        if target_group is not None and edge.source in group_sources[target_group]:
            # superseded by the explicit source -> group edge
            continue
        source = member_to_group.get(edge.source, edge.source)
        target = member_to_group.get(edge.target, edge.target)
        if source == target:
            continue
        redirected.append(Edge(source, target))

    edges, dropped = _dedupe_acyclic(redirected + source_edges, [node.id for node in nodes])
    if dropped:
        nodes = [_with_dropped_edges(node, dropped) if node.is_collapsed_group else node for node in nodes]

    logger.info(
        f"[Grouping] {len(group_nodes)} groups replaced {len(member_to_group)} nodes; "
        f"{len(graph.edges)} -> {len(edges)} edges ({len(dropped)} refused)"
    )
    return TraceGraph(
        nodes=tuple(nodes),
        edges=tuple(edges),
        dropped_edges=graph.dropped_edges + tuple(dropped),
    )


def _with_dropped_edges(group: Node, dropped: List[DroppedEdge]) -> Node:
    """Copy of a group node listing the refused edges that touch it."""
    touching = [
        {"source": edge.source, "target": edge.target}
        for edge in dropped
        if group.id in (edge.source, edge.target)
    ]
    if not touching:
        return group
    details = dict(group.details)
    details["dropped_edges"] = touching
    return replace(group, details=details)


def _dedupe_acyclic(candidates: List[Edge], node_ids: List[str]) -> Tuple[List[Edge], List[DroppedEdge]]:
    dag = nx.DiGraph()
    dag.add_nodes_from(node_ids)
    kept: List[Edge] = []
    dropped: List[DroppedEdge] = []
    for edge in candidates:
        if dag.has_edge(edge.source, edge.target):
            continue
        if nx.has_path(dag, edge.target, edge.source):
            logger.warning(f"[Grouping] Dropped edge {edge.source} -> {edge.target}: would close a cycle")
            dropped.append(DroppedEdge(edge.source, edge.target, DROP_GROUP_CYCLE))
            continue
        dag.add_edge(edge.source, edge.target)
        kept.append(edge)

    # A group whose every incoming edge was refused still needs a parent
    for node_id in node_ids:
        if node_id == REQUEST_NODE_ID or dag.in_degree(node_id) > 0:
            continue
        parent_id = REQUEST_NODE_ID if node_id == ROUTE_NODE_ID else ROUTE_NODE_ID
        logger.warning(f"[Grouping] {node_id} lost all incoming edges, attaching to {parent_id}")
        dag.add_edge(parent_id, node_id)
        kept.append(Edge(parent_id, node_id))
    return kept, dropped
