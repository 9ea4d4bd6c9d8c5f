"""
Trace Graph Builder - event log to causal graph

PURPOSE:
Reconstruct a coherent causal graph from a parsed trace whose parent links
are optional, sometimes dangling, and sometimes missing altogether.

NODES:
- "request": the HTTP request that triggered the trace (always present)
- "route": the controller that handled it (always present)
- one node per event, in time order

EDGE RULES (document order breaks every tie):
1. request -> route, always
2. each listed parent that resolves to a known node id -> event
   (unresolved parents are dropped, they may reference pruned events)
3. a Trigger ignores its parents and hangs off the event right before it
4. a parentless Source hangs off the route
5. a parentless non-source event whose id was synthesised sits between the
   event before it and the event after it
6. any other parentless event hangs off the nearest earlier Source, else
   the event right before it
7. duplicate (source, target) pairs collapse to one

Rules 2 and 5 can point forward in time, so every edge goes through a cycle
check before it is added; an edge that would close a directed cycle is
dropped, logged and listed in TraceGraph.dropped_edges. An event left
without any incoming edge afterwards gets the rule 6 fallback so every
node except "request" stays reachable.

Same-base-id events are then collapsed by tracegraph.graph.grouping.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import networkx as nx

from tracegraph.errors import ErrorCode
from tracegraph.graph.annotations import (
    data_flow_info,
    display_type,
    event_label,
    format_method_signature,
    human_readable_label,
    parameter_taint_ranges,
    request_summary,
    route_signature,
    source_info,
    target_info,
)
from tracegraph.graph.grouping import collapse_groups
from tracegraph.graph.models import (
    DROP_CYCLE,
    DROP_SELF_LOOP,
    REQUEST_NODE_ID,
    ROUTE_NODE_ID,
    DroppedEdge,
    Edge,
    Node,
    NodeKind,
    TraceGraph,
    category_for,
)
from tracegraph.trace.models import RequestInfo, TraceEvent, TraceModel
from tracegraph.trace.parser import infer_route

logger = logging.getLogger(__name__)


class _EdgeSet:
    """
    Edges of a single build, in insertion order.

    The networkx DiGraph is bookkeeping for the cycle check; every refused
    edge is kept in `dropped` with the reason it was refused.
    """

    def __init__(self, node_ids: Sequence[str]):
        self.dag: nx.DiGraph = nx.DiGraph()
        self.dag.add_nodes_from(node_ids)
        self.edges: List[Edge] = []
        self.dropped: List[DroppedEdge] = []

    def add(self, source: str, target: str) -> bool:
        if source == target:
            self.dropped.append(DroppedEdge(source, target, DROP_SELF_LOOP))
            logger.debug(f"[TraceGraph] Dropped self-loop on {source}")
            return False
        if self.dag.has_edge(source, target):
            return True
        if nx.has_path(self.dag, target, source):
            self.dropped.append(DroppedEdge(source, target, DROP_CYCLE))
            logger.warning(f"[TraceGraph] Dropped edge {source} -> {target}: would close a cycle")
            return False
        self.dag.add_edge(source, target)
        self.edges.append(Edge(source, target))
        return True

    def has_parent(self, node_id: str) -> bool:
        return self.dag.in_degree(node_id) > 0


class GraphBuilder:
    """
    Builds the causal graph of one trace.

    Holds no per-build state, so one builder can serve any number of traces
    from any number of threads. The returned TraceGraph carries its own
    ordered node, edge and dropped-edge tuples.
    """

    def __init__(self, collapse: bool = True):
        self.collapse = collapse

    def build(self, trace: TraceModel) -> TraceGraph:
        """Build (and by default collapse) the graph for a parsed trace."""
        return self.build_graph(
            trace.request_info,
            trace.events,
            route=trace.route,
            rule_id=trace.rule_id,
        )

    def build_graph(
        self,
        request_info: RequestInfo,
        events: Sequence[TraceEvent],
        route: Optional[str] = None,
        rule_id: str = "",
    ) -> TraceGraph:
        """
        Build the graph from request metadata and time-ordered events.

        Args:
            request_info: request metadata for the HTTP node
            events: parsed events with unique object ids, in time order
            route: controller path; inferred from the request URI when None
            rule_id: opaque rule identifier used in Violation annotations
        """
        logger.info(f"[TraceGraph] Building graph from {len(events)} events")

        if route is None:
            route = infer_route(None, request_info.uri)

        nodes = [self._request_node(request_info), self._route_node(route, request_info)]
        nodes.extend(self._event_node(event, rule_id) for event in events)

        edges = _EdgeSet([node.id for node in nodes])
        self._resolve_edges(events, edges)

        built = TraceGraph(nodes=tuple(nodes), edges=tuple(edges.edges), dropped_edges=tuple(edges.dropped))
        logger.info(
            f"[TraceGraph] Built graph: {len(built.nodes)} nodes, {len(built.edges)} edges"
            f" ({len(built.dropped_edges)} edges dropped)"
        )

        if self.collapse:
            return collapse_groups(built)
        return built

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def _resolve_edges(self, events: Sequence[TraceEvent], edges: _EdgeSet) -> None:
        known: Set[str] = {REQUEST_NODE_ID, ROUTE_NODE_ID}
        known.update(event.object_id for event in events)

        # Rule 1
        edges.add(REQUEST_NODE_ID, ROUTE_NODE_ID)

        deferred: List[Tuple[str, str]] = []
        for index, event in enumerate(events):
            current = event.object_id
            previous = events[index - 1].object_id if index > 0 else ROUTE_NODE_ID

            # Rule 3
            if event.is_trigger_event:
                edges.add(previous, current)
                continue

            # Rule 2
            if event.parent_object_ids:
                for parent_id in event.parent_object_ids:
                    if parent_id in known:
                        edges.add(parent_id, current)
                    else:
                        logger.debug(
                            f"[TraceGraph] {ErrorCode.TRACE_UNRESOLVED_REFERENCE.value}: "
                            f"parent {parent_id} of {current} does not resolve, dropped"
                        )
                continue

            # Rule 4
            if event.is_source_event:
                edges.add(ROUTE_NODE_ID, current)
                continue

            # Rule 5
            if not event.has_real_id:
                edges.add(previous, current)
                if index + 1 < len(events):
                    edges.add(current, events[index + 1].object_id)
                continue

            # Rule 6, applied after every explicit edge is in place
            deferred.append((self._fallback_parent(events, index), current))

        for parent_id, child_id in deferred:
            edges.add(parent_id, child_id)

        self._reattach_orphans(events, edges)

    @staticmethod
    def _fallback_parent(events: Sequence[TraceEvent], index: int) -> str:
        """Nearest earlier Source, else the event right before, else the route."""
        for earlier in reversed(events[:index]):
            if earlier.is_source_event:
                return earlier.object_id
        if index > 0:
            return events[index - 1].object_id
        return ROUTE_NODE_ID

    def _reattach_orphans(self, events: Sequence[TraceEvent], edges: _EdgeSet) -> None:
        for index, event in enumerate(events):
            if edges.has_parent(event.object_id):
                continue
            parent_id = self._fallback_parent(events, index)
            logger.info(f"[TraceGraph] {event.object_id} has no resolvable parent, attaching to {parent_id}")
            if not edges.add(parent_id, event.object_id):
                edges.add(ROUTE_NODE_ID, event.object_id)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    @staticmethod
    def _request_node(request_info: RequestInfo) -> Node:
        tainted, ranges = request_summary(request_info)
        details: Dict[str, Any] = {
            "method": request_info.method,
            "protocol": request_info.protocol,
            "version": request_info.version,
            "port": request_info.port,
            "uri": request_info.uri,
            "query_string": request_info.query_string,
            "headers": [{"name": h.name, "value": h.value} for h in request_info.headers],
            "parameters": [{"name": p.name, "value": p.value} for p in request_info.parameters],
        }
        return Node(
            id=REQUEST_NODE_ID,
            kind=NodeKind.HTTP_REQUEST,
            category=category_for(REQUEST_NODE_ID, False, False),
            label="HTTP Request",
            method_signature=request_info.request_line,
            tainted_data=tainted,
            taint_ranges=ranges,
            display_type=display_type(NodeKind.HTTP_REQUEST.value),
            details=details,
        )

    @staticmethod
    def _route_node(route: str, request_info: RequestInfo) -> Node:
        return Node(
            id=ROUTE_NODE_ID,
            kind=NodeKind.ROUTE,
            category=category_for(ROUTE_NODE_ID, False, False),
            label="Route",
            method_signature=route_signature(route),
            display_type=display_type(NodeKind.ROUTE.value),
            details={"route": route or "/unknown", "method": request_info.method},
        )

    @staticmethod
    def _event_node(event: TraceEvent, rule_id: str) -> Node:
        target = target_info(event, rule_id)
        details: Dict[str, Any] = {
            "object_id": event.object_id,
            "type": event.raw_type,
            "time": event.time,
            "thread": event.thread,
            "signature": event.signature,
            "stack": list(event.stack_frames),
            "parent_object_ids": list(event.parent_object_ids),
            "original_label": human_readable_label(event),
            "source_info": source_info(event, rule_id),
            "target_info": target,
            "parameter_taint_ranges": [
                {"tag": r.tag, "range": r.range} for r in parameter_taint_ranges(event)
            ],
        }
        if event.is_trigger_event:
            details["rule_id"] = rule_id
        return Node(
            id=event.object_id,
            kind=NodeKind.TRACE_EVENT,
            category=category_for(event.object_id, event.is_source_event, event.is_trigger_event),
            label=event_label(event),
            method_signature=format_method_signature(event.signature),
            tainted_data=data_flow_info(event, target),
            taint_ranges=event.taint_ranges,
            is_source_event=event.is_source_event,
            is_trigger_event=event.is_trigger_event,
            base_id=event.base_id,
            event=event,
            display_type=display_type(event.raw_type),
            details=details,
        )


def build_graph(
    request_info: RequestInfo,
    events: Sequence[TraceEvent],
    route: Optional[str] = None,
    rule_id: str = "",
    collapse: bool = True,
) -> TraceGraph:
    """Functional entry point: one-off GraphBuilder over explicit inputs."""
    return GraphBuilder(collapse=collapse).build_graph(request_info, events, route=route, rule_id=rule_id)
