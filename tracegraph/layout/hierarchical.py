"""
Hierarchical Layout - fixed category bands, top to bottom

BANDS (y measured from the top margin):
- HTTP request at +50, Route at +150, centred
- Sources at +250, spread left to right (1 centred, 2 at +-horizontal spacing,
  N>2 evenly over 400 units)
- Data flow below the sources: nodes whose first Source parent is known hang
  under that source, the rest form a general pool starting at +350
- Violations well below the lowest data flow node; after the corrective
  pass the violations and everything downstream of them are shifted down
  again if a pushed data flow node ended up level with or below them

CONNECTIVITY ROLES (from in/out degree):
- main flow: exactly one parent and one child
- junction: more than one parent or more than one child
- endpoint: one parent and no children
- other: anything else

A final corrective pass, in topological order, pushes any node that sits
above or within `parent_clearance` of its lowest parent down to
parent + `parent_push`, so every edge reads top to bottom.

Each layout() call keeps its adjacency and positions in a private pass
object, so one engine can be shared between threads.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

import networkx as nx

from tracegraph.base.config import LayoutConfig
from tracegraph.graph.models import REQUEST_NODE_ID, ROUTE_NODE_ID, Category, Node, TraceGraph
from tracegraph.layout.base import (
    LayoutEngine,
    LayoutResult,
    LayoutStrategy,
    PositionedNode,
    RoutedEdge,
    Viewport,
)
from tracegraph.layout.curves import node_edge_path

logger = logging.getLogger(__name__)

MAIN_FLOW = "main"
JUNCTION = "junction"
ENDPOINT = "endpoint"
OTHER = "other"

# Width over which more than two sources are spread
SOURCE_SPREAD = 400.0


def _band_order(node: Node) -> Tuple[int, int, str]:
    if node.base_id is not None:
        return (0, node.base_id, node.id)
    return (1, 0, node.id)


def _classify(parent_count: int, child_count: int) -> str:
    if parent_count == 1 and child_count == 1:
        return MAIN_FLOW
    if parent_count > 1 or child_count > 1:
        return JUNCTION
    if parent_count == 1 and child_count == 0:
        return ENDPOINT
    return OTHER


def connectivity_role(graph: TraceGraph, node_id: str) -> str:
    """main / junction / endpoint / other, from the node's in and out degree."""
    return _classify(len(graph.parents(node_id)), len(graph.children(node_id)))


class HierarchicalLayout(LayoutEngine):
    """Deterministic banded layout; see module docstring for the rules."""

    strategy = LayoutStrategy.HIERARCHICAL

    def layout(self, graph: TraceGraph, viewport: Optional[Viewport] = None) -> LayoutResult:
        viewport = self._viewport(viewport)
        positions = _HierarchyPass(self.config, graph, viewport).run()

        positioned = tuple(self._positioned(node, positions[node.id]) for node in graph.nodes)
        radii = {p.id: p.width / 2 for p in positioned}
        edges = tuple(
            RoutedEdge(
                source=edge.source,
                target=edge.target,
                path=node_edge_path(
                    positions[edge.source],
                    positions[edge.target],
                    radii[edge.source],
                    radii[edge.target],
                ),
            )
            for edge in graph.edges
            if edge.source in positions and edge.target in positions
        )

        logger.debug(f"[HierarchicalLayout] Positioned {len(positioned)} nodes, routed {len(edges)} edges")
        return LayoutResult(
            strategy=self.strategy,
            viewport=viewport,
            nodes=positioned,
            edges=edges,
        )

    def _positioned(self, node: Node, position: Tuple[float, float]) -> PositionedNode:
        x, y = position
        radius = self.config.node_radius
        if node.is_collapsed_group:
            radius *= self.config.group_radius_scale
        return PositionedNode(node=node, x=x, y=y, width=2 * radius, height=2 * radius)


class _HierarchyPass:
    """Adjacency and positions of a single layout() call."""

    def __init__(self, config: LayoutConfig, graph: TraceGraph, viewport: Viewport):
        self.config = config
        self.graph = graph
        self.viewport = viewport
        self.center_x = viewport.width / 2
        self.positions: Dict[str, Tuple[float, float]] = {}
        self.parents: Dict[str, List[str]] = defaultdict(list)
        self.children: Dict[str, List[str]] = defaultdict(list)
        for edge in graph.edges:
            self.parents[edge.target].append(edge.source)
            self.children[edge.source].append(edge.target)

    def run(self) -> Dict[str, Tuple[float, float]]:
        cfg = self.config
        graph = self.graph
        categories = {node.id: node.category for node in graph.nodes}

        bands: Dict[Category, List[Node]] = {category: [] for category in Category}
        for node in graph.nodes:
            bands[node.category].append(node)
        for category in (Category.SOURCE, Category.DATA_FLOW, Category.VIOLATION):
            bands[category].sort(key=_band_order)

        top = cfg.margin_top
        for node in bands[Category.HTTP]:
            self.positions[node.id] = (self.center_x, top + 50)
        for node in bands[Category.ROUTE]:
            self.positions[node.id] = (self.center_x, top + 150)

        self._place_sources(bands[Category.SOURCE])
        self._place_data_flow(bands[Category.DATA_FLOW], bands[Category.SOURCE], categories)
        self._place_violations(bands[Category.VIOLATION], bands[Category.DATA_FLOW])

        for node in graph.nodes:
            if node.id not in self.positions:
                logger.warning(f"[HierarchicalLayout] Node {node.id} has no position assigned, using defaults")
                self.positions[node.id] = (cfg.margin_left, top + 300)

        self._push_below_parents()
        return self.positions

    def role(self, node_id: str) -> str:
        return _classify(len(self.parents.get(node_id, ())), len(self.children.get(node_id, ())))

    # ------------------------------------------------------------------
    # Bands
    # ------------------------------------------------------------------

    def _place_sources(self, sources: List[Node]) -> None:
        y = self.config.margin_top + 250
        center_x = self.center_x
        spacing = self.config.horizontal_spacing

        if len(sources) == 1:
            self.positions[sources[0].id] = (center_x, y)
        elif len(sources) == 2:
            self.positions[sources[0].id] = (center_x - spacing, y)
            self.positions[sources[1].id] = (center_x + spacing, y)
        elif len(sources) > 2:
            left_edge = center_x - SOURCE_SPREAD / 2
            step = SOURCE_SPREAD / (len(sources) - 1)
            for i, node in enumerate(sources):
                self.positions[node.id] = (left_edge + i * step, y)

    def _place_data_flow(
        self,
        data_flow: List[Node],
        sources: List[Node],
        categories: Dict[str, Category],
    ) -> None:
        by_source: Dict[str, List[Node]] = defaultdict(list)
        general: List[Node] = []

        # Attribute each node to its first Source parent, in edge order
        for node in data_flow:
            owner = next(
                (p for p in self.parents.get(node.id, ()) if categories.get(p) is Category.SOURCE),
                None,
            )
            if owner is None:
                general.append(node)
            else:
                by_source[owner].append(node)

        half_step = self.config.vertical_step / 2
        spacing = self.config.horizontal_spacing

        for source in sources:
            children = by_source.get(source.id)
            if not children:
                continue
            source_x, source_y = self.positions[source.id]
            row_y = source_y + self.config.vertical_spacing

            main = [n for n in children if self.role(n.id) == MAIN_FLOW]
            rest = [n for n in children if self.role(n.id) != MAIN_FLOW]

            for i, node in enumerate(main):
                self.positions[node.id] = (source_x, row_y + i * half_step)

            if rest:
                start_x = source_x - (len(rest) - 1) * spacing / 2
                other_y = row_y + (half_step if main else 0)
                for i, node in enumerate(rest):
                    self.positions[node.id] = (start_x + i * spacing, other_y)

        if general:
            self._place_general_pool(general)

    def _place_general_pool(self, nodes: List[Node]) -> None:
        center_x = self.center_x
        half_step = self.config.vertical_step / 2
        next_y = self.config.margin_top + 350

        main = [n for n in nodes if self.role(n.id) == MAIN_FLOW]
        junctions = [n for n in nodes if self.role(n.id) == JUNCTION]
        trailing = [n for n in nodes if self.role(n.id) in (ENDPOINT, OTHER)]

        for node in main:
            self.positions[node.id] = (center_x, next_y)
            next_y += half_step

        if junctions:
            self._spread_row(junctions, next_y)
            next_y += half_step

        if trailing:
            self._spread_row(trailing, next_y)

    def _spread_row(self, nodes: List[Node], y: float) -> None:
        """One node centred, several spread horizontally around the midline."""
        spacing = self.config.horizontal_spacing
        start_x = self.center_x - (len(nodes) - 1) * spacing / 2
        for i, node in enumerate(nodes):
            self.positions[node.id] = (start_x + i * spacing, y)

    def _place_violations(self, violations: List[Node], data_flow: List[Node]) -> None:
        if not violations:
            return
        cfg = self.config
        center_x = self.center_x

        max_data_flow_y = max(
            (self.positions[n.id][1] for n in data_flow if n.id in self.positions),
            default=0.0,
        )

        # Order by the depth of what precedes each violation; sorted() keeps ties in band order
        default_preceding = cfg.margin_top + 450
        ordered = sorted(
            (
                (max_data_flow_y + cfg.vertical_spacing * 1.5 if self.parents.get(n.id) else default_preceding, n)
                for n in violations
            ),
            key=lambda item: item[0],
        )

        bottom_y = self.viewport.height - cfg.margin_bottom - 100
        available = bottom_y - (cfg.margin_top + 450)
        spacing = min(cfg.vertical_spacing, available / (len(ordered) + 1))
        base_y = max_data_flow_y + cfg.vertical_spacing * 3

        if len(ordered) == 1:
            self.positions[ordered[0][1].id] = (center_x, base_y)
            return

        for index, (preceding_y, node) in enumerate(ordered):
            y = base_y + index * spacing
            if len(ordered) == 2:
                offset = cfg.horizontal_spacing / 2
                x = center_x - offset if index == 0 else center_x + offset
            else:
                same_row = [
                    other for other_y, other in ordered
                    if abs(other_y - preceding_y) < cfg.violation_group_tolerance
                ]
                if len(same_row) > 1:
                    start_x = center_x - (len(same_row) - 1) * cfg.horizontal_spacing / 2
                    x = start_x + same_row.index(node) * cfg.horizontal_spacing
                else:
                    x = center_x
            self.positions[node.id] = (x, y)

    # ------------------------------------------------------------------
    # Corrective pass
    # ------------------------------------------------------------------

    def _topological_order(self, dag: nx.DiGraph) -> List[str]:
        order = {node_id: i for i, node_id in enumerate(self.graph.node_ids)}
        try:
            return list(nx.lexicographical_topological_sort(dag, key=lambda n: order.get(n, len(order))))
        except nx.NetworkXUnfeasible:
            logger.warning("[HierarchicalLayout] Graph has a cycle, correcting in node order")
            return list(self.graph.node_ids)

    def _push_below_parents(self) -> None:
        clearance = self.config.parent_clearance
        push = self.config.parent_push
        dag = self.graph.to_networkx()
        for node_id in self._topological_order(dag):
            if node_id in (REQUEST_NODE_ID, ROUTE_NODE_ID) or node_id not in self.positions:
                continue
            parent_ys = [self.positions[p][1] for p in self.parents.get(node_id, ()) if p in self.positions]
            if not parent_ys:
                continue
            lowest_parent = max(parent_ys)
            x, y = self.positions[node_id]
            if y <= lowest_parent + clearance:
                self.positions[node_id] = (x, lowest_parent + push)
        self._keep_violations_below_data_flow(dag)

    def _keep_violations_below_data_flow(self, dag: nx.DiGraph) -> None:
        """
        Pushes may move data flow nodes past the violation band. Shift every
        violation, together with everything downstream of it, below the
        lowest data flow node that does not descend from a violation.
        """
        violations = [n.id for n in self.graph.nodes if n.category is Category.VIOLATION]
        if not violations:
            return
        shifted = set(violations)
        for node_id in violations:
            shifted |= nx.descendants(dag, node_id)

        data_flow_ys = [
            self.positions[n.id][1]
            for n in self.graph.nodes
            if n.category is Category.DATA_FLOW and n.id not in shifted
        ]
        if not data_flow_ys:
            return
        lowest = max(data_flow_ys)
        highest_violation = min(self.positions[node_id][1] for node_id in violations)
        if highest_violation > lowest + self.config.parent_clearance:
            return

        delta = lowest + self.config.parent_push - highest_violation
        logger.debug(f"[HierarchicalLayout] Moving {len(shifted)} nodes down {delta} to clear the data flow band")
        for node_id in shifted:
            x, y = self.positions[node_id]
            self.positions[node_id] = (x, y + delta)
