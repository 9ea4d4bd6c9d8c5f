"""
Flow Layout - left-to-right layers with flow-proportional node heights

Sankey-style placement:
1. Reindex nodes 0..n-1 and give every edge the same weight
2. Node value = max(total incoming, total outgoing weight)
3. Depth = longest path from a root; justify alignment moves sinks to the
   last layer
4. Initial breadths: nodes stacked per layer, scaled so the fullest layer
   fits the extent, slack spread evenly
5. Relaxation: a few sweeps right-to-left and left-to-right pull each node
   towards the weighted centre of its neighbours, then collisions are pushed
   apart with `padding` between nodes
6. Link breadths: each band's y0/y1 on the source's right edge and the
   target's left edge

Node order inside a layer is the graph's node order and is never re-sorted,
which keeps the result deterministic for a given graph.

A graph with a directed cycle has no layering; LayoutUnavailable is raised
and compute_layout() falls back to the hierarchical layout.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import networkx as nx

from tracegraph.base.config import LayoutConfig
from tracegraph.errors import LayoutUnavailable
from tracegraph.graph.models import Node, TraceGraph
from tracegraph.layout.base import (
    FlowBand,
    LayoutEngine,
    LayoutResult,
    LayoutStrategy,
    PositionedNode,
    RoutedEdge,
    Viewport,
)
from tracegraph.layout.curves import horizontal_band_path

logger = logging.getLogger(__name__)

_EPSILON = 1e-6


@dataclass(eq=False)
class _FlowNode:
    index: int
    node: Node
    source_links: List["_FlowLink"] = field(default_factory=list)
    target_links: List["_FlowLink"] = field(default_factory=list)
    value: float = 0.0
    depth: int = 0
    layer: int = 0
    x0: float = 0.0
    x1: float = 0.0
    y0: float = 0.0
    y1: float = 0.0


@dataclass(eq=False)
class _FlowLink:
    index: int
    source: _FlowNode
    target: _FlowNode
    value: float
    width: float = 0.0
    y0: float = 0.0
    y1: float = 0.0


def _by_source_breadth(link: _FlowLink):
    return (link.source.y0, link.index)


def _by_target_breadth(link: _FlowLink):
    return (link.target.y0, link.index)


class FlowLayout(LayoutEngine):
    """Sankey-style layout over a TraceGraph."""

    strategy = LayoutStrategy.FLOW

    def layout(self, graph: TraceGraph, viewport: Optional[Viewport] = None) -> LayoutResult:
        viewport = self._viewport(viewport)
        cfg = self.config

        if not graph.nodes:
            raise LayoutUnavailable("Graph has no nodes")
        if not nx.is_directed_acyclic_graph(graph.to_networkx()):
            raise LayoutUnavailable("Graph contains a directed cycle", details={"nodes": len(graph.nodes)})

        nodes = [_FlowNode(index=i, node=node) for i, node in enumerate(graph.nodes)]
        by_id: Dict[str, _FlowNode] = {n.node.id: n for n in nodes}
        links: List[_FlowLink] = []
        for edge in graph.edges:
            source = by_id.get(edge.source)
            target = by_id.get(edge.target)
            if source is None or target is None:
                logger.warning(f"[FlowLayout] Skipping link {edge.source} -> {edge.target}: node not found")
                continue
            link = _FlowLink(index=len(links), source=source, target=target, value=cfg.flow_link_value)
            source.source_links.append(link)
            target.target_links.append(link)
            links.append(link)

        flow = _FlowPass(cfg, viewport, len(nodes))
        columns = flow.run(nodes)

        positioned = tuple(
            PositionedNode(
                node=n.node,
                x=(n.x0 + n.x1) / 2,
                y=(n.y0 + n.y1) / 2,
                width=n.x1 - n.x0,
                height=n.y1 - n.y0,
                x0=n.x0,
                y0=n.y0,
                x1=n.x1,
                y1=n.y1,
                layer=n.layer,
            )
            for n in nodes
        )
        bands = tuple(
            FlowBand(
                source=link.source.node.id,
                target=link.target.node.id,
                value=link.value,
                width=link.width,
                x0=link.source.x1,
                y0=link.y0,
                x1=link.target.x0,
                y1=link.y1,
                path=horizontal_band_path(link.source.x1, link.y0, link.target.x0, link.y1),
            )
            for link in links
        )
        edges = tuple(RoutedEdge(source=b.source, target=b.target, path=b.path) for b in bands)

        logger.debug(
            f"[FlowLayout] {len(nodes)} nodes in {len(columns)} layers, "
            f"{len(bands)} bands, padding {flow.padding}"
        )
        return LayoutResult(
            strategy=self.strategy,
            viewport=viewport,
            nodes=positioned,
            edges=edges,
            bands=bands,
        )


class _FlowPass:
    """Extent, padding and breadth scale of a single layout() call."""

    def __init__(self, config: LayoutConfig, viewport: Viewport, node_count: int):
        self.config = config
        self._x0 = config.flow_extent_inset
        self._y0 = config.flow_extent_inset
        self._x1 = viewport.width * config.flow_extent_scale - config.flow_extent_inset
        self._y1 = viewport.height * config.flow_extent_scale - config.flow_extent_inset
        self.padding = config.flow_padding(node_count)
        self._py = self.padding

    def run(self, nodes: List[_FlowNode]) -> List[List[_FlowNode]]:
        self._compute_values(nodes)
        self._compute_depths(nodes)
        columns = self._compute_layers(nodes)
        self._compute_breadths(columns)
        self._compute_link_breadths(nodes)
        return columns

    # ------------------------------------------------------------------
    # Values, depths, layers
    # ------------------------------------------------------------------

    @staticmethod
    def _compute_values(nodes: List[_FlowNode]) -> None:
        for n in nodes:
            n.value = max(
                sum(link.value for link in n.source_links),
                sum(link.value for link in n.target_links),
            )

    @staticmethod
    def _compute_depths(nodes: List[_FlowNode]) -> None:
        """Longest-path depth from the roots, in topological order."""
        dag = nx.DiGraph()
        dag.add_nodes_from(n.index for n in nodes)
        dag.add_edges_from((link.source.index, link.target.index) for n in nodes for link in n.source_links)
        try:
            order = list(nx.topological_sort(dag))
        except nx.NetworkXUnfeasible as e:
            raise LayoutUnavailable("Circular link while computing layer depths") from e
        for index in order:
            nodes[index].depth = max((nodes[p].depth + 1 for p in dag.predecessors(index)), default=0)

    def _compute_layers(self, nodes: List[_FlowNode]) -> List[List[_FlowNode]]:
        layer_count = max(n.depth for n in nodes) + 1
        node_width = self.config.flow_node_width
        kx = (self._x1 - self._x0 - node_width) / (layer_count - 1) if layer_count > 1 else 0.0

        columns: List[List[_FlowNode]] = [[] for _ in range(layer_count)]
        for n in nodes:
            # justify: sinks go to the last layer
            layer = n.depth if n.source_links else layer_count - 1
            n.layer = max(0, min(layer_count - 1, layer))
            n.x0 = self._x0 + n.layer * kx
            n.x1 = n.x0 + node_width
            columns[n.layer].append(n)
        return columns

    # ------------------------------------------------------------------
    # Breadths
    # ------------------------------------------------------------------

    def _compute_breadths(self, columns: List[List[_FlowNode]]) -> None:
        tallest = max(len(column) for column in columns)
        if tallest > 1:
            self._py = min(self.padding, (self._y1 - self._y0) / (tallest - 1))
        else:
            self._py = self.padding

        self._initialize_breadths(columns)
        iterations = self.config.flow_iterations
        for i in range(iterations):
            alpha = 0.99 ** i
            beta = max(1 - alpha, (i + 1) / iterations)
            self._relax_right_to_left(columns, alpha, beta)
            self._relax_left_to_right(columns, alpha, beta)

    def _initialize_breadths(self, columns: List[List[_FlowNode]]) -> None:
        py = self._py
        scales = [
            (self._y1 - self._y0 - (len(column) - 1) * py) / total
            for column in columns
            for total in [sum(n.value for n in column)]
            if total > 0
        ]
        ky = min(scales) if scales else 1.0

        for column in columns:
            y = self._y0
            for n in column:
                n.y0 = y
                n.y1 = y + n.value * ky
                y = n.y1 + py
                for link in n.source_links:
                    link.width = link.value * ky
            slack = (self._y1 - y + py) / (len(column) + 1)
            for i, n in enumerate(column):
                n.y0 += slack * (i + 1)
                n.y1 += slack * (i + 1)
            self._reorder_links(column)

    def _relax_left_to_right(self, columns: List[List[_FlowNode]], alpha: float, beta: float) -> None:
        for column in columns[1:]:
            for target in column:
                weighted = 0.0
                weight = 0.0
                for link in target.target_links:
                    v = link.value * (target.layer - link.source.layer)
                    weighted += self._target_top(link.source, target) * v
                    weight += v
                if not weight > 0:
                    continue
                dy = (weighted / weight - target.y0) * alpha
                target.y0 += dy
                target.y1 += dy
                self._reorder_node_links(target)
            self._resolve_collisions(column, beta)

    def _relax_right_to_left(self, columns: List[List[_FlowNode]], alpha: float, beta: float) -> None:
        for column in reversed(columns[:-1]):
            for source in column:
                weighted = 0.0
                weight = 0.0
                for link in source.source_links:
                    v = link.value * (link.target.layer - source.layer)
                    weighted += self._source_top(source, link.target) * v
                    weight += v
                if not weight > 0:
                    continue
                dy = (weighted / weight - source.y0) * alpha
                source.y0 += dy
                source.y1 += dy
                self._reorder_node_links(source)
            self._resolve_collisions(column, beta)

    def _resolve_collisions(self, column: List[_FlowNode], alpha: float) -> None:
        if not column:
            return
        middle = len(column) >> 1
        subject = column[middle]
        self._collisions_bottom_to_top(column, subject.y0 - self._py, middle - 1, alpha)
        self._collisions_top_to_bottom(column, subject.y1 + self._py, middle + 1, alpha)
        self._collisions_bottom_to_top(column, self._y1, len(column) - 1, alpha)
        self._collisions_top_to_bottom(column, self._y0, 0, alpha)

    def _collisions_top_to_bottom(self, column: List[_FlowNode], y: float, start: int, alpha: float) -> None:
        for n in column[start:]:
            dy = (y - n.y0) * alpha
            if dy > _EPSILON:
                n.y0 += dy
                n.y1 += dy
            y = n.y1 + self._py

    def _collisions_bottom_to_top(self, column: List[_FlowNode], y: float, start: int, alpha: float) -> None:
        for i in range(start, -1, -1):
            n = column[i]
            dy = (n.y1 - y) * alpha
            if dy > _EPSILON:
                n.y0 -= dy
                n.y1 -= dy
            y = n.y0 - self._py

    def _source_top(self, source: _FlowNode, target: _FlowNode) -> float:
        """Where `source` would have to sit for its band into `target` to arrive level."""
        py = self._py
        y = target.y0 - (len(target.target_links) - 1) * py / 2
        for link in target.target_links:
            if link.source is source:
                break
            y += link.width + py
        for link in source.source_links:
            if link.target is target:
                break
            y -= link.width
        return y

    def _target_top(self, source: _FlowNode, target: _FlowNode) -> float:
        """Where `target` would have to sit for the band from `source` to leave level."""
        py = self._py
        y = source.y0 - (len(source.source_links) - 1) * py / 2
        for link in source.source_links:
            if link.target is target:
                break
            y += link.width + py
        for link in target.target_links:
            if link.source is source:
                break
            y -= link.width
        return y

    @staticmethod
    def _reorder_links(column: List[_FlowNode]) -> None:
        for n in column:
            n.source_links.sort(key=_by_target_breadth)
            n.target_links.sort(key=_by_source_breadth)

    @staticmethod
    def _reorder_node_links(n: _FlowNode) -> None:
        for link in n.target_links:
            link.source.source_links.sort(key=_by_target_breadth)
        for link in n.source_links:
            link.target.target_links.sort(key=_by_source_breadth)

    @staticmethod
    def _compute_link_breadths(nodes: List[_FlowNode]) -> None:
        for n in nodes:
            y0 = n.y0
            y1 = n.y0
            for link in n.source_links:
                link.y0 = y0 + link.width / 2
                y0 += link.width
            for link in n.target_links:
                link.y1 = y1 + link.width / 2
                y1 += link.width
