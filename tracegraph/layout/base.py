"""
Shared layout interface.

A layout takes a built TraceGraph and a viewport and returns a LayoutResult:
positioned copies of the nodes plus routed edges. The strategy is chosen per
call through compute_layout(); no layout keeps state between calls, so the
same graph can be laid out again with another strategy without re-parsing.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from tracegraph.base.config import LayoutConfig, get_config
from tracegraph.errors import ErrorCode, LayoutUnavailable, TraceGraphError
from tracegraph.graph.models import Node, TraceGraph
from tracegraph.layout.curves import cubic_point, horizontal_band_controls

logger = logging.getLogger(__name__)


class LayoutStrategy(str, Enum):
    HIERARCHICAL = "hierarchical"
    FLOW = "flow"

    @classmethod
    def from_name(cls, name: str) -> "LayoutStrategy":
        try:
            return cls(name.strip().lower())
        except ValueError as e:
            raise TraceGraphError(
                ErrorCode.CONFIG_INVALID,
                f"Unknown layout strategy: {name!r}",
                details={"allowed": [s.value for s in cls]},
            ) from e


@dataclass(frozen=True)
class Viewport:
    width: float
    height: float

    @classmethod
    def from_config(cls, config: LayoutConfig) -> "Viewport":
        return cls(config.viewport_width, config.viewport_height)


@dataclass(frozen=True)
class PositionedNode:
    """
    A node plus the position one layout gave it. (x, y) is the centre;
    the flow layout also fills the rectangle x0, y0, x1, y1 and the layer.
    """
    node: Node
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0
    x0: Optional[float] = None
    y0: Optional[float] = None
    x1: Optional[float] = None
    y1: Optional[float] = None
    layer: Optional[int] = None

    @property
    def id(self) -> str:
        return self.node.id


@dataclass(frozen=True)
class RoutedEdge:
    source: str
    target: str
    path: str


@dataclass(frozen=True)
class FlowBand:
    """
    One flow-layout link. `width` is the band thickness; y0 is where it
    leaves the source's right edge (x0), y1 where it meets the target's
    left edge (x1).
    """
    source: str
    target: str
    value: float
    width: float
    x0: float
    y0: float
    x1: float
    y1: float
    path: str

    @property
    def midpoint(self) -> Tuple[float, float]:
        c1x, c1y, c2x, c2y = horizontal_band_controls(self.x0, self.y0, self.x1, self.y1)
        return cubic_point(self.x0, self.y0, c1x, c1y, c2x, c2y, self.x1, self.y1, 0.5)


@dataclass(frozen=True)
class LayoutResult:
    strategy: LayoutStrategy
    viewport: Viewport
    nodes: Tuple[PositionedNode, ...]
    edges: Tuple[RoutedEdge, ...]
    bands: Tuple[FlowBand, ...] = ()
    fallback_used: bool = False

    def position(self, node_id: str) -> Optional[PositionedNode]:
        for positioned in self.nodes:
            if positioned.id == node_id:
                return positioned
        return None

    def positions(self) -> Dict[str, Tuple[float, float]]:
        return {positioned.id: (positioned.x, positioned.y) for positioned in self.nodes}


class LayoutEngine(ABC):
    """Base class for layout strategies."""

    strategy: LayoutStrategy

    def __init__(self, config: Optional[LayoutConfig] = None):
        self.config = config or get_config().layout

    @abstractmethod
    def layout(self, graph: TraceGraph, viewport: Optional[Viewport] = None) -> LayoutResult:
        """Position every node of `graph` inside `viewport`."""

    def _viewport(self, viewport: Optional[Viewport]) -> Viewport:
        return viewport or Viewport.from_config(self.config)


def compute_layout(
    graph: TraceGraph,
    strategy: LayoutStrategy = LayoutStrategy.HIERARCHICAL,
    viewport: Optional[Viewport] = None,
    config: Optional[LayoutConfig] = None,
) -> LayoutResult:
    """
    Lay out `graph` with the requested strategy.

    The flow layout signals LayoutUnavailable when it cannot layer the graph;
    the hierarchical layout is used instead and the result is marked with
    fallback_used=True.
    """
    # Imported here: both strategies import this module
    from tracegraph.layout.flow import FlowLayout
    from tracegraph.layout.hierarchical import HierarchicalLayout

    if isinstance(strategy, str) and not isinstance(strategy, LayoutStrategy):
        strategy = LayoutStrategy.from_name(strategy)

    if strategy is LayoutStrategy.FLOW:
        try:
            return FlowLayout(config).layout(graph, viewport)
        except LayoutUnavailable as e:
            logger.warning(f"[Layout] Flow layout unavailable ({e.message}), falling back to hierarchical")
            result = HierarchicalLayout(config).layout(graph, viewport)
            return LayoutResult(
                strategy=result.strategy,
                viewport=result.viewport,
                nodes=result.nodes,
                edges=result.edges,
                bands=(),
                fallback_used=True,
            )

    return HierarchicalLayout(config).layout(graph, viewport)
