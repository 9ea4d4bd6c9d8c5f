"""Layout strategies: hierarchical bands and sankey-style flow."""

from tracegraph.layout.base import (
    FlowBand,
    LayoutEngine,
    LayoutResult,
    LayoutStrategy,
    PositionedNode,
    RoutedEdge,
    Viewport,
    compute_layout,
)
from tracegraph.layout.flow import FlowLayout
from tracegraph.layout.hierarchical import HierarchicalLayout

__all__ = [
    "FlowBand",
    "FlowLayout",
    "HierarchicalLayout",
    "LayoutEngine",
    "LayoutResult",
    "LayoutStrategy",
    "PositionedNode",
    "RoutedEdge",
    "Viewport",
    "compute_layout",
]
