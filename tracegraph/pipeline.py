"""
Trace pipeline: document -> TraceModel -> TraceGraph -> LayoutResult -> GraphDTO.

Each stage is a pure function of its inputs. A built graph can be laid out
again with another strategy without parsing or building a second time, and
every call returns freshly allocated structures.
"""

import logging
from typing import Optional, Union

from tracegraph.base.config import TraceGraphConfig, get_config
from tracegraph.errors import TraceGraphError, handle_error
from tracegraph.graph.builder import GraphBuilder
from tracegraph.graph.models import NodeKind, TraceGraph
from tracegraph.layout.base import LayoutResult, LayoutStrategy, Viewport, compute_layout
from tracegraph.models import GraphDTO, NodeDTO, graph_dto
from tracegraph.trace.models import TraceModel
from tracegraph.trace.parser import TraceParser

logger = logging.getLogger(__name__)

StrategyLike = Union[LayoutStrategy, str, None]


class TracePipeline:
    """
    Wires parser, builder and layout together.

    Usage:
        pipeline = TracePipeline()
        dto = pipeline.render(xml_text, LayoutStrategy.FLOW)
        payload = dto.model_dump()
    """

    def __init__(self, config: Optional[TraceGraphConfig] = None):
        self.config = config or get_config()
        self.parser = TraceParser(self.config.parser)

    def parse(self, document: Union[str, bytes]) -> TraceModel:
        return self.parser.parse(document)

    def build(self, trace: TraceModel) -> TraceGraph:
        return GraphBuilder().build(trace)

    def layout(
        self,
        graph: TraceGraph,
        strategy: StrategyLike = None,
        viewport: Optional[Viewport] = None,
    ) -> LayoutResult:
        return compute_layout(graph, self._strategy(strategy), viewport, self.config.layout)

    def render(
        self,
        document: Union[str, bytes],
        strategy: StrategyLike = None,
        viewport: Optional[Viewport] = None,
    ) -> GraphDTO:
        """
        Run the whole pipeline.

        Raises:
            MalformedTraceError: the document is unusable; no partial graph is produced
        """
        trace = self.parse(document)
        graph = self.build(trace)
        result = self.layout(graph, strategy, viewport)
        logger.info(
            f"[TracePipeline] Rendered {len(result.nodes)} nodes / {len(result.edges)} edges "
            f"with {result.strategy.value} layout"
        )
        return graph_dto(result, trace)

    def render_or_placeholder(
        self,
        document: Union[str, bytes],
        strategy: StrategyLike = None,
        viewport: Optional[Viewport] = None,
    ) -> GraphDTO:
        """Like render(), but an unusable trace yields the single-node error graph."""
        try:
            return self.render(document, strategy, viewport)
        except TraceGraphError as e:
            logger.error(f"[TracePipeline] Trace could not be rendered: {e}")
            return placeholder_graph(e, viewport or Viewport.from_config(self.config.layout))
        except Exception as e:
            error = handle_error(e, context="while rendering trace")
            logger.exception(f"[TracePipeline] Unexpected failure: {error}")
            return placeholder_graph(error, viewport or Viewport.from_config(self.config.layout))

    def _strategy(self, strategy: StrategyLike) -> LayoutStrategy:
        if strategy is None:
            return LayoutStrategy.from_name(self.config.default_strategy)
        if isinstance(strategy, LayoutStrategy):
            return strategy
        return LayoutStrategy.from_name(strategy)


def placeholder_graph(error: TraceGraphError, viewport: Optional[Viewport] = None) -> GraphDTO:
    """Single-node graph a caller can show in place of an unparsable trace."""
    viewport = viewport or Viewport.from_config(get_config().layout)
    node = NodeDTO(
        id="error",
        kind=NodeKind.HTTP_REQUEST.value,
        category=0,
        label=f"Error: {error.message}",
        method_signature="Error loading data",
        x=viewport.width / 2,
        y=viewport.height / 2,
        details={"error": error.message},
    )
    return GraphDTO(
        strategy=LayoutStrategy.HIERARCHICAL.value,
        width=viewport.width,
        height=viewport.height,
        nodes=[node],
        edges=[],
        error=error.to_dict(),
    )


def render_trace(
    document: Union[str, bytes],
    strategy: StrategyLike = None,
    config: Optional[TraceGraphConfig] = None,
) -> GraphDTO:
    """Convenience wrapper around TracePipeline(config).render()."""
    return TracePipeline(config).render(document, strategy)
