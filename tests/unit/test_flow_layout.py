import re

import pytest

from tracegraph.base.config import LayoutConfig
from tracegraph.errors import ErrorCode, LayoutUnavailable, TraceGraphError
from tracegraph.graph.builder import GraphBuilder
from tracegraph.graph.models import REQUEST_NODE_ID, ROUTE_NODE_ID, Category, Edge, Node, NodeKind, TraceGraph
from tracegraph.layout.base import LayoutStrategy, Viewport, compute_layout
from tracegraph.layout.flow import FlowLayout
from tracegraph.trace.models import EventKind, RequestInfo, TraceEvent, extract_base_id
from tracegraph.trace.parser import parse_trace

VIEWPORT = Viewport(1200, 800)
NUMBER = r"-?\d+\.\d"
BAND_PATH_RE = re.compile(
    rf"M{NUMBER},{NUMBER} C{NUMBER},{NUMBER} {NUMBER},{NUMBER} {NUMBER},{NUMBER}"
)


def _event(object_id, kind=EventKind.P2O, parents=()):
    return TraceEvent(
        object_id=object_id,
        kind=kind,
        raw_type=kind.value,
        parent_object_ids=tuple(parents),
        base_id=extract_base_id(object_id),
    )


def _flow(graph):
    return FlowLayout(LayoutConfig()).layout(graph, VIEWPORT)


def _cyclic_graph():
    def node(node_id):
        return Node(id=node_id, kind=NodeKind.TRACE_EVENT, category=Category.DATA_FLOW)

    return TraceGraph(nodes=(node("a"), node("b")), edges=(Edge("a", "b"), Edge("b", "a")))


def test_chain_fills_one_node_per_layer(minimal_trace):
    graph = GraphBuilder().build(parse_trace(minimal_trace))
    result = _flow(graph)

    assert result.strategy is LayoutStrategy.FLOW
    layers = {p.id: p.layer for p in result.nodes}
    assert layers == {REQUEST_NODE_ID: 0, ROUTE_NODE_ID: 1, "1": 2, "2": 3}

    # extent is [100, 1700] x [100, 1100] for a 1200 x 800 viewport
    first = result.position(REQUEST_NODE_ID)
    last = result.position("2")
    assert first.x0 == pytest.approx(100.0)
    assert last.x1 == pytest.approx(1700.0)
    assert first.y0 == pytest.approx(100.0)
    assert first.y1 == pytest.approx(1100.0)
    assert first.width == pytest.approx(30.0)
    assert first.x == pytest.approx(115.0)


def test_every_band_moves_to_a_later_layer(sqli_trace, group_trace):
    for document in (sqli_trace, group_trace):
        graph = GraphBuilder().build(parse_trace(document))
        result = _flow(graph)
        layers = {p.id: p.layer for p in result.nodes}
        assert len(result.bands) == len(graph.edges)
        for band in result.bands:
            assert layers[band.source] < layers[band.target]


def test_sinks_are_justified_to_the_last_layer():
    graph = GraphBuilder(collapse=False).build_graph(RequestInfo(), [
        _event("10", EventKind.CREATION),
        _event("11", parents=("10",)),
        _event("12", parents=("11",)),
        _event("20", EventKind.CREATION),
    ])
    layers = {p.id: p.layer for p in _flow(graph).nodes}
    assert layers["20"] == layers["12"] == 4


def test_depth_follows_the_longest_path():
    def node(node_id):
        return Node(id=node_id, kind=NodeKind.TRACE_EVENT, category=Category.DATA_FLOW)

    # d is listed before its ancestors and also reachable through the a -> d shortcut
    graph = TraceGraph(
        nodes=tuple(node(n) for n in ("a", "d", "b", "c", "e")),
        edges=(Edge("a", "b"), Edge("b", "c"), Edge("c", "d"), Edge("a", "d"), Edge("d", "e")),
    )
    layers = {p.id: p.layer for p in _flow(graph).nodes}
    assert layers == {"a": 0, "b": 1, "c": 2, "d": 3, "e": 4}


def test_nodes_stay_inside_the_extent(sqli_trace):
    result = _flow(GraphBuilder().build(parse_trace(sqli_trace)))
    for p in result.nodes:
        assert p.x0 >= 100.0 - 1e-6
        assert p.x1 <= 1700.0 + 1e-6
        assert p.y0 >= 100.0 - 1e-3
        assert p.y1 <= 1100.0 + 1e-3


def test_nodes_in_a_layer_keep_padding():
    graph = GraphBuilder(collapse=False).build_graph(RequestInfo(), [
        _event("10", EventKind.CREATION),
        _event("20", EventKind.CREATION),
    ])
    result = _flow(graph)
    upper = result.position("10")
    lower = result.position("20")

    assert upper.layer == lower.layer == 2
    # four nodes -> padding 80
    assert lower.y0 - upper.y1 >= 80.0 - 1e-6


def test_flow_padding_by_graph_size():
    config = LayoutConfig()
    assert config.flow_padding(5) == 80.0
    assert config.flow_padding(11) == 60.0
    assert config.flow_padding(21) == 40.0


def test_bands(minimal_trace):
    graph = GraphBuilder().build(parse_trace(minimal_trace))
    result = _flow(graph)

    for band in result.bands:
        assert BAND_PATH_RE.fullmatch(band.path), band.path
        assert band.value == 10.0
        assert band.width > 0
        source = result.position(band.source)
        target = result.position(band.target)
        assert band.x0 == pytest.approx(source.x1)
        assert band.x1 == pytest.approx(target.x0)
        mid_x, _ = band.midpoint
        assert band.x0 < mid_x < band.x1

    # routed edges mirror the bands
    assert [(e.source, e.target, e.path) for e in result.edges] == [
        (b.source, b.target, b.path) for b in result.bands
    ]


def test_layout_is_deterministic(sqli_trace):
    graph = GraphBuilder().build(parse_trace(sqli_trace))
    assert _flow(graph) == _flow(graph)


def test_cycle_is_reported():
    with pytest.raises(LayoutUnavailable) as excinfo:
        _flow(_cyclic_graph())
    assert excinfo.value.code is ErrorCode.LAYOUT_UNAVAILABLE


def test_empty_graph_is_reported():
    with pytest.raises(LayoutUnavailable):
        _flow(TraceGraph(nodes=(), edges=()))


def test_compute_layout_falls_back_to_hierarchical():
    result = compute_layout(_cyclic_graph(), LayoutStrategy.FLOW, VIEWPORT, LayoutConfig())
    assert result.fallback_used is True
    assert result.strategy is LayoutStrategy.HIERARCHICAL
    assert result.bands == ()
    assert {p.id for p in result.nodes} == {"a", "b"}


def test_compute_layout_accepts_strategy_names(minimal_trace):
    graph = GraphBuilder().build(parse_trace(minimal_trace))

    flow = compute_layout(graph, "Flow", VIEWPORT, LayoutConfig())
    assert flow.strategy is LayoutStrategy.FLOW
    assert flow.fallback_used is False

    with pytest.raises(TraceGraphError) as excinfo:
        compute_layout(graph, "radial", VIEWPORT, LayoutConfig())
    assert excinfo.value.code is ErrorCode.CONFIG_INVALID
