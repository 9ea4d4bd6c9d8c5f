# ============================================================================
# tracegraph/__init__.py
# Vulnerability Trace Graph Package
# ============================================================================
#
# PURPOSE:
# Turns a recorded vulnerability trace (an HTTP request plus the ordered
# taint-propagation events that led to a rule violation) into a positioned
# node/edge graph that a renderer can draw.
#
# PIPELINE:
#   trace/   XML document -> TraceModel (events, request, vulnerability)
#   graph/   TraceModel -> TraceGraph (nodes, edges, collapsed groups)
#   layout/  TraceGraph -> LayoutResult (hierarchical or flow positions)
#   pipeline.py wires the three stages and produces the renderer DTO.
#
# ============================================================================

from tracegraph.errors import (
    ErrorCode,
    TraceGraphError,
    MalformedTraceError,
    DecodeFailure,
    LayoutUnavailable,
)
from tracegraph.pipeline import TracePipeline, render_trace

__version__ = "0.1.0"

__all__ = [
    "ErrorCode",
    "TraceGraphError",
    "MalformedTraceError",
    "DecodeFailure",
    "LayoutUnavailable",
    "TracePipeline",
    "render_trace",
]
