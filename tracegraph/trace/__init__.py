# ============================================================================
# tracegraph/trace/__init__.py
# Trace Package - document parsing
# ============================================================================
#
# Converts the raw XML trace record into immutable, typed records. Nothing
# downstream ever looks at XML again.
#
# ============================================================================

from tracegraph.trace.models import (
    ArgValue,
    EventKind,
    EventSource,
    NameValue,
    PayloadData,
    RequestInfo,
    Slot,
    SlotKind,
    TaintRange,
    TraceEvent,
    TraceModel,
    VulnerabilityInfo,
)
from tracegraph.trace.parser import TraceParser, parse_trace

__all__ = [
    "ArgValue",
    "EventKind",
    "EventSource",
    "NameValue",
    "PayloadData",
    "RequestInfo",
    "Slot",
    "SlotKind",
    "TaintRange",
    "TraceEvent",
    "TraceModel",
    "VulnerabilityInfo",
    "TraceParser",
    "parse_trace",
]
