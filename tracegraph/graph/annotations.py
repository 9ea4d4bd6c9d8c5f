"""
Display annotations for graph nodes.

Pure functions that derive the three text lines a renderer shows for a node
(label, method signature, data-flow summary) plus the highlight ranges that
go with them. Nothing here mutates a parsed event.
"""

import re
from typing import List, Optional, Sequence, Tuple

from tracegraph.trace.models import (
    NameValue,
    RequestInfo,
    SlotKind,
    TaintRange,
    TraceEvent,
)

_QUALIFIED_METHOD_RE = re.compile(r"([A-Za-z0-9_$.]+)\.([A-Za-z0-9_$]+)\(")
_METHOD_NAME_RE = re.compile(r"\s(\w+)\(")
_CLASS_NAME_RE = re.compile(r"\.(\w+)\.")

# Rule id fragments mapped to a short explanation shown on Violation nodes
_RULE_EXPLANATIONS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("sql", "hql", "hibernate"), "SQL/HQL Query with untrusted data"),
    (("xss",), "Output with unsanitized data"),
    (("path",), "File path with untrusted data"),
    (("command",), "OS command with untrusted data"),
)

_DISPLAY_TYPES = {
    "Propagator": "Data Flow",
    "P2O": "Data Flow",
    "O2P": "Data Flow",
    "P2P": "Data Flow",
    "O2R": "Data Flow",
    "P2R": "Data Flow",
    "Creation": "Source",
    "Source": "Source",
    "Trigger": "Violation",
    "http-request": "HTTP Request",
    "route": "Route",
}


def format_rule_id(rule_id: str) -> str:
    """"sql-injection" -> "Sql Injection"."""
    if not rule_id:
        return ""
    words = rule_id.replace("-", " ").split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words)


def display_type(raw_type: Optional[str]) -> str:
    if not raw_type:
        return "Unknown"
    return _DISPLAY_TYPES.get(raw_type, raw_type)


def event_label(event: TraceEvent) -> str:
    """First display line: Source, Propagator or Violation."""
    if event.is_trigger_event:
        return "Violation"
    if event.is_source_event:
        return "Source"
    return "Propagator"


def format_method_signature(signature: str) -> str:
    """
    "public String java.lang.String.concat(java.lang.String)" -> "java.lang.String.concat()".

    Signatures without a qualified call are returned unchanged.
    """
    if not signature:
        return ""
    match = _QUALIFIED_METHOD_RE.search(signature)
    if match:
        return f"{match.group(1)}.{match.group(2)}()"
    return signature


def short_method_name(event: TraceEvent) -> str:
    if event.signature:
        match = _METHOD_NAME_RE.search(event.signature)
        if match:
            return match.group(1)
        match = _CLASS_NAME_RE.search(event.signature)
        return match.group(1) if match else "Event"
    return event.raw_type or "Event"


def human_readable_label(event: TraceEvent) -> str:
    """e.g. "Propagation: concat"."""
    if event.is_source_event:
        prefix = "Source"
    elif event.is_trigger_event:
        prefix = "Violation"
    else:
        prefix = "Propagation"
    return f"{prefix}: {short_method_name(event)}"


def tainted_data_value(event: TraceEvent) -> str:
    """First tracked arg, else object body, else return body, else ""."""
    tracked = event.tracked_args
    if tracked and tracked[0].decoded_value:
        return tracked[0].decoded_value
    if event.object_data is not None and event.object_data.decoded:
        return event.object_data.decoded
    if event.return_data is not None and event.return_data.decoded:
        return event.return_data.decoded
    return ""


def source_info(event: TraceEvent, rule_id: str = "") -> str:
    """Where the tainted data came from, as shown in node details."""
    if event.is_trigger_event:
        return f"VULNERABILITY: {format_rule_id(rule_id) or 'Security Rule Violation'}"

    info = ""
    tracked = event.tracked_args
    slot = event.source_slot
    if slot is not None:
        if slot.kind is SlotKind.PARAMETER:
            info = "Source: Parameter" if slot.index is None else f"Source: Parameter {slot.index + 1}"
        elif slot.kind is SlotKind.OBJECT:
            info = "Source: Object"
        else:
            info = "Source: Return Value"
        value = ", ".join(arg.decoded_value or "" for arg in tracked)
        if value:
            info += f' = "{value}"'
    elif event.raw_source is None and tracked:
        info = f'Source: Parameter = "{tracked[0].decoded_value or ""}"'

    if not info:
        info = "Source: Untrusted Input" if event.is_source_event else "Source: Data Flow"
    return info


def target_info(event: TraceEvent, rule_id: str = "") -> str:
    """Where the tainted data went; for violations, why the call is dangerous."""
    if event.is_trigger_event:
        for fragments, explanation in _RULE_EXPLANATIONS:
            if any(fragment in rule_id for fragment in fragments):
                return explanation
        tainted = tainted_data_value(event)
        return f'Tainted Data: "{tainted}"' if tainted else "Vulnerable Method Call"

    tainted = tainted_data_value(event)
    slot = event.target_slot
    if not event.raw_target:
        return f'Target: Result = "{tainted}"' if tainted else "Target: Unknown"
    if slot is None:
        return "Target: Unknown"

    if slot.kind is SlotKind.OBJECT:
        info = "Target: Object"
    elif slot.kind is SlotKind.RETURN:
        info = "Target: Return Value"
    else:
        info = "Target: Parameter"
    if tainted:
        info += f' = "{tainted}"'
    return info


def _violation_parameter(event: TraceEvent) -> Optional[str]:
    """Value of the parameter that reached the vulnerable call, when one can be found."""
    tracked = event.tracked_args
    if tracked:
        return tracked[0].decoded_value or ""
    if event.raw_source == "P0" and event.args:
        return event.args[0].decoded_value or ""
    if event.object_data is not None and event.object_data.decoded:
        return event.object_data.decoded
    if event.return_data is not None and event.return_data.decoded:
        return event.return_data.decoded
    return None


def parameter_taint_ranges(event: TraceEvent) -> Tuple[TaintRange, ...]:
    """
    Highlight range covering the whole violating parameter.

    Empty for anything but a Violation with a resolvable parameter value.
    """
    if not event.is_trigger_event:
        return ()
    value = _violation_parameter(event)
    if value is None:
        return ()
    return (TaintRange(tag="untrusted", range=f"0:{len(value)}"),)


def data_flow_info(event: TraceEvent, fallback: str) -> str:
    """Third display line of an event node; `fallback` is usually target_info(event)."""
    if event.is_source_event:
        if event.return_data is not None and event.return_data.decoded:
            return f'Source: "{event.return_data.decoded}"'
        if event.object_data is not None and event.object_data.decoded and event.object_data.tracked:
            return f'Source: "{event.object_data.decoded}"'
        return fallback

    if event.is_trigger_event:
        value = _violation_parameter(event)
        return f'Parameter: "{value}"' if value is not None else fallback

    slot = event.target_slot
    if slot is not None:
        if slot.kind is SlotKind.RETURN:
            if event.return_data is not None and event.return_data.decoded:
                return f'Target: "{event.return_data.decoded}"'
        elif slot.kind is SlotKind.OBJECT:
            if event.object_data is not None and event.object_data.decoded:
                return f'Target: "{event.object_data.decoded}"'
        elif slot.parameter_index < len(event.args):
            value = event.args[slot.parameter_index].decoded_value
            if value:
                return f'Target: "{value}"'
    return fallback


def request_summary(request_info: RequestInfo) -> Tuple[str, Tuple[TaintRange, ...]]:
    """
    Data line of the HTTP node and the ranges marking each parameter value.

    Ranges index into the text after the "Source: " prefix.
    """
    params: Sequence[NameValue] = request_info.parameters
    if not params:
        return "", ()

    pieces = [f'{param.name}="{param.value}"' for param in params]
    ranges: List[TaintRange] = []
    offset = 0
    for param, piece in zip(params, pieces):
        start = offset + len(param.name) + 2
        ranges.append(TaintRange(tag="tainted", range=f"{start}:{start + len(param.value)}"))
        offset += len(piece) + 2
    return "Source: " + ", ".join(pieces), tuple(ranges)


def route_signature(route: Optional[str]) -> str:
    return f"Controller handling {route}" if route else "Controller handling request"