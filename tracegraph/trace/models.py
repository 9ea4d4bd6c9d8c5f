"""
Typed records produced by the trace parser.

Every record here is a frozen dataclass: once the parser hands a TraceModel
to the graph builder nothing mutates it. Stringly-typed codes found in the
XML (event types, slot codes, numeric id prefixes) are decoded exactly once,
at parse time, into the closed types below.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

_BASE_ID_RE = re.compile(r"^(\d+)(?:-\d+)?(?:-group)?$")
_SLOT_RE = re.compile(r"^P(\d+)$")


def extract_base_id(identifier: str) -> Optional[int]:
    """
    Leading numeric id shared by related events.

    "42" -> 42, "42-3" -> 42, "42-group" -> 42, "event-7" -> None.
    """
    if not identifier:
        return None
    match = _BASE_ID_RE.match(identifier)
    if not match:
        return None
    return int(match.group(1))


class EventKind(str, Enum):
    """Closed set of event types found in the `type` attribute."""
    CREATION = "Creation"
    SOURCE = "Source"
    PROPAGATOR = "Propagator"
    P2O = "P2O"
    O2P = "O2P"
    P2P = "P2P"
    O2R = "O2R"
    P2R = "P2R"
    TRIGGER = "Trigger"
    UNKNOWN = "Unknown"

    @classmethod
    def from_raw(cls, raw: Optional[str]) -> "EventKind":
        if not raw:
            return cls.UNKNOWN
        try:
            return cls(raw.strip())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_source(self) -> bool:
        return self in (EventKind.CREATION, EventKind.SOURCE)

    @property
    def is_trigger(self) -> bool:
        return self is EventKind.TRIGGER

    @property
    def is_propagator(self) -> bool:
        return self in _PROPAGATOR_KINDS


_PROPAGATOR_KINDS = frozenset({
    EventKind.PROPAGATOR,
    EventKind.P2O,
    EventKind.O2P,
    EventKind.P2P,
    EventKind.O2R,
    EventKind.P2R,
})


class SlotKind(str, Enum):
    OBJECT = "O"
    RETURN = "R"
    PARAMETER = "P"


@dataclass(frozen=True)
class Slot:
    """
    Method slot that carried tainted data: the receiver object, the return
    value, or a parameter. `index` is None for a bare "P" code.
    """
    kind: SlotKind
    index: Optional[int] = None
    raw: str = ""

    @property
    def parameter_index(self) -> int:
        """Zero-based parameter position; a bare "P" means the first parameter."""
        return self.index if self.index is not None else 0

    @classmethod
    def parse(cls, code: Optional[str]) -> Optional["Slot"]:
        """
        Decode "O", "R", "P" or "P<n>". Multi-slot codes ("P0,P1") decode
        their first entry. Anything else decodes to None.
        """
        if code is None:
            return None
        raw = code.strip()
        if not raw:
            return None
        first = raw.split(",")[0].strip()
        if first == "O":
            return cls(SlotKind.OBJECT, raw=raw)
        if first == "R":
            return cls(SlotKind.RETURN, raw=raw)
        if first == "P":
            return cls(SlotKind.PARAMETER, raw=raw)
        match = _SLOT_RE.match(first)
        if match:
            return cls(SlotKind.PARAMETER, index=int(match.group(1)), raw=raw)
        return None


@dataclass(frozen=True)
class TaintRange:
    """A tag plus one or more half-open "start:end" character ranges, kept verbatim."""
    tag: Optional[str]
    range: Optional[str]

    def spans(self) -> List[Tuple[int, int]]:
        """Parsed (start, end) pairs; malformed or negative entries are skipped."""
        if not self.range:
            return []
        spans: List[Tuple[int, int]] = []
        for part in self.range.split(","):
            bounds = part.strip().split(":")
            if len(bounds) != 2:
                continue
            try:
                start, end = int(bounds[0]), int(bounds[1])
            except ValueError:
                continue
            if start < 0 or end < start:
                continue
            spans.append((start, end))
        return spans


@dataclass(frozen=True)
class ArgValue:
    hash_code: Optional[str]
    tracked: bool
    encoded_value: str
    decoded_value: Optional[str] = None


@dataclass(frozen=True)
class PayloadData:
    """Body of an <object> or <return> record."""
    tracked: bool
    hash_code: str
    encoded: str
    decoded: Optional[str] = None


@dataclass(frozen=True)
class EventSource:
    type: Optional[str]
    name: Optional[str]


@dataclass(frozen=True)
class NameValue:
    name: str
    value: str


@dataclass(frozen=True)
class TraceEvent:
    """One parsed trace entry, in time order."""
    object_id: str
    time: int = 0
    thread: str = ""
    kind: EventKind = EventKind.UNKNOWN
    raw_type: str = "Unknown"
    element: str = "propagation-event"
    source_slot: Optional[Slot] = None
    target_slot: Optional[Slot] = None
    raw_source: Optional[str] = None
    raw_target: str = ""
    signature: str = ""
    stack_frames: Tuple[str, ...] = ()
    args: Tuple[ArgValue, ...] = ()
    properties: Dict[str, str] = field(default_factory=dict)
    taint_ranges: Tuple[TaintRange, ...] = ()
    tags: Tuple[str, ...] = ()
    sources: Tuple[EventSource, ...] = ()
    parent_object_ids: Tuple[str, ...] = ()
    object_data: Optional[PayloadData] = None
    return_data: Optional[PayloadData] = None
    has_real_id: bool = True
    base_id: Optional[int] = None

    @property
    def is_source_event(self) -> bool:
        return self.kind.is_source

    @property
    def is_trigger_event(self) -> bool:
        return self.kind.is_trigger

    @property
    def is_method_event(self) -> bool:
        return self.element == "method-event"

    @property
    def is_propagation_event(self) -> bool:
        return not self.is_method_event and not self.is_trigger_event and not self.is_source_event

    @property
    def tracked_args(self) -> List[ArgValue]:
        return [arg for arg in self.args if arg.tracked]


@dataclass(frozen=True)
class VulnerabilityInfo:
    uuid: str = "unknown"
    rule_id: str = "unknown"
    application_name: str = "unknown"
    application_id: str = "unknown"
    title: str = ""
    link: str = "#"
    explicit_title: Optional[str] = None


@dataclass(frozen=True)
class RequestInfo:
    method: str = "GET"
    protocol: str = "http"
    version: str = "1.1"
    port: str = "80"
    uri: str = "/"
    query_string: str = ""
    headers: Tuple[NameValue, ...] = ()
    parameters: Tuple[NameValue, ...] = ()

    @property
    def request_line(self) -> str:
        """e.g. "GET /search?q=1"."""
        suffix = f"?{self.query_string}" if self.query_string else ""
        return f"{self.method} {self.uri}{suffix}"


@dataclass(frozen=True)
class TraceModel:
    """
    The explicit result of one parse. Passed to every later stage instead of
    any shared parsed-document state.
    """
    vulnerability_info: VulnerabilityInfo
    request_info: RequestInfo
    events: Tuple[TraceEvent, ...] = ()
    route: str = "/unknown"

    @property
    def rule_id(self) -> str:
        return self.vulnerability_info.rule_id

    def event_by_id(self, object_id: str) -> Optional[TraceEvent]:
        for event in self.events:
            if event.object_id == object_id:
                return event
        return None
