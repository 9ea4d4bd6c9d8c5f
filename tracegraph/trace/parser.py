"""
Trace Parser - vulnerability trace XML to typed records

PURPOSE:
Turn one trace document (a <finding> with its <request> and <events>) into an
immutable TraceModel the graph builder can consume without ever looking at
the XML again.

KEY STEPS:
1. Structural checks: finding / request / events must exist, else MalformedTraceError
2. Metadata: vulnerability attributes and request line, headers, parameters
3. Events: the three record kinds merged in document order, stable-sorted by time
4. Identifier repair: missing ids synthesised as event-{index}, collisions renamed {id}-{k}
5. Payload decoding: Base64 bodies decoded, raw text kept when decoding fails
6. Route inference: from the vulnerability title, else the request URI

Data-quality problems (bad Base64, odd timestamps, duplicate ids) never abort
the parse; they are repaired and logged.
"""

import logging
import re
import xml.etree.ElementTree as ET
from collections import Counter
from typing import Dict, List, Optional, Tuple, Union
from urllib.parse import urlparse

from tracegraph.base.config import ParserConfig, get_config
from tracegraph.errors import ErrorCode, MalformedTraceError
from tracegraph.trace.codec import decode_or_raw
from tracegraph.trace.models import (
    ArgValue,
    EventKind,
    EventSource,
    NameValue,
    PayloadData,
    RequestInfo,
    Slot,
    TaintRange,
    TraceEvent,
    TraceModel,
    VulnerabilityInfo,
    extract_base_id,
)

logger = logging.getLogger(__name__)

EVENT_ELEMENTS = ("propagation-event", "method-event", "tag-event")

# Ids of the two synthetic graph nodes; an event may not claim them
RESERVED_OBJECT_IDS = ("request", "route")

_ROUTE_IN_TITLE_RE = re.compile(r'on "(/[^"]*)" page')
_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def _parse_int(value: Optional[str], default: int = 0) -> int:
    """Leading integer of an attribute ("12", "12ms" -> 12); default when there is none."""
    if not value:
        return default
    match = _LEADING_INT_RE.match(value)
    if not match:
        return default
    return int(match.group(1))


def _text(element: Optional[ET.Element]) -> str:
    if element is None:
        return ""
    return "".join(element.itertext())


def _first(parent: ET.Element, tag: str) -> Optional[ET.Element]:
    """First descendant named `tag`, searching the whole subtree."""
    return parent.find(f".//{tag}")


def _child_text(parent: ET.Element, tag: str) -> Optional[str]:
    element = _first(parent, tag)
    return _text(element) if element is not None else None


def infer_route(explicit_title: Optional[str], uri: Optional[str]) -> str:
    """
    Controller path for the Route node.

    The title pattern `... on "/path" page` wins; otherwise the request URI is
    used (absolute URLs reduced to their path, leading "/" enforced).
    """
    if explicit_title:
        match = _ROUTE_IN_TITLE_RE.search(explicit_title)
        if match and match.group(1):
            return match.group(1)

    if not uri:
        return "/unknown"

    route = uri
    if route.startswith("http://") or route.startswith("https://"):
        try:
            route = urlparse(route).path or "/"
        except ValueError as e:
            logger.warning(f"[TraceParser] Could not parse request URI {uri!r}: {e}")
    if not route.startswith("/"):
        route = "/" + route
    return route


def dedupe_object_ids(raw_ids: List[str], reserved: Tuple[str, ...] = ()) -> List[str]:
    """
    Make identifiers unique, keeping document order.

    The first occurrence of an id keeps it; occurrences 2..N become
    "{id}-1" .. "{id}-{N-1}". If a rewritten id is already taken the suffix
    is advanced until it is free. A `reserved` id is treated as already
    taken, so even its first occurrence is renamed.
    """
    counts = Counter(raw_ids)
    used = set(raw_ids) | set(reserved)
    seen: Dict[str, int] = {}
    result: List[str] = []

    for object_id in raw_ids:
        if counts[object_id] == 1 and object_id not in reserved:
            result.append(object_id)
            continue

        occurrence = seen.get(object_id, 1 if object_id in reserved else 0)
        seen[object_id] = occurrence + 1
        if occurrence == 0:
            result.append(object_id)
            continue

        suffix = occurrence
        candidate = f"{object_id}-{suffix}"
        while candidate in used:
            suffix += 1
            candidate = f"{object_id}-{suffix}"
        used.add(candidate)
        logger.debug(f"[TraceParser] Renamed duplicate objectId {object_id} -> {candidate}")
        result.append(candidate)

    return result


class TraceParser:
    """
    Parses vulnerability trace XML into a TraceModel.

    Stateless between calls: every parse() returns a fresh model and nothing
    about the previous document is remembered.
    """

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or get_config().parser

    def parse(self, document: Union[str, bytes]) -> TraceModel:
        """
        Parse one trace document.

        Raises:
            MalformedTraceError: not well-formed, too large, or missing finding/request/events
        """
        size = len(document.encode("utf-8")) if isinstance(document, str) else len(document)
        if size > self.config.max_document_bytes:
            raise MalformedTraceError(
                f"Trace document is {size} bytes, limit is {self.config.max_document_bytes}",
                details={"size": size, "limit": self.config.max_document_bytes},
                code=ErrorCode.TRACE_TOO_LARGE,
            )

        logger.info(f"[TraceParser] Parsing trace document ({size} bytes)")

        try:
            root = ET.fromstring(document)
        except ET.ParseError as e:
            raise MalformedTraceError(
                f"Error parsing XML content: {e}",
                details={"position": list(getattr(e, "position", ()) or ())},
            ) from e

        finding = root if root.tag == "finding" else _first(root, "finding")
        if finding is None:
            raise MalformedTraceError("No finding element found in XML", details={"missing": "finding"})

        request_el = _first(finding, "request")
        if request_el is None:
            raise MalformedTraceError("No request element found in XML", details={"missing": "request"})

        events_el = _first(finding, "events")
        if events_el is None:
            raise MalformedTraceError("No events element found in XML", details={"missing": "events"})

        request_info = self._parse_request(request_el)
        vulnerability_info = self._parse_vulnerability(finding, request_info.uri)
        events = self._parse_events(events_el)
        route = infer_route(vulnerability_info.explicit_title, request_info.uri)

        logger.info(
            f"[TraceParser] Parsed {len(events)} events for rule {vulnerability_info.rule_id} "
            f"(route {route})"
        )
        return TraceModel(
            vulnerability_info=vulnerability_info,
            request_info=request_info,
            events=tuple(events),
            route=route,
        )

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def _parse_vulnerability(self, finding: ET.Element, uri: str) -> VulnerabilityInfo:
        rule_id = finding.get("ruleId") or "unknown"
        explicit_title = finding.get("vulnerability-title") or None
        return VulnerabilityInfo(
            uuid=finding.get("uuid") or "unknown",
            rule_id=rule_id,
            application_name=finding.get("application-name") or "unknown",
            application_id=finding.get("application-id") or "unknown",
            title=explicit_title or f"{rule_id} in {uri}",
            link=finding.get("link") or "#",
            explicit_title=explicit_title,
        )

    def _parse_request(self, request_el: ET.Element) -> RequestInfo:
        return RequestInfo(
            method=request_el.get("method") or "GET",
            protocol=request_el.get("protocol") or "http",
            version=request_el.get("version") or "1.1",
            port=request_el.get("port") or "80",
            uri=request_el.get("uri") or "/",
            query_string=request_el.get("qs") or "",
            headers=self._name_values(request_el, "headers", "h"),
            parameters=self._name_values(request_el, "parameters", "p"),
        )

    @staticmethod
    def _name_values(request_el: ET.Element, container: str, item: str) -> Tuple[NameValue, ...]:
        container_el = _first(request_el, container)
        if container_el is None:
            return ()
        return tuple(
            NameValue(name=el.get("name") or "", value=el.get("value") or "")
            for el in container_el.iter(item)
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _parse_events(self, events_el: ET.Element) -> List[TraceEvent]:
        records = [el for el in events_el.iter() if el.tag in EVENT_ELEMENTS]

        # sorted() is stable, so equal timestamps keep document order
        records = sorted(records, key=lambda el: _parse_int(el.get("time")))

        raw_ids: List[str] = []
        real_id: List[bool] = []
        for index, el in enumerate(records):
            object_id = el.get("objectId")
            raw_ids.append(object_id or f"event-{index}")
            real_id.append(bool(object_id))

        object_ids = dedupe_object_ids(raw_ids, RESERVED_OBJECT_IDS)
        renamed = sum(1 for before, after in zip(raw_ids, object_ids) if before != after)
        if renamed:
            logger.warning(f"[TraceParser] Renamed {renamed} duplicate objectIds")

        events = [
            self._parse_event(el, object_id, has_real_id, index)
            for index, (el, object_id, has_real_id) in enumerate(zip(records, object_ids, real_id))
        ]
        logger.debug(f"[TraceParser] Collected {len(events)} event records")
        return events

    def _parse_event(self, el: ET.Element, object_id: str, has_real_id: bool, index: int) -> TraceEvent:
        raw_type = el.get("type") or "Unknown"
        raw_source = el.get("source") or None
        raw_target = el.get("target") or ""

        return TraceEvent(
            object_id=object_id,
            time=_parse_int(el.get("time")),
            thread=el.get("thread") or "",
            kind=EventKind.from_raw(raw_type),
            raw_type=raw_type,
            element=el.tag,
            source_slot=Slot.parse(raw_source),
            target_slot=Slot.parse(raw_target),
            raw_source=raw_source,
            raw_target=raw_target,
            signature=_child_text(el, "signature") or "",
            stack_frames=self._stack(el),
            args=self._args(el, index),
            properties=self._properties(el),
            taint_ranges=self._taint_ranges(el),
            tags=self._tags(el),
            sources=self._sources(el),
            parent_object_ids=self._parent_ids(el),
            object_data=self._payload(el, "object", index),
            return_data=self._payload(el, "return", index),
            has_real_id=has_real_id,
            base_id=extract_base_id(object_id),
        )

    def _decode(self, encoded: Optional[str], context: str) -> Optional[str]:
        if not self.config.decode_payloads:
            return encoded or None
        return decode_or_raw(encoded, context)

    @staticmethod
    def _stack(el: ET.Element) -> Tuple[str, ...]:
        stack_el = _first(el, "stack")
        if stack_el is None:
            return ()
        return tuple(_text(frame) for frame in stack_el.iter("frame"))

    def _args(self, el: ET.Element, index: int) -> Tuple[ArgValue, ...]:
        args_el = _first(el, "args")
        if args_el is None:
            return ()
        args = []
        for position, arg_el in enumerate(args_el.iter("arg")):
            tracked = arg_el.get("tracked") == "true"
            encoded = _text(arg_el)
            decoded = self._decode(encoded, f"event {index} arg {position}") if tracked else None
            args.append(ArgValue(
                hash_code=arg_el.get("hashCode"),
                tracked=tracked,
                encoded_value=encoded,
                decoded_value=decoded,
            ))
        return tuple(args)

    def _payload(self, el: ET.Element, tag: str, index: int) -> Optional[PayloadData]:
        payload_el = _first(el, tag)
        if payload_el is None:
            return None
        encoded = _text(payload_el)
        return PayloadData(
            tracked=payload_el.get("tracked") == "true",
            hash_code=payload_el.get("hashCode") or "",
            encoded=encoded,
            decoded=self._decode(encoded, f"event {index} {tag}"),
        )

    @staticmethod
    def _properties(el: ET.Element) -> Dict[str, str]:
        props_el = _first(el, "properties")
        if props_el is None:
            return {}
        properties: Dict[str, str] = {}
        for prop_el in props_el.iter("p"):
            key = _child_text(prop_el, "k")
            value = _child_text(prop_el, "v")
            if key and value:
                properties[key] = value
        return properties

    @staticmethod
    def _taint_ranges(el: ET.Element) -> Tuple[TaintRange, ...]:
        ranges_el = _first(el, "taint-ranges")
        if ranges_el is None:
            return ()
        return tuple(
            TaintRange(tag=_child_text(range_el, "tag"), range=_child_text(range_el, "range"))
            for range_el in ranges_el.iter("taint-range")
        )

    @staticmethod
    def _tags(el: ET.Element) -> Tuple[str, ...]:
        text = _child_text(el, "tags")
        if not text:
            return ()
        return tuple(tag.strip() for tag in text.split(",") if tag.strip())

    @staticmethod
    def _sources(el: ET.Element) -> Tuple[EventSource, ...]:
        sources_el = _first(el, "sources")
        if sources_el is None:
            return ()
        return tuple(
            EventSource(type=source_el.get("type"), name=source_el.get("name"))
            for source_el in sources_el.iter("source")
        )

    @staticmethod
    def _parent_ids(el: ET.Element) -> Tuple[str, ...]:
        parents_el = _first(el, "parentObjectIds")
        if parents_el is None:
            return ()
        return tuple(
            _text(id_el).strip()
            for id_el in parents_el.iter("id")
            if _text(id_el).strip()
        )


def parse_trace(document: Union[str, bytes], config: Optional[ParserConfig] = None) -> TraceModel:
    """Convenience wrapper: parse a document with a one-off TraceParser."""
    return TraceParser(config).parse(document)
