import pytest

from tracegraph.base.config import ParserConfig
from tracegraph.errors import ErrorCode, MalformedTraceError
from tracegraph.trace.models import EventKind, SlotKind
from tracegraph.trace.parser import TraceParser, dedupe_object_ids, infer_route, parse_trace


def test_parse_minimal_trace_metadata(minimal_trace):
    trace = parse_trace(minimal_trace)

    info = trace.vulnerability_info
    assert info.uuid == "ABCD-1234"
    assert info.rule_id == "sql-injection"
    assert info.application_name == "WebGoat"
    assert info.application_id == "app-1"
    assert info.link == "https://example.test/vulns/ABCD-1234"
    assert info.title == "sql-injection in /search"
    assert info.explicit_title is None

    request = trace.request_info
    assert request.method == "GET"
    assert request.port == "8080"
    assert request.uri == "/search"
    assert request.query_string == "q=abc"
    assert request.request_line == "GET /search?q=abc"
    assert [(h.name, h.value) for h in request.headers] == [("Host", "localhost:8080")]
    assert [(p.name, p.value) for p in request.parameters] == [("q", "abc")]

    assert trace.route == "/search"
    assert [e.object_id for e in trace.events] == ["1", "2"]
    assert trace.events[0].kind is EventKind.CREATION
    assert trace.events[1].kind is EventKind.TRIGGER


def test_missing_attributes_fall_back_to_defaults():
    doc = "<finding><request/><events/></finding>"
    trace = parse_trace(doc)

    assert trace.vulnerability_info.uuid == "unknown"
    assert trace.vulnerability_info.rule_id == "unknown"
    assert trace.vulnerability_info.link == "#"
    assert trace.request_info.method == "GET"
    assert trace.request_info.protocol == "http"
    assert trace.request_info.version == "1.1"
    assert trace.request_info.port == "80"
    assert trace.request_info.uri == "/"
    assert trace.events == ()
    assert trace.route == "/"


def test_duplicate_object_ids_are_renamed_in_order(make_trace, make_event):
    doc = make_trace([
        make_event("42", type="Creation", time=1),
        make_event("42", type="P2O", time=2),
    ])
    trace = parse_trace(doc)
    assert [e.object_id for e in trace.events] == ["42", "42-1"]
    assert [e.base_id for e in trace.events] == [42, 42]


def test_dedupe_advances_past_taken_suffix():
    assert dedupe_object_ids(["42", "42", "42-1"]) == ["42", "42-2", "42-1"]
    assert dedupe_object_ids(["5", "5", "5"]) == ["5", "5-1", "5-2"]
    assert dedupe_object_ids(["1", "2"]) == ["1", "2"]


def test_reserved_ids_are_renamed():
    assert dedupe_object_ids(["route", "5"], reserved=("request", "route")) == ["route-1", "5"]


def test_missing_object_id_is_synthesised(make_trace, make_event):
    doc = make_trace([
        make_event(None, type="P2O", time=2),
        make_event("5", type="Creation", time=1),
    ])
    trace = parse_trace(doc)

    # index is taken after the time sort
    assert [e.object_id for e in trace.events] == ["5", "event-1"]
    synthesised = trace.events[1]
    assert synthesised.has_real_id is False
    assert synthesised.base_id is None
    assert trace.events[0].has_real_id is True


def test_events_are_stable_sorted_by_time(make_trace, make_event):
    doc = make_trace([
        make_event("30", type="P2O", time=3),
        make_event("10", type="Creation", time=1, element="method-event"),
        make_event("11", type="P2O", time=1, element="tag-event"),
    ])
    trace = parse_trace(doc)
    assert [e.object_id for e in trace.events] == ["10", "11", "30"]
    assert [e.element for e in trace.events] == ["method-event", "tag-event", "propagation-event"]
    assert trace.events[0].is_method_event is True


def test_time_attribute_uses_leading_integer(make_trace, make_event):
    doc = make_trace([
        make_event("1", time="12ms"),
        make_event("2", time="soon"),
    ])
    trace = parse_trace(doc)
    assert [(e.object_id, e.time) for e in trace.events] == [("2", 0), ("1", 12)]


def test_payloads_are_decoded(make_trace, make_event, encode):
    doc = make_trace([
        make_event(
            "1",
            type="P2R",
            args=((encode("abc"), True), (encode("ignored"), False)),
            object_body=encode("héllo"),
            return_body=encode("world"),
        ),
    ])
    event = parse_trace(doc).events[0]

    assert event.object_data.decoded == "héllo"
    assert event.object_data.encoded == encode("héllo")
    assert event.object_data.tracked is True
    assert event.object_data.hash_code == "22"
    assert event.return_data.decoded == "world"
    assert event.args[0].decoded_value == "abc"
    assert event.args[0].hash_code == "11"
    # untracked args are never decoded
    assert event.args[1].tracked is False
    assert event.args[1].decoded_value is None
    assert [a.decoded_value for a in event.tracked_args] == ["abc"]


def test_undecodable_payload_keeps_raw_text(make_trace, make_event, encode):
    doc = make_trace([
        make_event("1", object_body="not base64!", return_body=encode("ok")),
        make_event("2", time=2),
    ])
    trace = parse_trace(doc)

    assert trace.events[0].object_data.decoded == "not base64!"
    assert trace.events[0].return_data.decoded == "ok"
    assert len(trace.events) == 2


def test_decode_disabled_keeps_raw_text(make_trace, make_event, encode):
    doc = make_trace([make_event("1", return_body=encode("world"))])
    trace = TraceParser(ParserConfig(decode_payloads=False)).parse(doc)
    assert trace.events[0].return_data.decoded == encode("world")


def test_event_detail_fields(make_trace, make_event):
    extra = (
        "<stack><frame>a.b.C.d(C.java:1)</frame><frame>e.f.G.h(G.java:2)</frame></stack>"
        "<properties><p><k>origin</k><v>q</v></p><p><k>empty</k><v></v></p></properties>"
        "<taint-ranges><taint-range><tag>untrusted</tag><range>0:3</range></taint-range></taint-ranges>"
        "<tags>sql-encoded, , html</tags>"
        '<sources><source type="PARAMETER" name="q"/></sources>'
    )
    doc = make_trace([
        make_event(
            "9",
            type="P2O",
            source="P1",
            target="O",
            signature="public StringBuilder java.lang.StringBuilder.append(java.lang.String)",
            parents=(" 3 ", "", "4"),
            extra=extra,
        ),
    ])
    event = parse_trace(doc).events[0]

    assert event.raw_type == "P2O"
    assert event.kind is EventKind.P2O
    assert event.thread == "http-nio-8080-exec-1"
    assert event.source_slot.kind is SlotKind.PARAMETER
    assert event.source_slot.index == 1
    assert event.target_slot.kind is SlotKind.OBJECT
    assert event.raw_source == "P1"
    assert event.raw_target == "O"
    assert event.signature.startswith("public StringBuilder")
    assert event.stack_frames == ("a.b.C.d(C.java:1)", "e.f.G.h(G.java:2)")
    assert event.properties == {"origin": "q"}
    assert [(r.tag, r.range) for r in event.taint_ranges] == [("untrusted", "0:3")]
    assert event.tags == ("sql-encoded", "html")
    assert [(s.type, s.name) for s in event.sources] == [("PARAMETER", "q")]
    assert event.parent_object_ids == ("3", "4")


def test_unknown_event_type(make_trace, make_event):
    event = parse_trace(make_trace([make_event("1", type="Bogus")])).events[0]
    assert event.kind is EventKind.UNKNOWN
    assert event.raw_type == "Bogus"
    assert event.is_propagation_event is True


def test_route_from_title(make_trace, make_event):
    doc = make_trace([make_event("1")], title='SQL Injection on "/login" page', uri="/search")
    trace = parse_trace(doc)
    assert trace.route == "/login"
    assert trace.vulnerability_info.title == 'SQL Injection on "/login" page'


def test_infer_route_from_uri():
    assert infer_route(None, "https://shop.example/app/login") == "/app/login"
    assert infer_route(None, "http://shop.example") == "/"
    assert infer_route(None, "search") == "/search"
    assert infer_route(None, "") == "/unknown"
    assert infer_route("No page mentioned", "/x") == "/x"


def test_finding_may_be_nested(minimal_trace):
    trace = parse_trace(f"<export>{minimal_trace}</export>")
    assert len(trace.events) == 2


def test_bytes_document(minimal_trace):
    trace = parse_trace(minimal_trace.encode("utf-8"))
    assert trace.vulnerability_info.rule_id == "sql-injection"


@pytest.mark.parametrize(
    "doc, missing",
    [
        ("<export><nothing/></export>", "finding"),
        ("<finding><events/></finding>", "request"),
        ("<finding><request/></finding>", "events"),
    ],
)
def test_missing_structure_raises(doc, missing):
    with pytest.raises(MalformedTraceError) as excinfo:
        parse_trace(doc)
    assert excinfo.value.code is ErrorCode.TRACE_MALFORMED
    assert excinfo.value.details["missing"] == missing


def test_not_well_formed_raises():
    with pytest.raises(MalformedTraceError) as excinfo:
        parse_trace("<finding><request></finding>")
    assert "Error parsing XML content" in excinfo.value.message


def test_oversized_document_raises(minimal_trace):
    parser = TraceParser(ParserConfig(max_document_bytes=10))
    with pytest.raises(MalformedTraceError) as excinfo:
        parser.parse(minimal_trace)
    assert excinfo.value.code is ErrorCode.TRACE_TOO_LARGE
    assert excinfo.value.to_dict()["code"] == "TRACE_004"


def test_size_limit_counts_encoded_bytes():
    parser = TraceParser(ParserConfig(max_document_bytes=10))
    # six characters, twelve bytes in UTF-8
    with pytest.raises(MalformedTraceError) as excinfo:
        parser.parse("\u00e9" * 6)
    assert excinfo.value.code is ErrorCode.TRACE_TOO_LARGE
    assert excinfo.value.details["size"] == 12


def test_parser_keeps_no_state_between_documents(minimal_trace, group_trace):
    parser = TraceParser()
    first = parser.parse(minimal_trace)
    parser.parse(group_trace)
    again = parser.parse(minimal_trace)

    assert first == again
    assert first is not again
    assert [e.object_id for e in again.events] == ["1", "2"]
