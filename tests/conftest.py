"""Pytest configuration for tracegraph."""
import base64
import os

import pytest


def pytest_configure():
    # Keep tests independent of whatever the host shell exports.
    os.environ.setdefault("TRACEGRAPH_LOG_LEVEL", "DEBUG")
    os.environ.setdefault("TRACEGRAPH_LAYOUT", "hierarchical")


def b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def event_xml(
    object_id=None,
    type="P2O",
    time=1,
    element="propagation-event",
    parents=(),
    source=None,
    target=None,
    signature="",
    args=(),
    object_body=None,
    return_body=None,
    extra="",
):
    """One event record. `args` is a sequence of (body, tracked) pairs."""
    attrs = []
    if object_id is not None:
        attrs.append(f'objectId="{object_id}"')
    attrs.append(f'type="{type}"')
    attrs.append(f'time="{time}"')
    attrs.append('thread="http-nio-8080-exec-1"')
    if source is not None:
        attrs.append(f'source="{source}"')
    if target is not None:
        attrs.append(f'target="{target}"')

    body = []
    if signature:
        body.append(f"<signature>{signature}</signature>")
    if args:
        body.append("<args>")
        for value, tracked in args:
            body.append(f'<arg tracked="{"true" if tracked else "false"}" hashCode="11">{value}</arg>')
        body.append("</args>")
    if object_body is not None:
        body.append(f'<object tracked="true" hashCode="22">{object_body}</object>')
    if return_body is not None:
        body.append(f'<return tracked="true" hashCode="33">{return_body}</return>')
    if parents:
        body.append("<parentObjectIds>")
        body.extend(f"<id>{parent}</id>" for parent in parents)
        body.append("</parentObjectIds>")
    body.append(extra)
    return f"<{element} {' '.join(attrs)}>{''.join(body)}</{element}>"


def trace_xml(
    events,
    rule_id="sql-injection",
    uri="/search",
    qs="q=abc",
    title=None,
    method="GET",
    parameters=(("q", "abc"),),
):
    title_attr = f" vulnerability-title='{title}'" if title else ""
    params = "".join(f'<p name="{name}" value="{value}"/>' for name, value in parameters)
    return (
        f'<finding uuid="ABCD-1234" ruleId="{rule_id}" application-name="WebGoat" '
        f'application-id="app-1" link="https://example.test/vulns/ABCD-1234"{title_attr}>'
        f'<request method="{method}" protocol="http" version="1.1" port="8080" uri="{uri}" qs="{qs}">'
        '<headers><h name="Host" value="localhost:8080"/></headers>'
        f"<parameters>{params}</parameters>"
        "</request>"
        f"<events>{''.join(events)}</events>"
        "</finding>"
    )


@pytest.fixture
def make_event():
    return event_xml


@pytest.fixture
def make_trace():
    return trace_xml


@pytest.fixture
def encode():
    return b64


@pytest.fixture
def minimal_trace():
    """One Creation event and one Trigger that names no parents."""
    return trace_xml([
        event_xml("1", type="Creation", time=1, return_body=b64("abc")),
        event_xml("2", type="Trigger", time=2, args=((b64("abc"), True),)),
    ])


@pytest.fixture
def sqli_trace():
    """Source -> two propagators -> sink, the way a typical finding looks."""
    return trace_xml(
        [
            event_xml(
                "100",
                type="Creation",
                time=10,
                target="R",
                signature="public String getParameter(String)",
                return_body=b64("abc"),
            ),
            event_xml(
                "200",
                type="P2O",
                time=20,
                source="P0",
                target="O",
                signature="public StringBuilder java.lang.StringBuilder.append(java.lang.String)",
                args=((b64("abc"), True),),
                object_body=b64("SELECT * FROM users WHERE name='abc"),
                parents=("100",),
            ),
            event_xml(
                "300",
                type="O2R",
                time=30,
                source="O",
                target="R",
                signature="public String java.lang.StringBuilder.toString()",
                return_body=b64("SELECT * FROM users WHERE name='abc'"),
                parents=("200",),
            ),
            event_xml(
                "400",
                type="Trigger",
                time=40,
                source="P0",
                signature="public ResultSet java.sql.Statement.executeQuery(java.lang.String)",
                args=((b64("SELECT * FROM users WHERE name='abc'"), True),),
                parents=("300",),
            ),
        ],
        title='SQL Injection on "/search" page',
    )


@pytest.fixture
def group_trace():
    """One Source with base id 7 and three derived events 7-1 .. 7-3."""
    return trace_xml([
        event_xml("7", type="Creation", time=1, return_body=b64("abc")),
        event_xml("7-1", type="P2O", time=2, parents=("7",)),
        event_xml("7-2", type="P2P", time=3, parents=("7-1",)),
        event_xml("7-3", type="O2R", time=4, parents=("7-2",)),
    ])
