from pydantic import BaseModel, Field
from typing import List, Dict, Optional, Any

from tracegraph.layout.base import LayoutResult, PositionedNode
from tracegraph.trace.models import TraceModel


class TaintRangeDTO(BaseModel):
    tag: Optional[str] = None
    range: Optional[str] = Field(default=None, description='Half-open "start:end" spans, comma separated')


class NodeDTO(BaseModel):
    id: str
    kind: str = Field(description="http-request | route | trace-event")
    category: int = Field(ge=0, le=4, description="0=HTTP 1=Route 2=Source 3=DataFlow 4=Violation")
    label: str = ""
    display_type: str = ""
    method_signature: str = ""
    tainted_data: str = ""
    taint_ranges: List[TaintRangeDTO] = Field(default_factory=list)
    is_source_event: bool = False
    is_trigger_event: bool = False
    is_collapsed_group: bool = False
    member_ids: List[str] = Field(default_factory=list)
    base_id: Optional[int] = None
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0
    x0: Optional[float] = None
    y0: Optional[float] = None
    x1: Optional[float] = None
    y1: Optional[float] = None
    layer: Optional[int] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class EdgeDTO(BaseModel):
    source: str
    target: str
    path: str = Field(default="", description="SVG path data")


class BandDTO(BaseModel):
    source: str
    target: str
    value: float
    width: float = Field(description="Band thickness")
    x0: float
    y0: float
    x1: float
    y1: float
    path: str


class VulnerabilityDTO(BaseModel):
    uuid: str
    rule_id: str
    application_name: str
    application_id: str
    title: str
    link: str


class RequestDTO(BaseModel):
    method: str
    protocol: str
    version: str
    port: str
    uri: str
    query_string: str
    headers: List[Dict[str, str]] = Field(default_factory=list)
    parameters: List[Dict[str, str]] = Field(default_factory=list)


class GraphDTO(BaseModel):
    """Everything a renderer needs for one trace: positioned nodes, routed edges, bands."""
    strategy: str
    fallback_used: bool = False
    width: float
    height: float
    nodes: List[NodeDTO]
    edges: List[EdgeDTO]
    bands: List[BandDTO] = Field(default_factory=list)
    vulnerability: Optional[VulnerabilityDTO] = None
    request: Optional[RequestDTO] = None
    error: Optional[Dict[str, Any]] = None


def _ranges(ranges) -> List[TaintRangeDTO]:
    return [TaintRangeDTO(tag=r.tag, range=r.range) for r in ranges]


def node_dto(positioned: PositionedNode) -> NodeDTO:
    node = positioned.node
    return NodeDTO(
        id=node.id,
        kind=node.kind.value,
        category=int(node.category),
        label=node.label,
        display_type=node.display_type,
        method_signature=node.method_signature,
        tainted_data=node.tainted_data,
        taint_ranges=_ranges(node.taint_ranges),
        is_source_event=node.is_source_event,
        is_trigger_event=node.is_trigger_event,
        is_collapsed_group=node.is_collapsed_group,
        member_ids=node.member_ids,
        base_id=node.base_id,
        x=positioned.x,
        y=positioned.y,
        width=positioned.width,
        height=positioned.height,
        x0=positioned.x0,
        y0=positioned.y0,
        x1=positioned.x1,
        y1=positioned.y1,
        layer=positioned.layer,
        details=dict(node.details),
    )


def graph_dto(result: LayoutResult, trace: Optional[TraceModel] = None) -> GraphDTO:
    """Flatten a laid-out graph into the renderer contract."""
    vulnerability = None
    request = None
    if trace is not None:
        info = trace.vulnerability_info
        vulnerability = VulnerabilityDTO(
            uuid=info.uuid,
            rule_id=info.rule_id,
            application_name=info.application_name,
            application_id=info.application_id,
            title=info.title,
            link=info.link,
        )
        req = trace.request_info
        request = RequestDTO(
            method=req.method,
            protocol=req.protocol,
            version=req.version,
            port=req.port,
            uri=req.uri,
            query_string=req.query_string,
            headers=[{"name": h.name, "value": h.value} for h in req.headers],
            parameters=[{"name": p.name, "value": p.value} for p in req.parameters],
        )

    return GraphDTO(
        strategy=result.strategy.value,
        fallback_used=result.fallback_used,
        width=result.viewport.width,
        height=result.viewport.height,
        nodes=[node_dto(p) for p in result.nodes],
        edges=[EdgeDTO(source=e.source, target=e.target, path=e.path) for e in result.edges],
        bands=[
            BandDTO(
                source=b.source,
                target=b.target,
                value=b.value,
                width=b.width,
                x0=b.x0,
                y0=b.y0,
                x1=b.x1,
                y1=b.y1,
                path=b.path,
            )
            for b in result.bands
        ],
        vulnerability=vulnerability,
        request=request,
    )
