"""
Request bodies accepted by the gateway and route endpoints.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

NAME_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"
HOSTNAME_PATTERN = r"^(\*\.)?[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"

Port = Annotated[int, Field(ge=1, le=65535)]


# Gateway
class CertificateRef(BaseModel):
    name: str
    namespace: Optional[str] = None
    kind: Optional[str] = None


class ListenerTLS(BaseModel):
    mode: Literal["Terminate", "Passthrough"] = "Terminate"
    certificateRefs: Optional[List[CertificateRef]] = None


class ListenerSpec(BaseModel):
    name: str = Field(pattern=NAME_PATTERN)
    protocol: Literal["HTTP", "HTTPS", "TLS", "TCP", "UDP", "GRPC"]
    port: Port
    hostname: Optional[str] = Field(default=None, pattern=HOSTNAME_PATTERN)
    tls: Optional[ListenerTLS] = None
    allowedRoutes: Optional[Dict[str, Any]] = None


class GatewayCreate(BaseModel):
    name: str = Field(pattern=NAME_PATTERN, max_length=253)
    namespace: Optional[str] = Field(default=None, pattern=NAME_PATTERN)
    gatewayClassName: Optional[str] = None
    listeners: List[ListenerSpec] = Field(min_length=1)
    addresses: Optional[List[Dict[str, Any]]] = None
    labels: Optional[Dict[str, str]] = None


class GatewayUpdate(BaseModel):
    gatewayClassName: Optional[str] = None
    listeners: Optional[List[ListenerSpec]] = Field(default=None, min_length=1)
    addresses: Optional[List[Dict[str, Any]]] = None
    labels: Optional[Dict[str, str]] = None


# HTTPRoute
class ParentRefSpec(BaseModel):
    name: str
    namespace: Optional[str] = None
    kind: str = "Gateway"
    group: str = "gateway.networking.k8s.io"
    sectionName: Optional[str] = None


class PathMatch(BaseModel):
    type: Literal["Exact", "PathPrefix", "RegularExpression"] = "PathPrefix"
    value: str


class ValueMatch(BaseModel):
    name: str
    type: Literal["Exact", "RegularExpression"] = "Exact"
    value: str


class RouteMatch(BaseModel):
    path: Optional[PathMatch] = None
    headers: Optional[List[ValueMatch]] = None
    queryParams: Optional[List[ValueMatch]] = None
    method: Optional[Literal["GET", "HEAD", "POST", "PUT", "DELETE", "CONNECT", "OPTIONS", "TRACE", "PATCH"]] = None


class BackendRef(BaseModel):
    name: str
    namespace: Optional[str] = None
    port: Port
    weight: int = Field(default=1, ge=0, le=1000000)
    kind: str = "Service"


class RouteFilter(BaseModel):
    type: Literal["RequestHeaderModifier", "ResponseHeaderModifier", "RequestRedirect", "URLRewrite"]
    requestHeaderModifier: Optional[Dict[str, Any]] = None
    responseHeaderModifier: Optional[Dict[str, Any]] = None
    requestRedirect: Optional[Dict[str, Any]] = None
    urlRewrite: Optional[Dict[str, Any]] = None


class RouteRule(BaseModel):
    matches: List[RouteMatch] = Field(min_length=1)
    backendRefs: Optional[List[BackendRef]] = None
    filters: Optional[List[RouteFilter]] = None


class HTTPRouteCreate(BaseModel):
    name: str = Field(pattern=NAME_PATTERN, max_length=253)
    namespace: Optional[str] = Field(default=None, pattern=NAME_PATTERN)
    parentRefs: List[ParentRefSpec] = Field(min_length=1)
    hostnames: Optional[List[str]] = None
    rules: List[RouteRule] = Field(min_length=1)
    labels: Optional[Dict[str, str]] = None


class HTTPRouteUpdate(BaseModel):
    parentRefs: Optional[List[ParentRefSpec]] = Field(default=None, min_length=1)
    hostnames: Optional[List[str]] = None
    rules: Optional[List[RouteRule]] = Field(default=None, min_length=1)
    labels: Optional[Dict[str, str]] = None


def to_spec(model: BaseModel) -> Dict[str, Any]:
    """Plain dict of the fields the caller actually sent."""
    return model.model_dump(exclude_unset=True, exclude_none=True)


class DeployRequest(BaseModel):
    namespace: Optional[str] = Field(default=None, pattern=NAME_PATTERN)
