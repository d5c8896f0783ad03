"""
Semantic shapes of the managed Gateway API resources.
"""
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict


class ResourceStatus(str, Enum):
    UNKNOWN = "Unknown"
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    NOT_ACCEPTED = "NotAccepted"
    READY = "Ready"
    NOT_READY = "NotReady"


class Condition(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    status: str
    reason: Optional[str] = None
    message: Optional[str] = None
    lastTransitionTime: Optional[str] = None


def derive_status(conditions: Optional[Iterable[Dict[str, Any]]]) -> ResourceStatus:
    """Map a condition list to a single status. Ready wins over Accepted."""
    conditions = list(conditions or [])
    if not conditions:
        return ResourceStatus.UNKNOWN

    by_type = {}
    for condition in conditions:
        by_type.setdefault(condition.get('type'), condition)

    if 'Ready' in by_type:
        if by_type['Ready'].get('status') == 'True':
            return ResourceStatus.READY
        return ResourceStatus.NOT_READY
    if 'Accepted' in by_type:
        if by_type['Accepted'].get('status') == 'True':
            return ResourceStatus.ACCEPTED
        return ResourceStatus.NOT_ACCEPTED
    return ResourceStatus.UNKNOWN


def route_conditions(status: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Route conditions live on the route or, per Gateway API, on its first parent status."""
    status = status or {}
    if status.get('conditions'):
        return status['conditions']
    parents = status.get('parents') or []
    if parents:
        return parents[0].get('conditions') or []
    return []


class TLSConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    mode: Optional[str] = None
    certificateRefs: Optional[List[Dict[str, Any]]] = None


class Listener(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    port: int
    protocol: str
    hostname: Optional[str] = None
    tls: Optional[TLSConfig] = None


class ParentRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    namespace: Optional[str] = None


class GatewayResource(BaseModel):
    id: str
    name: str
    namespace: str
    status: ResourceStatus
    gatewayClassName: Optional[str] = None
    listeners: List[Listener] = []
    addresses: List[Dict[str, Any]] = []
    conditions: List[Condition] = []
    createdAt: Optional[str] = None
    spec: Dict[str, Any] = {}
    persisted: bool = True
    raw: Optional[Dict[str, Any]] = None


class RouteResource(BaseModel):
    id: str
    name: str
    namespace: str
    status: ResourceStatus
    parentRefs: List[ParentRef] = []
    hostnames: List[str] = []
    rules: List[Dict[str, Any]] = []
    conditions: List[Condition] = []
    createdAt: Optional[str] = None
    spec: Dict[str, Any] = {}
    persisted: bool = True
    raw: Optional[Dict[str, Any]] = None
