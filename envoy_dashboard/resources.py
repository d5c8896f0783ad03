"""
Typed CRUD over the Gateway API custom resources.

Calls go to the live cluster when the bootstrapper holds a connection. When it
does not, a FallbackPolicy decides: reads return deterministic example data and
targeted or mutating calls fail with NotConnected.
"""
import copy
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from kubernetes_asyncio import client
from kubernetes_asyncio.client.exceptions import ApiException

from envoy_dashboard.errors import (
    CONNECTION_ERRORS,
    NotConnected,
    handle_api_exception,
    handle_connection_error,
)
from envoy_dashboard.k8s import ConnectionState
from envoy_dashboard.models import (
    GatewayResource,
    ResourceStatus,
    RouteResource,
    derive_status,
    route_conditions,
)

logger = logging.getLogger(__name__)

GATEWAY_API_GROUP = "gateway.networking.k8s.io"
GATEWAY_API_VERSION = "v1beta1"
ENVOY_GATEWAY_CONTROLLER = "gateway.envoyproxy.io/gatewayclass-controller"
ENVOY_GATEWAY_NAMESPACE = "envoy-gateway-system"
ENVOY_CONFIG_GROUP = "config.gateway.envoyproxy.io"
ENVOY_CONFIG_VERSION = "v1alpha1"

# createdAt of the example resources served while disconnected
FALLBACK_TIMESTAMP = "2024-01-01T00:00:00Z"

# request keys that belong in metadata rather than spec
METADATA_KEYS = ("name", "namespace", "labels")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ResourceKind(ABC):
    """Describes one custom resource kind and how to map it."""

    kind = ""
    plural = ""
    label = ""

    def api_version(self) -> str:
        return f"{GATEWAY_API_GROUP}/{GATEWAY_API_VERSION}"

    def default_spec(self) -> Dict[str, Any]:
        return {}

    def build_body(self, spec: Dict[str, Any], namespace: str) -> Dict[str, Any]:
        """Full API object from a caller-supplied spec."""
        metadata = {'name': spec['name'], 'namespace': namespace}
        if spec.get('labels'):
            metadata['labels'] = dict(spec['labels'])
        body_spec = self.default_spec()
        body_spec.update({k: copy.deepcopy(v) for k, v in spec.items() if k not in METADATA_KEYS})
        return {
            'apiVersion': self.api_version(),
            'kind': self.kind,
            'metadata': metadata,
            'spec': body_spec,
        }

    def conditions(self, raw: Dict[str, Any]) -> List[Dict[str, Any]]:
        return (raw.get('status') or {}).get('conditions') or []

    @abstractmethod
    def to_resource(self, raw: Dict[str, Any], status: Optional[ResourceStatus] = None,
                    persisted: bool = True):
        """Map an API object to its resource view."""

    @abstractmethod
    def fallback(self, namespace: str):
        """Example resource served while disconnected."""

    def pending(self, spec: Dict[str, Any], namespace: str):
        body = self.build_body(spec, namespace)
        body['metadata']['uid'] = f"demo-{namespace}-{spec['name']}"
        body['metadata']['creationTimestamp'] = _now()
        return self.to_resource(body, status=ResourceStatus.PENDING, persisted=False)


class GatewayKind(ResourceKind):
    kind = "Gateway"
    plural = "gateways"
    label = "Gateway"

    def __init__(self, gateway_class_name: str = "envoy-gateway"):
        self.gateway_class_name = gateway_class_name

    def default_spec(self) -> Dict[str, Any]:
        return {'gatewayClassName': self.gateway_class_name, 'listeners': []}

    def to_resource(self, raw, status=None, persisted=True) -> GatewayResource:
        metadata = raw.get('metadata') or {}
        spec = raw.get('spec') or {}
        conditions = self.conditions(raw)
        return GatewayResource(
            id=metadata.get('uid') or '',
            name=metadata.get('name') or '',
            namespace=metadata.get('namespace') or '',
            status=status or derive_status(conditions),
            gatewayClassName=spec.get('gatewayClassName'),
            listeners=spec.get('listeners') or [],
            addresses=(raw.get('status') or {}).get('addresses') or [],
            conditions=conditions,
            createdAt=metadata.get('creationTimestamp'),
            spec=spec,
            persisted=persisted,
            raw=raw,
        )

    def fallback(self, namespace: str) -> GatewayResource:
        return GatewayResource(
            id='mock-gateway-1',
            name='example-gateway',
            namespace=namespace,
            status=ResourceStatus.READY,
            gatewayClassName=self.gateway_class_name,
            listeners=[
                {'name': 'http', 'protocol': 'HTTP', 'port': 80},
                {'name': 'https', 'protocol': 'HTTPS', 'port': 443},
            ],
            createdAt=FALLBACK_TIMESTAMP,
            spec={
                'gatewayClassName': self.gateway_class_name,
                'listeners': [
                    {'name': 'http', 'protocol': 'HTTP', 'port': 80},
                    {'name': 'https', 'protocol': 'HTTPS', 'port': 443},
                ],
            },
            persisted=False,
        )


class HTTPRouteKind(ResourceKind):
    kind = "HTTPRoute"
    plural = "httproutes"
    label = "HTTPRoute"

    def default_spec(self) -> Dict[str, Any]:
        return {'parentRefs': [], 'hostnames': [], 'rules': []}

    def conditions(self, raw):
        return route_conditions(raw.get('status'))

    def to_resource(self, raw, status=None, persisted=True) -> RouteResource:
        metadata = raw.get('metadata') or {}
        spec = raw.get('spec') or {}
        conditions = self.conditions(raw)
        return RouteResource(
            id=metadata.get('uid') or '',
            name=metadata.get('name') or '',
            namespace=metadata.get('namespace') or '',
            status=status or derive_status(conditions),
            parentRefs=spec.get('parentRefs') or [],
            hostnames=spec.get('hostnames') or [],
            rules=spec.get('rules') or [],
            conditions=conditions,
            createdAt=metadata.get('creationTimestamp'),
            spec=spec,
            persisted=persisted,
            raw=raw,
        )

    def fallback(self, namespace: str) -> RouteResource:
        spec = {
            'parentRefs': [{'name': 'example-gateway', 'namespace': namespace}],
            'hostnames': ['example.com'],
            'rules': [{
                'matches': [{'path': {'type': 'PathPrefix', 'value': '/'}}],
                'backendRefs': [{'name': 'example-service', 'port': 8080}],
            }],
        }
        return RouteResource(
            id='mock-route-1',
            name='example-route',
            namespace=namespace,
            status=ResourceStatus.ACCEPTED,
            parentRefs=spec['parentRefs'],
            hostnames=spec['hostnames'],
            rules=spec['rules'],
            createdAt=FALLBACK_TIMESTAMP,
            spec=spec,
            persisted=False,
        )


class ReturnDeterministicData:
    """Read policy while disconnected: serve the example resource."""

    def list(self, kind: ResourceKind, namespace: str) -> list:
        logger.info(f"Not connected to Kubernetes, returning example {kind.label} data")
        return [kind.fallback(namespace)]


class FailNotConnected:
    """Write policy while disconnected: every targeted or mutating call fails."""

    def reject(self, kind: ResourceKind, operation: str):
        raise NotConnected(f"Cannot {operation} {kind.label}: not connected to Kubernetes cluster")

    def create(self, kind: ResourceKind, spec: Dict[str, Any], namespace: str):
        self.reject(kind, "create")


class DemoWrites(FailNotConnected):
    """Like FailNotConnected, but create returns an unpersisted Pending resource."""

    def create(self, kind: ResourceKind, spec: Dict[str, Any], namespace: str):
        logger.info(f"Not connected to Kubernetes, simulating creation of {kind.label} {spec['name']}")
        return kind.pending(spec, namespace)


class ResourceClient:
    """list/get/create/update/delete for one resource kind."""

    def __init__(
        self,
        state: ConnectionState,
        kind: ResourceKind,
        default_namespace: str = "default",
        reads: Optional[ReturnDeterministicData] = None,
        writes: Optional[FailNotConnected] = None,
    ):
        self.state = state
        self.kind = kind
        self.default_namespace = default_namespace
        self.reads = reads or ReturnDeterministicData()
        self.writes = writes or FailNotConnected()

    @property
    def connected(self) -> bool:
        return self.state.connected and self.state.api_client is not None

    def _api(self) -> client.CustomObjectsApi:
        return client.CustomObjectsApi(self.state.api_client)

    def _describe(self, name: str, namespace: str) -> str:
        return f"{self.kind.label} {namespace}/{name}"

    async def list(self, namespace: Optional[str] = None) -> list:
        if not self.connected:
            return self.reads.list(self.kind, namespace or self.default_namespace)

        api = self._api()
        try:
            if namespace:
                response = await api.list_namespaced_custom_object(
                    GATEWAY_API_GROUP, GATEWAY_API_VERSION, namespace, self.kind.plural
                )
            else:
                response = await api.list_cluster_custom_object(
                    GATEWAY_API_GROUP, GATEWAY_API_VERSION, self.kind.plural
                )
        except ApiException as e:
            if e.status == 404:
                # CRD not installed: no Envoy Gateway in this cluster yet
                logger.warning(f"{self.kind.plural} are not served by this cluster")
                return []
            handle_api_exception(e, self.kind.plural)
        except CONNECTION_ERRORS as e:
            handle_connection_error(e, self.kind.plural)
        return [self.kind.to_resource(item) for item in response.get('items') or []]

    async def get(self, namespace: str, name: str):
        if not self.connected:
            self.writes.reject(self.kind, "get")
        try:
            raw = await self._api().get_namespaced_custom_object(
                GATEWAY_API_GROUP, GATEWAY_API_VERSION, namespace, self.kind.plural, name
            )
        except ApiException as e:
            handle_api_exception(e, self._describe(name, namespace))
        except CONNECTION_ERRORS as e:
            handle_connection_error(e, self._describe(name, namespace))
        return self.kind.to_resource(raw)

    async def create(self, spec: Dict[str, Any], namespace: Optional[str] = None):
        namespace = namespace or spec.get('namespace') or self.default_namespace
        if not self.connected:
            return self.writes.create(self.kind, spec, namespace)

        body = self.kind.build_body(spec, namespace)
        described = self._describe(spec['name'], namespace)
        logger.info(f"Creating {described}")
        try:
            raw = await self._api().create_namespaced_custom_object(
                GATEWAY_API_GROUP, GATEWAY_API_VERSION, namespace, self.kind.plural, body
            )
        except ApiException as e:
            handle_api_exception(e, described)
        except CONNECTION_ERRORS as e:
            handle_connection_error(e, described)
        resource = self.kind.to_resource(raw)
        if resource.status == ResourceStatus.UNKNOWN:
            # no controller has reported on it yet
            resource.status = ResourceStatus.PENDING
        return resource

    async def update(self, name: str, spec: Dict[str, Any], namespace: Optional[str] = None):
        namespace = namespace or self.default_namespace
        if not self.connected:
            self.writes.reject(self.kind, "update")

        api = self._api()
        described = self._describe(name, namespace)
        try:
            existing = await api.get_namespaced_custom_object(
                GATEWAY_API_GROUP, GATEWAY_API_VERSION, namespace, self.kind.plural, name
            )
        except ApiException as e:
            handle_api_exception(e, described)
        except CONNECTION_ERRORS as e:
            handle_connection_error(e, described)

        body = copy.deepcopy(existing)
        # shallow merge: top-level spec keys in the payload replace existing ones
        body['spec'] = {
            **(existing.get('spec') or {}),
            **{k: copy.deepcopy(v) for k, v in spec.items() if k not in METADATA_KEYS},
        }
        if spec.get('labels') is not None:
            body.setdefault('metadata', {})['labels'] = dict(spec['labels'])

        logger.info(f"Updating {described}")
        try:
            raw = await api.replace_namespaced_custom_object(
                GATEWAY_API_GROUP, GATEWAY_API_VERSION, namespace, self.kind.plural, name, body
            )
        except ApiException as e:
            handle_api_exception(e, described)
        except CONNECTION_ERRORS as e:
            handle_connection_error(e, described)
        return self.kind.to_resource(raw)

    async def delete(self, name: str, namespace: Optional[str] = None) -> None:
        namespace = namespace or self.default_namespace
        if not self.connected:
            self.writes.reject(self.kind, "delete")
        described = self._describe(name, namespace)
        try:
            await self._api().delete_namespaced_custom_object(
                GATEWAY_API_GROUP, GATEWAY_API_VERSION, namespace, self.kind.plural, name
            )
        except ApiException as e:
            handle_api_exception(e, described)
        except CONNECTION_ERRORS as e:
            handle_connection_error(e, described)
        logger.info(f"{described} deleted")


async def envoy_gateway_installed(state: ConnectionState) -> Dict[str, Any]:
    """Look for the Envoy Gateway GatewayClass."""
    if not state.connected or state.api_client is None:
        return {'installed': False, 'gatewayClass': None, 'connected': False}
    try:
        response = await client.CustomObjectsApi(state.api_client).list_cluster_custom_object(
            GATEWAY_API_GROUP, GATEWAY_API_VERSION, "gatewayclasses"
        )
    except ApiException as e:
        if e.status == 404:
            return {'installed': False, 'gatewayClass': None, 'connected': True}
        handle_api_exception(e, "gatewayclasses")
    except CONNECTION_ERRORS as e:
        handle_connection_error(e, "gatewayclasses")
    for item in response.get('items') or []:
        controller = (item.get('spec') or {}).get('controllerName')
        if controller == ENVOY_GATEWAY_CONTROLLER or item['metadata'].get('name') == 'envoy-gateway':
            return {'installed': True, 'gatewayClass': item['metadata'].get('name'), 'connected': True}
    return {'installed': False, 'gatewayClass': None, 'connected': True}


def _deployment_id() -> str:
    return f"deploy-{int(time.time() * 1000)}"


async def deploy_envoy_gateway(state: ConnectionState, namespace: str = ENVOY_GATEWAY_NAMESPACE) -> Dict[str, Any]:
    """
    Create the EnvoyGateway config resource in namespace.

    Returns a simulated result while disconnected and does nothing when an
    EnvoyGateway resource already exists there.
    """
    if not state.connected or state.api_client is None:
        logger.info("Not connected to Kubernetes, simulating Envoy Gateway deployment")
        return {
            'status': 'simulated',
            'message': 'Envoy Gateway deployment simulated (not connected to Kubernetes)',
            'deploymentId': _deployment_id(),
            'namespace': namespace,
        }

    api = client.CustomObjectsApi(state.api_client)
    try:
        existing = await api.list_namespaced_custom_object(
            ENVOY_CONFIG_GROUP, ENVOY_CONFIG_VERSION, namespace, "envoygateways"
        )
    except ApiException as e:
        # CRD missing or namespace not readable: treat as not installed
        logger.info(f"No EnvoyGateway resources readable in {namespace}: {e.reason}")
        existing = {}
    except CONNECTION_ERRORS as e:
        handle_connection_error(e, "envoygateways")

    if existing.get('items'):
        return {
            'status': 'already_installed',
            'message': 'Envoy Gateway is already installed',
            'namespace': namespace,
        }

    body = {
        'apiVersion': f"{ENVOY_CONFIG_GROUP}/{ENVOY_CONFIG_VERSION}",
        'kind': 'EnvoyGateway',
        'metadata': {'name': 'envoy-gateway', 'namespace': namespace},
        'spec': {'gateway': {'controllerName': ENVOY_GATEWAY_CONTROLLER}},
    }
    logger.info(f"Deploying Envoy Gateway into {namespace}")
    try:
        created = await api.create_namespaced_custom_object(
            ENVOY_CONFIG_GROUP, ENVOY_CONFIG_VERSION, namespace, "envoygateways", body
        )
    except ApiException as e:
        handle_api_exception(e, f"EnvoyGateway {namespace}/envoy-gateway")
    except CONNECTION_ERRORS as e:
        handle_connection_error(e, "envoygateways")
    return {
        'status': 'success',
        'message': 'Envoy Gateway deployment initiated',
        'deploymentId': _deployment_id(),
        'namespace': namespace,
        'gatewayResource': created,
    }
