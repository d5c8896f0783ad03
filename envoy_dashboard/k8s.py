"""
Kubernetes connection bootstrap.

The backend runs inside a Docker Desktop extension container, where the server
address in the host kubeconfig (usually 127.0.0.1:<port>) is not reachable and
the cluster certificate is not trusted. The bootstrapper walks an ordered list
of connection strategies, probes each candidate with a namespace list, and keeps
the first one that answers.
"""
import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client.api_client import ApiClient
from kubernetes_asyncio.client.exceptions import ApiException
from kubernetes_asyncio.config.kube_config import KubeConfigLoader

from envoy_dashboard import kubeconfig
from envoy_dashboard.errors import (
    CONNECTION_ERRORS,
    KubeconfigError,
    NotConnected,
    StrategyFailure,
    handle_api_exception,
    handle_connection_error,
)
from envoy_dashboard.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionContext:
    """Everything needed to build one candidate API client."""
    server: Optional[str]
    kubeconfig: Optional[Dict[str, Any]] = None
    in_cluster: bool = False
    # directory that relative certificate and key paths in kubeconfig resolve against
    config_base_path: Optional[str] = None


@dataclass(frozen=True)
class ConnectionStrategy:
    name: str
    build_context: Callable[[], ConnectionContext]


@dataclass
class ConnectionState:
    """Current belief about cluster reachability. Only the Bootstrapper writes it."""
    connected: bool = False
    active_strategy_index: Optional[int] = None
    last_error: Optional[str] = None
    cluster_endpoint: Optional[str] = None
    api_client: Optional[ApiClient] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'connected': self.connected,
            'activeStrategyIndex': self.active_strategy_index,
            'lastError': self.last_error,
            'clusterEndpoint': self.cluster_endpoint,
        }


ClientFactory = Callable[[ConnectionContext], Awaitable[ApiClient]]
Probe = Callable[[ApiClient, float], Awaitable[Any]]


def _kubeconfig_context(kube: Dict[str, Any], path: str) -> ConnectionContext:
    return ConnectionContext(
        server=kubeconfig.current_server(kube),
        kubeconfig=kube,
        config_base_path=os.path.dirname(os.path.abspath(path)),
    )


def loopback_rewrite_strategy(name: str, path: str, host: str) -> ConnectionStrategy:
    def build() -> ConnectionContext:
        return _kubeconfig_context(kubeconfig.rewrite_loopback(kubeconfig.load_kubeconfig(path), host), path)
    return ConnectionStrategy(name, build)


def forced_port_strategy(name: str, path: str, host: str, port: int) -> ConnectionStrategy:
    def build() -> ConnectionContext:
        server = f"https://{host}:{port}"
        return _kubeconfig_context(kubeconfig.force_server(kubeconfig.load_kubeconfig(path), server), path)
    return ConnectionStrategy(name, build)


def synthetic_strategy(name: str, host: str, port: int) -> ConnectionStrategy:
    def build() -> ConnectionContext:
        server = f"https://{host}:{port}"
        return ConnectionContext(server=server, kubeconfig=kubeconfig.synthetic(server))
    return ConnectionStrategy(name, build)


def insecure_kubeconfig_strategy(name: str, path: str) -> ConnectionStrategy:
    def build() -> ConnectionContext:
        return _kubeconfig_context(kubeconfig.insecure(kubeconfig.load_kubeconfig(path)), path)
    return ConnectionStrategy(name, build)


def in_cluster_strategy(name: str) -> ConnectionStrategy:
    def build() -> ConnectionContext:
        host = os.environ.get('KUBERNETES_SERVICE_HOST')
        port = os.environ.get('KUBERNETES_SERVICE_PORT')
        if not host or not port:
            raise config.ConfigException("Service host/port is not set (not running in a cluster)")
        if ':' in host:
            host = f"[{host}]"
        return ConnectionContext(server=f"https://{host}:{port}", in_cluster=True)
    return ConnectionStrategy(name, build)


def default_strategies(settings: Settings) -> List[ConnectionStrategy]:
    """The connection strategies, most environment-specific first."""
    path = settings.kubeconfig_path
    alias = settings.docker_host_alias
    port = settings.forced_api_port
    return [
        loopback_rewrite_strategy(f"Skip TLS + {alias}", path, alias),
        forced_port_strategy(f"Force port {port} + skip TLS", path, alias, port),
        synthetic_strategy("Custom config + TLS skip", alias, port),
        insecure_kubeconfig_strategy("Original server with TLS skip", path),
        in_cluster_strategy("In-cluster configuration"),
        loopback_rewrite_strategy(
            f"Skip TLS + {settings.last_resort_host_alias}", path, settings.last_resort_host_alias
        ),
    ]


async def create_api_client(context: ConnectionContext) -> ApiClient:
    """Build an ApiClient for a connection context without touching global config."""
    configuration = client.Configuration()
    if context.in_cluster:
        config.load_incluster_config(client_configuration=configuration)
    else:
        loader = KubeConfigLoader(
            config_dict=context.kubeconfig,
            config_base_path=context.config_base_path,
        )
        await loader.load_and_set(configuration)
    return ApiClient(configuration=configuration)


async def list_namespaces_probe(api_client: ApiClient, timeout: float) -> int:
    namespaces = await client.CoreV1Api(api_client).list_namespace(_request_timeout=timeout)
    return len(namespaces.items or [])


class Bootstrapper:
    """Finds a working way to reach the Kubernetes API and owns the ConnectionState."""

    def __init__(
        self,
        strategies: Sequence[ConnectionStrategy],
        state: Optional[ConnectionState] = None,
        probe_timeout: float = 5.0,
        kubeconfig_path: Optional[str] = None,
        client_factory: ClientFactory = create_api_client,
        probe: Probe = list_namespaces_probe,
    ):
        self.strategies = list(strategies)
        self.state = state if state is not None else ConnectionState()
        self.probe_timeout = probe_timeout
        self.kubeconfig_path = kubeconfig_path
        self._client_factory = client_factory
        self._probe = probe

    @classmethod
    def from_settings(cls, settings: Settings) -> "Bootstrapper":
        return cls(
            default_strategies(settings),
            probe_timeout=settings.probe_timeout,
            kubeconfig_path=settings.kubeconfig_path,
        )

    def is_connected(self) -> bool:
        return self.state.connected

    @property
    def active_strategy_name(self) -> Optional[str]:
        index = self.state.active_strategy_index
        if index is None or index >= len(self.strategies):
            return None
        return self.strategies[index].name

    async def _attempt(self, index: int, context: ConnectionContext, strategy: ConnectionStrategy) -> ApiClient:
        """Build a client for context and probe it. Raises StrategyFailure with the probe error."""
        api_client = await self._client_factory(context)
        logger.info(f"Strategy {index + 1}: probing {context.server or 'unknown server'}")
        started = time.monotonic()
        try:
            found = await self._probe(api_client, self.probe_timeout)
        except asyncio.CancelledError:
            await _close_quietly(api_client)
            raise
        except Exception as e:
            await _close_quietly(api_client)
            raise StrategyFailure(strategy.name, e) from e
        elapsed = (time.monotonic() - started) * 1000
        logger.info(f"Strategy {index + 1} connected in {elapsed:.0f}ms ({found} namespaces)")
        return api_client

    async def run(self) -> ConnectionState:
        """Try every strategy in order; never raises."""
        logger.info(f"Connecting to Kubernetes ({len(self.strategies)} strategies)")
        last_probe_error = None
        last_build_error = None

        for index, strategy in enumerate(self.strategies):
            logger.info(f"Trying connection strategy {index + 1}/{len(self.strategies)}: {strategy.name}")
            try:
                context = strategy.build_context()
                api_client = await self._attempt(index, context, strategy)
            except StrategyFailure as failure:
                last_probe_error = str(failure.cause) or type(failure.cause).__name__
                logger.warning(f"Strategy {index + 1} ({strategy.name}) failed: {failure.cause!r}")
                continue
            except Exception as e:
                last_build_error = str(e) or type(e).__name__
                logger.warning(f"Strategy {index + 1} ({strategy.name}) skipped: {e}")
                continue

            previous = self.state.api_client
            self.state.api_client = api_client
            self.state.connected = True
            self.state.active_strategy_index = index
            self.state.cluster_endpoint = context.server
            self.state.last_error = None
            if previous is not None and previous is not api_client:
                await _close_quietly(previous)
            logger.info(f"Using strategy {index + 1}: {strategy.name}")
            return self.state

        previous = self.state.api_client
        self.state.api_client = None
        self.state.connected = False
        self.state.active_strategy_index = None
        self.state.cluster_endpoint = None
        self.state.last_error = last_probe_error or last_build_error or "No connection strategy available"
        if previous is not None:
            await _close_quietly(previous)
        logger.error(f"All connection strategies failed. Last error: {self.state.last_error}")
        return self.state

    async def reconnect(self) -> bool:
        """Drop the current connection and rerun every strategy from the first."""
        logger.info("Reconnecting to Kubernetes")
        previous = self.state.api_client
        self.state.api_client = None
        self.state.connected = False
        self.state.active_strategy_index = None
        self.state.cluster_endpoint = None
        if previous is not None:
            await _close_quietly(previous)

        await self.run()
        logger.info(f"Reconnection result: {'SUCCESS' if self.state.connected else 'FAILED'}")
        return self.state.connected

    async def close(self):
        """Close the live API client (call on shutdown)."""
        previous = self.state.api_client
        self.state.api_client = None
        self.state.connected = False
        if previous is not None:
            await previous.close()

    def diagnostics(self) -> Dict[str, Any]:
        """Connection state, strategy list and environment facts. No side effects."""
        active = self.state.active_strategy_index if self.state.connected else None
        path = self.kubeconfig_path
        kube_info: Dict[str, Any] = {
            'path': path,
            'exists': bool(path) and os.path.isfile(path),
            'clusters': [],
            'currentContext': None,
        }
        if kube_info['exists']:
            try:
                kube = kubeconfig.load_kubeconfig(path)
                kube_info['clusters'] = kubeconfig.list_clusters(kube)
                kube_info['currentContext'] = kube.get('current-context')
            except KubeconfigError as e:
                kube_info['error'] = str(e)

        return {
            **self.state.to_dict(),
            'strategyName': self.active_strategy_name if self.state.connected else None,
            'strategies': [
                {'index': i, 'name': s.name, 'active': i == active}
                for i, s in enumerate(self.strategies)
            ],
            'environment': {
                'kubeconfig': kube_info,
                'KUBECONFIG': os.environ.get('KUBECONFIG'),
                'KUBERNETES_SERVICE_HOST': os.environ.get('KUBERNETES_SERVICE_HOST'),
                'KUBERNETES_SERVICE_PORT': os.environ.get('KUBERNETES_SERVICE_PORT'),
                'runningInDocker': os.path.exists('/.dockerenv'),
            },
        }

    async def test_connection(self) -> Dict[str, Any]:
        """Re-probe the live client. Never raises."""
        strategy = self.active_strategy_name
        if not self.state.connected or self.state.api_client is None:
            return {'success': False, 'error': NotConnected().message, 'strategy': strategy}
        started = time.monotonic()
        try:
            found = await self._probe(self.state.api_client, self.probe_timeout)
        except Exception as e:
            logger.error(f"Connection test failed: {e}")
            return {'success': False, 'error': str(e) or type(e).__name__, 'strategy': strategy}
        return {
            'success': True,
            'namespaces': found,
            'responseTime': f"{(time.monotonic() - started) * 1000:.0f}ms",
            'server': self.state.cluster_endpoint,
            'strategy': strategy,
        }

    async def list_namespaces(self) -> List[Dict[str, Any]]:
        if not self.state.connected or self.state.api_client is None:
            raise NotConnected()
        try:
            response = await client.CoreV1Api(self.state.api_client).list_namespace()
        except ApiException as e:
            handle_api_exception(e, "namespaces")
        except CONNECTION_ERRORS as e:
            handle_connection_error(e, "namespaces")
        return [
            {
                'name': ns.metadata.name,
                'status': ns.status.phase if ns.status else None,
                'createdAt': _isoformat(ns.metadata.creation_timestamp),
            }
            for ns in response.items or []
        ]

    async def list_services(self, namespace: str) -> List[Dict[str, Any]]:
        """Services in namespace, as candidate route backends."""
        if not self.state.connected or self.state.api_client is None:
            raise NotConnected()
        try:
            response = await client.CoreV1Api(self.state.api_client).list_namespaced_service(namespace)
        except ApiException as e:
            handle_api_exception(e, f"services in {namespace}")
        except CONNECTION_ERRORS as e:
            handle_connection_error(e, f"services in {namespace}")
        services = []
        for svc in response.items or []:
            spec = svc.spec
            services.append({
                'name': svc.metadata.name,
                'namespace': svc.metadata.namespace,
                'type': spec.type if spec else None,
                'clusterIP': spec.cluster_ip if spec else None,
                'ports': [
                    {
                        'name': port.name,
                        'port': port.port,
                        'targetPort': port.target_port,
                        'protocol': port.protocol,
                    }
                    for port in (spec.ports if spec else None) or []
                ],
            })
        return services


def _isoformat(value) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, 'isoformat') else str(value)


async def _close_quietly(api_client: ApiClient) -> None:
    try:
        await api_client.close()
    except Exception as e:
        logger.debug(f"Ignoring error while closing API client: {e}")
