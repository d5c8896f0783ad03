"""
Kubeconfig helpers used by the connection strategies.
NEVER logs kubeconfig content, only the path and server URLs.
"""
import copy
import os
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

import yaml

from envoy_dashboard.errors import KubeconfigError

LOOPBACK_HOSTS = {"127.0.0.1", "localhost", "::1"}


def load_kubeconfig(path: str) -> Dict[str, Any]:
    """Read and parse a kubeconfig file, returning a fresh dict."""
    if not os.path.isfile(path):
        raise KubeconfigError(f"Kubeconfig not found: {path}")
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise KubeconfigError(f"Could not read kubeconfig {path}: {e}") from e
    if not isinstance(data, dict) or not data.get('clusters'):
        raise KubeconfigError(f"Kubeconfig {path} declares no clusters")
    return data


def list_clusters(kubeconfig: Dict[str, Any]) -> List[Dict[str, Optional[str]]]:
    """Return [{name, server}] for every cluster entry."""
    clusters = []
    for entry in kubeconfig.get('clusters') or []:
        clusters.append({
            'name': entry.get('name'),
            'server': (entry.get('cluster') or {}).get('server'),
        })
    return clusters


def current_server(kubeconfig: Dict[str, Any]) -> Optional[str]:
    """Server URL of the cluster referenced by current-context."""
    contexts = {c.get('name'): c.get('context') or {} for c in kubeconfig.get('contexts') or []}
    clusters = {c.get('name'): c.get('cluster') or {} for c in kubeconfig.get('clusters') or []}

    current = kubeconfig.get('current-context')
    cluster_name = contexts.get(current, {}).get('cluster')
    if cluster_name in clusters:
        return clusters[cluster_name].get('server')

    # No usable current-context: the client library falls back to the first cluster too
    first = (kubeconfig.get('clusters') or [{}])[0]
    return (first.get('cluster') or {}).get('server')


def is_loopback(server: Optional[str]) -> bool:
    if not server:
        return False
    return urlsplit(server).hostname in LOOPBACK_HOSTS


def replace_host(server: str, host: str, port: Optional[int] = None) -> str:
    """Swap the host (and optionally the port) of a server URL."""
    parts = urlsplit(server)
    port = port if port is not None else parts.port
    netloc = f"{host}:{port}" if port else host
    return urlunsplit((parts.scheme or 'https', netloc, parts.path, parts.query, parts.fragment))


def skip_tls_verify(cluster: Dict[str, Any]) -> None:
    """Disable certificate verification on a kubeconfig cluster entry."""
    cluster['insecure-skip-tls-verify'] = True
    # kubectl rejects a CA bundle combined with insecure-skip-tls-verify
    cluster.pop('certificate-authority', None)
    cluster.pop('certificate-authority-data', None)


def rewrite_loopback(kubeconfig: Dict[str, Any], host: str) -> Dict[str, Any]:
    """Copy of kubeconfig with loopback servers pointed at host and TLS verification off."""
    result = copy.deepcopy(kubeconfig)
    for entry in result.get('clusters') or []:
        cluster = entry.get('cluster') or {}
        if is_loopback(cluster.get('server')):
            cluster['server'] = replace_host(cluster['server'], host)
            skip_tls_verify(cluster)
    return result


def force_server(kubeconfig: Dict[str, Any], server: str, cluster_name: str = 'docker-desktop') -> Dict[str, Any]:
    """Copy of kubeconfig with the named cluster and loopback clusters forced to server."""
    result = copy.deepcopy(kubeconfig)
    for entry in result.get('clusters') or []:
        cluster = entry.get('cluster') or {}
        if entry.get('name') == cluster_name or is_loopback(cluster.get('server')):
            cluster['server'] = server
            skip_tls_verify(cluster)
    return result


def insecure(kubeconfig: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of kubeconfig with TLS verification off on every cluster."""
    result = copy.deepcopy(kubeconfig)
    for entry in result.get('clusters') or []:
        cluster = entry.get('cluster') or {}
        if cluster.get('server'):
            skip_tls_verify(cluster)
    return result


def synthetic(server: str, name: str = 'docker-desktop') -> Dict[str, Any]:
    """Standalone kubeconfig for an anonymous user against server."""
    return {
        'apiVersion': 'v1',
        'kind': 'Config',
        'clusters': [{
            'name': name,
            'cluster': {'server': server, 'insecure-skip-tls-verify': True},
        }],
        'users': [{'name': name, 'user': {}}],
        'contexts': [{
            'name': name,
            'context': {'cluster': name, 'user': name},
        }],
        'current-context': name,
    }
