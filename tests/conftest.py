import copy
import itertools

import pytest
import yaml
from kubernetes_asyncio.client.exceptions import ApiException

from envoy_dashboard.k8s import ConnectionState
from envoy_dashboard.settings import Settings

KUBECONFIG = {
    'apiVersion': 'v1',
    'kind': 'Config',
    'clusters': [
        {
            'name': 'kind-dev',
            'cluster': {
                'server': 'https://127.0.0.1:52001',
                'certificate-authority-data': 'LS0tLS1CRUdJTi==',
            },
        },
        {
            'name': 'docker-desktop',
            'cluster': {
                'server': 'https://kubernetes.docker.internal:6443',
                'certificate-authority-data': 'LS0tLS1CRUdJTi==',
            },
        },
    ],
    'users': [
        {'name': 'kind-dev', 'user': {'token': 'secret-token'}},
        {'name': 'docker-desktop', 'user': {'token': 'other-token'}},
    ],
    'contexts': [
        {'name': 'kind-dev', 'context': {'cluster': 'kind-dev', 'user': 'kind-dev'}},
        {'name': 'docker-desktop', 'context': {'cluster': 'docker-desktop', 'user': 'docker-desktop'}},
    ],
    'current-context': 'kind-dev',
}


@pytest.fixture
def kubeconfig_file(tmp_path):
    path = tmp_path / 'config'
    path.write_text(yaml.safe_dump(KUBECONFIG))
    return path


@pytest.fixture
def missing_kubeconfig(tmp_path):
    return tmp_path / 'does-not-exist'


@pytest.fixture
def settings(kubeconfig_file):
    return Settings(kubeconfig=str(kubeconfig_file), connect_on_startup=False, probe_timeout=0.1)


class FakeApiClient:
    def __init__(self, context=None):
        self.context = context
        self.closed = False

    async def close(self):
        self.closed = True


class FakeCluster:
    """In-memory stand-in for the custom objects API of one cluster."""

    def __init__(self):
        self.objects = {}
        self.calls = []
        self._uids = itertools.count(1)

    def api(self, api_client=None):
        return FakeCustomObjectsApi(self)

    def add(self, plural, namespace, body):
        stored = copy.deepcopy(body)
        metadata = stored.setdefault('metadata', {})
        metadata['namespace'] = namespace
        metadata.setdefault('uid', f"uid-{next(self._uids)}")
        metadata.setdefault('creationTimestamp', '2025-03-01T12:00:00Z')
        self.objects[(plural, namespace, metadata['name'])] = stored
        return copy.deepcopy(stored)


class FakeCustomObjectsApi:
    def __init__(self, cluster):
        self.cluster = cluster

    async def list_namespaced_custom_object(self, group, version, namespace, plural):
        self.cluster.calls.append(('list', plural, namespace))
        items = [o for (p, ns, _), o in sorted(self.cluster.objects.items()) if p == plural and ns == namespace]
        return {'items': copy.deepcopy(items)}

    async def list_cluster_custom_object(self, group, version, plural):
        self.cluster.calls.append(('list', plural, None))
        items = [o for (p, _, _), o in sorted(self.cluster.objects.items()) if p == plural]
        return {'items': copy.deepcopy(items)}

    async def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        self.cluster.calls.append(('get', plural, namespace, name))
        try:
            return copy.deepcopy(self.cluster.objects[(plural, namespace, name)])
        except KeyError:
            raise ApiException(status=404, reason='Not Found')

    async def create_namespaced_custom_object(self, group, version, namespace, plural, body):
        self.cluster.calls.append(('create', plural, namespace, body['metadata']['name']))
        if (plural, namespace, body['metadata']['name']) in self.cluster.objects:
            raise ApiException(status=409, reason='AlreadyExists')
        return self.cluster.add(plural, namespace, body)

    async def replace_namespaced_custom_object(self, group, version, namespace, plural, name, body):
        self.cluster.calls.append(('replace', plural, namespace, name))
        if (plural, namespace, name) not in self.cluster.objects:
            raise ApiException(status=404, reason='Not Found')
        return self.cluster.add(plural, namespace, body)

    async def delete_namespaced_custom_object(self, group, version, namespace, plural, name):
        self.cluster.calls.append(('delete', plural, namespace, name))
        if self.cluster.objects.pop((plural, namespace, name), None) is None:
            raise ApiException(status=404, reason='Not Found')
        return {'status': 'Success'}


@pytest.fixture
def fake_cluster(mocker):
    cluster = FakeCluster()
    mocker.patch('kubernetes_asyncio.client.CustomObjectsApi', cluster.api)
    return cluster


@pytest.fixture
def connected_state():
    return ConnectionState(
        connected=True,
        active_strategy_index=0,
        cluster_endpoint='https://host.docker.internal:52001',
        api_client=FakeApiClient(),
    )


@pytest.fixture
def disconnected_state():
    return ConnectionState()
