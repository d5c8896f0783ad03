import aiohttp
import pytest
from fastapi.testclient import TestClient

from conftest import FakeApiClient
from envoy_dashboard.k8s import Bootstrapper, ConnectionContext, ConnectionStrategy
from envoy_dashboard.main import create_app

GATEWAY = {
    'name': 'eg',
    'listeners': [{'name': 'http', 'protocol': 'HTTP', 'port': 80}],
}

ROUTE = {
    'name': 'backend',
    'parentRefs': [{'name': 'eg'}],
    'hostnames': ['www.example.com'],
    'rules': [{
        'matches': [{'path': {'type': 'PathPrefix', 'value': '/'}}],
        'backendRefs': [{'name': 'backend', 'port': 3000}],
    }],
}


class Switch:
    """Probe that succeeds only while reachable is set."""

    def __init__(self):
        self.reachable = False

    async def client_factory(self, context):
        return FakeApiClient(context)

    async def probe(self, api_client, timeout):
        if not self.reachable:
            raise ConnectionRefusedError('connection refused')
        return 3


@pytest.fixture
def switch():
    return Switch()


@pytest.fixture
def bootstrapper(switch, kubeconfig_file):
    strategies = [
        ConnectionStrategy('synthetic', lambda: ConnectionContext(server='https://host.docker.internal:6443')),
    ]
    return Bootstrapper(
        strategies,
        kubeconfig_path=str(kubeconfig_file),
        client_factory=switch.client_factory,
        probe=switch.probe,
    )


@pytest.fixture
def http(settings, bootstrapper):
    with TestClient(create_app(settings, bootstrapper)) as client:
        yield client


@pytest.fixture
def connected(bootstrapper, fake_cluster):
    bootstrapper.state.connected = True
    bootstrapper.state.active_strategy_index = 0
    bootstrapper.state.api_client = FakeApiClient()
    return fake_cluster


def test_health(http):
    response = http.get('/api/health')
    assert response.status_code == 200
    assert response.json()['kubernetes'] is False


def test_disconnected_reads_serve_example_data(http):
    response = http.get('/api/gateways')
    body = response.json()

    assert response.status_code == 200
    assert body['success'] is True
    assert body['data']['total'] == 1
    assert body['data']['gateways'][0]['name'] == 'example-gateway'
    assert body['data']['gateways'][0]['status'] == 'Ready'

    routes = http.get('/api/routes', params={'namespace': 'apps'}).json()['data']['routes']
    assert routes[0]['namespace'] == 'apps'


@pytest.mark.parametrize('method, path, payload', [
    ('post', '/api/gateways', GATEWAY),
    ('put', '/api/gateways/default/eg', {'gatewayClassName': 'other'}),
    ('delete', '/api/gateways/default/eg', None),
    ('get', '/api/gateways/default/eg', None),
    ('post', '/api/routes', ROUTE),
    ('delete', '/api/routes/default/backend', None),
    ('get', '/api/kubernetes/namespaces', None),
    ('get', '/api/kubernetes/services', None),
])
def test_disconnected_writes_are_unavailable(http, method, path, payload):
    kwargs = {'json': payload} if payload is not None else {}
    response = http.request(method.upper(), path, **kwargs)

    assert response.status_code == 503
    assert response.json()['success'] is False
    assert response.json()['error'] == 'not_connected'


def test_demo_writes(settings, bootstrapper):
    settings = settings.model_copy(update={'demo_writes': True})
    with TestClient(create_app(settings, bootstrapper)) as http:
        response = http.post('/api/gateways', json=GATEWAY)

    assert response.status_code == 201
    assert response.json()['data']['status'] == 'Pending'
    assert response.json()['data']['persisted'] is False


def test_reconnect(http, switch):
    response = http.post('/api/kubernetes/reconnect')
    assert response.json()['data']['connected'] is False
    assert response.json()['message'] == 'Failed to reconnect to Kubernetes'

    switch.reachable = True
    response = http.post('/api/kubernetes/reconnect')
    data = response.json()['data']
    assert data['connected'] is True
    assert data['activeStrategyIndex'] == 0
    assert data['clusterEndpoint'] == 'https://host.docker.internal:6443'

    status = http.get('/api/kubernetes/status').json()['data']
    assert status['strategyName'] == 'synthetic'


def test_diagnostics(http):
    data = http.get('/api/kubernetes/diagnostics').json()['data']

    assert data['strategies'] == [{'index': 0, 'name': 'synthetic', 'active': False}]
    assert data['environment']['kubeconfig']['exists'] is True


def test_gateway_lifecycle(http, connected):
    created = http.post('/api/gateways', params={'namespace': 'apps'}, json=GATEWAY)
    assert created.status_code == 201
    assert created.json()['data']['status'] == 'Pending'

    duplicate = http.post('/api/gateways', params={'namespace': 'apps'}, json=GATEWAY)
    assert duplicate.status_code == 409
    assert duplicate.json()['error'] == 'already_exists'

    updated = http.put('/api/gateways/apps/eg', json={
        'listeners': [{'name': 'https', 'protocol': 'HTTPS', 'port': 443}],
    })
    assert updated.status_code == 200
    assert updated.json()['data']['spec']['gatewayClassName'] == 'envoy-gateway'
    assert updated.json()['data']['listeners'][0]['port'] == 443

    fetched = http.get('/api/gateways/apps/eg').json()['data']
    assert fetched['name'] == 'eg'

    listed = http.get('/api/gateways', params={'namespace': 'apps'}).json()['data']
    assert listed['total'] == 1

    assert http.delete('/api/gateways/apps/eg').status_code == 200
    missing = http.get('/api/gateways/apps/eg')
    assert missing.status_code == 404
    assert missing.json()['error'] == 'not_found'


def test_route_lifecycle(http, connected):
    assert http.post('/api/routes', json=ROUTE).status_code == 201
    route = http.get('/api/routes/default/backend').json()['data']
    assert route['parentRefs'][0]['name'] == 'eg'

    response = http.put('/api/routes/default/backend', json={'hostnames': ['api.example.com']})
    assert response.json()['data']['hostnames'] == ['api.example.com']
    assert response.json()['data']['rules'][0]['backendRefs'][0]['port'] == 3000


@pytest.mark.parametrize('payload', [
    {**GATEWAY, 'name': 'Not_Valid'},
    {**GATEWAY, 'listeners': []},
    {**GATEWAY, 'listeners': [{'name': 'http', 'protocol': 'HTTP', 'port': 70000}]},
    {**GATEWAY, 'listeners': [{'name': 'http', 'protocol': 'SMTP', 'port': 25}]},
])
def test_gateway_validation(http, payload):
    assert http.post('/api/gateways', json=payload).status_code == 422


def test_route_validation(http):
    assert http.post('/api/routes', json={**ROUTE, 'rules': []}).status_code == 422
    assert http.post('/api/routes', json={**ROUTE, 'parentRefs': []}).status_code == 422


def test_realtime_status(http):
    data = http.get('/api/realtime-status').json()['data']
    assert data['gateways'] == 1
    assert data['routes'] == 1
    assert data['kubernetes'] is False


def test_status_feed(http):
    with http.websocket_connect('/ws') as ws:
        message = ws.receive_json()
        assert message['type'] == 'status'
        assert message['data']['kubernetes'] is False

        ws.send_text('refresh')
        assert ws.receive_json()['type'] == 'status'


def test_namespaces(http, connected, mocker):
    from datetime import datetime, timezone
    from kubernetes_asyncio.client import V1Namespace, V1NamespaceList, V1NamespaceStatus, V1ObjectMeta

    namespaces = V1NamespaceList(items=[
        V1Namespace(
            metadata=V1ObjectMeta(name='default', creation_timestamp=datetime(2025, 3, 1, tzinfo=timezone.utc)),
            status=V1NamespaceStatus(phase='Active'),
        ),
        V1Namespace(metadata=V1ObjectMeta(name='apps')),
    ])
    api = mocker.Mock()
    api.list_namespace = mocker.AsyncMock(return_value=namespaces)
    mocker.patch('kubernetes_asyncio.client.CoreV1Api', return_value=api)

    data = http.get('/api/kubernetes/namespaces').json()['data']

    assert data['total'] == 2
    assert data['namespaces'][0] == {
        'name': 'default', 'status': 'Active', 'createdAt': '2025-03-01T00:00:00+00:00',
    }
    assert data['namespaces'][1]['status'] is None


def test_connects_on_startup(settings, bootstrapper, switch):
    switch.reachable = True
    settings = settings.model_copy(update={'connect_on_startup': True})
    with TestClient(create_app(settings, bootstrapper)) as http:
        assert http.post('/api/kubernetes/reconnect').json()['data']['connected'] is True
    # shutdown drops the connection
    assert bootstrapper.is_connected() is False


@pytest.fixture
def unreachable(connected, mocker):
    error = aiohttp.ClientConnectionError('Cannot connect to host host.docker.internal:6443')
    api = mocker.Mock()
    api.list_namespaced_custom_object = mocker.AsyncMock(side_effect=error)
    api.list_cluster_custom_object = mocker.AsyncMock(side_effect=error)
    api.create_namespaced_custom_object = mocker.AsyncMock(side_effect=error)
    mocker.patch('kubernetes_asyncio.client.CustomObjectsApi', return_value=api)
    return api


def test_unreachable_cluster_returns_error_envelope(http, unreachable):
    for response in (http.get('/api/gateways'), http.post('/api/routes', json=ROUTE)):
        assert response.status_code == 500
        assert response.headers['content-type'] == 'application/json'
        assert response.json()['success'] is False
        assert response.json()['error'] == 'upstream_error'


def test_status_survives_unreachable_cluster(http, unreachable):
    data = http.get('/api/realtime-status').json()['data']
    assert data['gateways'] is None
    assert data['routes'] is None
    assert data['kubernetes'] is True

    with http.websocket_connect('/ws') as ws:
        assert ws.receive_json()['data']['gateways'] is None
        ws.send_text('refresh')
        assert ws.receive_json()['type'] == 'status'


def test_status_feed_accepts_binary_frames(http):
    with http.websocket_connect('/ws') as ws:
        ws.receive_json()
        ws.send_bytes(b'\x00refresh')
        assert ws.receive_json()['type'] == 'status'


def test_services(http, connected, mocker):
    from kubernetes_asyncio.client import V1ObjectMeta, V1Service, V1ServiceList, V1ServiceSpec

    api = mocker.Mock()
    api.list_namespaced_service = mocker.AsyncMock(return_value=V1ServiceList(items=[
        V1Service(metadata=V1ObjectMeta(name='backend', namespace='default'), spec=V1ServiceSpec(type='ClusterIP')),
    ]))
    mocker.patch('kubernetes_asyncio.client.CoreV1Api', return_value=api)

    data = http.get('/api/kubernetes/services').json()['data']
    assert data['total'] == 1
    assert data['services'][0]['name'] == 'backend'
    api.list_namespaced_service.assert_awaited_once_with('default')

    http.get('/api/kubernetes/services', params={'namespace': 'apps'})
    api.list_namespaced_service.assert_awaited_with('apps')


def test_deploy_disconnected_is_simulated(http):
    response = http.post('/api/envoy-gateway/deploy')

    assert response.status_code == 200
    assert response.json()['data']['status'] == 'simulated'
    assert response.json()['data']['namespace'] == 'envoy-gateway-system'


def test_deploy(http, connected):
    first = http.post('/api/envoy-gateway/deploy', json={'namespace': 'eg-system'}).json()
    assert first['data']['status'] == 'success'
    assert first['message'] == 'Envoy Gateway deployment initiated'
    assert ('envoygateways', 'eg-system', 'envoy-gateway') in connected.objects

    second = http.post('/api/envoy-gateway/deploy', json={'namespace': 'eg-system'}).json()
    assert second['data']['status'] == 'already_installed'

    assert http.post('/api/envoy-gateway/deploy', json={'namespace': 'Bad_NS'}).status_code == 422
