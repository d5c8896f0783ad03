"""
Cluster endpoints: health, connection management, namespaces, services and Envoy Gateway install.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from envoy_dashboard.dependencies import get_app_settings, get_bootstrapper, ok, timestamp
from envoy_dashboard.events import status_snapshot
from envoy_dashboard.k8s import Bootstrapper
from envoy_dashboard.resources import deploy_envoy_gateway, envoy_gateway_installed
from envoy_dashboard.schemas import DeployRequest
from envoy_dashboard.settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["cluster"])


@router.get("/health")
async def health_check(bootstrapper: Bootstrapper = Depends(get_bootstrapper)):
    return {"status": "healthy", "kubernetes": bootstrapper.is_connected(), "timestamp": timestamp()}


@router.get("/kubernetes/status")
async def connection_status(bootstrapper: Bootstrapper = Depends(get_bootstrapper)):
    data = bootstrapper.state.to_dict()
    data["strategyName"] = bootstrapper.active_strategy_name if bootstrapper.is_connected() else None
    return ok(data)


@router.post("/kubernetes/reconnect")
async def reconnect(bootstrapper: Bootstrapper = Depends(get_bootstrapper)):
    """Rerun the connection strategies. May take several seconds."""
    connected = await bootstrapper.reconnect()
    message = "Successfully reconnected to Kubernetes" if connected else "Failed to reconnect to Kubernetes"
    return ok(bootstrapper.state.to_dict(), message)


@router.get("/kubernetes/diagnostics")
async def diagnostics(bootstrapper: Bootstrapper = Depends(get_bootstrapper)):
    return ok(bootstrapper.diagnostics())


@router.get("/kubernetes/test")
async def test_connection(bootstrapper: Bootstrapper = Depends(get_bootstrapper)):
    return ok(await bootstrapper.test_connection())


@router.get("/kubernetes/namespaces")
async def list_namespaces(bootstrapper: Bootstrapper = Depends(get_bootstrapper)):
    namespaces = await bootstrapper.list_namespaces()
    return ok({"namespaces": namespaces, "total": len(namespaces)})


@router.get("/kubernetes/services")
async def list_services(
    namespace: Optional[str] = None,
    bootstrapper: Bootstrapper = Depends(get_bootstrapper),
    settings: Settings = Depends(get_app_settings),
):
    services = await bootstrapper.list_services(namespace or settings.default_namespace)
    return ok({"services": services, "total": len(services)})


@router.get("/envoy-gateway/status")
async def envoy_gateway_status(bootstrapper: Bootstrapper = Depends(get_bootstrapper)):
    return ok(await envoy_gateway_installed(bootstrapper.state))


@router.post("/envoy-gateway/deploy")
async def deploy(
    request: Optional[DeployRequest] = None,
    bootstrapper: Bootstrapper = Depends(get_bootstrapper),
    settings: Settings = Depends(get_app_settings),
):
    namespace = (request.namespace if request else None) or settings.envoy_gateway_namespace
    result = await deploy_envoy_gateway(bootstrapper.state, namespace)
    return ok(result, result["message"])


@router.get("/realtime-status")
async def realtime_status(request: Request):
    return ok(await status_snapshot(request.app))
