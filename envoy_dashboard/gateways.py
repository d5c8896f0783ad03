from typing import Optional

from fastapi import APIRouter, Depends

from envoy_dashboard.dependencies import get_gateways, ok
from envoy_dashboard.resources import ResourceClient
from envoy_dashboard.schemas import GatewayCreate, GatewayUpdate, to_spec

router = APIRouter(prefix="/api/gateways", tags=["gateways"])


@router.get("")
async def list_gateways(namespace: Optional[str] = None, gateways: ResourceClient = Depends(get_gateways)):
    """List gateways in a namespace, or in all namespaces when none is given."""
    items = await gateways.list(namespace)
    return ok({"gateways": items, "total": len(items)})


@router.post("", status_code=201)
async def create_gateway(
    request: GatewayCreate,
    namespace: Optional[str] = None,
    gateways: ResourceClient = Depends(get_gateways),
):
    gateway = await gateways.create(to_spec(request), namespace)
    return ok(gateway, f"Gateway {gateway.name} created")


@router.get("/{namespace}/{name}")
async def get_gateway(namespace: str, name: str, gateways: ResourceClient = Depends(get_gateways)):
    return ok(await gateways.get(namespace, name))


@router.put("/{namespace}/{name}")
async def update_gateway(
    namespace: str,
    name: str,
    request: GatewayUpdate,
    gateways: ResourceClient = Depends(get_gateways),
):
    gateway = await gateways.update(name, to_spec(request), namespace)
    return ok(gateway, f"Gateway {name} updated")


@router.delete("/{namespace}/{name}")
async def delete_gateway(namespace: str, name: str, gateways: ResourceClient = Depends(get_gateways)):
    await gateways.delete(name, namespace)
    return ok(None, f"Gateway {name} deleted")
