from typing import Optional

from fastapi import APIRouter, Depends

from envoy_dashboard.dependencies import get_routes, ok
from envoy_dashboard.resources import ResourceClient
from envoy_dashboard.schemas import HTTPRouteCreate, HTTPRouteUpdate, to_spec

router = APIRouter(prefix="/api/routes", tags=["routes"])


@router.get("")
async def list_routes(namespace: Optional[str] = None, routes: ResourceClient = Depends(get_routes)):
    """List HTTPRoutes in a namespace, or in all namespaces when none is given."""
    items = await routes.list(namespace)
    return ok({"routes": items, "total": len(items)})


@router.post("", status_code=201)
async def create_route(
    request: HTTPRouteCreate,
    namespace: Optional[str] = None,
    routes: ResourceClient = Depends(get_routes),
):
    route = await routes.create(to_spec(request), namespace)
    return ok(route, f"HTTPRoute {route.name} created")


@router.get("/{namespace}/{name}")
async def get_route(namespace: str, name: str, routes: ResourceClient = Depends(get_routes)):
    return ok(await routes.get(namespace, name))


@router.put("/{namespace}/{name}")
async def update_route(
    namespace: str,
    name: str,
    request: HTTPRouteUpdate,
    routes: ResourceClient = Depends(get_routes),
):
    route = await routes.update(name, to_spec(request), namespace)
    return ok(route, f"HTTPRoute {name} updated")


@router.delete("/{namespace}/{name}")
async def delete_route(namespace: str, name: str, routes: ResourceClient = Depends(get_routes)):
    await routes.delete(name, namespace)
    return ok(None, f"HTTPRoute {name} deleted")
