import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from envoy_dashboard import cluster, events, gateways, routes
from envoy_dashboard.dependencies import failure
from envoy_dashboard.errors import AlreadyExists, DashboardError, NotConnected, NotFound
from envoy_dashboard.k8s import Bootstrapper
from envoy_dashboard.resources import (
    DemoWrites,
    FailNotConnected,
    GatewayKind,
    HTTPRouteKind,
    ResourceClient,
)
from envoy_dashboard.settings import Settings, get_settings

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotConnected: 503,
    NotFound: 404,
    AlreadyExists: 409,
}


def create_app(settings: Optional[Settings] = None, bootstrapper: Optional[Bootstrapper] = None) -> FastAPI:
    settings = settings or get_settings()
    bootstrapper = bootstrapper or Bootstrapper.from_settings(settings)
    writes = DemoWrites() if settings.demo_writes else FailNotConnected()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if settings.connect_on_startup:
            # connect in the background so the API answers (with example data) meanwhile
            task = asyncio.create_task(bootstrapper.run())
        yield
        if task is not None and not task.done():
            task.cancel()
        await bootstrapper.close()

    app = FastAPI(title="Envoy Gateway Dashboard API", lifespan=lifespan)
    app.state.settings = settings
    app.state.bootstrapper = bootstrapper
    app.state.gateways = ResourceClient(
        bootstrapper.state,
        GatewayKind(settings.gateway_class_name),
        default_namespace=settings.default_namespace,
        writes=writes,
    )
    app.state.routes = ResourceClient(
        bootstrapper.state,
        HTTPRouteKind(),
        default_namespace=settings.default_namespace,
        writes=writes,
    )

    # CORS: the extension UI is served from a different origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info(f"{request.method} {request.url.path} -> {response.status_code}")
        return response

    @app.exception_handler(DashboardError)
    async def dashboard_error_handler(request: Request, exc: DashboardError):
        status_code = ERROR_STATUS.get(type(exc), 500)
        if status_code == 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status_code, content=failure(exc.code, exc.message))

    app.include_router(cluster.router)
    app.include_router(gateways.router)
    app.include_router(routes.router)
    app.include_router(events.router)
    return app


def run():
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
