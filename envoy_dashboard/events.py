"""
WebSocket push of periodic status snapshots.
"""
import asyncio
import logging
from typing import Any, Dict

from fastapi import APIRouter, FastAPI, WebSocket, WebSocketDisconnect

from envoy_dashboard.dependencies import timestamp
from envoy_dashboard.errors import DashboardError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


async def status_snapshot(app: FastAPI) -> Dict[str, Any]:
    """Resource counts and connection flag at this instant."""
    bootstrapper = app.state.bootstrapper
    counts = {}
    for key, resources in (("gateways", app.state.gateways), ("routes", app.state.routes)):
        try:
            counts[key] = len(await resources.list())
        except DashboardError as e:
            logger.warning(f"Could not count {key}: {e.message}")
            counts[key] = None
    return {
        **counts,
        "kubernetes": bootstrapper.is_connected(),
        "clusterEndpoint": bootstrapper.state.cluster_endpoint,
        "timestamp": timestamp(),
    }


@router.websocket("/ws")
async def status_feed(websocket: WebSocket):
    await websocket.accept()
    interval = websocket.app.state.settings.push_interval
    logger.info("Status feed client connected")
    try:
        while True:
            await websocket.send_json({"type": "status", "data": await status_snapshot(websocket.app)})
            # any client frame, text or binary, triggers an immediate refresh
            try:
                message = await asyncio.wait_for(websocket.receive(), timeout=interval)
            except asyncio.TimeoutError:
                continue
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
    except WebSocketDisconnect:
        logger.info("Status feed client disconnected")
