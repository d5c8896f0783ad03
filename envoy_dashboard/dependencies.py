"""
FastAPI dependency providers. Services live on app.state, set up by main.create_app.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request

from envoy_dashboard.k8s import Bootstrapper
from envoy_dashboard.resources import ResourceClient
from envoy_dashboard.settings import Settings


def get_bootstrapper(request: Request) -> Bootstrapper:
    return request.app.state.bootstrapper


def get_gateways(request: Request) -> ResourceClient:
    return request.app.state.gateways


def get_routes(request: Request) -> ResourceClient:
    return request.app.state.routes


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    """Success envelope."""
    return {"success": True, "data": data, "message": message, "timestamp": timestamp()}


def failure(error: str, message: str) -> Dict[str, Any]:
    """Failure envelope."""
    return {"success": False, "error": error, "message": message}
