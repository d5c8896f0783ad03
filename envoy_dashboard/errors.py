"""
Error taxonomy shared by the connection and resource layers.
"""
import asyncio
import logging
from typing import Optional

import aiohttp
from kubernetes_asyncio.client.exceptions import ApiException

logger = logging.getLogger(__name__)

# raised by the client transport when the API server cannot be reached
CONNECTION_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


class DashboardError(Exception):
    """Base class for errors surfaced to the HTTP layer."""

    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotConnected(DashboardError):
    code = "not_connected"

    def __init__(self, message: str = "Not connected to Kubernetes cluster"):
        super().__init__(message)


class NotFound(DashboardError):
    code = "not_found"


class AlreadyExists(DashboardError):
    code = "already_exists"


class UpstreamError(DashboardError):
    code = "upstream_error"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class KubeconfigError(Exception):
    """The kubeconfig file is missing or cannot be parsed."""


class StrategyFailure(Exception):
    """A connection strategy could not build a context or its probe failed."""

    def __init__(self, strategy: str, cause: BaseException):
        super().__init__(f"{strategy}: {cause}")
        self.strategy = strategy
        self.cause = cause


def handle_api_exception(e: ApiException, resource: str = "resource") -> None:
    """Convert K8s API exceptions to dashboard errors."""
    if e.status == 404:
        raise NotFound(f"{resource} not found") from e
    elif e.status == 409:
        raise AlreadyExists(f"{resource} already exists: {e.reason}") from e
    else:
        logger.error(f"K8s API error: {e.status} {e.reason}")
        raise UpstreamError(f"Kubernetes error: {e.reason}", status=e.status) from e


def handle_connection_error(e: BaseException, resource: str = "resource") -> None:
    """Convert refused, reset and timed out API calls to UpstreamError."""
    reason = str(e) or type(e).__name__
    logger.error(f"K8s API unreachable while accessing {resource}: {reason}")
    raise UpstreamError(f"Kubernetes API unreachable: {reason}") from e
