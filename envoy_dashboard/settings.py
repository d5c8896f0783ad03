"""
Dashboard configuration.
Values come from DASHBOARD_* environment variables (or a .env file).
"""
import os
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DASHBOARD_", env_file=".env", extra="ignore")

    # kubeconfig path; falls back to $KUBECONFIG then ~/.kube/config
    kubeconfig: Optional[str] = None

    # connection strategies
    docker_host_alias: str = "host.docker.internal"
    last_resort_host_alias: str = "docker.for.mac.localhost"
    forced_api_port: int = 6443
    probe_timeout: float = 5.0
    connect_on_startup: bool = True

    # resources
    default_namespace: str = "default"
    gateway_class_name: str = "envoy-gateway"
    demo_writes: bool = False
    envoy_gateway_namespace: str = "envoy-gateway-system"

    # server
    push_interval: float = 5.0
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080

    @property
    def kubeconfig_path(self) -> str:
        raw = self.kubeconfig or os.environ.get("KUBECONFIG") or "~/.kube/config"
        # KUBECONFIG may hold a list of files; only the first one is used
        first = raw.split(os.pathsep)[0].strip() or "~/.kube/config"
        return os.path.expanduser(first)


@lru_cache
def get_settings() -> Settings:
    return Settings()
