"""Operator settings read from the environment."""

import os
from typing import List, Optional

from pydantic import BaseModel, Field


def _env_bool(key, default):
    return os.getenv(key, default).lower() == "true"


class OperatorConfig(BaseModel):
    """Runtime settings shared by the controller and the reconcilers."""

    log_level: str = "INFO"
    worker_limit: int = Field(default=5, ge=1)
    requeue_interval: float = Field(default=300, gt=0)
    backoff_base: float = Field(default=1, gt=0)
    backoff_max: float = Field(default=300, gt=0)
    api_timeout: float = Field(default=30, gt=0)
    db_connect_timeout: int = Field(default=10, ge=1)
    db_statement_timeout_ms: int = Field(default=30000, ge=0)
    db_host_template: str = "{name}.{namespace}.svc.cluster.local"
    data_plane_basedomain: Optional[str] = None
    metrics_port: int = 8080
    manage_crds: bool = True
    watch_namespaces: List[str] = Field(default_factory=list)
    posting_enabled: bool = False
    server_timeout: int = 60

    @classmethod
    def from_env(cls):
        namespaces = [
            ns.strip() for ns in os.getenv("WATCH_NAMESPACE", "").split(",") if ns.strip()
        ]
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            worker_limit=int(os.getenv("WORKER_LIMIT", "5")),
            requeue_interval=float(os.getenv("REQUEUE_INTERVAL", "300")),
            backoff_base=float(os.getenv("BACKOFF_BASE", "1")),
            backoff_max=float(os.getenv("BACKOFF_MAX", "300")),
            api_timeout=float(os.getenv("API_TIMEOUT", "30")),
            db_connect_timeout=int(os.getenv("DB_CONNECT_TIMEOUT", "10")),
            db_statement_timeout_ms=int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "30000")),
            db_host_template=os.getenv(
                "DB_HOST_TEMPLATE", "{name}.{namespace}.svc.cluster.local"
            ),
            data_plane_basedomain=os.getenv("DATA_PLANE_BASEDOMAIN") or None,
            metrics_port=int(os.getenv("METRICS_PORT", "8080")),
            manage_crds=_env_bool("MANAGE_CRDS", "true"),
            watch_namespaces=namespaces,
            posting_enabled=_env_bool("POSTING_ENABLED", "false"),
            server_timeout=int(os.getenv("SERVER_TIMEOUT", "60")),
        )

    def db_host(self, name, namespace):
        return self.db_host_template.format(name=name, namespace=namespace)
