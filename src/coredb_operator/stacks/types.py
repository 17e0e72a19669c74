"""Stack profile models and the Postgres configuration engines."""

from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coredb_operator.models.coredb import (
    Extension,
    PgConfig,
    ResourceRequirements,
    StackType,
    parse_bytes,
)

DEFAULT_MEMORY = "1Gi"
DEFAULT_CPU = "1"
MB = 1024 * 1024


class ConfigEngine(str, Enum):
    STANDARD = "standard"
    OLAP = "olap"
    MQ = "mq"


class StackProfile(BaseModel):
    """A named baseline configuration merged into CoreDB specs."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: StackType
    description: Optional[str] = None
    image: str
    stack_version: Optional[str] = None
    storage: str = "8Gi"
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    extensions: Tuple[Extension, ...] = ()
    postgres_config: Tuple[PgConfig, ...] = ()
    postgres_config_engine: ConfigEngine = ConfigEngine.STANDARD

    @field_validator("storage")
    @classmethod
    def storage_parses(cls, v):
        parse_bytes(v)
        return v

    def runtime_config(self, resources):
        """Memory and CPU derived parameters for the given container resources."""
        memory_mb, cpu = _sizing(resources)
        if self.postgres_config_engine == ConfigEngine.OLAP:
            return olap_config_engine(memory_mb, cpu)
        if self.postgres_config_engine == ConfigEngine.MQ:
            return mq_config_engine(memory_mb, cpu)
        return standard_config_engine(memory_mb, cpu)


def _sizing(resources):
    limits = (resources.limits if resources else None) or {}
    requests = (resources.requests if resources else None) or {}
    memory = limits.get("memory") or requests.get("memory") or DEFAULT_MEMORY
    cpu = limits.get("cpu") or requests.get("cpu") or DEFAULT_CPU
    memory_mb = int(parse_bytes(memory) / MB)
    cpu_count = max(1, int(parse_bytes(cpu)))
    return memory_mb, cpu_count


def _max_connections(memory_mb):
    return max(100, min(1000, memory_mb // 16))


def _work_mem(memory_mb, shared_buffers_mb, max_connections):
    return max(4, int((memory_mb - shared_buffers_mb) / (max_connections * 3)))


def standard_config_engine(memory_mb, cpu):
    shared_buffers = int(memory_mb * 0.25)
    max_connections = _max_connections(memory_mb)
    return [
        PgConfig(name="shared_buffers", value=f"{shared_buffers}MB"),
        PgConfig(name="max_connections", value=max_connections),
        PgConfig(name="effective_cache_size", value=f"{int(memory_mb * 0.7)}MB"),
        PgConfig(name="maintenance_work_mem", value=f"{max(64, int(memory_mb * 0.05))}MB"),
        PgConfig(
            name="work_mem",
            value=f"{_work_mem(memory_mb, shared_buffers, max_connections)}MB",
        ),
        PgConfig(name="max_worker_processes", value=max(8, cpu)),
    ]


def olap_config_engine(memory_mb, cpu):
    shared_buffers = int(memory_mb * 0.25)
    max_connections = 100
    return [
        PgConfig(name="shared_buffers", value=f"{shared_buffers}MB"),
        PgConfig(name="max_connections", value=max_connections),
        PgConfig(name="effective_cache_size", value=f"{int(memory_mb * 0.75)}MB"),
        PgConfig(name="maintenance_work_mem", value=f"{max(64, int(memory_mb * 0.1))}MB"),
        PgConfig(name="work_mem", value=f"{max(32, int(memory_mb * 0.5 / max_connections))}MB"),
        PgConfig(name="max_worker_processes", value=max(8, cpu * 2)),
        PgConfig(name="max_parallel_workers", value=cpu),
        PgConfig(name="max_parallel_workers_per_gather", value=max(1, cpu // 2)),
    ]


def mq_config_engine(memory_mb, cpu):
    shared_buffers = int(memory_mb * 0.6)
    max_connections = _max_connections(memory_mb)
    return [
        PgConfig(name="shared_buffers", value=f"{shared_buffers}MB"),
        PgConfig(name="max_connections", value=max_connections),
        PgConfig(name="effective_cache_size", value=f"{int(memory_mb * 0.8)}MB"),
        PgConfig(name="maintenance_work_mem", value=f"{max(64, int(memory_mb * 0.05))}MB"),
        PgConfig(
            name="work_mem",
            value=f"{_work_mem(memory_mb, shared_buffers, max_connections)}MB",
        ),
        PgConfig(name="max_worker_processes", value=max(8, cpu)),
    ]
