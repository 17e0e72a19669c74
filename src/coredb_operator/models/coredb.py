"""CoreDB CRD models."""

from enum import Enum
from typing import Dict, List, Optional

from kubernetes.utils import parse_quantity
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from coredb_operator.crd.base import CRDSpec, CRDStatus
from coredb_operator.crd.registry import CRDRegistry
from coredb_operator.errors import SpecValidationError

DEFAULT_IMAGE = "quay.io/coredb/postgres:15.3.0"
DEFAULT_EXPORTER_IMAGE = "quay.io/prometheuscommunity/postgres-exporter:v0.12.0"
DEFAULT_DATABASE = "postgres"
DEFAULT_SCHEMA = "public"


def parse_bytes(value):
    """Parse a Kubernetes quantity string into a number, or raise ValueError."""
    try:
        return parse_quantity(value)
    except (ValueError, TypeError) as e:
        raise ValueError(f"invalid quantity {value!r}: {e}")


class StackType(str, Enum):
    """Workload profile a CoreDB is tuned for."""

    STANDARD = "Standard"
    OLTP = "OLTP"
    OLAP = "OLAP"
    MACHINE_LEARNING = "MachineLearning"
    MESSAGE_QUEUE = "MessageQueue"


class ExtensionInstallLocation(CRDSpec):
    """Where, and in which state, an extension should be installed."""

    model_config = ConfigDict(populate_by_name=True)

    database: str = Field(default=DEFAULT_DATABASE, description="Database name")
    enabled: bool = Field(..., description="Whether the extension is installed")
    schema_: str = Field(
        default=DEFAULT_SCHEMA,
        alias="schema",
        description="Schema the extension objects live in",
    )
    version: Optional[str] = Field(
        default=None, description="Pinned extension version; unpinned when unset"
    )


class Extension(CRDSpec):
    """Desired extension with its per-database install locations."""

    name: str = Field(..., min_length=1, description="Extension name")
    description: Optional[str] = Field(default=None, description="Extension description")
    locations: List[ExtensionInstallLocation] = Field(
        default_factory=list, validate_default=True, description="Install locations"
    )

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        if not v.strip():
            raise ValueError("extension name must not be blank")
        return v

    @field_validator("locations")
    @classmethod
    def check_locations(cls, v):
        if not v:
            # a bare entry means "install it in the default database"
            return [ExtensionInstallLocation(enabled=True)]
        databases = [loc.database for loc in v]
        duplicates = {db for db in databases if databases.count(db) > 1}
        if duplicates:
            raise ValueError(f"database(s) {sorted(duplicates)} listed more than once")
        return v


class ResourceRequirements(CRDSpec):
    limits: Optional[Dict[str, str]] = Field(default=None, description="Resource limits")
    requests: Optional[Dict[str, str]] = Field(default=None, description="Resource requests")

    @field_validator("limits", "requests")
    @classmethod
    def quantities_parse(cls, v):
        if v is None:
            return v
        for quantity in v.values():
            parse_bytes(quantity)
        return v


class MaintenancePolicy(CRDSpec):
    enabled: bool = Field(default=False, description="Run the maintenance CronJob")
    schedule: str = Field(
        default="0 3 * * *", description="Cron schedule for the maintenance job"
    )

    @field_validator("schedule")
    @classmethod
    def five_fields(cls, v):
        if len(v.split()) != 5:
            raise ValueError(f"schedule {v!r} is not a five-field cron expression")
        return v


class PgConfig(CRDSpec):
    """A single postgresql.conf parameter."""

    name: str = Field(..., min_length=1)
    value: str = Field(...)

    @field_validator("value", mode="before")
    @classmethod
    def stringify(cls, v):
        return str(v)


class ExtensionInstallLocationStatus(BaseModel):
    """Observed install state of an extension in one database."""

    model_config = ConfigDict(populate_by_name=True)

    database: str = DEFAULT_DATABASE
    schema_: Optional[str] = Field(default=None, alias="schema")
    version: Optional[str] = None
    enabled: Optional[bool] = None
    error: bool = False
    error_message: Optional[str] = None


class ExtensionStatus(BaseModel):
    name: str
    description: Optional[str] = None
    locations: List[ExtensionInstallLocationStatus] = Field(default_factory=list)


class CoreDBStatus(CRDStatus):
    """CoreDB status written by the controller."""

    running: bool = False
    extensionsUpdating: bool = False
    storage: Optional[str] = None
    extensions: Optional[List[ExtensionStatus]] = None


@CRDRegistry.register(
    "coredb.io",
    "v1alpha1",
    "CoreDB",
    "coredbs",
    short_names=["cdb"],
    status_model=CoreDBStatus,
    printer_columns=[
        {"name": "Running", "type": "boolean", "jsonPath": ".status.running"},
        {"name": "Phase", "type": "string", "jsonPath": ".status.phase"},
        {"name": "Storage", "type": "string", "jsonPath": ".status.storage"},
        {"name": "Age", "type": "date", "jsonPath": ".metadata.creationTimestamp"},
    ],
)
class CoreDBSpec(CRDSpec):
    """CoreDB CRD specification."""

    image: str = Field(default=DEFAULT_IMAGE, description="Postgres container image")
    port: int = Field(default=5432, ge=1, le=65535, description="Postgres port")
    replicas: int = Field(default=1, ge=0, description="Number of Postgres pods")
    storage: str = Field(default="8Gi", description="Data volume size")
    uid: Optional[int] = Field(default=999, ge=0, description="Postgres OS user id")
    stop: bool = Field(default=False, description="Scale the instance down to zero")
    postgresExporterEnabled: bool = Field(
        default=True, description="Deploy the Prometheus postgres exporter"
    )
    postgresExporterImage: str = Field(
        default=DEFAULT_EXPORTER_IMAGE, description="Postgres exporter image"
    )
    resources: ResourceRequirements = Field(
        default_factory=ResourceRequirements, description="Postgres container resources"
    )
    extensions: List[Extension] = Field(
        default_factory=list, description="Extensions to keep installed"
    )
    stack: Optional[StackType] = Field(default=None, description="Workload profile")
    maintenance: MaintenancePolicy = Field(
        default_factory=MaintenancePolicy, description="Scheduled maintenance job"
    )
    expose: bool = Field(
        default=True, description="Publish a TCP ingress route for the instance"
    )
    override_configs: List[PgConfig] = Field(
        default_factory=list, description="Postgres parameters applied last"
    )

    @field_validator("storage")
    @classmethod
    def storage_parses(cls, v):
        if parse_bytes(v) <= 0:
            raise ValueError("storage must be positive")
        return v

    @field_validator("extensions")
    @classmethod
    def unique_extension_names(cls, v):
        seen = set()
        for ext in v:
            if ext.name in seen:
                raise ValueError(f"duplicate extension name: {ext.name}")
            seen.add(ext.name)
        return v


def parse_spec(raw):
    """Build a CoreDBSpec from the raw ``spec`` mapping of a CoreDB object.

    Raises:
        SpecValidationError: if the mapping does not describe a valid CoreDB
    """
    try:
        return CoreDBSpec.model_validate(raw or {})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'spec'}: {err['msg']}"
            for err in e.errors()
        )
        raise SpecValidationError(f"invalid spec: {problems}")


def parse_status(raw):
    """Build a CoreDBStatus from the raw ``status`` mapping.

    Malformed status content is discarded rather than failing the pass,
    since the controller rewrites status anyway.
    """
    if not raw:
        return CoreDBStatus()
    try:
        return CoreDBStatus.model_validate(raw)
    except ValidationError:
        return CoreDBStatus()


def dump_status(status):
    return status.model_dump(mode="json", by_alias=True)
