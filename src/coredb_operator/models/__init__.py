"""CRD models for the CoreDB operator."""

from .coredb import (
    CoreDBSpec,
    CoreDBStatus,
    Extension,
    ExtensionInstallLocation,
    ExtensionInstallLocationStatus,
    ExtensionStatus,
    MaintenancePolicy,
    PgConfig,
    ResourceRequirements,
    StackType,
    parse_spec,
    parse_status,
)

__all__ = [
    "CoreDBSpec",
    "CoreDBStatus",
    "Extension",
    "ExtensionInstallLocation",
    "ExtensionInstallLocationStatus",
    "ExtensionStatus",
    "MaintenancePolicy",
    "PgConfig",
    "ResourceRequirements",
    "StackType",
    "parse_spec",
    "parse_status",
]
