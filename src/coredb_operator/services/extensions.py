"""Keep the extensions installed in a live instance in line with its spec.

The synchronizer reads the extension catalog of every database, compares
it with the flattened per-location desired list, runs one corrective
statement group at a time and then reports what the catalog says after
the pass. Extensions present in the database but not listed in the spec
are never touched.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import psycopg2

from coredb_operator.models.coredb import (
    ExtensionInstallLocationStatus,
    ExtensionStatus,
)

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "Extension is not installed/available"


class ActionKind(str, Enum):
    CREATE = "create"
    DROP = "drop"
    UPDATE = "update"
    SET_SCHEMA = "set_schema"


@dataclass(frozen=True)
class ExtensionAction:
    kind: ActionKind
    name: str
    database: str
    schema: Optional[str] = None
    version: Optional[str] = None

    def __str__(self):
        return f"{self.kind.value} {self.name} in {self.database}"


@dataclass(frozen=True)
class DesiredLocation:
    name: str
    database: str
    enabled: bool
    schema: str
    version: Optional[str] = None
    description: Optional[str] = None


@dataclass
class SyncResult:
    extensions: List[ExtensionStatus]
    actions: List[ExtensionAction] = field(default_factory=list)
    failures: Dict[Tuple[str, str], str] = field(default_factory=dict)

    @property
    def ok(self):
        return not self.failures


def flatten_desired(extensions):
    """One entry per (extension, database) from the spec's extension list."""
    desired = []
    for ext in extensions:
        for loc in ext.locations:
            desired.append(
                DesiredLocation(
                    name=ext.name,
                    database=loc.database,
                    enabled=loc.enabled,
                    schema=loc.schema_,
                    version=loc.version,
                    description=ext.description,
                )
            )
    return desired


def location_matches(desired, actual):
    """Whether a catalog entry already satisfies a desired location.

    Name and database are implied by the lookup. A disabled location only
    needs the extension to be absent; an enabled one also needs the schema
    and, when pinned, the version to agree.
    """
    if actual is None:
        return False
    if desired.enabled != actual["enabled"]:
        return False
    if not desired.enabled:
        return True
    if desired.schema != actual.get("schema"):
        return False
    if desired.version and desired.version != actual.get("version"):
        return False
    return True


def plan_actions(desired, actual):
    """Corrective actions turning ``actual`` into ``desired``.

    Args:
        desired: list of DesiredLocation
        actual: dict keyed by (name, database) of catalog rows

    Returns:
        list of ExtensionAction, in desired order
    """
    actions = []
    for want in desired:
        have = actual.get((want.name, want.database))
        if have is None or location_matches(want, have):
            # not available in the catalog, nothing can be done
            continue
        if want.enabled and not have["enabled"]:
            actions.append(
                ExtensionAction(ActionKind.CREATE, want.name, want.database, want.schema, want.version)
            )
        elif not want.enabled and have["enabled"]:
            actions.append(ExtensionAction(ActionKind.DROP, want.name, want.database))
        else:
            if want.schema != have.get("schema"):
                actions.append(
                    ExtensionAction(ActionKind.SET_SCHEMA, want.name, want.database, schema=want.schema)
                )
            if want.version and want.version != have.get("version"):
                actions.append(
                    ExtensionAction(ActionKind.UPDATE, want.name, want.database, version=want.version)
                )
    return actions


def read_catalog(session, databases):
    actual = {}
    for database in databases:
        for row in session.list_extensions(database):
            actual[(row["name"], database)] = row
    return actual


def build_status(desired, actual, failures):
    """Extension status from the catalog, annotated with this pass's errors.

    Every catalog entry is reported as observed. Desired locations that the
    catalog does not know about are reported with ``enabled`` unset.
    """
    by_name = {}
    descriptions = {}

    for (name, database), row in actual.items():
        by_name.setdefault(name, {})[database] = ExtensionInstallLocationStatus(
            database=database,
            schema_=row.get("schema"),
            version=row.get("version"),
            enabled=row["enabled"],
        )
        if row.get("description"):
            descriptions.setdefault(name, row["description"])

    for want in desired:
        locations = by_name.setdefault(want.name, {})
        if want.description:
            descriptions.setdefault(want.name, want.description)
        if (want.name, want.database) not in actual:
            locations[want.database] = ExtensionInstallLocationStatus(
                database=want.database,
                schema_=want.schema,
                version=want.version,
                enabled=None,
                error=True,
                error_message=failures.get((want.name, want.database), NOT_AVAILABLE),
            )

    for (name, database), message in failures.items():
        location = by_name.get(name, {}).get(database)
        if location is not None:
            location.error = True
            location.error_message = message

    return [
        ExtensionStatus(
            name=name,
            description=descriptions.get(name),
            locations=[locations[db] for db in sorted(locations)],
        )
        for name, locations in sorted(by_name.items())
    ]


def sync_extensions(session, extensions, on_start_updating=None):
    """ Run one synchronization pass.

    Args:
        session: object with list_databases, list_extensions and apply
        extensions: the resolved spec's extension list
        on_start_updating: called once before the first corrective action

    Raises:
        DatabaseUnavailableError: if the instance cannot be reached
    """
    desired = flatten_desired(extensions)
    databases = session.list_databases()
    actual = read_catalog(session, databases)

    failures = {}
    for want in desired:
        if want.database not in databases:
            failures[(want.name, want.database)] = f"Database {want.database} does not exist"

    actions = plan_actions(desired, actual)
    if actions and on_start_updating is not None:
        on_start_updating()

    for action in actions:
        try:
            session.apply(action.database, action)
            logger.info(f"Extension action done: {action}")
        except psycopg2.Error as e:
            message = (getattr(e, "pgerror", None) or str(e)).strip()
            logger.warning(f"Extension action failed: {action}: {message}")
            failures[(action.name, action.database)] = message

    if actions:
        actual = read_catalog(session, databases)

    return SyncResult(
        extensions=build_status(desired, actual, failures),
        actions=actions,
        failures=failures,
    )
