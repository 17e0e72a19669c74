"""One reconcile pass over a single CoreDB.

The pass is synchronous and runs in a worker thread. It never raises:
every outcome is turned into an ``Action`` that the kopf handlers map to
a retry, a permanent failure or nothing at all.
"""

import logging
from dataclasses import dataclass

from coredb_operator.errors import (
    CoreDBError,
    DatabaseUnavailableError,
    FinalizerError,
    InvalidTransitionError,
    PermanentError,
    SpecValidationError,
    TransientError,
)
from coredb_operator.models.coredb import dump_status, parse_spec, parse_status
from coredb_operator.services import RECONCILERS, delete_ingress_route
from coredb_operator.services.common import WATCH_ANNOTATION, InstanceContext
from coredb_operator.services.database import PostgresSession
from coredb_operator.services.extensions import sync_extensions
from coredb_operator.services.workload import is_ready, observe_workload
from coredb_operator.stacks import resolve

from .events import EventRecorder
from .transitions import SYNC_IN_PROGRESS, check_transition

logger = logging.getLogger(__name__)

PHASE_RECONCILING = "Reconciling"
PHASE_READY = "Ready"
PHASE_INVALID = "Invalid"
PHASE_STOPPED = "Stopped"


def paused(obj):
    annotations = obj["metadata"].get("annotations") or {}
    return annotations.get(WATCH_ANNOTATION, "").lower() == "false"


@dataclass(frozen=True)
class Action:
    """Outcome of a pass.

    ``retry`` asks for another pass after a backoff; ``permanent`` means
    only a spec change or the periodic timer can help.
    """

    retry: bool = False
    permanent: bool = False
    message: str = ""

    @classmethod
    def done(cls):
        return cls()

    @classmethod
    def again(cls, message):
        return cls(retry=True, message=message)

    @classmethod
    def reject(cls, message):
        return cls(permanent=True, message=message)


class StatusWriter:
    """Writes status only when its serialised form changed since the last write."""

    def __init__(self, client, obj, status):
        self.client = client
        self.obj = obj
        self.written = dump_status(status)

    def write(self, status):
        current = dump_status(status)
        if current == self.written:
            return False
        updated = self.client.patch_status(self.obj, current)
        if updated:
            self.obj = updated
        self.written = current
        return True


class Reconciler:
    def __init__(self, client, applier, config, metrics, events=None, session_factory=None):
        self.client = client
        self.applier = applier
        self.config = config
        self.metrics = metrics
        self.events = events or EventRecorder(enabled=False)
        self.session_factory = session_factory or self._open_session

    def _open_session(self, ctx):
        credentials = ctx.observed["credentials"]
        return PostgresSession(
            host=ctx.service_host,
            port=ctx.spec.port,
            user=credentials["user"],
            password=credentials["password"],
            connect_timeout=self.config.db_connect_timeout,
            statement_timeout_ms=self.config.db_statement_timeout_ms,
        )

    def reconcile(self, namespace, name):
        """Run one pass for ``namespace/name`` and return its ``Action``."""
        key = f"{namespace}/{name}"
        with self.metrics.reconcile_duration.time():
            try:
                return self._reconcile(namespace, name)
            except TransientError as e:
                self.metrics.reconcile_failures.labels(error=e.reason).inc()
                logger.warning(f"Reconcile of {key} failed, will retry: {e}")
                return Action.again(str(e))
            except PermanentError as e:
                self.metrics.reconcile_failures.labels(error=e.reason).inc()
                logger.error(f"Reconcile of {key} failed: {e}")
                return Action.reject(str(e))

    def _reconcile(self, namespace, name):
        key = f"{namespace}/{name}"
        obj = self.client.get(namespace, name)
        if obj is None:
            logger.debug(f"CoreDB {key} is gone")
            return Action.done()

        if paused(obj):
            logger.info(f"Skipping CoreDB {key}: {WATCH_ANNOTATION} is false")
            return Action.done()

        if obj["metadata"].get("deletionTimestamp"):
            # the delete handler owns the rest of the lifecycle
            return Action.done()

        return self._apply(obj)

    def cleanup(self, obj):
        """ Release what garbage collection will not.

        Called from the delete handler; kopf drops the finalizer once this
        returns.

        Raises:
            FinalizerError: if any step failed; the finalizer stays on
        """
        namespace = obj["metadata"]["namespace"]
        name = obj["metadata"]["name"]
        if paused(obj):
            logger.info(f"Not cleaning up CoreDB {namespace}/{name}: {WATCH_ANNOTATION} is false")
            return
        try:
            delete_ingress_route(self.applier, namespace, name)
            if not self.client.namespace_terminating(namespace):
                self.events.info(obj, reason="DeleteCoreDB", message=f"Deleting CoreDB {name}")
        except CoreDBError as e:
            raise FinalizerError(f"cleanup failed: {e}", f"CoreDB/{name}")
        logger.info(f"Finalized CoreDB {namespace}/{name}")

    def _apply(self, obj):
        metadata = obj["metadata"]
        namespace = metadata["namespace"]
        name = metadata["name"]
        key = f"{namespace}/{name}"
        first_pass = not obj.get("status")

        status = parse_status(obj.get("status"))
        writer = StatusWriter(self.client, obj, status)
        status.observedGeneration = metadata.get("generation")

        try:
            spec = parse_spec(obj.get("spec"))
        except SpecValidationError as e:
            logger.error(f"CoreDB {key} has an invalid spec: {e}")
            self.events.warn(obj, reason="InvalidSpec", message=str(e))
            status.phase = PHASE_INVALID
            status.set_condition("SpecValid", False, e.reason, str(e))
            writer.write(status)
            raise
        status.set_condition("SpecValid", True, "Valid")

        ctx = InstanceContext(
            name=name,
            namespace=namespace,
            uid=metadata["uid"],
            resolved=resolve(spec),
            status=status,
            config=self.config,
        )
        ctx.observed.update(observe_workload(self.applier, ctx))

        try:
            check_transition(ctx.spec, status, ctx.observed)
        except InvalidTransitionError as e:
            logger.warning(f"Rejected change to CoreDB {key}: {e}")
            self.metrics.instances_invalid_state_transition.inc()
            self.events.warn(obj, reason="InvalidTransition", message=str(e))
            status.phase = PHASE_INVALID
            status.set_condition("TransitionValid", False, e.reason, str(e))
            writer.write(status)
            raise
        status.set_condition("TransitionValid", True, "Valid")

        errors = self.reconcile_resources(ctx)
        if errors:
            summary = "; ".join(f"{label}: {e}" for label, e in errors.items())
            status.set_condition("ResourcesSynced", False, "ApplyFailed", summary)
        else:
            status.set_condition("ResourcesSynced", True, "Applied")

        running = is_ready(ctx.observed.get("statefulset"))
        status.running = running
        if ctx.observed.get("storage"):
            status.storage = ctx.observed["storage"]

        if running and not ctx.spec.stop and "credentials" in ctx.observed:
            try:
                self.reconcile_extensions(ctx, status, writer)
            except DatabaseUnavailableError as e:
                logger.warning(f"Extensions of {key} not synced: {e}")
                status.extensionsUpdating = True
                status.set_condition("ExtensionsSynced", False, e.reason, str(e))
                errors["Extensions"] = e

        status.set_condition("Ready", running, "Running" if running else "NotRunning")
        if ctx.spec.stop:
            status.phase = PHASE_STOPPED
        elif running and not errors:
            status.phase = PHASE_READY
        else:
            status.phase = PHASE_RECONCILING
        writer.write(status)

        if first_pass:
            self.metrics.instances_created.inc()
        else:
            self.metrics.instances_updated.inc()

        transient = [e for e in errors.values() if isinstance(e, TransientError)]
        for e in errors.values():
            self.metrics.reconcile_failures.labels(error=e.reason).inc()
        if transient:
            logger.warning(f"CoreDB {key} had {len(transient)} retryable error(s)")
            return Action.again("; ".join(str(e) for e in transient))
        return Action.done()

    def reconcile_resources(self, ctx):
        """ Run every sub-resource reconciler in order, collecting failures.

        Returns:
            dict: resource label -> CoreDBError for the reconcilers that failed
        """
        errors = {}
        for label, reconciler in RECONCILERS:
            try:
                result = reconciler(self.applier, ctx)
                logger.debug(f"{label} for {ctx.key}: {result['status']}")
            except CoreDBError as e:
                logger.error(f"{label} for {ctx.key} failed: {e}")
                errors[label] = e
        return errors

    def reconcile_extensions(self, ctx, status, writer):
        def start_updating():
            status.extensionsUpdating = True
            status.set_condition(
                "ExtensionsSynced", False, SYNC_IN_PROGRESS, "applying extension changes"
            )
            writer.write(status)

        with self.session_factory(ctx) as session:
            result = sync_extensions(session, ctx.spec.extensions, on_start_updating=start_updating)

        status.extensions = result.extensions
        status.extensionsUpdating = False
        if result.ok:
            status.set_condition("ExtensionsSynced", True, "Synced")
        else:
            failed = ", ".join(f"{n}@{db}" for n, db in sorted(result.failures))
            status.set_condition("ExtensionsSynced", False, "PartialFailure", f"failed: {failed}")
        return result
