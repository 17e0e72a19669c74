"""Spec changes the controller refuses to apply."""

from kubernetes.utils import parse_quantity

from coredb_operator.errors import InvalidTransitionError
from coredb_operator.services.workload import desired_replicas

# ExtensionsSynced reason while corrective statements are running
SYNC_IN_PROGRESS = "Updating"


def extensions_sync_in_progress(status):
    """True while a synchronization pass has started changing the catalog.

    ``extensionsUpdating`` alone is not enough: it also stays set when the
    database could not be reached, and that must not hold up a stop.
    """
    if not status.extensionsUpdating:
        return False
    condition = status.get_condition("ExtensionsSynced")
    return condition is not None and condition.reason == SYNC_IN_PROGRESS


def check_transition(spec, status, observed):
    """ Raise if ``spec`` cannot legally follow the observed state.

    Args:
        spec: resolved CoreDBSpec
        status: current CoreDBStatus
        observed: output of ``observe_workload``

    Raises:
        InvalidTransitionError: naming the broken rule
    """
    # compare with what the claims request; capacity may be rounded up
    current_storage = observed.get("requested_storage")
    if current_storage and parse_quantity(spec.storage) < parse_quantity(current_storage):
        raise InvalidTransitionError(
            f"storage cannot shrink from {current_storage} to {spec.storage}"
        )

    live_replicas = observed.get("replicas")
    running = live_replicas is not None and live_replicas > 0

    if spec.stop and running and extensions_sync_in_progress(status):
        raise InvalidTransitionError(
            "cannot stop the instance while extensions are being updated"
        )

    if (
        observed.get("storage_pending")
        and live_replicas is not None
        and desired_replicas(spec) != live_replicas
    ):
        raise InvalidTransitionError(
            f"cannot change replicas from {live_replicas} to {desired_replicas(spec)} "
            "while a storage expansion is pending"
        )
