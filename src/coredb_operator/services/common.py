"""Naming, labelling and ownership shared by the sub-resource reconcilers."""

from dataclasses import dataclass, field
from typing import Any, Dict

import kubernetes

GROUP = "coredb.io"
VERSION = "v1alpha1"
PLURAL = "coredbs"
KIND = "CoreDB"

FIELD_MANAGER = "coredb-operator"
FINALIZER = "coredbs.coredb.io"
WATCH_ANNOTATION = "coredbs.coredb.io/watch"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "coredb-operator"
NAME_LABEL = "coredb.io/name"
CONFIG_HASH_ANNOTATION = "coredb.io/config-hash"
APPLIED_HASH_ANNOTATION = "coredb.io/applied-hash"

EXPORTER_PORT = 9187
DATA_MOUNT = "/var/lib/postgresql/data"
PGDATA = f"{DATA_MOUNT}/pgdata"
CONFIG_MOUNT = "/etc/postgresql"


def secret_name(name):
    return f"{name}-connection"


def configmap_name(name):
    return f"{name}-config"


def exporter_name(name):
    return f"{name}-metrics"


def cronjob_name(name):
    return f"{name}-maintenance"


def ingress_route_name(name):
    return f"{name}-rw"


def data_claim_name(name, ordinal):
    """Name the StatefulSet controller gives to the data claim of a pod."""
    return f"data-{name}-{ordinal}"


def standard_labels(name, component=None):
    labels = {MANAGED_BY_LABEL: MANAGED_BY, NAME_LABEL: name}
    if component:
        labels["app.kubernetes.io/component"] = component
    return labels


def pod_labels(name):
    """Selector labels of the Postgres pods."""
    return {"app": "coredb", NAME_LABEL: name, "statefulset": name}


def owner_reference(name, uid):
    return kubernetes.client.V1OwnerReference(
        api_version=f"{GROUP}/{VERSION}",
        kind=KIND,
        name=name,
        uid=uid,
        controller=True,
        block_owner_deletion=True,
    )


def object_meta(ctx, name, component=None, labels=None, annotations=None):
    meta_labels = standard_labels(ctx.name, component)
    if labels:
        meta_labels.update(labels)
    return kubernetes.client.V1ObjectMeta(
        name=name,
        namespace=ctx.namespace,
        labels=meta_labels,
        annotations=annotations,
        owner_references=[owner_reference(ctx.name, ctx.uid)],
    )


@dataclass
class InstanceContext:
    """Everything a reconciler needs to know about one CoreDB pass."""

    name: str
    namespace: str
    uid: str
    resolved: Any
    status: Any
    config: Any
    observed: Dict[str, Any] = field(default_factory=dict)

    @property
    def spec(self):
        return self.resolved.spec

    @property
    def key(self):
        return f"{self.namespace}/{self.name}"

    @property
    def service_host(self):
        return self.config.db_host(self.name, self.namespace)
