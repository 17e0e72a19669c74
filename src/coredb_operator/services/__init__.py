"""Sub-resource reconcilers and the clients they share."""

from .apply import ResourceApplier, is_subset
from .configmap import ensure_configmap
from .coredb_client import CoreDBClient
from .cronjob import ensure_cronjob
from .exporter import ensure_exporter
from .ingress import delete_ingress_route, ensure_ingress_route
from .rbac import ensure_rbac
from .secret import ensure_secret
from .service import ensure_service
from .workload import ensure_workload

# (resource label, reconciler) in the order they run on every pass
RECONCILERS = [
    ("Secret", ensure_secret),
    ("ConfigMap", ensure_configmap),
    ("RBAC", ensure_rbac),
    ("StatefulSet", ensure_workload),
    ("Service", ensure_service),
    ("Exporter", ensure_exporter),
    ("CronJob", ensure_cronjob),
    ("IngressRouteTCP", ensure_ingress_route),
]

__all__ = [
    "CoreDBClient",
    "RECONCILERS",
    "ResourceApplier",
    "delete_ingress_route",
    "is_subset",
]
