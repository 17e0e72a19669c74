"""Offline rendering of the objects a CoreDB manifest produces."""

import kubernetes

from coredb_operator.models.coredb import CoreDBStatus, parse_spec
from coredb_operator.services.common import InstanceContext
from coredb_operator.services.configmap import build_configmap, config_data, config_hash
from coredb_operator.services.cronjob import build_cronjob
from coredb_operator.services.exporter import build_exporter_deployment, build_exporter_service
from coredb_operator.services.ingress import build_ingress_route, ingress_enabled
from coredb_operator.services.rbac import build_role, build_role_binding, build_service_account
from coredb_operator.services.secret import build_secret
from coredb_operator.services.service import build_service
from coredb_operator.services.workload import build_statefulset
from coredb_operator.stacks import resolve

PLACEHOLDER_PASSWORD = "generated-at-apply"
PLACEHOLDER_UID = "00000000-0000-0000-0000-000000000000"


def render_manifests(obj, config):
    """Manifests for a CoreDB object, in apply order, as plain dicts.

    Raises:
        SpecValidationError: if the manifest's spec is invalid
    """
    metadata = obj.get("metadata") or {}
    ctx = InstanceContext(
        name=metadata.get("name", "coredb"),
        namespace=metadata.get("namespace", "default"),
        uid=metadata.get("uid", PLACEHOLDER_UID),
        resolved=resolve(parse_spec(obj.get("spec"))),
        status=CoreDBStatus(),
        config=config,
    )
    data = config_data(ctx)
    ctx.observed["config_hash"] = config_hash(data)

    manifests = [
        build_secret(ctx, PLACEHOLDER_PASSWORD),
        build_configmap(ctx, data),
        build_service_account(ctx),
        build_role(ctx),
        build_role_binding(ctx),
        build_statefulset(ctx),
        build_service(ctx),
    ]
    if ctx.spec.postgresExporterEnabled:
        manifests += [build_exporter_service(ctx), build_exporter_deployment(ctx)]
    if ctx.spec.maintenance.enabled:
        manifests.append(build_cronjob(ctx))
    if ingress_enabled(ctx):
        manifests.append(build_ingress_route(ctx))

    api_client = kubernetes.client.ApiClient()
    return [api_client.sanitize_for_serialization(m) for m in manifests]
