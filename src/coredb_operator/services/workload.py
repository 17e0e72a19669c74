"""Postgres StatefulSet and its data volumes."""

import logging

import kubernetes
from kubernetes.utils import parse_quantity

from .common import (
    CONFIG_HASH_ANNOTATION,
    CONFIG_MOUNT,
    DATA_MOUNT,
    PGDATA,
    configmap_name,
    data_claim_name,
    object_meta,
    pod_labels,
    secret_name,
)

logger = logging.getLogger(__name__)

DATA_VOLUME = "data"
CONFIG_VOLUME = "config"


def desired_replicas(spec):
    return 0 if spec.stop else spec.replicas


def _claim_template_storage(existing):
    """Storage requested by the live volume claim template, if any."""
    if not existing:
        return None
    for template in existing.get("spec", {}).get("volumeClaimTemplates") or []:
        if template.get("metadata", {}).get("name") == DATA_VOLUME:
            return template.get("spec", {}).get("resources", {}).get("requests", {}).get("storage")
    return None


def build_postgres_container(ctx):
    spec = ctx.spec
    resources = spec.resources
    return kubernetes.client.V1Container(
        name="postgres",
        image=spec.image,
        args=["-c", f"config_file={CONFIG_MOUNT}/postgresql.conf"],
        ports=[kubernetes.client.V1ContainerPort(container_port=spec.port, name="postgresql")],
        env=[
            kubernetes.client.V1EnvVar(
                name="POSTGRES_PASSWORD",
                value_from=kubernetes.client.V1EnvVarSource(
                    secret_key_ref=kubernetes.client.V1SecretKeySelector(
                        name=secret_name(ctx.name), key="password"
                    )
                ),
            ),
            kubernetes.client.V1EnvVar(name="PGDATA", value=PGDATA),
            kubernetes.client.V1EnvVar(name="PGPORT", value=str(spec.port)),
        ],
        resources=kubernetes.client.V1ResourceRequirements(
            limits=resources.limits, requests=resources.requests
        ),
        readiness_probe=kubernetes.client.V1Probe(
            _exec=kubernetes.client.V1ExecAction(
                command=["pg_isready", "-U", "postgres", "-p", str(spec.port)]
            ),
            initial_delay_seconds=5,
            period_seconds=10,
        ),
        volume_mounts=[
            kubernetes.client.V1VolumeMount(name=DATA_VOLUME, mount_path=DATA_MOUNT),
            kubernetes.client.V1VolumeMount(
                name=CONFIG_VOLUME, mount_path=CONFIG_MOUNT, read_only=True
            ),
        ],
    )


def build_statefulset(ctx, existing=None):
    """Desired StatefulSet.

    Volume claim templates are immutable, so an existing StatefulSet keeps
    the size it was created with; growth is applied to the claims instead.
    """
    spec = ctx.spec
    labels = pod_labels(ctx.name)
    template_storage = _claim_template_storage(existing) or spec.storage

    security_context = None
    if spec.uid is not None:
        security_context = kubernetes.client.V1PodSecurityContext(
            run_as_user=spec.uid, fs_group=spec.uid
        )

    return kubernetes.client.V1StatefulSet(
        api_version="apps/v1",
        kind="StatefulSet",
        metadata=object_meta(ctx, ctx.name, component="postgres", labels=labels),
        spec=kubernetes.client.V1StatefulSetSpec(
            replicas=desired_replicas(spec),
            service_name=ctx.name,
            selector=kubernetes.client.V1LabelSelector(match_labels=labels),
            template=kubernetes.client.V1PodTemplateSpec(
                metadata=kubernetes.client.V1ObjectMeta(
                    labels=labels,
                    annotations={CONFIG_HASH_ANNOTATION: ctx.observed.get("config_hash", "")},
                ),
                spec=kubernetes.client.V1PodSpec(
                    service_account_name=ctx.name,
                    security_context=security_context,
                    containers=[build_postgres_container(ctx)],
                    volumes=[
                        kubernetes.client.V1Volume(
                            name=CONFIG_VOLUME,
                            config_map=kubernetes.client.V1ConfigMapVolumeSource(
                                name=configmap_name(ctx.name)
                            ),
                        )
                    ],
                ),
            ),
            volume_claim_templates=[
                kubernetes.client.V1PersistentVolumeClaim(
                    metadata=kubernetes.client.V1ObjectMeta(name=DATA_VOLUME),
                    spec=kubernetes.client.V1PersistentVolumeClaimSpec(
                        access_modes=["ReadWriteOnce"],
                        resources=kubernetes.client.V1VolumeResourceRequirements(
                            requests={"storage": template_storage}
                        ),
                    ),
                )
            ],
        ),
    )


def is_ready(statefulset):
    """All requested replicas report ready, and at least one was requested."""
    if not statefulset:
        return False
    replicas = statefulset.get("spec", {}).get("replicas") or 0
    ready = (statefulset.get("status") or {}).get("readyReplicas") or 0
    return replicas > 0 and ready == replicas


def observe_workload(applier, ctx):
    """Read the live StatefulSet and data claims.

    Claims are looked up for ``spec.replicas`` ordinals even when the
    instance is stopped, since scaling to zero keeps the claims.

    Returns:
        dict: the StatefulSet (or None), its live replica count, the smallest
        claim capacity (reported in status), the smallest requested claim
        size (the floor for spec.storage) and whether a claim is still
        waiting to grow
    """
    statefulset = applier.get("StatefulSet", ctx.namespace, ctx.name)
    live_replicas = None
    if statefulset is not None:
        live_replicas = statefulset.get("spec", {}).get("replicas")

    capacity = None
    requested_min = None
    pending = False
    for ordinal in range(max(live_replicas or 0, ctx.spec.replicas)):
        claim = applier.get("PersistentVolumeClaim", ctx.namespace, data_claim_name(ctx.name, ordinal))
        if claim is None:
            continue
        claimed = (claim.get("status") or {}).get("capacity", {}).get("storage")
        requested = claim.get("spec", {}).get("resources", {}).get("requests", {}).get("storage")
        if requested is not None and (
            requested_min is None or parse_quantity(requested) < parse_quantity(requested_min)
        ):
            requested_min = requested
        if claimed is None:
            continue
        if capacity is None or parse_quantity(claimed) < parse_quantity(capacity):
            capacity = claimed
        if requested is not None and parse_quantity(requested) > parse_quantity(claimed):
            pending = True

    return {
        "statefulset": statefulset,
        "replicas": live_replicas,
        "storage": capacity,
        "requested_storage": requested_min,
        "storage_pending": pending,
    }


def expand_storage(applier, ctx, replicas):
    """Grow each existing data claim that requests less than the spec size."""
    wanted = parse_quantity(ctx.spec.storage)
    resized = []
    for ordinal in range(replicas):
        name = data_claim_name(ctx.name, ordinal)
        claim = applier.get("PersistentVolumeClaim", ctx.namespace, name)
        if claim is None:
            continue
        requested = claim.get("spec", {}).get("resources", {}).get("requests", {}).get("storage")
        if requested is not None and parse_quantity(requested) >= wanted:
            continue
        applier.merge_patch(
            "PersistentVolumeClaim",
            ctx.namespace,
            name,
            {"spec": {"resources": {"requests": {"storage": ctx.spec.storage}}}},
        )
        logger.info(f"Requested {ctx.spec.storage} for claim {ctx.namespace}/{name}")
        resized.append(name)
    return resized


def ensure_workload(applier, ctx):
    """ Apply the StatefulSet, then grow data claims if storage increased.

    Leaves the applied StatefulSet in ``ctx.observed["statefulset"]``.
    """
    existing = ctx.observed.get("statefulset")
    result = applier.apply(build_statefulset(ctx, existing), existing=existing)
    ctx.observed["statefulset"] = result["object"]

    if existing is not None:
        # a stopped instance keeps its claims, so spec.replicas still bounds the scan
        claims = max(ctx.spec.replicas, ctx.observed.get("replicas") or 0)
        resized = expand_storage(applier, ctx, claims)
        if resized and result["status"] == "unchanged":
            result = {**result, "status": "updated"}
    return result
