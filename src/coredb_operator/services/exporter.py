"""Prometheus postgres exporter Deployment and Service.

Both objects exist only while ``postgresExporterEnabled`` is set; turning
the flag off deletes them on the next pass.
"""

import logging

import kubernetes

from .common import EXPORTER_PORT, exporter_name, object_meta, secret_name

logger = logging.getLogger(__name__)

EXPORTER_USER = 65534


def exporter_labels(name):
    return {"app": "coredb-exporter", "coredb.io/name": name}


def build_exporter_deployment(ctx):
    name = exporter_name(ctx.name)
    labels = exporter_labels(ctx.name)
    secret = secret_name(ctx.name)

    def from_secret(env_name, key):
        return kubernetes.client.V1EnvVar(
            name=env_name,
            value_from=kubernetes.client.V1EnvVarSource(
                secret_key_ref=kubernetes.client.V1SecretKeySelector(name=secret, key=key)
            ),
        )

    container = kubernetes.client.V1Container(
        name="postgres-exporter",
        image=ctx.spec.postgresExporterImage,
        args=["--auto-discover-databases"],
        env=[
            kubernetes.client.V1EnvVar(
                name="DATA_SOURCE_URI",
                value=f"{ctx.service_host}:{ctx.spec.port}/postgres?sslmode=disable",
            ),
            from_secret("DATA_SOURCE_USER", "user"),
            from_secret("DATA_SOURCE_PASS", "password"),
        ],
        ports=[kubernetes.client.V1ContainerPort(container_port=EXPORTER_PORT, name="metrics")],
        readiness_probe=kubernetes.client.V1Probe(
            http_get=kubernetes.client.V1HTTPGetAction(path="/metrics", port="metrics"),
            initial_delay_seconds=3,
            period_seconds=10,
        ),
        security_context=kubernetes.client.V1SecurityContext(
            run_as_user=EXPORTER_USER,
            allow_privilege_escalation=False,
        ),
    )

    return kubernetes.client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=object_meta(ctx, name, component="metrics", labels=labels),
        spec=kubernetes.client.V1DeploymentSpec(
            replicas=1,
            selector=kubernetes.client.V1LabelSelector(match_labels=labels),
            template=kubernetes.client.V1PodTemplateSpec(
                metadata=kubernetes.client.V1ObjectMeta(labels=labels),
                spec=kubernetes.client.V1PodSpec(
                    service_account_name=ctx.name,
                    containers=[container],
                ),
            ),
        ),
    )


def build_exporter_service(ctx):
    return kubernetes.client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=object_meta(ctx, exporter_name(ctx.name), component="metrics"),
        spec=kubernetes.client.V1ServiceSpec(
            type="ClusterIP",
            selector=exporter_labels(ctx.name),
            ports=[
                kubernetes.client.V1ServicePort(
                    name="metrics",
                    port=80,
                    target_port="metrics",
                    protocol="TCP",
                )
            ],
        ),
    )


def ensure_exporter(applier, ctx):
    """ Apply or remove the exporter depending on the spec flag.
    """
    if not ctx.spec.postgresExporterEnabled:
        return delete_exporter(applier, ctx)

    results = [
        applier.apply(build_exporter_service(ctx)),
        applier.apply(build_exporter_deployment(ctx)),
    ]
    changed = [r["status"] for r in results if r["status"] != "unchanged"]
    return {"status": changed[0] if changed else "unchanged", "name": exporter_name(ctx.name)}


def delete_exporter(applier, ctx):
    name = exporter_name(ctx.name)
    results = [
        applier.delete("Deployment", ctx.namespace, name),
        applier.delete("Service", ctx.namespace, name),
    ]
    if any(r["status"] == "deleted" for r in results):
        logger.info(f"Removed postgres exporter for {ctx.key}")
        return {"status": "deleted", "name": name}
    return {"status": "absent", "name": name}
