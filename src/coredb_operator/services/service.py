""" Service fronting the Postgres pods.
"""

import kubernetes

from .common import object_meta, pod_labels


def build_service(ctx):
    return kubernetes.client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=object_meta(ctx, ctx.name, component="postgres"),
        spec=kubernetes.client.V1ServiceSpec(
            type="ClusterIP",
            selector=pod_labels(ctx.name),
            ports=[
                kubernetes.client.V1ServicePort(
                    name="postgresql",
                    port=ctx.spec.port,
                    target_port="postgresql",
                    protocol="TCP",
                )
            ],
        ),
    )


def ensure_service(applier, ctx):
    return applier.apply(build_service(ctx))
