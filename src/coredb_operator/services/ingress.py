""" Traefik IngressRouteTCP exposing the instance on the data plane domain.
"""

import logging

from .apply import CUSTOM_KINDS
from .common import ingress_route_name, object_meta

logger = logging.getLogger(__name__)

ENTRY_POINT = "postgresql"


def route_host(ctx):
    return f"{ctx.name}.{ctx.config.data_plane_basedomain}"


def ingress_enabled(ctx):
    return bool(ctx.spec.expose and ctx.config.data_plane_basedomain)


def build_ingress_route(ctx):
    group, version, _ = CUSTOM_KINDS["IngressRouteTCP"]
    return {
        "apiVersion": f"{group}/{version}",
        "kind": "IngressRouteTCP",
        "metadata": object_meta(ctx, ingress_route_name(ctx.name), component="ingress"),
        "spec": {
            "entryPoints": [ENTRY_POINT],
            "routes": [
                {
                    "match": f"HostSNI(`{route_host(ctx)}`)",
                    "services": [{"name": ctx.name, "port": ctx.spec.port}],
                }
            ],
            "tls": {"passthrough": True},
        },
    }


def ensure_ingress_route(applier, ctx):
    """ Publish the route when exposure is on and a base domain is configured.
    """
    if not ingress_enabled(ctx):
        return delete_ingress_route(applier, ctx.namespace, ctx.name)
    return applier.apply(build_ingress_route(ctx))


def delete_ingress_route(applier, namespace, name):
    return applier.delete("IngressRouteTCP", namespace, ingress_route_name(name))
