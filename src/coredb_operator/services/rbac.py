""" ServiceAccount, Role and RoleBinding for the Postgres pods.
"""

import logging

import kubernetes

from .common import GROUP, PLURAL, configmap_name, object_meta, secret_name

logger = logging.getLogger(__name__)


def policy_rules(ctx):
    """Rules scoped to this instance's own objects."""
    return [
        kubernetes.client.V1PolicyRule(
            api_groups=[GROUP],
            resources=[PLURAL, f"{PLURAL}/status"],
            resource_names=[ctx.name],
            verbs=["get", "watch"],
        ),
        kubernetes.client.V1PolicyRule(
            api_groups=[""],
            resources=["secrets"],
            resource_names=[secret_name(ctx.name)],
            verbs=["get", "watch"],
        ),
        kubernetes.client.V1PolicyRule(
            api_groups=[""],
            resources=["configmaps"],
            resource_names=[configmap_name(ctx.name)],
            verbs=["get", "watch"],
        ),
    ]


def build_service_account(ctx):
    return kubernetes.client.V1ServiceAccount(
        api_version="v1",
        kind="ServiceAccount",
        metadata=object_meta(ctx, ctx.name, component="rbac"),
    )


def build_role(ctx):
    return kubernetes.client.V1Role(
        api_version="rbac.authorization.k8s.io/v1",
        kind="Role",
        metadata=object_meta(ctx, ctx.name, component="rbac"),
        rules=policy_rules(ctx),
    )


def build_role_binding(ctx):
    return kubernetes.client.V1RoleBinding(
        api_version="rbac.authorization.k8s.io/v1",
        kind="RoleBinding",
        metadata=object_meta(ctx, ctx.name, component="rbac"),
        role_ref=kubernetes.client.V1RoleRef(
            api_group="rbac.authorization.k8s.io",
            kind="Role",
            name=ctx.name,
        ),
        subjects=[
            kubernetes.client.RbacV1Subject(
                kind="ServiceAccount",
                name=ctx.name,
                namespace=ctx.namespace,
            )
        ],
    )


def ensure_rbac(applier, ctx):
    """ Apply the ServiceAccount, Role and RoleBinding in that order.
    """
    results = [
        applier.apply(build_service_account(ctx)),
        applier.apply(build_role(ctx)),
        applier.apply(build_role_binding(ctx)),
    ]
    changed = [r["status"] for r in results if r["status"] != "unchanged"]
    return {"status": changed[0] if changed else "unchanged", "name": ctx.name}
