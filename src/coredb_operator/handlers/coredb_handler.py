"""kopf handlers for CoreDB objects and the objects they own.

Handlers never reconcile themselves: they hand the owning CoreDB's key to
the ``PassRunner`` in ``memo.runner`` and turn its ``Action`` into kopf's
retry or failure signals.
"""

import logging

import kopf

from coredb_operator.config import OperatorConfig
from coredb_operator.services.common import (
    GROUP,
    MANAGED_BY,
    MANAGED_BY_LABEL,
    NAME_LABEL,
    PLURAL,
    VERSION,
)

logger = logging.getLogger(__name__)

MANAGED = {MANAGED_BY_LABEL: MANAGED_BY}

REQUEUE_INTERVAL = OperatorConfig.from_env().requeue_interval

# (group, version, plural) of every owned kind that is watched
OWNED_RESOURCES = [
    ("apps", "v1", "statefulsets"),
    ("apps", "v1", "deployments"),
    ("", "v1", "services"),
    ("", "v1", "secrets"),
    ("", "v1", "configmaps"),
    ("", "v1", "serviceaccounts"),
    ("batch", "v1", "cronjobs"),
    ("rbac.authorization.k8s.io", "v1", "roles"),
    ("rbac.authorization.k8s.io", "v1", "rolebindings"),
]


def owner_key(meta):
    """The (namespace, name) of the CoreDB owning an object, or None."""
    for ref in meta.get("ownerReferences") or []:
        if ref.get("kind") == "CoreDB" and ref.get("apiVersion", "").startswith(f"{GROUP}/"):
            return meta.get("namespace"), ref["name"]
    name = (meta.get("labels") or {}).get(NAME_LABEL)
    if name:
        return meta.get("namespace"), name
    return None


@kopf.on.resume(GROUP, VERSION, PLURAL)
@kopf.on.create(GROUP, VERSION, PLURAL)
@kopf.on.update(GROUP, VERSION, PLURAL)
async def reconcile_coredb(namespace, name, retry, memo: kopf.Memo, **kwargs):
    action = await memo.runner.run(namespace, name)
    if action is not None:
        memo.runner.raise_for(action, retry)


@kopf.timer(GROUP, VERSION, PLURAL, interval=REQUEUE_INTERVAL, initial_delay=REQUEUE_INTERVAL)
async def requeue_coredb(namespace, name, retry, memo: kopf.Memo, **kwargs):
    """Periodic pass that corrects drift nothing else reports."""
    action = await memo.runner.run(namespace, name)
    if action is not None:
        memo.runner.raise_for(action, retry)


@kopf.on.delete(GROUP, VERSION, PLURAL)
async def delete_coredb(body, retry, memo: kopf.Memo, **kwargs):
    await memo.runner.cleanup(body, retry)


async def owned_event(event, meta, memo: kopf.Memo, **kwargs):
    key = owner_key(meta)
    if key is None:
        return
    logger.debug(f"Owned object {meta.get('name')} changed, reconciling {key[0]}/{key[1]}")
    action = await memo.runner.run(*key)
    # event handlers are not retried; the timer picks the object up again
    if action is not None and action.retry:
        logger.warning(f"Pass for {key[0]}/{key[1]} after owned change failed: {action.message}")


for _group, _version, _plural in OWNED_RESOURCES:
    kopf.on.event(
        group=_group, version=_version, plural=_plural, labels=MANAGED, id=f"owned-{_plural}"
    )(owned_event)
