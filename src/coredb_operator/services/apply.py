"""Idempotent server-side apply for the objects a CoreDB owns."""

import hashlib
import json
import logging

import kubernetes
from kubernetes.client.exceptions import ApiException
from kubernetes.utils import parse_quantity

from coredb_operator.errors import classify_api_error

from .common import APPLIED_HASH_ANNOTATION, FIELD_MANAGER

logger = logging.getLogger(__name__)

APPLY_PATCH = "application/apply-patch+yaml"
MERGE_PATCH = "application/merge-patch+json"

# kind -> (typed API class, method suffix)
TYPED_KINDS = {
    "StatefulSet": ("AppsV1Api", "stateful_set"),
    "Deployment": ("AppsV1Api", "deployment"),
    "Service": ("CoreV1Api", "service"),
    "Secret": ("CoreV1Api", "secret"),
    "ConfigMap": ("CoreV1Api", "config_map"),
    "ServiceAccount": ("CoreV1Api", "service_account"),
    "PersistentVolumeClaim": ("CoreV1Api", "persistent_volume_claim"),
    "CronJob": ("BatchV1Api", "cron_job"),
    "Role": ("RbacAuthorizationV1Api", "role"),
    "RoleBinding": ("RbacAuthorizationV1Api", "role_binding"),
}

# kind -> (group, version, plural)
CUSTOM_KINDS = {
    "IngressRouteTCP": ("traefik.containo.us", "v1alpha1", "ingressroutetcps"),
}


def is_subset(desired, existing):
    """True when every field in ``desired`` already has that value in ``existing``.

    Lists compare element-wise and must have the same length, so removing
    an entry from a desired list counts as a change.
    """
    if isinstance(desired, dict):
        if not isinstance(existing, dict):
            return False
        return all(
            key in existing and is_subset(value, existing[key])
            for key, value in desired.items()
        )
    if isinstance(desired, list):
        if not isinstance(existing, list) or len(desired) != len(existing):
            return False
        return all(is_subset(d, e) for d, e in zip(desired, existing))
    if isinstance(desired, str) and isinstance(existing, str) and desired != existing:
        return _same_quantity(desired, existing)
    return desired == existing


def manifest_hash(desired):
    """Digest of a serialised manifest, stored on the object it was applied to."""
    body = json.dumps(desired, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(body.encode()).hexdigest()[:16]


def applied_hash(obj):
    annotations = (obj.get("metadata") or {}).get("annotations") or {}
    return annotations.get(APPLIED_HASH_ANNOTATION)


def _same_quantity(a, b):
    # the API server normalises quantities, e.g. "1000m" is stored as "1"
    try:
        return parse_quantity(a) == parse_quantity(b)
    except (ValueError, TypeError):
        return False


class ResourceApplier:
    """Reads, applies and deletes namespaced objects by kind.

    ``_read``, ``_patch`` and ``_delete`` are the only methods touching the
    API server.
    """

    def __init__(self, api_client=None, request_timeout=30):
        self.api_client = api_client or kubernetes.client.ApiClient()
        self.request_timeout = request_timeout
        self._apis = {}

    def to_dict(self, obj):
        """Serialise a kubernetes client model (or plain dict) to its JSON form."""
        if obj is None:
            return None
        return self.api_client.sanitize_for_serialization(obj)

    def _api(self, api_name):
        if api_name not in self._apis:
            self._apis[api_name] = getattr(kubernetes.client, api_name)(self.api_client)
        return self._apis[api_name]

    def _typed(self, kind, verb):
        try:
            api_name, suffix = TYPED_KINDS[kind]
        except KeyError:
            raise ValueError(f"Unsupported kind: {kind}")
        return getattr(self._api(api_name), f"{verb}_namespaced_{suffix}")

    def _read(self, kind, namespace, name):
        if kind in CUSTOM_KINDS:
            group, version, plural = CUSTOM_KINDS[kind]
            return self._api("CustomObjectsApi").get_namespaced_custom_object(
                group, version, namespace, plural, name,
                _request_timeout=self.request_timeout,
            )
        obj = self._typed(kind, "read")(
            name=name, namespace=namespace, _request_timeout=self.request_timeout
        )
        return self.to_dict(obj)

    def _patch(self, kind, namespace, name, body, content_type):
        kwargs = {"_content_type": content_type, "_request_timeout": self.request_timeout}
        if content_type == APPLY_PATCH:
            kwargs.update(field_manager=FIELD_MANAGER, force=True)
            body = json.dumps(body)

        if kind in CUSTOM_KINDS:
            group, version, plural = CUSTOM_KINDS[kind]
            return self._api("CustomObjectsApi").patch_namespaced_custom_object(
                group, version, namespace, plural, name, body, **kwargs
            )
        obj = self._typed(kind, "patch")(name=name, namespace=namespace, body=body, **kwargs)
        return self.to_dict(obj)

    def _delete(self, kind, namespace, name):
        if kind in CUSTOM_KINDS:
            group, version, plural = CUSTOM_KINDS[kind]
            self._api("CustomObjectsApi").delete_namespaced_custom_object(
                group, version, namespace, plural, name,
                _request_timeout=self.request_timeout,
            )
            return
        self._typed(kind, "delete")(
            name=name,
            namespace=namespace,
            propagation_policy="Background",
            _request_timeout=self.request_timeout,
        )

    def get(self, kind, namespace, name):
        """Current object as a dict, or None when absent."""
        try:
            return self._read(kind, namespace, name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise classify_api_error(e, f"{kind}/{name}")
        except Exception as e:
            raise classify_api_error(e, f"{kind}/{name}")

    def apply(self, manifest, existing=None):
        """Server-side apply ``manifest`` unless the live object already matches.

        The live object matches when it carries the hash of this exact
        manifest and still holds every desired field. A field dropped from
        the manifest changes the hash, so the apply goes out and the server
        releases the field.

        Args:
            manifest: kubernetes client model or dict with apiVersion and kind
            existing: live object if the caller already read it

        Returns:
            dict: status ('created', 'updated' or 'unchanged') and the object
        """
        desired = self.to_dict(manifest)
        kind = desired["kind"]
        name = desired["metadata"]["name"]
        namespace = desired["metadata"]["namespace"]
        digest = manifest_hash(desired)
        desired["metadata"].setdefault("annotations", {})[APPLIED_HASH_ANNOTATION] = digest

        if existing is None:
            existing = self.get(kind, namespace, name)
        if (
            existing is not None
            and applied_hash(existing) == digest
            and is_subset(desired, existing)
        ):
            logger.debug(f"{kind} {namespace}/{name} is up to date")
            return {"status": "unchanged", "name": name, "object": existing}

        try:
            result = self._patch(kind, namespace, name, desired, APPLY_PATCH)
        except Exception as e:
            logger.error(f"Failed to apply {kind} {namespace}/{name}: {e}")
            raise classify_api_error(e, f"{kind}/{name}")

        status = "created" if existing is None else "updated"
        logger.info(f"{status.capitalize()} {kind} {namespace}/{name}")
        return {"status": status, "name": name, "object": result}

    def merge_patch(self, kind, namespace, name, patch):
        try:
            result = self._patch(kind, namespace, name, patch, MERGE_PATCH)
        except Exception as e:
            logger.error(f"Failed to patch {kind} {namespace}/{name}: {e}")
            raise classify_api_error(e, f"{kind}/{name}")
        logger.info(f"Patched {kind} {namespace}/{name}")
        return {"status": "updated", "name": name, "object": result}

    def delete(self, kind, namespace, name):
        """Delete an object; a missing object counts as success."""
        if self.get(kind, namespace, name) is None:
            return {"status": "absent", "name": name}
        try:
            self._delete(kind, namespace, name)
        except ApiException as e:
            if e.status == 404:
                return {"status": "absent", "name": name}
            logger.error(f"Failed to delete {kind} {namespace}/{name}: {e}")
            raise classify_api_error(e, f"{kind}/{name}")
        except Exception as e:
            raise classify_api_error(e, f"{kind}/{name}")
        logger.info(f"Deleted {kind} {namespace}/{name}")
        return {"status": "deleted", "name": name}
