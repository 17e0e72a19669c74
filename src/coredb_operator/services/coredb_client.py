"""Access to CoreDB objects themselves: fetch and status."""

import logging

import kubernetes
from kubernetes.client.exceptions import ApiException

from coredb_operator.errors import classify_api_error

from .common import GROUP, PLURAL, VERSION

logger = logging.getLogger(__name__)

MERGE_PATCH = "application/merge-patch+json"


class CoreDBClient:
    """Thin wrapper over CustomObjectsApi for the coredbs resource.

    Writes carry the object's resourceVersion so a concurrent change fails
    with a conflict instead of being overwritten.
    """

    def __init__(self, api_client=None, request_timeout=30):
        api_client = api_client or kubernetes.client.ApiClient()
        self.custom_api = kubernetes.client.CustomObjectsApi(api_client)
        self.core_api = kubernetes.client.CoreV1Api(api_client)
        self.request_timeout = request_timeout

    def get(self, namespace, name):
        """The CoreDB as a dict, or None if it no longer exists."""
        try:
            return self.custom_api.get_namespaced_custom_object(
                GROUP, VERSION, namespace, PLURAL, name,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise classify_api_error(e, f"CoreDB/{name}")
        except Exception as e:
            raise classify_api_error(e, f"CoreDB/{name}")

    def patch_status(self, obj, status):
        """Merge-patch the status subresource.

        Args:
            obj: the CoreDB as last read
            status: JSON-ready status mapping
        """
        metadata = obj["metadata"]
        body = {
            "metadata": {"resourceVersion": metadata["resourceVersion"]},
            "status": status,
        }
        try:
            return self.custom_api.patch_namespaced_custom_object_status(
                GROUP, VERSION, metadata["namespace"], PLURAL, metadata["name"], body,
                _content_type=MERGE_PATCH,
                _request_timeout=self.request_timeout,
            )
        except Exception as e:
            raise classify_api_error(e, f"CoreDB/{metadata['name']}")

    def namespace_terminating(self, namespace):
        try:
            ns = self.core_api.read_namespace(namespace, _request_timeout=self.request_timeout)
        except ApiException as e:
            if e.status == 404:
                return True
            raise classify_api_error(e, f"Namespace/{namespace}")
        except Exception as e:
            raise classify_api_error(e, f"Namespace/{namespace}")
        return bool(ns.status and ns.status.phase == "Terminating")
