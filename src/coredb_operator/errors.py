"""Error types raised while reconciling CoreDB instances.

Errors are split by how the controller reacts to them: a ``TransientError``
is retried with backoff, a ``PermanentError`` is reported on the CoreDB
status and only retried on the periodic requeue.
"""

from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

TRANSIENT_STATUS_CODES = {409, 429}


class CoreDBError(Exception):
    """Base class for all operator errors."""

    reason = "Error"

    def __init__(self, message, resource=None):
        super().__init__(message)
        self.message = message
        self.resource = resource

    def __str__(self):
        if self.resource:
            return f"{self.resource}: {self.message}"
        return self.message


class PermanentError(CoreDBError):
    """Retrying with the same input will not help."""

    reason = "PermanentError"


class SpecValidationError(PermanentError):
    reason = "SpecValidation"


class InvalidTransitionError(PermanentError):
    reason = "InvalidTransition"


class ResourceRejectedError(PermanentError):
    """The API server refused a manifest (4xx other than 404/409/429)."""

    reason = "ResourceRejected"


class TransientError(CoreDBError):
    """Worth retrying after a backoff."""

    reason = "TransientError"


class ResourceConflictError(TransientError):
    reason = "ResourceConflict"


class DatabaseUnavailableError(TransientError):
    reason = "DatabaseUnavailable"


class FinalizerError(TransientError):
    reason = "Finalizer"


class StackLoadError(CoreDBError):
    """An embedded stack profile could not be loaded. Fatal at startup."""

    reason = "StackLoad"


def classify_api_error(exc, resource=None):
    """Map a Kubernetes client exception onto the operator error hierarchy.

    Args:
        exc: ``ApiException`` or urllib3 error raised by the client
        resource: Optional ``Kind/name`` used in the error message
    """
    if isinstance(exc, CoreDBError):
        return exc

    if isinstance(exc, ApiException):
        status = exc.status or 0
        message = f"API error {status}: {exc.reason}"
        if status == 409:
            return ResourceConflictError(message, resource)
        if status in TRANSIENT_STATUS_CODES or status >= 500 or status == 0:
            return TransientError(message, resource)
        return ResourceRejectedError(message, resource)

    if isinstance(exc, (Urllib3HTTPError, TimeoutError, ConnectionError)):
        return TransientError(f"API request failed: {exc}", resource)

    return TransientError(f"Unexpected error: {exc}", resource)
