"""Kubernetes events posted on CoreDB objects."""

import logging

import kopf

logger = logging.getLogger(__name__)


class EventRecorder:
    """Posts events through kopf; a no-op outside a running operator."""

    def __init__(self, enabled=True):
        self.enabled = enabled

    def _post(self, poster, obj, reason, message):
        if not self.enabled:
            return
        try:
            poster(obj, reason=reason, message=message)
        except LookupError:
            # kopf's posting queue only exists inside a running operator
            logger.debug(f"Event {reason} not posted: no event queue")

    def info(self, obj, reason, message):
        self._post(kopf.info, obj, reason, message)

    def warn(self, obj, reason, message):
        self._post(kopf.warn, obj, reason, message)
