"""Prometheus metrics exported by the operator."""

import logging

from prometheus_client import REGISTRY, Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)


class Metrics:
    """Counters for the CoreDB lifecycle and reconcile outcomes.

    Tests pass their own ``CollectorRegistry`` so that instances do not clash
    on the process-wide default registry.
    """

    def __init__(self, registry=None):
        registry = registry if registry is not None else REGISTRY
        self.registry = registry

        self.instances_created = Counter(
            "instances_created",
            "Number of CoreDB instances created",
            registry=registry,
        )
        self.instances_updated = Counter(
            "instances_updated",
            "Number of reconcile passes over existing CoreDB instances",
            registry=registry,
        )
        self.instances_invalid_state_transition = Counter(
            "instances_invalid_state_transition",
            "Number of rejected CoreDB spec transitions",
            registry=registry,
        )
        self.reconcile_failures = Counter(
            "reconcile_failures",
            "Number of failed reconcile passes by error type",
            ["error"],
            registry=registry,
        )
        self.reconcile_duration = Histogram(
            "reconcile_duration_seconds",
            "Time spent reconciling a single CoreDB",
            registry=registry,
        )

    def sample(self, name, labels=None):
        """Current value of a sample, mainly for tests."""
        value = self.registry.get_sample_value(name, labels or {})
        return value or 0.0


def serve_metrics(port):
    logger.info(f"Serving metrics on port {port}")
    start_http_server(port)
