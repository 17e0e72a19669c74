import kopf
import logging
import kubernetes
import os

from coredb_operator.config import OperatorConfig
from coredb_operator.controller import PassRunner, Reconciler
from coredb_operator.controller.events import EventRecorder
from coredb_operator.crd.generator import CRDManager
from coredb_operator.errors import StackLoadError
from coredb_operator.metrics import Metrics, serve_metrics
from coredb_operator.services import CoreDBClient, ResourceApplier
from coredb_operator.services.common import FINALIZER
from coredb_operator.stacks import load_stacks

import coredb_operator.handlers.coredb_handler  # noqa: F401  registers kopf handlers

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@kopf.on.startup()
async def startup_fn(settings: kopf.OperatorSettings, memo: kopf.Memo, **kwargs):
    """Load configuration, profiles and CRDs, then build the pass runner."""
    logger.info("CoreDB Operator is starting up...")
    config = OperatorConfig.from_env()

    # Load Kubernetes configuration
    try:
        kubernetes.config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except kubernetes.config.ConfigException:
        try:
            kubernetes.config.load_kube_config()
            logger.info("Loaded local Kubernetes config")
        except Exception as e:
            logger.warning(f"Could not load Kubernetes config: {e}")

    try:
        stacks = load_stacks()
    except StackLoadError as e:
        logger.error(f"Invalid stack profile, refusing to start: {e}")
        raise

    if config.manage_crds:
        try:
            applied = CRDManager().apply_crds_to_cluster()
            logger.info(f"Applied {applied} CRDs to cluster")
        except Exception as e:
            logger.error(f"Failed to apply CRDs to cluster: {e}")

    # Configure operator settings
    settings.posting.enabled = config.posting_enabled
    settings.watching.server_timeout = config.server_timeout
    settings.persistence.finalizer = FINALIZER
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix="coredb.io")
    settings.batching.worker_limit = config.worker_limit

    metrics = Metrics()
    serve_metrics(config.metrics_port)

    reconciler = Reconciler(
        client=CoreDBClient(request_timeout=config.api_timeout),
        applier=ResourceApplier(request_timeout=config.api_timeout),
        config=config,
        metrics=metrics,
        events=EventRecorder(),
    )
    memo.runner = PassRunner(reconciler, config.backoff_base, config.backoff_max)

    logger.info(f"Stack profiles: {[s.value for s in stacks]}")
    logger.info(f"Worker limit: {config.worker_limit}")
    logger.info(f"Requeue interval: {config.requeue_interval}s")
    logger.info("CoreDB Operator startup complete")


@kopf.on.cleanup()
async def cleanup_fn(memo: kopf.Memo, **kwargs):
    logger.info("CoreDB Operator is shutting down...")
    logger.info("CoreDB Operator shutdown complete")


def main():
    config = OperatorConfig.from_env()
    try:
        if config.watch_namespaces:
            kopf.run(namespaces=config.watch_namespaces)
        else:
            kopf.run(clusterwide=True)
    except KeyboardInterrupt:
        logger.info("Operator stopped by user")
    except Exception as e:
        logger.error(f"Operator failed: {e}")
        raise


if __name__ == "__main__":
    main()
