"""
PaaStel Controller - Main entry point.
"""

import asyncio
import logging
import signal
import sys

import redis

from controller.src.backends import get_deploy_backend
from controller.src.config import get_settings
from controller.src.executors import get_executor
from controller.src.k8s.client import init_k8s_client, ensure_namespace
from controller.src.services import (
    BuildCoordinator,
    DeployCoordinator,
    get_log_sink,
    Reconciler,
    get_signals,
    get_store,
)
from controller.src.worker import Worker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

async def serve(worker: Worker):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)
    await worker.run()

def main():
    """Main entry point."""
    settings = get_settings()

    logger.info("Starting PaaStel Controller")
    logger.info(f"Runner: {settings.runner_type} ({settings.runner_name})")
    logger.info(f"Deploy backend: {settings.deploy_backend}")
    logger.info(f"Redis URL: {settings.redis_url}")

    if "k8s" in (settings.runner_type, settings.deploy_backend):
        if not init_k8s_client():
            logger.error("Failed to initialize Kubernetes client")
            sys.exit(1)
        try:
            ensure_namespace()
        except Exception as e:
            logger.error(f"Failed to ensure namespace: {e}")
            sys.exit(1)

    store = get_store()
    signals = get_signals()
    builds = BuildCoordinator(
        store,
        get_log_sink(),
        get_executor(settings),
        signals=signals,
        settings=settings,
    )
    deploys = DeployCoordinator(store, get_deploy_backend(settings), signals=signals, settings=settings)
    reconciler = Reconciler(
        store,
        signals,
        orphan_timeout=settings.orphan_timeout,
        interval=settings.reconcile_interval,
    )

    worker = Worker(
        redis.from_url(settings.redis_url, decode_responses=True),
        builds,
        deploys,
        concurrency=settings.worker_concurrency,
        reconciler=reconciler,
    )

    logger.info("Starting worker...")
    asyncio.run(serve(worker))

if __name__ == "__main__":
    main()
