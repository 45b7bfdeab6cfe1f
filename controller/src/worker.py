"""
Queue worker - pulls build and deploy requests from Redis and runs them.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import redis

from controller.src.errors import PipelineError, VersionConflict
from controller.src.models.deploy import DeployRequest
from controller.src.models.step import BuildRequest
from controller.src.services.build_coordinator import BuildCoordinator
from controller.src.services.deploy_coordinator import DeployCoordinator
from controller.src.services.reconciler import Reconciler

logger = logging.getLogger(__name__)

BUILD_QUEUE = "paastel:builds"
DEPLOY_QUEUE = "paastel:deploys"

class Worker:
    """Runs up to `concurrency` builds/deploys at once, each in its own thread."""

    def __init__(
        self,
        client: redis.Redis,
        builds: BuildCoordinator,
        deploys: DeployCoordinator,
        concurrency: int = 4,
        reconciler: Optional[Reconciler] = None,
        poll_timeout: int = 5,
    ):
        self.client = client
        self.builds = builds
        self.deploys = deploys
        self.reconciler = reconciler
        self.poll_timeout = poll_timeout
        self._slots = asyncio.Semaphore(concurrency)
        self._tasks = set()
        self._running = False

    async def next_message(self) -> Optional[Tuple[str, Dict[str, Any]]]:
        """Pull next request from either queue."""
        result = await asyncio.to_thread(
            self.client.brpop, [BUILD_QUEUE, DEPLOY_QUEUE], timeout=self.poll_timeout
        )
        if not result:
            return None
        queue, data = result
        if isinstance(queue, bytes):
            queue = queue.decode()
        return queue, json.loads(data)

    def handle(self, queue: str, payload: Dict[str, Any]):
        """Run one request to completion. Called from a worker thread."""
        if queue == BUILD_QUEUE:
            request = BuildRequest.model_validate(payload)
            logger.info(f"Received build {request.build_id}")
            try:
                self.builds.run(
                    request.build_id,
                    definitions=request.steps,
                    version=request.version,
                    changelog=request.changelog,
                )
            except VersionConflict as e:
                logger.warning(f"Build {request.build_id} succeeded without a release: {e}")
            except PipelineError as e:
                logger.error(f"Build {request.build_id} not run: {e}")
        elif queue == DEPLOY_QUEUE:
            request = DeployRequest.model_validate(payload)
            logger.info(f"Received deploy {request.deploy_id}")
            try:
                self.deploys.run(request.deploy_id)
            except PipelineError as e:
                logger.error(f"Deploy {request.deploy_id} not run: {e}")
        else:
            logger.warning(f"Ignoring message from unknown queue {queue}")

    async def _dispatch(self, queue: str, payload: Dict[str, Any]):
        try:
            await asyncio.to_thread(self.handle, queue, payload)
        except Exception as e:
            logger.exception(f"Failed to handle {queue} message: {e}")
        finally:
            self._slots.release()

    async def run(self):
        """Main worker loop."""
        logger.info("Worker started, waiting for jobs...")
        self._running = True
        if self.reconciler is not None:
            self.reconciler.start()

        try:
            while self._running:
                await self._slots.acquire()
                try:
                    message = await self.next_message()
                except redis.RedisError as e:
                    self._slots.release()
                    logger.error(f"Queue unavailable: {e}")
                    await asyncio.sleep(5)
                    continue

                if message is None:
                    self._slots.release()
                    continue

                task = asyncio.create_task(self._dispatch(*message))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        finally:
            if self._tasks:
                logger.info(f"Waiting for {len(self._tasks)} job(s) to finish...")
                await asyncio.gather(*self._tasks, return_exceptions=True)
            if self.reconciler is not None:
                await self.reconciler.stop()
            logger.info("Worker stopped")

    def stop(self):
        self._running = False
