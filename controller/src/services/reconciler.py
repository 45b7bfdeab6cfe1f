"""
Reconciliation loop - resolves builds and deploys orphaned by dead workers.

A running build or deploy whose last sign of life is older than the orphan
timeout is failed with ORPHANED_MESSAGE. Nothing is ever resolved to
succeeded and nothing is retried here; the next trigger decides that.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import redis
from sqlalchemy.exc import SQLAlchemyError

from controller.src.models.db import as_utc, utcnow
from controller.src.services.pipeline_store import ORPHANED_MESSAGE, PipelineStore
from controller.src.services.signals import Signals

logger = logging.getLogger(__name__)

@dataclass
class ReconcileReport:
    builds: List[int] = field(default_factory=list)
    deploys: List[int] = field(default_factory=list)

class Reconciler:
    def __init__(
        self,
        store: PipelineStore,
        signals: Optional[Signals] = None,
        orphan_timeout: float = 300,
        interval: float = 30,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.signals = signals
        self.orphan_timeout = timedelta(seconds=orphan_timeout)
        self.interval = interval
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None

    def _last_beat(self, kind: str, entity_id: int) -> Optional[datetime]:
        if self.signals is None:
            return None
        try:
            return self.signals.last_beat(kind, entity_id)
        except redis.RedisError as e:
            # Without heartbeats fall back to what the store saw
            logger.warning(f"Could not read heartbeat of {kind} {entity_id}: {e}")
            return None

    def _is_orphaned(self, now: datetime, *seen: Optional[datetime]) -> bool:
        seen = [as_utc(t) for t in seen if t is not None]
        if not seen:
            return True
        return now - max(seen) > self.orphan_timeout

    def reconcile_once(self) -> ReconcileReport:
        """One idempotent pass over running builds and deploys."""
        now = self.clock()
        report = ReconcileReport()

        for job in self.store.list_running_builds():
            if not self._is_orphaned(
                now,
                job.created_at,
                self.store.last_build_activity(job.id),
                self._last_beat("build", job.id),
            ):
                continue
            if self.store.fail_orphaned_build(job.id, ORPHANED_MESSAGE) is not None:
                logger.warning(f"Build {job.id} orphaned, marked failed")
                report.builds.append(job.id)

        for deploy in self.store.list_running_deploys():
            if not self._is_orphaned(
                now,
                deploy.created_at,
                deploy.started_at,
                self._last_beat("deploy", deploy.id),
            ):
                continue
            if self.store.fail_orphaned_deploy(deploy.id, ORPHANED_MESSAGE) is not None:
                logger.warning(f"Deploy {deploy.id} orphaned, marked failed")
                report.deploys.append(deploy.id)

        return report

    async def run(self):
        """Reconcile every `interval` seconds until stop() is called."""
        self._stop = self._stop or asyncio.Event()
        logger.info(
            f"Reconciler started (interval {self.interval}s, "
            f"orphan timeout {self.orphan_timeout.total_seconds():.0f}s)"
        )
        while not self._stop.is_set():
            try:
                report = await asyncio.to_thread(self.reconcile_once)
                if report.builds or report.deploys:
                    logger.info(
                        f"Reconciled {len(report.builds)} build(s), {len(report.deploys)} deploy(s)"
                    )
            except SQLAlchemyError as e:
                logger.error(f"Reconciliation pass failed, retrying next interval: {e}")
            except Exception:
                logger.exception("Reconciliation pass failed, retrying next interval")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Reconciler stopped")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop = asyncio.Event()
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        if self._stop is not None:
            self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
