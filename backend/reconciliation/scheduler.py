"""
In-process reconciliation scheduler.

Runs a pass every interval_seconds on the event loop and serves on-demand
passes for the HTTP trigger. Passes in this process never overlap: a
scheduled tick that finds a pass in flight is skipped, an on-demand
request waits for it. Passes in other processes are kept safe by the
conditional write in the invoice store.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sentry_integration import capture_exception
from reconciliation.exceptions import PendingLoadError
from reconciliation.models import ReconciliationRunResult
from reconciliation.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)


class ReconciliationScheduler:

    def __init__(self, service: ReconciliationService, interval_seconds: int = 0):
        self.service = service
        self.interval_seconds = interval_seconds
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self.last_result: Optional[ReconciliationRunResult] = None
        self.last_error: Optional[str] = None
        self.last_run_at: Optional[datetime] = None
        self.skipped_ticks = 0

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def is_scheduled(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_now(self, trigger: str = "api") -> ReconciliationRunResult:
        """Run a pass, waiting for any pass already in flight."""
        async with self._lock:
            return await self._run(trigger)

    async def tick(self) -> Optional[ReconciliationRunResult]:
        """Scheduled pass; skipped if a pass is already in flight."""
        if self._lock.locked():
            self.skipped_ticks += 1
            logger.info("Reconciliation pass still in flight, skipping scheduled tick")
            return None
        async with self._lock:
            try:
                return await self._run("scheduler")
            except PendingLoadError:
                # Already logged and recorded; next tick retries
                return None
            except Exception as e:
                capture_exception(e, stage="scheduler_tick")
                logger.error(f"Scheduled reconciliation pass failed: {e}")
                return None

    async def _run(self, trigger: str) -> ReconciliationRunResult:
        self.last_run_at = datetime.now(timezone.utc)
        try:
            result = await self.service.run_pass(trigger=trigger)
        except PendingLoadError as e:
            self.last_error = str(e)
            logger.error(f"Reconciliation pass aborted: {e}")
            raise
        self.last_result = result
        self.last_error = None
        return result

    async def _loop(self):
        logger.info(f"Reconciliation scheduler started (every {self.interval_seconds}s)")
        while True:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)

    def start(self):
        if self.interval_seconds <= 0:
            logger.info("Reconciliation scheduler disabled (RECONCILE_INTERVAL_SECONDS=0)")
            return
        if self.is_scheduled:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Reconciliation scheduler stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "scheduled": self.is_scheduled,
            "interval_seconds": self.interval_seconds,
            "running": self.is_running,
            "skipped_ticks": self.skipped_ticks,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }
