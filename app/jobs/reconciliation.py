"""Periodic lifecycle reconciliation.

A fixed-interval timer hands each sweep to a worker thread. Sweeps are
single-flight: a tick that arrives while the previous sweep is still running
is skipped, never run alongside it.

The guard is a per-process lock. Under several server workers each process
runs its own timer, so sweeps from different workers can overlap; the row
locks taken inside a sweep keep their outcome correct, and the loser of an
overlap finds nothing left to finalize.
"""
from datetime import datetime
from typing import Callable, Optional
import asyncio
import logging
import threading

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import SessionLocal
from ..core.exceptions import TransactionFailedError
from ..services.reconciliation_service import ReconciliationService, SweepResult

logger = logging.getLogger(__name__)

class ReconciliationJob:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        interval_seconds: Optional[float] = None,
    ):
        self.session_factory = session_factory
        if interval_seconds is None:
            interval_seconds = settings.RECONCILE_INTERVAL_SECONDS
        self.interval_seconds = interval_seconds
        self.running = False
        self._sweep_lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def sweep_in_progress(self) -> bool:
        return self._sweep_lock.locked()

    def run_once(self, now: Optional[datetime] = None) -> Optional[SweepResult]:
        """Run one sweep, or return None if another sweep holds the lock.

        Raises ``TransactionFailedError`` when the sweep was rolled back.
        """
        if not self._sweep_lock.acquire(blocking=False):
            logger.warning("Reconciliation sweep already in progress, skipping")
            return None

        try:
            db = self.session_factory()
            try:
                return ReconciliationService(db).run_sweep(now)
            finally:
                db.close()
        finally:
            self._sweep_lock.release()

    def _tick(self):
        try:
            self.run_once()
        except TransactionFailedError:
            logger.exception("Reconciliation sweep rolled back, retrying on next tick")
        except Exception:
            logger.exception("Reconciliation sweep crashed, retrying on next tick")

    async def start(self):
        """Start the timer in the running event loop."""
        if self._task is not None:
            return
        self.running = True
        self._task = asyncio.create_task(self._scheduler_loop())
        logger.info(f"Reconciliation job started, interval {self.interval_seconds}s")

    async def stop(self):
        """Stop the timer. A sweep already handed to a worker finishes on its own."""
        self.running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Reconciliation job stopped")

    async def _scheduler_loop(self):
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval_seconds
        while self.running:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            next_tick += self.interval_seconds
            # Not awaited: a slow sweep must not push back the next tick
            loop.run_in_executor(None, self._tick)

reconciliation_job = ReconciliationJob()
