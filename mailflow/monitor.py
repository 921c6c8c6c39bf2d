# mailflow/monitor.py
"""
Job-health monitor.

A periodic sweep, independent of the scheduler's poll interval, that logs how
many jobs are waiting and how many hold a lease, and releases leases older
than ``STALE_LOCK_MINUTES``. This is the only stuck-job recovery there is: no
backoff, no retry limit, no dead-letter queue. A released job simply runs
again on the next poll.
"""

import asyncio
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from mailflow import crud
from mailflow.config import Settings, settings as default_settings
from mailflow.scheduler import JobScheduler
from mailflow.utils import as_aware_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class MonitorReport:
    timestamp: datetime
    pending: int
    locked: int
    reclaimed: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class JobHealthMonitor:
    def __init__(self, scheduler: JobScheduler, config: Optional[Settings] = None):
        config = config or default_settings
        self.scheduler = scheduler
        self.interval = config.MONITOR_INTERVAL_SECONDS
        self.stale_after = timedelta(minutes=config.STALE_LOCK_MINUTES)
        self.last_report: Optional[MonitorReport] = None
        self._task: Optional[asyncio.Task] = None

    async def sweep(self, now: Optional[datetime] = None) -> MonitorReport:
        now = as_aware_utc(now) if now else utcnow()
        run = self.scheduler.connections.run

        pending = await run(crud.count_due_unlocked, now)
        if pending:
            logger.info("Found %d pending jobs waiting to be processed", pending)

        locked = await run(crud.count_locked)
        reclaimed = 0
        if locked:
            logger.info("Found %d locked jobs that might be stuck", locked)
            reclaimed = await run(crud.unlock_stale_jobs, now - self.stale_after)
            if reclaimed:
                logger.warning("Released %d job lease(s) older than %s", reclaimed, self.stale_after)

        self.last_report = MonitorReport(now, pending, locked, reclaimed)
        return self.last_report

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not self.scheduler.initialized:
                continue
            try:
                await self.sweep()
            except Exception:
                logger.exception("Error checking job status")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="job-health-monitor")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
