# mailflow/scheduler.py
"""
Durable job scheduler.

Jobs live in the ``email_jobs`` table so they survive restarts and can be
scheduled while no poll loop is running. The poll loop leases due jobs by
stamping ``locked_at``, runs the registered handler and flags the job
complete. A failing handler keeps its lease; the health monitor releases it
after ``STALE_LOCK_MINUTES`` and the job runs again (at-least-once).

Leases are advisory and assume a single scheduler process.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError

from mailflow import crud
from mailflow.config import Settings, settings as default_settings
from mailflow.database import ConnectionManager, init_db
from mailflow.errors import (
    DuplicateHandlerError, SchedulingUnavailableError, StoreConnectionError,
)
from mailflow.models import ScheduledJob
from mailflow.utils import anonymize_email, as_aware_utc, format_datetime, utcnow

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Union[Awaitable[None], None]]


def is_connection_error(exc: BaseException) -> bool:
    """True when the store itself went away, as opposed to rejecting the statement."""
    if isinstance(exc, (StoreConnectionError, OperationalError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


@dataclass
class JobRunSummary:
    claimed: int = 0
    succeeded: int = 0
    failed: int = 0


class JobScheduler:
    def __init__(self, connections: ConnectionManager, config: Optional[Settings] = None):
        config = config or default_settings
        self.connections = connections
        self.poll_interval = config.POLL_INTERVAL_SECONDS
        self.concurrency = config.JOB_CONCURRENCY
        self._handlers: Dict[str, Handler] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self._poll_task: Optional[asyncio.Task] = None
        self.initialized = False

    # ── Handlers ────────────────────────────────────────────────────────────────
    def define(self, job_name: str, handler: Handler) -> None:
        if job_name in self._handlers:
            raise DuplicateHandlerError(job_name)
        self._handlers[job_name] = handler
        logger.debug("Registered handler for %r", job_name)

    @property
    def handler_names(self) -> List[str]:
        return sorted(self._handlers)

    # ── Lifecycle ───────────────────────────────────────────────────────────────
    async def init(self) -> "JobScheduler":
        if self.initialized:
            logger.debug("Using existing scheduler instance")
            return self
        logger.info("Initializing scheduler")
        engine = await self.connections.acquire()
        await asyncio.to_thread(init_db, engine)
        stats = await self.connections.run(crud.job_stats, utcnow())
        logger.info(
            "Found %d jobs in the database, %d pending to be processed",
            stats["total"], stats["due"],
        )
        self.start()
        self.initialized = True
        logger.info("Scheduler started successfully")
        return self

    def start(self) -> None:
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_forever(), name="job-poller")

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def shutdown(self) -> None:
        tasks = list(self._in_flight)
        if self._poll_task is not None:
            tasks.append(self._poll_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_task = None
        self.initialized = False
        await self.connections.close()
        logger.info("Scheduler shut down")

    # ── Enqueue ─────────────────────────────────────────────────────────────────
    async def _insert(self, job_name: str, data: Dict[str, Any], run_at: datetime) -> ScheduledJob:
        try:
            return await self.connections.run(crud.create_job, job_name, data, run_at)
        except SQLAlchemyError as exc:
            if is_connection_error(exc):
                raise StoreConnectionError(str(exc)) from exc
            # the statement itself was rejected; reconnecting would not help
            logger.error("Job store rejected %r: %s", job_name, exc)
            raise SchedulingUnavailableError("Failed to store the job") from exc

    async def schedule(self, run_at: datetime, job_name: str, data: Dict[str, Any]) -> ScheduledJob:
        run_at = as_aware_utc(run_at)
        try:
            job = await self._insert(job_name, data, run_at)
        except StoreConnectionError as exc:
            logger.warning("Error scheduling %r: %s. Attempting to reconnect...", job_name, exc)
            self.connections.reset()
            try:
                job = await self._insert(job_name, data, run_at)
            except StoreConnectionError as retry_exc:
                logger.error("Failed to schedule %r after reconnection: %s", job_name, retry_exc)
                raise SchedulingUnavailableError("Scheduling service is not available") from retry_exc
            logger.info("Job %s scheduled after reconnection", job.id)
        else:
            logger.info("Job %s scheduled for %s UTC", job.id, format_datetime(run_at))
        return job

    async def get_job(self, job_id: int) -> Optional[ScheduledJob]:
        return await self.connections.run(crud.get_job, job_id)

    # ── Polling ─────────────────────────────────────────────────────────────────
    async def _poll_forever(self) -> None:
        logger.info("Polling for due jobs every %ss", self.poll_interval)
        while True:
            try:
                await self._dispatch_due()
            except Exception:
                logger.exception("Job poll cycle failed")
            await asyncio.sleep(self.poll_interval)

    async def run_due_jobs(self, now: Optional[datetime] = None) -> JobRunSummary:
        """Run one claim cycle and wait for the claimed jobs to finish."""
        tasks = await self._dispatch_due(now)
        results = await asyncio.gather(*tasks)
        return JobRunSummary(
            claimed=len(results),
            succeeded=sum(1 for ok in results if ok),
            failed=sum(1 for ok in results if not ok),
        )

    async def _dispatch_due(self, now: Optional[datetime] = None) -> List[asyncio.Task]:
        now = as_aware_utc(now) if now else utcnow()
        slots = self.concurrency - len(self._in_flight)
        if slots <= 0:
            logger.debug("All %d job slots busy", self.concurrency)
            return []
        due = await self.connections.run(crud.find_due_jobs, self.handler_names, now, slots)

        tasks = []
        for job in due:
            if not await self.connections.run(crud.lock_job, job.id, now):
                continue  # leased elsewhere since the query
            task = asyncio.create_task(self._execute(job), name=f"job-{job.id}")
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            tasks.append(task)
        if tasks:
            logger.info("Leased %d due job(s)", len(tasks))
        return tasks

    async def _execute(self, job: ScheduledJob) -> bool:
        handler = self._handlers[job.name]
        try:
            result = handler(dict(job.data))
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.error("Job %s (%s) failed with error: %s", job.id, job.name, exc, exc_info=True)
            try:
                await self.connections.run(crud.fail_job, job.id, str(exc) or type(exc).__name__, utcnow())
            except Exception:
                logger.exception("Could not record failure of job %s", job.id)
            return False

        try:
            await self.connections.run(crud.complete_job, job.id, utcnow())
        except Exception:
            # the lease will expire and the job will run again
            logger.exception("Job %s succeeded but could not be marked complete", job.id)
            return True
        logger.info("Job %s completed for %s", job.name, anonymize_email(job.data.get("to")))
        return True

    # ── Introspection ───────────────────────────────────────────────────────────
    def status(self) -> Dict[str, Any]:
        return {
            "initialized":  self.initialized,
            "running":      self.running,
            "pollInterval": self.poll_interval,
            "concurrency":  self.concurrency,
            "inFlight":     len(self._in_flight),
            "handlers":     self.handler_names,
        }

    async def stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        return await self.connections.run(crud.job_stats, as_aware_utc(now) if now else utcnow())
