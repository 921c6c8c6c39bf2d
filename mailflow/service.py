# mailflow/service.py
"""
Scheduling operations offered to the HTTP layer.

``SchedulingService`` is built once at startup around an explicitly
constructed ``JobScheduler`` and handed to request handlers through FastAPI
dependencies. If the scheduler failed to come up at startup, the next
scheduling call tries to initialize it again before giving up with
``ServiceUnavailableError``.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

import pytz

from mailflow.errors import (
    SchedulingUnavailableError, ServiceUnavailableError,
)
from mailflow.jobs import SEND_EMAIL_JOB
from mailflow.planner import (
    PlannedSend, SkipReason, SkippedItem, plan_deferred, plan_immediate,
)
from mailflow.schemas import SchedulingOptions, SequenceItem
from mailflow.scheduler import JobScheduler
from mailflow.utils import anonymize_email

logger = logging.getLogger(__name__)

DELAY_UNITS = {
    "minutes": lambda n: timedelta(minutes=n),
    "hours":   lambda n: timedelta(hours=n),
    "days":    lambda n: timedelta(days=n),
}


@dataclass
class SingleScheduleResult:
    scheduled_for: datetime
    job_id: int


@dataclass
class ScheduledSend:
    item_id: str
    email: str
    subject: str
    scheduled_for: datetime
    job_id: int


@dataclass
class SequenceScheduleResult:
    scheduled: List[ScheduledSend] = field(default_factory=list)
    skipped: List[SkippedItem] = field(default_factory=list)
    options: Optional[SchedulingOptions] = None


class SchedulingService:
    def __init__(
        self,
        scheduler: JobScheduler,
        timezone: str = "UTC",
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.scheduler = scheduler
        self.tz = pytz.timezone(timezone)
        self.rng = rng or random.Random()
        self._clock = clock

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(self.tz)

    async def ensure_scheduler(self) -> JobScheduler:
        if not self.scheduler.initialized:
            logger.info("Scheduler not initialized, initializing now...")
            try:
                await self.scheduler.init()
            except Exception as exc:
                logger.error("Failed to initialize scheduler: %s", exc)
                raise ServiceUnavailableError("Scheduling service is not available") from exc
        return self.scheduler

    # ── Single timed send ───────────────────────────────────────────────────────
    async def schedule_single(
        self, to: str, subject: str, body: str, delay: int, unit: str, user_id: str
    ) -> SingleScheduleResult:
        if unit not in DELAY_UNITS:
            raise ValueError(f"Unsupported delay unit {unit!r}")
        scheduler = await self.ensure_scheduler()

        send_time = self.now() + DELAY_UNITS[unit](delay)
        logger.info("Scheduling email to %s, delay %s %s", anonymize_email(to), delay, unit)
        job = await scheduler.schedule(
            send_time, SEND_EMAIL_JOB, {"to": to, "subject": subject, "body": body, "userId": user_id}
        )

        # Verify the job was scheduled by reading it back
        if await scheduler.get_job(job.id) is None:
            logger.error("Job %s was not found in the database after scheduling", job.id)
            raise SchedulingUnavailableError("Failed to verify job was scheduled")
        return SingleScheduleResult(scheduled_for=send_time, job_id=job.id)

    # ── Whole sequence ──────────────────────────────────────────────────────────
    async def schedule_sequence(
        self,
        sequence: Sequence[SequenceItem],
        options: Optional[SchedulingOptions],
        send_now: bool,
        user_id: str,
    ) -> SequenceScheduleResult:
        scheduler = await self.ensure_scheduler()
        now = self.now()

        if send_now:
            logger.info("Immediate send mode selected. Processing sequence with %d items", len(sequence))
            plan = plan_immediate(sequence, now)
        else:
            plan = plan_deferred(sequence, options, now, self.tz, self.rng)

        result = SequenceScheduleResult(skipped=list(plan.skipped), options=plan.options)
        for send in plan.sends:
            try:
                job = await scheduler.schedule(send.send_time, SEND_EMAIL_JOB, self._payload(send, user_id))
            except SchedulingUnavailableError:
                if not send_now:
                    raise
                logger.error("Failed to schedule email for node %s after reconnection", send.item.id)
                result.skipped.append(
                    SkippedItem(send.item.id, SkipReason.STORE_UNAVAILABLE, send.item.recipient)
                )
                continue
            result.scheduled.append(ScheduledSend(
                item_id=send.item.id,
                email=send.item.recipient,
                subject=send.item.subject,
                scheduled_for=send.send_time,
                job_id=job.id,
            ))

        logger.info(
            "Sequence scheduled: %d email(s), %d skipped", len(result.scheduled), len(result.skipped)
        )
        return result

    @staticmethod
    def _payload(send: PlannedSend, user_id: str) -> dict:
        return {
            "to":      send.item.recipient,
            "subject": send.item.subject,
            "body":    send.item.body,
            "userId":  user_id,
        }

    # ── Health probes ───────────────────────────────────────────────────────────
    def is_scheduler_available(self) -> bool:
        return self.scheduler.initialized and self.scheduler.running

    async def is_store_reachable(self) -> bool:
        try:
            await self.scheduler.connections.acquire()
        except Exception as exc:
            logger.error("Health check failed to connect to database: %s", exc)
            return False
        return True
