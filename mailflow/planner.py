# mailflow/planner.py
"""
Sequence time-slot planner.

Turns a flattened list of flow nodes into concrete send times. Planning is
pure: nothing here touches the job store, the caller persists each
``PlannedSend`` through the scheduler.

Immediate mode sends every cold-email node one minute from now. Deferred mode
walks a day cursor forward from the start date, puts at most one node on each
allowed weekday (in input order) and draws a random minute inside the hour
window so a sequence never goes out in a same-second burst.
"""

from __future__ import annotations

import enum
import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Sequence, Tuple

import pytz

from mailflow.errors import NoEligibleItemsError
from mailflow.schemas import SchedulingOptions, SequenceItem
from mailflow.utils import anonymize_email

logger = logging.getLogger(__name__)

IMMEDIATE_DELAY = timedelta(minutes=1)
LOOKAHEAD_DAYS = 14


class SkipReason(str, enum.Enum):
    MISSING_RECIPIENT = "missing_recipient"
    NO_ELIGIBLE_DAY = "no_eligible_day"
    TIME_IN_PAST = "time_in_past"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass
class PlannedSend:
    item: SequenceItem
    send_time: datetime  # timezone-aware


@dataclass
class SkippedItem:
    item_id: str
    reason: SkipReason
    email: Optional[str] = None


@dataclass
class SequencePlan:
    sends: List[PlannedSend] = field(default_factory=list)
    skipped: List[SkippedItem] = field(default_factory=list)
    options: Optional[SchedulingOptions] = None

    def skip(self, item: SequenceItem, reason: SkipReason) -> None:
        logger.warning("Skipping node %s (%s)", item.id, reason.value)
        self.skipped.append(SkippedItem(item.id, reason, item.recipient))


def weekday_number(day: date) -> int:
    """Sunday = 0 … Saturday = 6."""
    return (day.weekday() + 1) % 7


def localize(dt: datetime, tz: pytz.BaseTzInfo) -> datetime:
    return tz.localize(dt) if dt.tzinfo is None else dt.astimezone(tz)


def next_eligible_day(cursor: date, allowed: Sequence[int]) -> Tuple[Optional[date], date]:
    """First allowed day within the lookahead, and where the cursor ended up.

    On a miss the cursor has moved past the whole lookahead window.
    """
    for _ in range(LOOKAHEAD_DAYS):
        if weekday_number(cursor) in allowed:
            return cursor, cursor
        cursor += timedelta(days=1)
    return None, cursor


def draw_send_time(
    day: date, from_hour: int, to_hour: int, tz: pytz.BaseTzInfo, rng: random.Random
) -> datetime:
    hour = rng.randint(from_hour, to_hour)
    minute = rng.randint(0, 59)
    return tz.localize(datetime.combine(day, time(hour, minute)))


def plan_immediate(sequence: Sequence[SequenceItem], now: datetime) -> SequencePlan:
    plan = SequencePlan()
    send_time = now + IMMEDIATE_DELAY

    for item in sequence:
        if not item.is_cold_email:
            continue
        if not item.recipient:
            plan.skip(item, SkipReason.MISSING_RECIPIENT)
            continue
        logger.info(
            "Planning immediate email to %s, subject %r",
            anonymize_email(item.recipient), item.subject[:30],
        )
        plan.sends.append(PlannedSend(item, send_time))

    if not plan.sends:
        raise NoEligibleItemsError(missing_recipients=bool(plan.skipped))
    return plan


def plan_deferred(
    sequence: Sequence[SequenceItem],
    options: Optional[SchedulingOptions],
    now: datetime,
    tz: pytz.BaseTzInfo,
    rng: Optional[random.Random] = None,
) -> SequencePlan:
    rng = rng or random.Random()
    now = localize(now, tz)
    options = (options or SchedulingOptions()).model_copy()
    if options.start_date is None:
        options.start_date = now
    options.start_date = localize(options.start_date, tz)

    plan = SequencePlan(options=options)
    allowed = options.day_numbers
    from_hour, to_hour = options.from_hour, options.to_hour
    cursor = options.start_date.date()

    for item in sequence:
        if not item.is_cold_email:
            continue
        if not item.recipient:
            plan.skip(item, SkipReason.MISSING_RECIPIENT)
            continue

        day, cursor = next_eligible_day(cursor, allowed)
        if day is None:
            plan.skip(item, SkipReason.NO_ELIGIBLE_DAY)
            continue

        send_time = draw_send_time(day, from_hour, to_hour, tz, rng)
        # the occurrence is dropped but the day is still consumed
        cursor = day + timedelta(days=1)
        if send_time <= now:
            plan.skip(item, SkipReason.TIME_IN_PAST)
            continue
        plan.sends.append(PlannedSend(item, send_time))

    return plan
