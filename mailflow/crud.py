"""Job-store helpers for mailflow – SQLAlchemy 2.x compatible.

Every helper takes an open ``Session`` and commits its own work, so each call
is one atomic read-modify-write against the ``email_jobs`` table.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlmodel import Session, select
from sqlalchemy import func, delete, update

from mailflow.models import ScheduledJob


# ─────────────────────────────── helpers ───────────────────────────────
def _count(session: Session, *criteria) -> int:
    stmt = select(func.count()).select_from(ScheduledJob)
    if criteria:
        stmt = stmt.where(*criteria)
    return session.exec(stmt).one()


def _due(now: datetime):
    return (
        ScheduledJob.run_at <= now,
        ScheduledJob.locked_at.is_(None),
        ScheduledJob.completed_at.is_(None),
    )


# ───────────────────────────── Job CRUD ────────────────────────────────
def create_job(session: Session, name: str, data: Dict[str, Any], run_at: datetime) -> ScheduledJob:
    job = ScheduledJob(name=name, data=data, run_at=run_at, locked_at=None)
    session.add(job)
    session.commit()
    session.refresh(job)
    return job


def get_job(session: Session, job_id: int) -> Optional[ScheduledJob]:
    return session.get(ScheduledJob, job_id)


def list_jobs(session: Session, include_completed: bool = True, limit: int = 100) -> List[ScheduledJob]:
    stmt = select(ScheduledJob)
    if not include_completed:
        stmt = stmt.where(ScheduledJob.completed_at.is_(None))
    return session.exec(stmt.order_by(ScheduledJob.run_at).limit(limit)).all()


def delete_job(session: Session, job_id: int) -> bool:
    job = session.get(ScheduledJob, job_id)
    if not job:
        return False
    session.delete(job)
    session.commit()
    return True


def delete_all_jobs(session: Session) -> int:
    result = session.exec(delete(ScheduledJob))
    session.commit()
    return result.rowcount


# ─────────────────────────── Leasing ───────────────────────────────────
def find_due_jobs(session: Session, names: Iterable[str], now: datetime, limit: int) -> List[ScheduledJob]:
    """Unlocked, uncompleted jobs whose run_at has passed, oldest first."""
    names = list(names)
    if not names or limit <= 0:
        return []
    stmt = (
        select(ScheduledJob)
        .where(*_due(now), ScheduledJob.name.in_(names))
        .order_by(ScheduledJob.run_at)
        .limit(limit)
    )
    return session.exec(stmt).all()


def lock_job(session: Session, job_id: int, now: datetime) -> bool:
    """Take the lease; False when another worker (or a sweep) got there first."""
    result = session.exec(
        update(ScheduledJob)
        .where(
            ScheduledJob.id == job_id,
            ScheduledJob.locked_at.is_(None),
            ScheduledJob.completed_at.is_(None),
        )
        .values(locked_at=now, last_run_at=now, attempts=ScheduledJob.attempts + 1)
    )
    session.commit()
    return result.rowcount == 1


def complete_job(session: Session, job_id: int, now: datetime) -> bool:
    result = session.exec(
        update(ScheduledJob)
        .where(ScheduledJob.id == job_id)
        .values(completed_at=now, last_finished_at=now, locked_at=None, fail_reason=None)
    )
    session.commit()
    return result.rowcount == 1


def fail_job(session: Session, job_id: int, reason: str, now: datetime) -> bool:
    """Record the failure; the lease stays set until the health monitor clears it."""
    result = session.exec(
        update(ScheduledJob)
        .where(ScheduledJob.id == job_id)
        .values(failed_at=now, last_finished_at=now, fail_reason=reason[:1000])
    )
    session.commit()
    return result.rowcount == 1


def unlock_stale_jobs(session: Session, cutoff: datetime) -> int:
    result = session.exec(
        update(ScheduledJob)
        .where(
            ScheduledJob.locked_at.is_not(None),
            ScheduledJob.locked_at < cutoff,
            ScheduledJob.completed_at.is_(None),
        )
        .values(locked_at=None)
    )
    session.commit()
    return result.rowcount


# ─────────────────────────── Counters ──────────────────────────────────
def count_due_unlocked(session: Session, now: datetime) -> int:
    return _count(session, *_due(now))


def count_locked(session: Session) -> int:
    return _count(session, ScheduledJob.locked_at.is_not(None))


def job_stats(session: Session, now: datetime) -> Dict[str, int]:
    return {
        "total":     _count(session),
        "scheduled": _count(
            session, ScheduledJob.completed_at.is_(None), ScheduledJob.run_at > now
        ),
        "due":       count_due_unlocked(session, now),
        "locked":    count_locked(session),
        "completed": _count(session, ScheduledJob.completed_at.is_not(None)),
        "failed":    _count(
            session, ScheduledJob.failed_at.is_not(None), ScheduledJob.completed_at.is_(None)
        ),
    }
