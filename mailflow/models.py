### mailflow/models.py
# SQLModel table for the durable job store.
# Timestamps are timezone-aware UTC in Python and UTC wall-clock in the table.

from typing import Any, Dict, Optional
from datetime import datetime

from sqlalchemy import Column, DateTime, JSON
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field

from mailflow.utils import as_aware_utc, utcnow


class UTCTimestamp(TypeDecorator):
    """Accepts aware or naive-UTC datetimes, always hands back aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_aware_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        return as_aware_utc(value)


class ScheduledJob(SQLModel, table=True):
    __tablename__ = "email_jobs"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)  # selects the handler, e.g. "send email"
    data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    run_at: datetime = Field(sa_type=UTCTimestamp, index=True)  # eligible once now >= run_at
    locked_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp, index=True)  # lease
    attempts: int = 0  # leases taken so far
    last_run_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)
    last_finished_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)
    failed_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)
    fail_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None
