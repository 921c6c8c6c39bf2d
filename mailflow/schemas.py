# Pydantic request & response models for FastAPI

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator,
)

from mailflow.errors import InvalidSchedulingOptionsError
from mailflow.utils import parse_hour

COLD_EMAIL = "coldEmail"

# Sunday = 0 … Saturday = 6
DAY_MAP: Dict[str, int] = {
    "sunday":    0,
    "monday":    1,
    "tuesday":   2,
    "wednesday": 3,
    "thursday":  4,
    "friday":    5,
    "saturday":  6,
}
DEFAULT_DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday"]


def day_number(name: str) -> int:
    try:
        return DAY_MAP[name.lower()]
    except KeyError:
        raise InvalidSchedulingOptionsError(f"Unknown weekday {name!r}") from None


# --- Flattened flow nodes ---
class SequenceItemData(BaseModel):
    recipient: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None


class SequenceItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    item_type: str = Field(validation_alias=AliasChoices("type", "itemType", "item_type"))
    payload: SequenceItemData = Field(
        default_factory=SequenceItemData,
        validation_alias=AliasChoices("data", "payload"),
    )

    @property
    def is_cold_email(self) -> bool:
        return self.item_type == COLD_EMAIL

    @property
    def recipient(self) -> Optional[str]:
        return (self.payload.recipient or "").strip() or None

    @property
    def subject(self) -> str:
        return self.payload.subject or "No Subject"

    @property
    def body(self) -> str:
        return self.payload.body or ""


# --- Recurrence window for deferred sends ---
class SchedulingOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("startDate", "start_date"), serialization_alias="startDate"
    )
    from_time: str = Field(
        "09:00", validation_alias=AliasChoices("fromTime", "from_time"), serialization_alias="fromTime"
    )
    to_time: str = Field(
        "17:00", validation_alias=AliasChoices("toTime", "to_time"), serialization_alias="toTime"
    )
    days: List[str] = Field(default_factory=lambda: list(DEFAULT_DAYS))

    @field_validator("start_date", mode="before")
    @classmethod
    def _date_only(cls, value: Any):
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime.combine(value, datetime.min.time())
        if isinstance(value, str) and len(value.strip()) == 10:
            return datetime.strptime(value.strip(), "%Y-%m-%d")
        return value

    @field_validator("days")
    @classmethod
    def _known_days(cls, value: List[str]) -> List[str]:
        days = [d.strip().lower() for d in value]
        for d in days:
            if d not in DAY_MAP:
                raise InvalidSchedulingOptionsError(f"Unknown weekday {d!r}")
        return days

    @model_validator(mode="after")
    def _hour_window(self):
        try:
            from_hour, to_hour = parse_hour(self.from_time), parse_hour(self.to_time)
        except ValueError as exc:
            raise InvalidSchedulingOptionsError(str(exc)) from None
        if from_hour > to_hour:
            raise InvalidSchedulingOptionsError(
                f"fromTime {self.from_time} is after toTime {self.to_time}"
            )
        return self

    @property
    def from_hour(self) -> int:
        return parse_hour(self.from_time)

    @property
    def to_hour(self) -> int:
        return parse_hour(self.to_time)

    @property
    def day_numbers(self) -> List[int]:
        return [day_number(d) for d in self.days]


# --- Scheduling API ---
class ScheduleEmailRequest(BaseModel):
    to: str
    subject: str = "No Subject"
    body: str = ""
    delay: int = Field(0, ge=0)
    unit: Literal["minutes", "hours", "days"] = "minutes"


class ScheduleEmailResponse(BaseModel):
    message: str
    scheduledFor: datetime
    jobId: str


class ScheduleSequenceRequest(BaseModel):
    sequence: List[SequenceItem]
    schedulingOptions: Optional[SchedulingOptions] = None
    sendNow: bool = False


class ScheduledEmailRead(BaseModel):
    email: str
    subject: str
    scheduledFor: datetime
    jobId: Optional[str] = None


class SkippedItemRead(BaseModel):
    itemId: str
    email: Optional[str] = None
    reason: str


class ScheduleSequenceResponse(BaseModel):
    message: str
    scheduledEmails: List[ScheduledEmailRead]
    skipped: List[SkippedItemRead] = []
    schedulingOptions: Optional[Dict[str, Any]] = None


# --- For testing email sending ---
class TestEmailRequest(BaseModel):
    to: str


# --- Read models for job introspection ---
class JobRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    data: Dict[str, Any]
    run_at: datetime
    locked_at: Optional[datetime] = None
    attempts: int = 0
    last_run_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    fail_reason: Optional[str] = None
    created_at: Optional[datetime] = None
