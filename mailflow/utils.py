# mailflow/utils.py

from typing import Optional
import re
from datetime import datetime

import pytz

HHMM_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


def validate_email(email: str) -> bool:
    """Simple email format validator."""
    pattern = r"[^@]+@[^@]+\.[^@]+"
    return re.match(pattern, email or "") is not None


def anonymize_email(email: Optional[str]) -> str:
    """Return partially masked email address for log lines."""
    if not email or "@" not in email:
        return email or "-"
    user, domain = email.split("@", 1)
    return user[:1] + "***@" + domain


def parse_hour(value: str) -> int:
    """Hour component of an ``HH:MM`` string; minutes are validated but ignored."""
    match = HHMM_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return hour


def utcnow() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(pytz.utc)


def as_aware_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC; naive input is taken as UTC already."""
    if dt is None:
        return None
    return pytz.utc.localize(dt) if dt.tzinfo is None else dt.astimezone(pytz.utc)


def format_datetime(dt: Optional[datetime]) -> str:
    """Format datetime for log lines."""
    if dt is None:
        return "—"
    return dt.strftime("%Y-%m-%d %H:%M")
