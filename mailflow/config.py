# mailflow/config.py

"""
Mailflow Configuration

Create a `.env` file at your project root containing:

# ── Database ─────────────────────────────────────────────────────────────────────
# PostgreSQL (recommended in Docker or prod):
DATABASE_URL=postgresql://<DB_USER>:<DB_PASS>@<DB_HOST>:<DB_PORT>/<DB_NAME>
# Fallback (if you omit DATABASE_URL): uses SQLite at ./mailflow.db

# ── SMTP (for sending emails) ───────────────────────────────────────────────────
SMTP_SERVER=smtp.gmail.com
SMTP_PORT=587
SMTP_USER=your_smtp_username@example.com
SMTP_PASSWORD=your_smtp_password
# true = implicit TLS (port 465), false = STARTTLS
SMTP_SECURE=false
# Optional Bcc address (comma-separated)
SMTP_BCC=manager@example.com

# ── Scheduler ───────────────────────────────────────────────────────────────────
TIMEZONE=Europe/Paris
POLL_INTERVAL_SECONDS=20
JOB_CONCURRENCY=5
MONITOR_INTERVAL_SECONDS=60
STALE_LOCK_MINUTES=5
"""

import os
from dotenv import load_dotenv

# Load any variables defined in a .env file into the environment
load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def _database_url() -> str:
    url = os.getenv("DATABASE_URL", "sqlite:///./mailflow.db")
    # SQLAlchemy needs postgresql:// not postgres://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


class Settings:
    # ── Database URL ────────────────────────────────────────────────────────────
    DB_URL: str = _database_url()
    # Fresh connections must come up within this many seconds
    CONNECT_TIMEOUT_SECONDS: float = float(os.getenv("CONNECT_TIMEOUT_SECONDS", 10))
    # Liveness probe on a cached connection
    PROBE_TIMEOUT_SECONDS: float = float(os.getenv("PROBE_TIMEOUT_SECONDS", 2))

    # ── SMTP Server Settings ────────────────────────────────────────────────────
    SMTP_SERVER: str = os.getenv("SMTP_SERVER", "smtp.gmail.com")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", 587))
    SMTP_USER: str = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
    SMTP_SECURE: bool = _flag("SMTP_SECURE")
    SMTP_TIMEOUT: float = float(os.getenv("SMTP_TIMEOUT", 30))
    # Optional BCC for all outgoing mail
    SMTP_BCC: str = os.getenv("SMTP_BCC", "")

    # ── Scheduling ──────────────────────────────────────────────────────────────
    # Calendar reasoning (weekdays, hour windows) happens in this timezone
    TIMEZONE: str = os.getenv("TIMEZONE", "Europe/Paris")
    POLL_INTERVAL_SECONDS: float = float(os.getenv("POLL_INTERVAL_SECONDS", 20))
    JOB_CONCURRENCY: int = int(os.getenv("JOB_CONCURRENCY", 5))

    # ── Job health monitor ──────────────────────────────────────────────────────
    MONITOR_INTERVAL_SECONDS: float = float(os.getenv("MONITOR_INTERVAL_SECONDS", 60))
    # Leases older than this are released for re-execution
    STALE_LOCK_MINUTES: int = int(os.getenv("STALE_LOCK_MINUTES", 5))

    # ── Logging / dev ───────────────────────────────────────────────────────────
    LOG_PATH: str = os.getenv("LOG_PATH", "error_log.txt")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    DEV_MODE: bool = _flag("DEV_MODE")

    def __init__(self, **overrides):
        for key, value in overrides.items():
            if not hasattr(type(self), key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_USER and self.SMTP_PASSWORD)


# Instantiate a single settings object to import elsewhere
settings = Settings()
