"""Shared fixtures: temporary SQLite job store, fake SMTP transport."""
import smtplib

import pytest

from mailflow.config import Settings
from mailflow.database import ConnectionManager, create_db_engine, init_db
from mailflow.mailer import MailDispatcher
from mailflow.scheduler import JobScheduler


class FakeSMTPSession:
    def __init__(self, server):
        self.server = server
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True

    def starttls(self):
        self.server.calls.append("starttls")

    def login(self, user, password):
        self.server.calls.append("login")
        if "login" in self.server.fail_on:
            raise smtplib.SMTPAuthenticationError(535, b"bad auth")

    def noop(self):
        self.server.calls.append("noop")
        return self.server.noop_code, b"OK"

    def send_message(self, msg):
        self.server.calls.append("send")
        if "send" in self.server.fail_on:
            raise smtplib.SMTPServerDisconnected("connection lost")
        self.server.sent.append(msg)

    def close(self):
        self.closed = True


class FakeSMTPServer:
    """Callable standing in for smtplib.SMTP / SMTP_SSL."""

    def __init__(self):
        self.sent = []
        self.calls = []
        self.hosts = []
        self.fail_on = set()
        self.noop_code = 250

    def __call__(self, host, port, timeout=None):
        if "connect" in self.fail_on:
            raise ConnectionRefusedError("Connection refused")
        self.hosts.append((host, port))
        return FakeSMTPSession(self)


@pytest.fixture
def config(tmp_path):
    return Settings(
        DB_URL=f"sqlite:///{tmp_path / 'jobs.db'}",
        TIMEZONE="UTC",
        POLL_INTERVAL_SECONDS=3600,
        MONITOR_INTERVAL_SECONDS=3600,
        JOB_CONCURRENCY=5,
        STALE_LOCK_MINUTES=5,
        LOG_PATH=str(tmp_path / "error_log.txt"),
        SMTP_SERVER="smtp.test",
        SMTP_PORT=587,
        SMTP_USER="bot@example.com",
        SMTP_PASSWORD="secret",
        SMTP_SECURE=False,
        SMTP_BCC="",
        DEV_MODE=False,
    )


@pytest.fixture
def tables(config):
    engine = create_db_engine(config.DB_URL, 5)
    init_db(engine)
    engine.dispose()


@pytest.fixture
def scheduler(config, tables):
    """Scheduler over a fresh store; the poll loop is not started."""
    return JobScheduler(ConnectionManager(config), config)


@pytest.fixture
def smtp():
    return FakeSMTPServer()


@pytest.fixture
def mailer(config, smtp):
    return MailDispatcher(config, smtp_factory=smtp, smtp_ssl_factory=smtp)
