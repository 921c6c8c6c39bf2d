# mailflow/database.py
"""
Connection lifecycle for the job store.

One engine is cached and reused across calls. Before it is handed out again it
must answer a ``SELECT 1`` within ``PROBE_TIMEOUT_SECONDS``; otherwise it is
disposed and replaced by a fresh engine that has to come up within
``CONNECT_TIMEOUT_SECONDS``.
"""

import asyncio
import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from mailflow.config import Settings, settings as default_settings
from mailflow.errors import StoreConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def create_db_engine(url: str, connect_timeout: float) -> Engine:
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": connect_timeout}
    elif url.startswith("postgresql"):
        connect_args = {"connect_timeout": int(connect_timeout)}
    else:
        connect_args = {}
    return create_engine(url, echo=False, pool_pre_ping=True, connect_args=connect_args)


def ping(engine: Engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def init_db(engine: Engine) -> None:
    # models must be imported so the table is registered on the metadata
    from mailflow import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


class ConnectionManager:
    def __init__(
        self,
        config: Optional[Settings] = None,
        engine_factory: Callable[[str, float], Engine] = create_db_engine,
        probe: Callable[[Engine], None] = ping,
    ):
        config = config or default_settings
        self.url = config.DB_URL
        self.connect_timeout = config.CONNECT_TIMEOUT_SECONDS
        self.probe_timeout = config.PROBE_TIMEOUT_SECONDS
        self._engine_factory = engine_factory
        self._probe = probe
        self._engine: Optional[Engine] = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Optional[Engine]:
        return self._engine

    async def acquire(self) -> Engine:
        async with self._lock:
            if self._engine is not None:
                try:
                    await asyncio.wait_for(
                        asyncio.to_thread(self._probe, self._engine), self.probe_timeout
                    )
                    logger.debug("Using cached database connection")
                    return self._engine
                except Exception as exc:
                    reason = "Ping timeout" if isinstance(exc, asyncio.TimeoutError) else exc
                    logger.warning("Connection check failed: %s. Creating a new one...", reason)
                    self.reset()

            logger.info("Creating new database connection")
            engine = self._engine_factory(self.url, self.connect_timeout)
            try:
                await asyncio.wait_for(
                    asyncio.to_thread(self._probe, engine), self.connect_timeout
                )
            except Exception as exc:
                self._dispose(engine)
                logger.error("Error connecting to database: %s", exc)
                raise StoreConnectionError(f"Job store unreachable: {exc}") from exc

            self._engine = engine
            logger.info("Database connection established successfully")
            return engine

    def reset(self) -> None:
        """Drop the cached engine so the next acquire() reconnects."""
        engine, self._engine = self._engine, None
        if engine is not None:
            self._dispose(engine)

    async def close(self) -> None:
        async with self._lock:
            self.reset()

    async def run(self, fn: Callable[..., T], *args) -> T:
        """Run a synchronous store helper ``fn(session, *args)`` off the event loop."""
        engine = await self.acquire()

        def work() -> T:
            with Session(engine, expire_on_commit=False) as session:
                return fn(session, *args)

        return await asyncio.to_thread(work)

    @staticmethod
    def _dispose(engine: Engine) -> None:
        try:
            engine.dispose()
        except Exception as exc:
            logger.warning("Error closing stale connection: %s", exc)
