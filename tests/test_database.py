import asyncio
import time

import pytest

from mailflow import crud
from mailflow.config import Settings
from mailflow.database import ConnectionManager
from mailflow.errors import StoreConnectionError
from mailflow.utils import utcnow


class FakeEngine:
    def __init__(self, name, fail_dispose=False):
        self.name = name
        self.disposed = 0
        self.fail_dispose = fail_dispose

    def dispose(self):
        self.disposed += 1
        if self.fail_dispose:
            raise RuntimeError("socket already closed")


class EngineFactory:
    def __init__(self, **engine_kw):
        self.created = []
        self.engine_kw = engine_kw

    def __call__(self, url, timeout):
        engine = FakeEngine(f"engine-{len(self.created)}", **self.engine_kw)
        self.created.append(engine)
        return engine


def make_manager(probe, factory=None, **overrides):
    config = Settings(
        DB_URL="sqlite://", PROBE_TIMEOUT_SECONDS=0.25, CONNECT_TIMEOUT_SECONDS=2, **overrides
    )
    factory = factory or EngineFactory()
    return ConnectionManager(config, engine_factory=factory, probe=probe), factory


def test_cached_engine_is_reused_while_it_answers():
    manager, factory = make_manager(lambda engine: None)

    async def scenario():
        first = await manager.acquire()
        second = await manager.acquire()
        return first, second

    first, second = asyncio.run(scenario())
    assert first is second
    assert len(factory.created) == 1
    assert first.disposed == 0


def test_slow_probe_replaces_engine_and_disposes_the_old_one_once():
    hung = set()

    def probe(engine):
        if engine.name in hung:
            time.sleep(1.5)

    manager, factory = make_manager(probe)

    async def scenario():
        first = await manager.acquire()
        hung.add(first.name)
        second = await manager.acquire()
        return first, second

    first, second = asyncio.run(scenario())
    assert second is not first
    assert manager.cached is second
    assert first.disposed == 1
    assert second.disposed == 0
    assert len(factory.created) == 2


def test_failing_probe_also_triggers_reconnect():
    broken = set()

    def probe(engine):
        if engine.name in broken:
            raise OSError("server closed the connection unexpectedly")

    manager, factory = make_manager(probe)

    async def scenario():
        first = await manager.acquire()
        broken.add(first.name)
        return first, await manager.acquire()

    first, second = asyncio.run(scenario())
    assert second is not first
    assert first.disposed == 1


def test_unreachable_store_raises_connection_error():
    def probe(engine):
        raise OSError("Connection refused")

    manager, factory = make_manager(probe)
    with pytest.raises(StoreConnectionError):
        asyncio.run(manager.acquire())
    assert manager.cached is None
    assert factory.created[0].disposed == 1


def test_dispose_errors_are_swallowed():
    stale = set()

    def probe(engine):
        if engine.name in stale:
            raise OSError("gone")

    manager, factory = make_manager(probe, EngineFactory(fail_dispose=True))

    async def scenario():
        first = await manager.acquire()
        stale.add(first.name)
        return await manager.acquire()

    engine = asyncio.run(scenario())
    assert engine.name == "engine-1"
    assert factory.created[0].disposed == 1


def test_reset_and_close_drop_the_cache():
    manager, factory = make_manager(lambda engine: None)

    async def scenario():
        first = await manager.acquire()
        manager.reset()
        assert manager.cached is None
        second = await manager.acquire()
        await manager.close()
        return first, second

    first, second = asyncio.run(scenario())
    assert first is not second
    assert manager.cached is None
    assert first.disposed == second.disposed == 1


def test_run_executes_helpers_in_a_session(config, tables):
    manager = ConnectionManager(config)

    async def scenario():
        try:
            return await manager.run(crud.job_stats, utcnow())
        finally:
            await manager.close()

    stats = asyncio.run(scenario())
    assert stats["total"] == 0 and stats["locked"] == 0


def test_bad_database_path_is_reported_as_unreachable(tmp_path):
    config = Settings(DB_URL=f"sqlite:///{tmp_path}/missing/dir/jobs.db", CONNECT_TIMEOUT_SECONDS=1)
    manager = ConnectionManager(config)
    with pytest.raises(StoreConnectionError):
        asyncio.run(manager.acquire())
