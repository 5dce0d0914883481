"""Unit tests for core.pool.manager: bounded lending, reuse, eviction, supervision."""

import asyncio

import pytest
from psycopg.pq import TransactionStatus

from sqlproxy.core.errors import (
    PoolClosed,
    PoolConnectionError,
    PoolExhausted,
    PoolFatalError,
)
from sqlproxy.core.pool import PoolManager
from tests.utils.fakes import FakeDatabase


def _pool(db: FakeDatabase, **kwargs) -> PoolManager:
    kwargs.setdefault("max_size", 2)
    kwargs.setdefault("acquire_timeout", 0.05)
    return PoolManager(db.connect, **kwargs)


def test_acquire_release_reuses_connection() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db)
        first = await pool.acquire()
        await pool.release(first)
        second = await pool.acquire()
        assert second.conn is first.conn
        await pool.release(second)

    asyncio.run(scenario())
    assert len(db.connections) == 1


def test_stats_track_in_use_and_idle() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db, max_size=3)
        assert pool.stats() == {"max_size": 3, "in_use": 0, "idle": 0, "available": 3}
        a = await pool.acquire()
        b = await pool.acquire()
        assert pool.stats()["in_use"] == 2
        assert pool.stats()["available"] == 1
        await pool.release(a)
        await pool.release(b)
        assert pool.stats() == {"max_size": 3, "in_use": 0, "idle": 2, "available": 3}

    asyncio.run(scenario())


def test_acquire_times_out_when_exhausted() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db, max_size=1)
        held = await pool.acquire()
        with pytest.raises(PoolExhausted):
            await pool.acquire()
        await pool.release(held)
        assert pool.stats()["available"] == 1

    asyncio.run(scenario())


def test_waiter_gets_connection_after_release() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db, max_size=1, acquire_timeout=1.0)
        held = await pool.acquire()
        waiter = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0.01)
        assert not waiter.done()
        await pool.release(held)
        got = await waiter
        assert got.conn is held.conn
        await pool.release(got)

    asyncio.run(scenario())
    assert len(db.connections) == 1


def test_double_release_is_a_programming_error() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db)
        pooled = await pool.acquire()
        await pool.release(pooled)
        before = pool.stats()
        with pytest.raises(RuntimeError, match="released twice"):
            await pool.release(pooled)
        assert pool.stats() == before

    asyncio.run(scenario())


def test_stale_handle_cannot_release_reused_connection() -> None:
    """A handle released once stays released even after its connection is lent again."""
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db)
        old = await pool.acquire()
        await pool.release(old)
        new = await pool.acquire()
        with pytest.raises(RuntimeError):
            await pool.release(old)
        assert pool.stats()["in_use"] == 1
        await pool.release(new)

    asyncio.run(scenario())


def test_release_closes_broken_connection() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db)
        pooled = await pool.acquire()
        pooled.conn.broken = True
        await pool.release(pooled)
        assert pooled.conn.closed is True
        assert pool.stats()["idle"] == 0
        fresh = await pool.acquire()
        assert fresh.conn is not pooled.conn
        await pool.release(fresh)

    asyncio.run(scenario())


def test_release_rolls_back_open_transaction() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db)
        pooled = await pool.acquire()
        pooled.conn.info.transaction_status = TransactionStatus.INTRANS
        await pool.release(pooled)
        assert pooled.conn.rollbacks == 1
        assert pool.stats()["idle"] == 1

    asyncio.run(scenario())


def test_idle_timeout_evicts_on_checkout() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db, idle_timeout=0.01)
        first = await pool.acquire()
        await pool.release(first)
        await asyncio.sleep(0.03)
        second = await pool.acquire()
        assert second.conn is not first.conn
        assert first.conn.closed is True
        await pool.release(second)

    asyncio.run(scenario())


def test_max_age_evicts_on_checkout() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db, max_age=0.01, idle_timeout=0)
        first = await pool.acquire()
        await asyncio.sleep(0.03)
        await pool.release(first)
        assert first.conn.closed is True
        second = await pool.acquire()
        assert second.conn is not first.conn
        await pool.release(second)

    asyncio.run(scenario())


def test_connect_failure_returns_slot() -> None:
    db = FakeDatabase()
    db.connect_error = PoolConnectionError("Could not connect to database: refused")

    async def scenario() -> None:
        pool = _pool(db, max_size=1)
        with pytest.raises(PoolConnectionError):
            await pool.acquire()
        assert pool.stats()["available"] == 1
        db.connect_error = None
        pooled = await pool.acquire()
        await pool.release(pooled)

    asyncio.run(scenario())


def test_connection_context_releases_on_error() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db)
        with pytest.raises(ValueError):
            async with pool.connection():
                raise ValueError("boom")
        assert pool.stats() == {"max_size": 2, "in_use": 0, "idle": 1, "available": 2}

    asyncio.run(scenario())


def test_open_runs_health_check_and_keeps_connection() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db)
        assert await pool.open() is True
        assert pool.stats()["idle"] == 1

    asyncio.run(scenario())
    assert db.statements() == ["SELECT 1"]


def test_open_reports_unreachable_database() -> None:
    db = FakeDatabase()
    db.connect_error = PoolConnectionError("Could not connect to database: refused")

    async def scenario() -> None:
        pool = _pool(db)
        assert await pool.open() is False
        assert pool.stats()["idle"] == 0

    asyncio.run(scenario())


def test_sweep_closes_idle_connections_past_timeout() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db, idle_timeout=0.01)
        pooled = await pool.acquire()
        await pool.release(pooled)
        await asyncio.sleep(0.03)
        await pool.sweep()
        assert pooled.conn.closed is True
        assert pool.stats()["idle"] == 0
        assert pool.fatal_error is None

    asyncio.run(scenario())


def test_sweep_marks_pool_fatal_on_broken_idle_connection() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db)
        pooled = await pool.acquire()
        await pool.release(pooled)
        pooled.conn.broken = True
        with pytest.raises(PoolFatalError):
            await pool.sweep()
        assert pool.fatal_error is not None
        with pytest.raises(PoolFatalError):
            await pool.acquire()

    asyncio.run(scenario())


def test_supervise_signals_shutdown_on_fatal_error() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db)
        pooled = await pool.acquire()
        await pool.release(pooled)
        pooled.conn.broken = True
        shutdown = asyncio.Event()
        await asyncio.wait_for(pool.supervise(0.01, shutdown), timeout=1.0)
        assert shutdown.is_set()

    asyncio.run(scenario())


def test_closed_pool_rejects_acquire() -> None:
    db = FakeDatabase()

    async def scenario() -> None:
        pool = _pool(db)
        pooled = await pool.acquire()
        await pool.release(pooled)
        await pool.close()
        assert pooled.conn.closed is True
        with pytest.raises(PoolClosed):
            await pool.acquire()

    asyncio.run(scenario())


def test_concurrent_borrowers_never_share_a_connection() -> None:
    db = FakeDatabase(delay=0.01)

    async def borrow(pool: PoolManager) -> None:
        async with pool.connection() as pooled:
            async with pooled.conn.cursor() as cur:
                await cur.execute("SELECT 1")

    async def scenario() -> None:
        pool = _pool(db, max_size=3, acquire_timeout=1.0)
        baseline = pool.stats()["available"]
        await asyncio.gather(*(borrow(pool) for _ in range(12)))
        assert pool.stats()["available"] == baseline
        assert pool.stats()["in_use"] == 0

    asyncio.run(scenario())
    assert db.max_active_per_conn == 1
    assert len(db.connections) <= 3


def test_sweep_counts_pinged_connections_against_max_size() -> None:
    db = FakeDatabase()

    async def scenario() -> tuple[int, dict[str, int]]:
        pool = _pool(db, max_size=2, acquire_timeout=1.0)
        first, second = await pool.acquire(), await pool.acquire()
        await pool.release(first)
        await pool.release(second)
        db.delay = 0.1  # slow pings only; connect is not delayed
        sweep = asyncio.create_task(pool.sweep())
        await asyncio.sleep(0.02)
        borrowed = [await pool.acquire(), await pool.acquire()]
        live = sum(1 for conn in db.connections if not conn.closed)
        for pooled in borrowed:
            await pool.release(pooled)
        await sweep
        return live, pool.stats()

    live, stats = asyncio.run(scenario())
    assert live <= 2
    assert len(db.connections) == 2
    assert stats["idle"] <= 2
    assert stats["in_use"] == 0
    assert stats["available"] == 2


def test_cancelled_sweep_does_not_leak_connections() -> None:
    db = FakeDatabase()

    async def scenario() -> dict[str, int]:
        pool = _pool(db)
        pooled = await pool.acquire()
        await pool.release(pooled)
        db.delay = 0.5
        sweep = asyncio.create_task(pool.sweep())
        await asyncio.sleep(0.05)
        sweep.cancel()
        with pytest.raises(asyncio.CancelledError):
            await sweep
        await pool.close()
        return pool.stats()

    stats = asyncio.run(scenario())
    assert [conn.closed for conn in db.connections] == [True]
    assert stats["idle"] == 0
    assert stats["available"] == 2
