"""
Bounded asyncio connection pool for the proxied database.

One PoolManager is built per process in the application lifespan and injected
into request handlers. Includes health-check on open, idle-timeout and max-age
eviction on checkout, and a supervisor that sweeps idle connections and flags
the pool as fatal when an idle connection turns out broken.
"""

import asyncio
import functools
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlproxy.core.config import Settings
from sqlproxy.core.errors import (
    PoolClosed,
    PoolConnectionError,
    PoolExhausted,
    PoolFatalError,
)

from .connect import close_quiet, is_broken, open_connection, reset_connection
from .health import health_check

_log = logging.getLogger(__name__)

ConnectFn = Callable[[], Awaitable[Any]]


@dataclass(eq=False)
class PooledConnection:
    """Exclusively borrowed handle; hand it back with PoolManager.release()."""

    conn: Any
    created_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)
    released: bool = False


class PoolManager:
    """Lends at most ``max_size`` connections at a time."""

    def __init__(
        self,
        connect: ConnectFn,
        *,
        max_size: int = 20,
        idle_timeout: float = 30.0,
        acquire_timeout: float = 30.0,
        max_age: float = 600.0,
    ) -> None:
        self._connect = connect
        self._max_size = max_size
        self._idle_timeout = idle_timeout
        self._acquire_timeout = acquire_timeout
        self._max_age = max_age
        self._idle: list[PooledConnection] = []
        self._lock = asyncio.Lock()
        self._slots = asyncio.Semaphore(max_size)
        self._in_use = 0
        self._closed = False
        self._fatal: PoolFatalError | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "PoolManager":
        connect = functools.partial(
            open_connection,
            settings.DATABASE_URL,
            connect_timeout=settings.DB_CONNECT_TIMEOUT,
            require_ssl=settings.is_production,
        )
        return cls(
            connect,
            max_size=settings.DB_POOL_MAX,
            idle_timeout=settings.idle_timeout_sec,
            acquire_timeout=settings.DB_ACQUIRE_TIMEOUT,
            max_age=settings.DB_POOL_MAX_AGE_SEC,
        )

    @property
    def fatal_error(self) -> PoolFatalError | None:
        return self._fatal

    async def open(self) -> bool:
        """Open one connection and health-check it; keep it as the first idle entry."""
        try:
            conn = await self._connect()
        except PoolConnectionError as e:
            _log.warning("Initial database connection failed: %s", e)
            return False
        if not await health_check(conn):
            _log.warning("Initial database health check failed")
            await close_quiet(conn)
            return False
        async with self._lock:
            self._idle.append(PooledConnection(conn=conn))
        _log.info("Database connection pool ready (max_size=%d)", self._max_size)
        return True

    async def acquire(self) -> PooledConnection:
        self._ensure_usable()
        try:
            await asyncio.wait_for(self._slots.acquire(), self._acquire_timeout)
        except asyncio.TimeoutError:
            raise PoolExhausted(
                f"No database connection available within {self._acquire_timeout}s"
            ) from None
        try:
            self._ensure_usable()
            pooled = await self._checkout()
        except BaseException:
            self._slots.release()
            raise
        self._in_use += 1
        return pooled

    async def release(self, pooled: PooledConnection) -> None:
        """Return a connection to the pool (or close it if it cannot be reused)."""
        if pooled.released:
            raise RuntimeError("PooledConnection released twice")
        pooled.released = True
        try:
            reusable = await reset_connection(pooled.conn)
            usable = self._fatal is None and not self._closed
            if reusable and usable and not self._is_expired(pooled):
                pooled.last_used = time.monotonic()
                async with self._lock:
                    if len(self._idle) < self._max_size:
                        self._idle.append(pooled)
                        return
            await close_quiet(pooled.conn)
        finally:
            self._in_use -= 1
            self._slots.release()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[PooledConnection]:
        pooled = await self.acquire()
        try:
            yield pooled
        finally:
            await self.release(pooled)

    def stats(self) -> dict[str, int]:
        """Return pool statistics for monitoring."""
        return {
            "max_size": self._max_size,
            "in_use": self._in_use,
            "idle": len(self._idle),
            "available": self._max_size - self._in_use,
        }

    async def sweep(self) -> None:
        """
        Close idle connections past the idle timeout and ping the rest.

        Each connection is taken out of the idle list one at a time while
        holding a slot, so a ping counts against max_size like a borrower.
        A broken idle connection means the shared pool can no longer be
        trusted: the pool is marked fatal and PoolFatalError is raised.
        """
        async with self._lock:
            pending = list(self._idle)
        for entry in pending:
            await self._slots.acquire()
            try:
                async with self._lock:
                    if entry not in self._idle:
                        # checked out since the snapshot
                        continue
                    self._idle.remove(entry)
                await self._sweep_one(entry)
            finally:
                self._slots.release()

    async def supervise(self, interval: float, shutdown: asyncio.Event) -> None:
        """Sweep periodically; on a fatal pool error, signal process shutdown."""
        while not self._closed:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except PoolFatalError as e:
                _log.critical("%s; requesting shutdown", e.message)
                shutdown.set()
                return

    async def close(self) -> None:
        """Close idle connections and refuse further acquisitions."""
        self._closed = True
        await self._close_idle()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _sweep_one(self, entry: PooledConnection) -> None:
        if self._is_idle_too_long(entry) or self._is_expired(entry):
            await close_quiet(entry.conn)
            return
        try:
            healthy = not is_broken(entry.conn) and await health_check(entry.conn)
        except BaseException:
            # interrupted mid-ping; the connection state is unknown
            await close_quiet(entry.conn)
            raise
        if not healthy:
            await close_quiet(entry.conn)
            self._fatal = PoolFatalError("Unexpected error on idle database connection")
            await self._close_idle()
            raise self._fatal
        async with self._lock:
            if not self._closed and self._fatal is None:
                self._idle.append(entry)
                return
        await close_quiet(entry.conn)

    async def _close_idle(self) -> None:
        async with self._lock:
            entries, self._idle = self._idle, []
        for entry in entries:
            await close_quiet(entry.conn)

    def _ensure_usable(self) -> None:
        if self._fatal is not None:
            raise self._fatal
        if self._closed:
            raise PoolClosed("Connection pool is closed")

    async def _checkout(self) -> PooledConnection:
        while True:
            async with self._lock:
                entry = self._idle.pop() if self._idle else None
            if entry is None:
                break
            if (
                self._is_expired(entry)
                or self._is_idle_too_long(entry)
                or is_broken(entry.conn)
            ):
                await close_quiet(entry.conn)
                continue
            return PooledConnection(
                conn=entry.conn,
                created_at=entry.created_at,
                last_used=entry.last_used,
            )

        conn = await self._connect()
        return PooledConnection(conn=conn)

    def _is_expired(self, entry: PooledConnection) -> bool:
        return (time.monotonic() - entry.created_at) > self._max_age

    def _is_idle_too_long(self, entry: PooledConnection) -> bool:
        if self._idle_timeout <= 0:
            return False
        return (time.monotonic() - entry.last_used) > self._idle_timeout
