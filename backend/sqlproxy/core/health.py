"""
Health-check helpers for liveness and readiness probes.

Liveness:  is the process alive?  (cheap, no I/O)
Readiness: can it serve traffic?  (pool usable + SELECT 1 on a pooled connection)
"""

import logging

from sqlproxy.core.errors import PoolError
from sqlproxy.core.pool import PoolManager, health_check

logger = logging.getLogger(__name__)


async def check_database(pool: PoolManager) -> bool:
    """Borrow a connection and run SELECT 1. Returns True if ok."""
    try:
        async with pool.connection() as pooled:
            return await health_check(pooled.conn)
    except PoolError as e:
        logger.warning("Database readiness check failed: %s", e.message)
        return False


async def readiness_check(pool: PoolManager | None) -> tuple[bool, list[str]]:
    """
    Returns (ok, list of failure messages).
    """
    if pool is None:
        return (False, ["pool_not_initialised"])
    if pool.fatal_error is not None:
        return (False, ["pool_fatal"])
    if not await check_database(pool):
        return (False, ["database"])
    return (True, [])
