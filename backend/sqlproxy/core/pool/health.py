"""
Connection health check for pooled PostgreSQL connections.
"""

from typing import Any


async def health_check(conn: Any) -> bool:
    """
    Run SELECT 1 and return True if no exception.
    """
    try:
        async with conn.cursor() as cur:
            await cur.execute("SELECT 1")
            await cur.fetchone()
        return True
    except Exception:
        return False
