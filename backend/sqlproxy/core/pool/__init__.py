"""
Connection pool for the proxied PostgreSQL database.
"""

from .connect import mask_dsn, open_connection
from .health import health_check
from .manager import PooledConnection, PoolManager

__all__ = [
    "open_connection",
    "mask_dsn",
    "health_check",
    "PoolManager",
    "PooledConnection",
]
