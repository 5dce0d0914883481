"""
Engines: SQL execution against the pooled database.
"""

from sqlproxy.engines.sql import QueryExecutor

__all__ = [
    "QueryExecutor",
]
