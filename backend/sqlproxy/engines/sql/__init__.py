"""
SQL execution engine for proxied queries.

Exports: QueryExecutor, strip_semicolons, shape_rows.
"""

from sqlproxy.engines.sql.executor import QueryExecutor, shape_rows, strip_semicolons

__all__ = [
    "QueryExecutor",
    "shape_rows",
    "strip_semicolons",
]
