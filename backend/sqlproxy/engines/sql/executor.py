"""
Execute proxied SQL against the pooled database.

- Statement text is sent as written with positional bind parameters
  ($1, $2, ...); values are never interpolated into the text.
- Every ';' is removed before dispatch, so stacked statements collapse into one.
  This also removes semicolons inside string literals.
- Rows are shaped as dicts (column name -> value) or, in array-rows mode, as
  lists of values; field descriptors are returned for type decoding.

Uses core.pool (PoolManager.connection) for scoped acquire/release.
"""

import logging
from collections.abc import Sequence
from typing import Any

import psycopg

from sqlproxy.core.errors import PoolConnectionError, QueryError, QueryValidationError
from sqlproxy.core.pool import PoolManager
from sqlproxy.core.pool.connect import is_broken
from sqlproxy.schemas_proxy import (
    BindValue,
    FieldDescriptor,
    QueryResult,
    RowDescription,
    RowMode,
)

_log = logging.getLogger(__name__)

_LOG_SQL_MAX = 100


def strip_semicolons(sql: str) -> str:
    return sql.replace(";", "")


def _preview(sql: str) -> str:
    return sql[:_LOG_SQL_MAX] + ("..." if len(sql) > _LOG_SQL_MAX else "")


def _command_of(cursor: Any) -> str | None:
    """Command tag verb: 'INSERT 0 1' -> 'INSERT'."""
    status = getattr(cursor, "statusmessage", None)
    if not status:
        return None
    return status.split()[0].upper()


def _row_description(cursor: Any) -> list[RowDescription]:
    desc = cursor.description or []
    res = getattr(cursor, "pgresult", None)
    out: list[RowDescription] = []
    for i, col in enumerate(desc):
        if res is not None:
            out.append(
                RowDescription(
                    name=col.name,
                    table_id=res.ftable(i),
                    column_id=res.ftablecol(i),
                    data_type_id=res.ftype(i),
                    data_type_size=res.fsize(i),
                    data_type_modifier=res.fmod(i),
                    format="binary" if res.fformat(i) else "text",
                )
            )
        else:
            size = getattr(col, "internal_size", None)
            out.append(
                RowDescription(
                    name=col.name,
                    data_type_id=col.type_code,
                    data_type_size=size if size is not None else -1,
                )
            )
    return out


def shape_rows(
    names: Sequence[str], rows: Sequence[Sequence[Any]], row_mode: RowMode
) -> list[Any]:
    """Dicts keyed by column name, or plain lists in array-rows mode."""
    if row_mode == RowMode.ARRAY_ROWS:
        return [list(row) for row in rows]
    return [dict(zip(names, row, strict=True)) for row in rows]


class QueryExecutor:
    """
    execute(sql_text, parameters, row_mode) -> QueryResult

    Raises QueryValidationError before touching the pool, QueryError when the
    database rejects the statement, and pool errors from acquisition.
    """

    def __init__(self, pool: PoolManager) -> None:
        self._pool = pool

    async def execute(
        self,
        sql_text: str,
        parameters: Sequence[BindValue] | None = None,
        row_mode: RowMode = RowMode.DEFAULT,
    ) -> QueryResult:
        if not sql_text or not sql_text.strip():
            raise QueryValidationError("SQL query is required")
        sql = strip_semicolons(sql_text)
        if not sql.strip():
            raise QueryValidationError("SQL query is empty after removing ';'")
        params = list(parameters or [])

        _log.debug("Executing query: %s", _preview(sql))
        async with self._pool.connection() as pooled:
            conn = pooled.conn
            try:
                async with conn.cursor() as cur:
                    await cur.execute(sql, params)
                    return await self._shape(cur, row_mode)
            except psycopg.Error as e:
                message = str(e).strip() or e.__class__.__name__
                if is_broken(conn):
                    _log.error("Database connection lost during query: %s", message)
                    raise PoolConnectionError(
                        f"Database connection lost: {message}"
                    ) from e
                _log.error("Query error: %s", message)
                raise QueryError(message, code=getattr(e, "sqlstate", None)) from e

    @staticmethod
    async def _shape(cursor: Any, row_mode: RowMode) -> QueryResult:
        command = _command_of(cursor)
        if not cursor.description:
            return QueryResult(
                rows=[],
                row_count=max(cursor.rowcount or 0, 0),
                command=command,
                row_as_array=row_mode == RowMode.ARRAY_ROWS,
            )
        names = [col.name for col in cursor.description]
        raw = await cursor.fetchall()
        rows = shape_rows(names, raw, row_mode)
        row_count = cursor.rowcount if (cursor.rowcount or 0) > 0 else len(rows)
        return QueryResult(
            rows=rows,
            row_count=row_count,
            command=command,
            fields=[
                FieldDescriptor(name=col.name, data_type_id=col.type_code)
                for col in cursor.description
            ],
            row_as_array=row_mode == RowMode.ARRAY_ROWS,
            row_description=_row_description(cursor),
        )
