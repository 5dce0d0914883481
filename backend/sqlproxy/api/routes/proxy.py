"""
Proxy routes: generic /db-proxy and Drizzle-compatible /query.

Flow: auth (router dependency) -> read body -> validate -> execute -> format.
The body is read inside the handler so authentication always runs first and a
rejected request never reaches the pool. Errors are raised as ProxyError and
rendered by the handlers in sqlproxy.main.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from sqlproxy.api.deps import ExecutorDep, require_api_key
from sqlproxy.core.gateway import format_response, parse_body, read_body
from sqlproxy.schemas_proxy import GenericQueryIn, OrmQueryIn, QueryResult

router = APIRouter(tags=["proxy"], dependencies=[Depends(require_api_key)])


@router.post("/query", response_model=None)
async def orm_query(request: Request, executor: ExecutorDep) -> JSONResponse:
    """
    Drizzle pg-proxy endpoint: body {sql, params?, method?}.

    Returns only the rows array; rows are positional arrays when method == "all".
    """
    payload = parse_body(OrmQueryIn, await read_body(request))
    req = payload.to_query_request()
    result = await executor.execute(req.sql_text, req.parameters, req.row_mode)
    rows = result.rows if result is not None else []
    return JSONResponse(content=format_response(rows))


@router.post("/db-proxy", response_model=None)
async def db_proxy(request: Request, executor: ExecutorDep) -> JSONResponse:
    """
    Generic endpoint: body {query, params?, arrayMode?}.

    Returns {rows, rowCount, command, fields, rowAsArray, rowDescription}.
    """
    payload = parse_body(GenericQueryIn, await read_body(request))
    req = payload.to_query_request()
    result = await executor.execute(req.sql_text, req.parameters, req.row_mode)
    if result is None:
        result = QueryResult()
    return JSONResponse(content=format_response(result.to_response()))
