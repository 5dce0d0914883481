from typing import Annotated

from fastapi import Depends, Request

from sqlproxy.core.errors import PoolClosed
from sqlproxy.core.gateway import AuthContext, verify_gateway_request
from sqlproxy.core.pool import PoolManager
from sqlproxy.engines.sql import QueryExecutor


def require_api_key(request: Request) -> AuthContext:
    return verify_gateway_request(request)


def get_pool_manager(request: Request) -> PoolManager:
    pool: PoolManager | None = getattr(request.app.state, "pool", None)
    if pool is None:
        raise PoolClosed("Connection pool is not initialised")
    return pool


PoolDep = Annotated[PoolManager, Depends(get_pool_manager)]


def get_executor(pool: PoolDep) -> QueryExecutor:
    return QueryExecutor(pool)


ExecutorDep = Annotated[QueryExecutor, Depends(get_executor)]
