import asyncio
import contextlib
import logging
import sys
from collections.abc import AsyncIterator

import sentry_sdk
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from sqlproxy.api.main import api_router
from sqlproxy.api.routes.health import router as health_router
from sqlproxy.core.config import settings
from sqlproxy.core.errors import (
    InvalidCredential,
    MissingCredential,
    PoolError,
    ProxyError,
    QueryValidationError,
)
from sqlproxy.core.gateway import error_body
from sqlproxy.core.pool import PoolManager, mask_dsn

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
_logger = logging.getLogger(__name__)


if settings.SENTRY_DSN and settings.ENVIRONMENT not in ("development", "test"):
    sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)


def build_pool_manager() -> PoolManager:
    return PoolManager.from_settings(settings)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the process-wide pool: open it, supervise it, close it."""
    _logger.info("Environment loaded: %s", settings.masked())
    _logger.info(
        "Initializing database connection to %s", mask_dsn(settings.DATABASE_URL)
    )
    shutdown: asyncio.Event | None = getattr(app.state, "shutdown", None)
    if shutdown is None:
        shutdown = asyncio.Event()
        app.state.shutdown = shutdown

    pool = build_pool_manager()
    await pool.open()
    app.state.pool = pool
    supervisor = asyncio.create_task(
        pool.supervise(settings.DB_SUPERVISE_INTERVAL, shutdown)
    )
    try:
        yield
    finally:
        supervisor.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await supervisor
        await pool.close()
        app.state.pool = None


app = FastAPI(
    title=settings.PROJECT_NAME,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers: every error is a JSON body with an "error" key
# ---------------------------------------------------------------------------


def _log_proxy_error(request: Request, exc: ProxyError) -> None:
    where = f"{request.method} {request.url.path}"
    if isinstance(exc, (MissingCredential, InvalidCredential)):
        _logger.warning("Rejected %s: %s", where, exc.message)
    elif isinstance(exc, QueryValidationError):
        _logger.info("Bad request %s: %s", where, exc.message)
    elif isinstance(exc, PoolError):
        _logger.critical("Database pool error on %s: %s", where, exc.message)
    else:
        _logger.error("Error on %s: %s", where, exc.message)


@app.exception_handler(ProxyError)
async def proxy_exception_handler(request: Request, exc: ProxyError) -> JSONResponse:
    _log_proxy_error(request, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc, include_stack=not settings.is_production),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return 400 with a human-readable error string instead of raw Pydantic errors."""
    messages = []
    for err in exc.errors():
        loc = " → ".join(str(l) for l in err.get("loc", []) if l != "body")
        msg = err.get("msg", "Invalid value")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return JSONResponse(status_code=400, content={"error": "; ".join(messages)})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Catch-all for unhandled exceptions: log and return 500 with a JSON body."""
    _logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    if settings.is_production:
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
    return JSONResponse(status_code=500, content=error_body(exc, include_stack=True))


if settings.all_cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.all_cors_origins,
        allow_credentials=settings.all_cors_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Health check: no authentication
app.include_router(health_router)
app.include_router(api_router, prefix="/api")
app.include_router(api_router)  # backward compat: /query, /db-proxy


async def serve() -> int:
    """
    Run uvicorn until it stops or the pool supervisor signals a fatal error.

    Returns the process exit code: 1 after a fatal pool shutdown, else 0.
    """
    shutdown = asyncio.Event()
    app.state.shutdown = shutdown
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.HOST,
            port=settings.PORT,
            log_level=settings.LOG_LEVEL.lower(),
        )
    )
    server_task = asyncio.create_task(server.serve())
    shutdown_task = asyncio.create_task(shutdown.wait())
    _logger.info("SQL proxy listening on http://%s:%d", settings.HOST, settings.PORT)

    done, _ = await asyncio.wait(
        {server_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
    )
    if shutdown_task in done:
        _logger.critical("Database pool is unusable; stopping server")
        server.should_exit = True
        await server_task
        return 1
    shutdown_task.cancel()
    server_task.result()
    return 0


def run() -> None:
    sys.exit(asyncio.run(serve()))


if __name__ == "__main__":
    run()
