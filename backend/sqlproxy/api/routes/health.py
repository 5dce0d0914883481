from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from sqlproxy.core.health import readiness_check

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health() -> dict[str, str]:
    """
    Liveness probe: no authentication, no database I/O.
    """
    return {"status": "ok"}


@router.get("/ready", response_model=None)
async def ready(request: Request) -> dict | JSONResponse:
    """
    Readiness probe: can the proxy reach the database through the pool?

    Returns 200 with pool stats if so; 503 with the failing checks otherwise.
    """
    pool = getattr(request.app.state, "pool", None)
    ok, failures = await readiness_check(pool)
    if not ok:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "error": ", ".join(failures)},
        )
    return {"status": "ok", "pool": pool.stats()}
