from __future__ import annotations

from fastapi import APIRouter
from fastapi.concurrency import run_in_threadpool

from app.core.rate_limit import get_rate_limiter
from app.schemas.ratelimit import ReadinessResponse

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check: the process is up and serving."""

    return {"status": "ok"}


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check() -> ReadinessResponse:
    """Readiness check: the counting store answers a ping.

    Raises:
        StoreUnavailableError: Rendered as 503 by the global handlers.
    """

    store = get_rate_limiter().store
    await run_in_threadpool(store.ping)
    return ReadinessResponse(status="ready", backend=store.backend_name)
