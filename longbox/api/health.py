"""
Health check endpoints.

Liveness, readiness (database connectivity) and a status view of the sync
machinery: per-provider token availability and response cache counters.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from longbox.db.database import get_session

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str | None = None


class SyncStatusResponse(BaseModel):
    """Snapshot of the fetch pipeline."""

    providers: list[str] = Field(default_factory=list)
    tokens_available: dict[str, float] = Field(default_factory=dict)
    fetches_in_flight: int = 0
    cache: dict[str, int] = Field(default_factory=dict)


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """
    Liveness probe.

    Returns healthy if the service is running.
    Does not check dependencies.
    """
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(
    response: Response,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> HealthResponse:
    """
    Readiness probe.

    Checks database connectivity. Returns 503 if the database is unavailable.
    """
    try:
        await session.execute(text("SELECT 1"))
        return HealthResponse(status="ready", database="connected")
    except Exception:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", database="disconnected")


@router.get("/status/sync", response_model=SyncStatusResponse)
async def sync_status(request: Request) -> SyncStatusResponse:
    """Token availability per provider, worker pool load and cache counters."""
    state = request.app.state
    orchestrator = state.catalog_sync.orchestrator
    stats = state.cache.stats()
    return SyncStatusResponse(
        providers=orchestrator.provider_ids,
        tokens_available={
            pid: round(state.rate_limiter.available(pid), 3) for pid in orchestrator.provider_ids
        },
        fetches_in_flight=state.worker_pool.in_flight,
        cache={
            "hits": stats.hits,
            "misses": stats.misses,
            "attaches": stats.attaches,
            "fetches": stats.fetches,
            "evictions": stats.evictions,
            "size": stats.size,
        },
    )
