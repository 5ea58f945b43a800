"""Health check endpoint.

Verifies connectivity to the inventory database and, when the shared pair
index is in use, to Redis. Used by Docker healthchecks and load balancers.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text

from trade_engine.api.deps import get_app_settings
from trade_engine.config import Settings  # noqa: TC001
from trade_engine.infrastructure.database.engine import get_engine
from trade_engine.infrastructure.redis_client import get_redis
from trade_engine.logging_config import get_logger
from trade_engine.schemas.trade import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> HealthResponse:
    """Check connectivity to the database and (if configured) Redis."""
    db_status = "unknown"
    redis_status = "disabled"

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    if settings.pair_index_backend == "redis":
        try:
            await get_redis().ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    healthy = db_status == "healthy" and redis_status in ("healthy", "disabled")
    store = getattr(request.app.state, "trade_store", None)

    return HealthResponse(
        status="ok" if healthy else "degraded",
        version="0.1.0",
        database=db_status,
        redis=redis_status,
        active_trades=store.active_count if store is not None else 0,
    )
