"""FastAPI application entry point for the trade engine.

Lifecycle:
    1. Startup: Initialize logging, database, the pair index, and the trade store.
    2. Running: Serve the REST API on a single Uvicorn process. All live trades
       live in this process's TradeSessionStore.
    3. Shutdown: Cancel pending timers, then close database and Redis connections.

Run with:
    uv run uvicorn trade_engine.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from trade_engine.config import get_settings
from trade_engine.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
        pair_index=settings.pair_index_backend,
    )

    # 2. Initialize database and the inventory adapter
    from trade_engine.infrastructure.database import (
        SqlInventory,
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()
    inventory = SqlInventory(get_session_factory())

    # 3. Pair index: in-process by default, Redis when several processes share guilds
    from trade_engine.infrastructure.redis_client import (
        RedisDuplicateIndex,
        close_redis,
        init_redis,
    )
    from trade_engine.services.pair_index import DuplicateIndex

    if settings.pair_index_backend == "redis":
        pair_index = RedisDuplicateIndex(
            await init_redis(), ttl_seconds=settings.pair_index_ttl_seconds
        )
    else:
        pair_index = DuplicateIndex()

    # 4. Trade store
    from trade_engine.infrastructure.notifier import LogNotifier
    from trade_engine.services.expiration import SystemClock
    from trade_engine.services.session_store import TradeSessionStore

    store = TradeSessionStore(
        inventory,
        inventory,
        notifier=LogNotifier(),
        clock=SystemClock(),
        pair_index=pair_index,
        settings=settings,
    )
    app.state.trade_store = store

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down", live_trades=store.active_count)
    await store.shutdown()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Trade Engine",
        description=(
            "Two-party item trade negotiation for Discord: invitations, "
            "offers, locks, final acceptance, and atomic settlement."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from trade_engine.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from trade_engine.api.routes.health import router as health_router
    from trade_engine.api.routes.trades import router as trades_router

    app.include_router(health_router)
    app.include_router(trades_router)

    return app


# The app instance used by Uvicorn
app = create_app()
