"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the trade store
and configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

from trade_engine.config import Settings, get_settings

if TYPE_CHECKING:
    from trade_engine.services.session_store import TradeSessionStore


def get_trade_store(request: Request) -> TradeSessionStore:
    """Provide the process-wide TradeSessionStore built during lifespan startup."""
    return request.app.state.trade_store


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
