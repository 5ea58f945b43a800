"""Database infrastructure: engine, ORM models, repositories, and the SQL ledger."""

from trade_engine.infrastructure.database.engine import (
    close_db,
    get_engine,
    get_session_factory,
    init_db,
)
from trade_engine.infrastructure.database.inventory import SqlInventory
from trade_engine.infrastructure.database.orm_models import (
    Base,
    InventoryItem,
)
from trade_engine.infrastructure.database.repositories import InventoryRepository

__all__ = [
    "Base",
    "InventoryItem",
    "InventoryRepository",
    "SqlInventory",
    "close_db",
    "get_engine",
    "get_session_factory",
    "init_db",
]
