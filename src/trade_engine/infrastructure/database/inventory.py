"""SQL-backed InventoryQuery and InventoryLedger.

transfer_atomic runs every leg inside one database transaction: each source
row is locked, checked and decremented, each destination row incremented.
Any shortfall or driver error rolls the whole transaction back, so callers
see either every leg applied or none.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from trade_engine.domain.models import ItemStack, TransferResult
from trade_engine.infrastructure.database.repositories import InventoryRepository
from trade_engine.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from trade_engine.domain.models import TransferLeg

logger = get_logger(__name__)


class _Shortfall(Exception):
    def __init__(self, leg: TransferLeg, available: int) -> None:
        super().__init__(
            f"{leg.from_user_id} holds {available} x {leg.item_id}, needs {leg.quantity}"
        )


class SqlInventory:
    """Inventory adapter over the inventory_items table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_tradable_items(self, user_id: str) -> list[ItemStack]:
        async with self._session_factory() as session:
            rows = await InventoryRepository(session).list_for_user(user_id, tradable_only=True)
        return [ItemStack(row.item_id, row.quantity) for row in rows]

    async def list_items(self, user_id: str) -> list[ItemStack]:
        """Every holding, tradable or not."""
        async with self._session_factory() as session:
            rows = await InventoryRepository(session).list_for_user(user_id)
        return [ItemStack(row.item_id, row.quantity) for row in rows]

    async def grant(self, user_id: str, item_id: str, quantity: int, tradable: bool = True) -> None:
        """Add items to a user's inventory (seeding and admin tooling)."""
        async with self._session_factory() as session, session.begin():
            await InventoryRepository(session).add(user_id, item_id, quantity, tradable=tradable)

    async def transfer_atomic(self, legs: Sequence[TransferLeg]) -> TransferResult:
        try:
            async with self._session_factory() as session, session.begin():
                repo = InventoryRepository(session)
                for leg in legs:
                    source = await repo.get_for_update(leg.from_user_id, leg.item_id)
                    available = source.quantity if source is not None else 0
                    if source is None or not source.tradable or available < leg.quantity:
                        raise _Shortfall(leg, available)
                    tradable = source.tradable
                    await repo.remove(source, leg.quantity)
                    await repo.add(leg.to_user_id, leg.item_id, leg.quantity, tradable=tradable)
        except _Shortfall as exc:
            logger.warning("inventory.transfer_rejected", reason=str(exc))
            return TransferResult.failure(str(exc))
        except SQLAlchemyError as exc:
            logger.error("inventory.transfer_failed", error=str(exc))
            return TransferResult.failure(f"database error: {exc}")

        logger.info("inventory.transfer_applied", legs=len(legs))
        return TransferResult.success(legs=len(legs))
