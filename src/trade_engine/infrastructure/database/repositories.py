"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from trade_engine.infrastructure.database.orm_models import InventoryItem

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class InventoryRepository:
    """Data access for inventory holdings."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_for_user(self, user_id: str, tradable_only: bool = False) -> list[InventoryItem]:
        """Fetch every holding of a user, ordered by item id."""
        stmt = select(InventoryItem).where(
            InventoryItem.user_id == user_id,
            InventoryItem.quantity > 0,
        )
        if tradable_only:
            stmt = stmt.where(InventoryItem.tradable.is_(True))
        result = await self._session.execute(stmt.order_by(InventoryItem.item_id))
        return list(result.scalars().all())

    async def get_for_update(self, user_id: str, item_id: str) -> InventoryItem | None:
        """Fetch one holding with a row lock (no-op on SQLite)."""
        result = await self._session.execute(
            select(InventoryItem)
            .where(InventoryItem.user_id == user_id, InventoryItem.item_id == item_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def add(
        self, user_id: str, item_id: str, quantity: int, tradable: bool = True
    ) -> InventoryItem:
        """Increase a holding, creating the row if needed."""
        row = await self.get_for_update(user_id, item_id)
        if row is None:
            row = InventoryItem(
                user_id=user_id, item_id=item_id, quantity=quantity, tradable=tradable
            )
            self._session.add(row)
        else:
            row.quantity += quantity
        await self._session.flush()
        return row

    async def remove(self, row: InventoryItem, quantity: int) -> None:
        """Decrease a holding, deleting the row when it reaches zero."""
        row.quantity -= quantity
        if row.quantity == 0:
            await self._session.delete(row)
        await self._session.flush()
