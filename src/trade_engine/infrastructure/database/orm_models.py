"""SQLAlchemy 2.0 ORM models for the reference inventory ledger.

One table:
    inventory_items: how many of each catalog item a user holds, and whether
                      that item may currently leave their inventory by trade.

Design decisions:
    - Composite primary key (user_id, item_id): one row per holding.
    - Quantities never go negative (CHECK constraint); rows that reach zero
      are deleted by the ledger.
    - Discord snowflakes are stored as strings.
    - Portable column types only, so tests can run on SQLite.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class InventoryItem(Base):
    """A stack of one item held by one user."""

    __tablename__ = "inventory_items"

    user_id: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        comment="Discord user id of the holder",
    )
    item_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Catalog item id",
    )
    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )
    tradable: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="False for equipped, bound, or otherwise untradable items",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_inventory_non_negative"),
        Index("idx_inventory_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<InventoryItem user={self.user_id} item={self.item_id} "
            f"qty={self.quantity} tradable={self.tradable}>"
        )
