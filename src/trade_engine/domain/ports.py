"""Collaborator protocols consumed by the trade engine.

These are Protocols (structural subtyping) so adapters don't need to inherit
from a base class, they just need to match the shape.

The domain layer has ZERO imports from SQLAlchemy, Redis, or Discord.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from trade_engine.domain.models import (
        ItemStack,
        TradeSnapshot,
        TransferLeg,
        TransferResult,
    )


@runtime_checkable
class InventoryQuery(Protocol):
    """Read side of the inventory: what a user may currently trade."""

    async def list_tradable_items(self, user_id: str) -> Sequence[ItemStack]:
        """Return every tradable item the user holds, with held quantity."""
        ...


@runtime_checkable
class InventoryLedger(Protocol):
    """Write side of the inventory: the item-ownership ledger.

    Concrete implementations:
        - infrastructure/database/inventory.py (SqlInventory, one DB transaction)
        - services/commit_coordinator.py (CompensatingLedger over single legs)
    """

    async def transfer_atomic(self, legs: Sequence[TransferLeg]) -> TransferResult:
        """Apply every leg or none of them."""
        ...


@runtime_checkable
class SingleLegLedger(Protocol):
    """A ledger that can only move one leg at a time."""

    async def transfer(self, leg: TransferLeg) -> TransferResult:
        ...


@runtime_checkable
class NotificationPort(Protocol):
    """Renders a session snapshot outward (embeds, DMs, websockets).

    Best-effort: failures are logged by the caller and never affect state.
    """

    async def render(self, session_id: str, snapshot: TradeSnapshot) -> None:
        ...


@runtime_checkable
class Clock(Protocol):
    def now(self) -> datetime:
        ...


@runtime_checkable
class PairIndex(Protocol):
    """Unordered-pair -> owner id index with atomic check-and-insert."""

    async def claim(self, key: tuple[str, str], owner_id: str) -> str | None:
        """Insert `owner_id` for `key` if absent.

        Returns None on success, or the id already holding the key.
        """
        ...

    async def release(self, key: tuple[str, str], owner_id: str) -> bool:
        """Remove the entry only if it is still held by `owner_id`."""
        ...

    async def lookup(self, key: tuple[str, str]) -> str | None:
        ...
