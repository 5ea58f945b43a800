"""Item Offer Registry: per-session participant -> proposed items.

Re-submitting an offer replaces the previous one in full; it never merges.
Every item is checked against the participant's tradable inventory before
the new offer is stored, so a rejected submission leaves the old offer intact.

The registry is only ever called by TradeSessionStore while it holds the
session lock, so it keeps no locks of its own.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from trade_engine.domain.enums import TradeStatus
from trade_engine.domain.exceptions import (
    InvalidStateTransitionError,
    ItemNotTradableError,
    NotParticipantError,
    OfferLockedError,
    TradeValidationError,
)
from trade_engine.domain.models import ItemStack, Offer
from trade_engine.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from trade_engine.domain.models import TradeSession
    from trade_engine.domain.ports import InventoryQuery

logger = get_logger(__name__)


class ItemOfferRegistry:
    """Holds the current offer of each participant for every live session."""

    def __init__(self, inventory: InventoryQuery) -> None:
        self._inventory = inventory
        self._offers: dict[str, dict[str, Offer]] = {}

    def open(self, session: TradeSession) -> None:
        """Start tracking a session with empty offers for both participants."""
        self._offers[session.id] = {
            user_id: Offer(owner_id=user_id) for user_id in session.participants
        }

    def discard(self, session_id: str) -> dict[str, Offer]:
        """Stop tracking a session and return its final offers."""
        return self._offers.pop(session_id, {})

    def offers(self, session_id: str) -> dict[str, Offer]:
        return dict(self._offers.get(session_id, {}))

    def get(self, session_id: str, user_id: str) -> Offer:
        return self._offers.get(session_id, {}).get(user_id, Offer(owner_id=user_id))

    async def set_offer(
        self,
        session: TradeSession,
        actor_id: str,
        items: Iterable[ItemStack | tuple[str, int]],
    ) -> Offer:
        """Validate and store `actor_id`'s offer, replacing any previous one.

        Raises:
            NotParticipantError: The actor is not in the session.
            InvalidStateTransitionError: The session is not NEGOTIATING.
            OfferLockedError: The actor already locked their offer.
            ItemNotTradableError: An item is not tradable or not held in quantity.
        """
        if not session.involves(actor_id):
            raise NotParticipantError(session.id, actor_id)
        if session.status is not TradeStatus.NEGOTIATING:
            raise InvalidStateTransitionError(session.status.value, "PROPOSE_ITEMS")
        if session.state.is_locked(actor_id):
            raise OfferLockedError(actor_id)
        if session.id not in self._offers:
            raise TradeValidationError(f"Trade {session.id} has no open offers")

        try:
            offer = Offer.normalized(actor_id, items)
        except ValueError as err:
            raise TradeValidationError(str(err), code="INVALID_ITEMS") from err

        await check_available(self._inventory, actor_id, offer)

        self._offers[session.id][actor_id] = offer
        logger.info(
            "offer.replaced",
            session_id=session.id,
            actor=actor_id,
            items=offer.as_dict(),
        )
        return offer


async def check_available(inventory: InventoryQuery, user_id: str, offer: Offer) -> None:
    """Check every stack in `offer` against the user's tradable inventory.

    Raises:
        ItemNotTradableError: For the first stack that is not covered.
    """
    if offer.is_empty:
        return
    held: dict[str, int] = {}
    for stack in await inventory.list_tradable_items(user_id):
        held[stack.item_id] = held.get(stack.item_id, 0) + stack.quantity
    for stack in offer.items:
        available = held.get(stack.item_id, 0)
        if stack.quantity > available:
            raise ItemNotTradableError(user_id, stack.item_id, stack.quantity, available)
