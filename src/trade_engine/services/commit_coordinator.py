"""Commit Coordinator: all-or-nothing settlement of a fully accepted trade.

Called by TradeSessionStore from inside the serialized BOTH_LOCKED -> COMMITTED
step, while the session lock is held. The coordinator:

    1. Re-validates that every offered stack is still tradable and held in
       sufficient quantity by its owner (inventories drift between the offer
       and the commit).
    2. Builds one transfer leg per stack, in both directions.
    3. Calls the ledger's atomic multi-leg transfer under a timeout.

It never changes session state itself; the store maps the outcome to
COMMITTED or CANCELLED.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from trade_engine.domain.exceptions import (
    ExternalCommitError,
    ItemNotTradableError,
    PreconditionFailedError,
)
from trade_engine.domain.models import Offer, TransferLeg, TransferResult
from trade_engine.logging_config import get_logger
from trade_engine.services.offer_registry import check_available

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from trade_engine.domain.models import TradeSession
    from trade_engine.domain.ports import InventoryLedger, InventoryQuery, SingleLegLedger

logger = get_logger(__name__)


def build_legs(session: TradeSession, offers: Mapping[str, Offer]) -> list[TransferLeg]:
    """One leg per offered stack; initiator's items first."""
    legs: list[TransferLeg] = []
    for owner_id in session.participants:
        offer = offers.get(owner_id) or Offer(owner_id=owner_id)
        recipient = session.counterparty(owner_id)
        legs.extend(
            TransferLeg(
                from_user_id=owner_id,
                to_user_id=recipient,
                item_id=stack.item_id,
                quantity=stack.quantity,
            )
            for stack in offer.items
        )
    return legs


class CommitCoordinator:
    """Re-validates and settles a trade through the inventory ledger."""

    def __init__(
        self,
        inventory: InventoryQuery,
        ledger: InventoryLedger,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._inventory = inventory
        self._ledger = ledger
        self._timeout = timeout_seconds

    async def commit(self, session: TradeSession, offers: Mapping[str, Offer]) -> TransferResult:
        """Settle both offers or nothing.

        Raises:
            PreconditionFailedError: An offered item is no longer available.
                The ledger was not called.
            ExternalCommitError: The inventory lookup raised, or the ledger
                rejected, raised or timed out.
        """
        for owner_id in session.participants:
            offer = offers.get(owner_id) or Offer(owner_id=owner_id)
            try:
                await check_available(self._inventory, owner_id, offer)
            except ItemNotTradableError as err:
                logger.warning(
                    "commit.revalidation_failed",
                    session_id=session.id,
                    owner=owner_id,
                    item_id=err.item_id,
                    requested=err.requested,
                    available=err.available,
                )
                raise PreconditionFailedError(
                    f"Trade failed: {err.message}", reason="ITEM_UNAVAILABLE"
                ) from err
            except Exception as err:
                logger.error(
                    "commit.inventory_lookup_failed", session_id=session.id, error=str(err)
                )
                raise ExternalCommitError(
                    f"Inventory lookup failed: {err}", session_id=session.id
                ) from err

        legs = build_legs(session, offers)
        if not legs:
            logger.info("commit.nothing_to_transfer", session_id=session.id)
            return TransferResult.success(legs=0)

        try:
            result = await asyncio.wait_for(
                self._ledger.transfer_atomic(legs), timeout=self._timeout
            )
        except TimeoutError as err:
            logger.error("commit.ledger_timeout", session_id=session.id, timeout=self._timeout)
            raise ExternalCommitError(
                f"Inventory ledger timed out after {self._timeout}s", session_id=session.id
            ) from err
        except Exception as err:
            logger.error("commit.ledger_error", session_id=session.id, error=str(err))
            raise ExternalCommitError(
                f"Inventory ledger error: {err}", session_id=session.id
            ) from err

        if not result.ok:
            logger.warning("commit.ledger_rejected", session_id=session.id, reason=result.reason)
            raise ExternalCommitError(
                f"Inventory ledger rejected the transfer: {result.reason}",
                session_id=session.id,
            )

        logger.info("commit.ledger_applied", session_id=session.id, legs=len(legs))
        return result


class CompensatingLedger:
    """Offers transfer_atomic on top of a ledger that moves one leg at a time.

    Legs are applied in order. If any leg fails (result or exception), every
    leg already applied is reversed, newest first, before returning. Legs whose
    reversal fails are reported together in one ExternalCommitError.
    """

    def __init__(self, ledger: SingleLegLedger) -> None:
        self._ledger = ledger

    async def transfer_atomic(self, legs: Sequence[TransferLeg]) -> TransferResult:
        applied: list[TransferLeg] = []
        try:
            for index, leg in enumerate(legs):
                try:
                    result = await self._ledger.transfer(leg)
                except Exception as exc:
                    result = TransferResult.failure(str(exc))
                if not result.ok:
                    logger.warning(
                        "ledger.leg_failed",
                        leg=index,
                        item_id=leg.item_id,
                        reason=result.reason,
                    )
                    await self._roll_back(applied)
                    return TransferResult.failure(
                        f"leg {index} ({leg.item_id}) failed: {result.reason}",
                        rolled_back=len(applied),
                    )
                applied.append(leg)
        except asyncio.CancelledError:
            await asyncio.shield(self._roll_back(applied))
            raise
        return TransferResult.success(legs=len(applied))

    async def _roll_back(self, applied: list[TransferLeg]) -> None:
        """Reverse every applied leg, newest first, even after a failed reversal."""
        stranded: list[TransferLeg] = []
        for leg in reversed(applied):
            try:
                result = await self._ledger.transfer(leg.reversed())
            except Exception as exc:
                result = TransferResult.failure(str(exc))
            if not result.ok:
                logger.error(
                    "ledger.rollback_failed",
                    item_id=leg.item_id,
                    from_user=leg.to_user_id,
                    to_user=leg.from_user_id,
                    reason=result.reason,
                )
                stranded.append(leg)

        if stranded:
            items = ", ".join(f"{leg.quantity}x {leg.item_id}" for leg in stranded)
            raise ExternalCommitError(
                f"Rollback failed for {len(stranded)} of {len(applied)} legs: {items}"
            )
        if applied:
            logger.info("ledger.rolled_back", legs=len(applied))
