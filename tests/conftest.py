"""Shared test fixtures for the trade engine test suite.

Provides:
    - A controllable clock
    - An in-memory inventory that plays InventoryQuery, InventoryLedger and
      SingleLegLedger, with fault injection for commit tests
    - A notifier that records every rendered snapshot
    - A TradeSessionStore wired to the above
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from trade_engine.config import Settings
from trade_engine.domain.models import ItemStack, TransferResult
from trade_engine.services.session_store import TradeSessionStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from trade_engine.domain.models import TradeSnapshot, TransferLeg

ALICE = "111111111111111111"
BOB = "222222222222222222"
CAROL = "333333333333333333"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeInventory:
    """Dict-backed inventory.

    Knobs:
        reject_with: transfer_atomic returns a failure with this reason.
        raise_exc: transfer_atomic raises this exception.
        delay: seconds transfer_atomic sleeps before doing anything.
        fail_leg_call: 1-based index of the transfer() call that fails.
    """

    def __init__(self) -> None:
        self.holdings: dict[str, dict[str, int]] = {}
        self.untradable: set[tuple[str, str]] = set()
        self.atomic_calls: list[list[TransferLeg]] = []
        self.leg_calls: list[TransferLeg] = []
        self.reject_with: str | None = None
        self.raise_exc: Exception | None = None
        self.delay: float = 0.0
        self.fail_leg_call: int | None = None

    def grant(self, user_id: str, item_id: str, quantity: int, tradable: bool = True) -> None:
        held = self.holdings.setdefault(user_id, {})
        held[item_id] = held.get(item_id, 0) + quantity
        if not tradable:
            self.untradable.add((user_id, item_id))

    def take(self, user_id: str, item_id: str, quantity: int | None = None) -> None:
        held = self.holdings.get(user_id, {})
        if quantity is None or held.get(item_id, 0) <= quantity:
            held.pop(item_id, None)
        else:
            held[item_id] -= quantity

    def count(self, user_id: str, item_id: str) -> int:
        return self.holdings.get(user_id, {}).get(item_id, 0)

    async def list_tradable_items(self, user_id: str) -> list[ItemStack]:
        return [
            ItemStack(item_id, qty)
            for item_id, qty in self.holdings.get(user_id, {}).items()
            if qty > 0 and (user_id, item_id) not in self.untradable
        ]

    async def transfer_atomic(self, legs: Sequence[TransferLeg]) -> TransferResult:
        self.atomic_calls.append(list(legs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.reject_with is not None:
            return TransferResult.failure(self.reject_with)

        staged = {user: dict(items) for user, items in self.holdings.items()}
        for leg in legs:
            source = staged.setdefault(leg.from_user_id, {})
            if source.get(leg.item_id, 0) < leg.quantity:
                return TransferResult.failure(f"{leg.from_user_id} lacks {leg.item_id}")
            source[leg.item_id] -= leg.quantity
            if source[leg.item_id] == 0:
                del source[leg.item_id]
            target = staged.setdefault(leg.to_user_id, {})
            target[leg.item_id] = target.get(leg.item_id, 0) + leg.quantity
        self.holdings = staged
        return TransferResult.success(legs=len(legs))

    async def transfer(self, leg: TransferLeg) -> TransferResult:
        self.leg_calls.append(leg)
        if self.fail_leg_call is not None and len(self.leg_calls) == self.fail_leg_call:
            return TransferResult.failure("ledger refused leg")
        if self.count(leg.from_user_id, leg.item_id) < leg.quantity:
            return TransferResult.failure(f"{leg.from_user_id} lacks {leg.item_id}")
        self.take(leg.from_user_id, leg.item_id, leg.quantity)
        self.grant(leg.to_user_id, leg.item_id, leg.quantity)
        return TransferResult.success()


class RecordingNotifier:
    """Collects (session_id, snapshot) pairs; optionally fails every render."""

    def __init__(self, fail: bool = False) -> None:
        self.rendered: list[tuple[str, TradeSnapshot]] = []
        self.fail = fail

    async def render(self, session_id: str, snapshot: TradeSnapshot) -> None:
        if self.fail:
            raise RuntimeError("discord unavailable")
        self.rendered.append((session_id, snapshot))

    @property
    def statuses(self) -> list[str]:
        return [snap.status.value for _, snap in self.rendered]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def make_settings(**overrides: object) -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, **overrides)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def inventory() -> FakeInventory:
    inv = FakeInventory()
    inv.grant(ALICE, "diamond_sword", 1)
    inv.grant(ALICE, "health_potion", 5)
    inv.grant(BOB, "gold_coin", 100)
    inv.grant(BOB, "iron_shield", 1)
    inv.grant(BOB, "bound_amulet", 1, tradable=False)
    return inv


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings() -> Settings:
    return make_settings(trade_commit_timeout_seconds=0.2)


@pytest.fixture
async def store(
    inventory: FakeInventory,
    notifier: RecordingNotifier,
    clock: FakeClock,
    settings: Settings,
) -> AsyncIterator[TradeSessionStore]:
    trade_store = TradeSessionStore(
        inventory,
        inventory,
        notifier=notifier,
        clock=clock,
        settings=settings,
    )
    yield trade_store
    await trade_store.shutdown()


@pytest.fixture
async def negotiating(store: TradeSessionStore) -> str:
    """Id of a session ALICE opened with BOB and BOB accepted (version 1)."""
    invitation = await store.create_invitation(ALICE, BOB)
    await store.accept_invitation(invitation.id, BOB)
    return invitation.id


@pytest.fixture
async def both_locked(store: TradeSessionStore, negotiating: str) -> str:
    """Sword for 50 gold, both offers locked (version 5)."""
    await store.propose_items(negotiating, ALICE, [("diamond_sword", 1)])
    await store.propose_items(negotiating, BOB, [("gold_coin", 50)])
    await store.lock(negotiating, ALICE)
    await store.lock(negotiating, BOB)
    return negotiating
