"""Immutable value objects for trade sessions.

A session is never mutated in place: every accepted event produces a new
TradeSession through the transition function, and the store swaps the
reference while holding the session's lock.

Participant flags (locked / accepted) live inside TradeState together with
the status, and TradeState refuses to be built in a combination the lifecycle
cannot reach (e.g. accepted but not locked, or accepted while NEGOTIATING).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from trade_engine.domain.enums import (
    DeadlinePhase,
    TradeStatus,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from datetime import datetime


def pair_key(user_a: str, user_b: str) -> tuple[str, str]:
    """Unordered participant pair key: (min, max)."""
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


@dataclass(frozen=True)
class ItemStack:
    """A quantity of one catalog item."""

    item_id: str
    quantity: int

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError(f"Quantity for {self.item_id} must be positive, got {self.quantity}")


@dataclass(frozen=True)
class Offer:
    """The items one participant currently proposes to give up."""

    owner_id: str
    items: tuple[ItemStack, ...] = ()

    @classmethod
    def normalized(cls, owner_id: str, items: Iterable[ItemStack | tuple[str, int]]) -> Offer:
        """Build an offer, coalescing repeated item ids in first-seen order."""
        totals: dict[str, int] = {}
        for entry in items:
            stack = entry if isinstance(entry, ItemStack) else ItemStack(*entry)
            totals[stack.item_id] = totals.get(stack.item_id, 0) + stack.quantity
        return cls(
            owner_id=owner_id,
            items=tuple(ItemStack(item_id, qty) for item_id, qty in totals.items()),
        )

    def as_dict(self) -> dict[str, int]:
        return {stack.item_id: stack.quantity for stack in self.items}

    @property
    def is_empty(self) -> bool:
        return not self.items


@dataclass(frozen=True)
class TradeState:
    """Status plus per-participant lock/accept flags, validated as one unit."""

    status: TradeStatus
    locked: frozenset[str] = frozenset()
    accepted: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not self.accepted <= self.locked:
            raise ValueError("A participant cannot accept without locking first")
        if len(self.locked) > 2:
            raise ValueError("A trade has exactly two participants")

        status = self.status
        if status is TradeStatus.REQUESTED and (self.locked or self.accepted):
            raise ValueError("REQUESTED trades carry no flags")
        if status is TradeStatus.NEGOTIATING and (len(self.locked) == 2 or self.accepted):
            raise ValueError("NEGOTIATING allows at most one lock and no acceptances")
        if status is TradeStatus.BOTH_LOCKED and len(self.locked) != 2:
            raise ValueError("BOTH_LOCKED requires both locks")
        fully_accepted = len(self.locked) == 2 and self.accepted == self.locked
        if status is TradeStatus.COMMITTED and not fully_accepted:
            raise ValueError("COMMITTED requires both locks and both acceptances")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_locked(self, user_id: str) -> bool:
        return user_id in self.locked

    def has_accepted(self, user_id: str) -> bool:
        return user_id in self.accepted


@dataclass(frozen=True)
class Invitation:
    """A raw trade request awaiting the receiver's response."""

    id: str
    initiator_id: str
    receiver_id: str
    created_at: datetime
    deadline_at: datetime
    generation: int = 0

    @property
    def pair(self) -> tuple[str, str]:
        return pair_key(self.initiator_id, self.receiver_id)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.initiator_id, self.receiver_id)

    def as_session(self) -> TradeSession:
        """The REQUESTED-state session this invitation stands for."""
        return TradeSession(
            id=self.id,
            initiator_id=self.initiator_id,
            receiver_id=self.receiver_id,
            state=TradeState(TradeStatus.REQUESTED),
            created_at=self.created_at,
            deadline_at=self.deadline_at,
            phase=DeadlinePhase.INVITATION,
            generation=self.generation,
        )


@dataclass(frozen=True)
class TradeSession:
    """Authoritative state of one negotiation between two participants.

    Attributes:
        version: Incremented by exactly one on every accepted mutation.
        generation: Bumped on every phase change and terminal transition;
            timers armed under an older generation are ignored.
        phase: The deadline phase currently armed (None once terminal).
        reason: Human-readable cause for terminal outcomes other than success.
    """

    id: str
    initiator_id: str
    receiver_id: str
    state: TradeState
    created_at: datetime
    deadline_at: datetime | None = None
    phase: DeadlinePhase | None = None
    version: int = 0
    generation: int = 0
    reason: str | None = None

    @property
    def status(self) -> TradeStatus:
        return self.state.status

    @property
    def participants(self) -> tuple[str, str]:
        return (self.initiator_id, self.receiver_id)

    @property
    def pair(self) -> tuple[str, str]:
        return pair_key(self.initiator_id, self.receiver_id)

    def involves(self, user_id: str) -> bool:
        return user_id in self.participants

    def counterparty(self, user_id: str) -> str:
        return self.receiver_id if user_id == self.initiator_id else self.initiator_id

    def evolve(self, **changes: object) -> TradeSession:
        return replace(self, **changes)


@dataclass(frozen=True)
class TradeSnapshot:
    """Read-only view of a session handed to callers and the NotificationPort."""

    session_id: str
    initiator_id: str
    receiver_id: str
    status: TradeStatus
    version: int
    initiator_locked: bool
    receiver_locked: bool
    initiator_accepted: bool
    receiver_accepted: bool
    initiator_offer: tuple[ItemStack, ...]
    receiver_offer: tuple[ItemStack, ...]
    created_at: datetime
    deadline_at: datetime | None
    reason: str | None = None

    @classmethod
    def capture(cls, session: TradeSession, offers: Mapping[str, Offer]) -> TradeSnapshot:
        state = session.state
        empty = ()
        initiator_offer = offers.get(session.initiator_id)
        receiver_offer = offers.get(session.receiver_id)
        return cls(
            session_id=session.id,
            initiator_id=session.initiator_id,
            receiver_id=session.receiver_id,
            status=session.status,
            version=session.version,
            initiator_locked=state.is_locked(session.initiator_id),
            receiver_locked=state.is_locked(session.receiver_id),
            initiator_accepted=state.has_accepted(session.initiator_id),
            receiver_accepted=state.has_accepted(session.receiver_id),
            initiator_offer=initiator_offer.items if initiator_offer else empty,
            receiver_offer=receiver_offer.items if receiver_offer else empty,
            created_at=session.created_at,
            deadline_at=session.deadline_at,
            reason=session.reason,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class TransferLeg:
    """Move `quantity` of `item_id` from one user to another."""

    from_user_id: str
    to_user_id: str
    item_id: str
    quantity: int

    def reversed(self) -> TransferLeg:
        return TransferLeg(
            from_user_id=self.to_user_id,
            to_user_id=self.from_user_id,
            item_id=self.item_id,
            quantity=self.quantity,
        )


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a ledger call."""

    ok: bool
    reason: str | None = None
    details: dict = field(default_factory=dict)

    @classmethod
    def success(cls, **details: object) -> TransferResult:
        return cls(ok=True, details=dict(details))

    @classmethod
    def failure(cls, reason: str, **details: object) -> TransferResult:
        return cls(ok=False, reason=reason, details=dict(details))
