"""Domain enumerations for the trade negotiation engine.

These enums define the canonical states and event kinds used throughout the
system. They are framework-agnostic (no FastAPI, no SQLAlchemy imports).
"""

import enum


class TradeStatus(enum.StrEnum):
    """Lifecycle states of a trade session.

    Status-level transitions are enforced by the TradeLifecycle guard.
    See domain/state_machine.py for the transition table.
    """

    REQUESTED = "REQUESTED"
    NEGOTIATING = "NEGOTIATING"
    BOTH_LOCKED = "BOTH_LOCKED"
    COMMITTED = "COMMITTED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        TradeStatus.COMMITTED,
        TradeStatus.DECLINED,
        TradeStatus.CANCELLED,
        TradeStatus.EXPIRED,
    }
)


class TradeAction(enum.StrEnum):
    """Events that can be applied to a session.

    Participant actions carry an actor id. EXPIRE, SETTLE and ABORT are raised
    by the engine itself (timer firing and commit outcome).
    """

    ACCEPT_INVITATION = "ACCEPT_INVITATION"
    PROPOSE_ITEMS = "PROPOSE_ITEMS"
    LOCK = "LOCK"
    ACCEPT_FINAL = "ACCEPT_FINAL"
    DECLINE = "DECLINE"
    CANCEL = "CANCEL"

    EXPIRE = "EXPIRE"
    SETTLE = "SETTLE"
    ABORT = "ABORT"


class DeadlinePhase(enum.StrEnum):
    """Timed phases of a trade. Each is armed exactly once on entry."""

    INVITATION = "INVITATION"
    NEGOTIATION = "NEGOTIATION"
    ACCEPTANCE = "ACCEPTANCE"

