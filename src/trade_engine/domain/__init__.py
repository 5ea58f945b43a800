"""Domain layer: pure business logic with zero framework dependencies."""

from trade_engine.domain.enums import (
    DeadlinePhase,
    TradeAction,
    TradeStatus,
)
from trade_engine.domain.exceptions import (
    DuplicateSessionError,
    ExpiredError,
    ExternalCommitError,
    InvalidStateTransitionError,
    PreconditionFailedError,
    SessionNotFoundError,
    TradeError,
    TradeValidationError,
)
from trade_engine.domain.models import (
    Invitation,
    ItemStack,
    Offer,
    TradeSession,
    TradeSnapshot,
    TradeState,
    TransferLeg,
    TransferResult,
)
from trade_engine.domain.state_machine import (
    TradeEvent,
    TradeLifecycle,
    Transition,
    transition,
    validate_transition,
)

__all__ = [
    "DeadlinePhase",
    "TradeAction",
    "TradeStatus",
    "DuplicateSessionError",
    "ExpiredError",
    "ExternalCommitError",
    "InvalidStateTransitionError",
    "PreconditionFailedError",
    "SessionNotFoundError",
    "TradeError",
    "TradeValidationError",
    "Invitation",
    "ItemStack",
    "Offer",
    "TradeSession",
    "TradeSnapshot",
    "TradeState",
    "TransferLeg",
    "TransferResult",
    "TradeEvent",
    "TradeLifecycle",
    "Transition",
    "transition",
    "validate_transition",
]
