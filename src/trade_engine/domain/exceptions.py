"""Domain exceptions for the trade negotiation engine.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

Propagation policy:
    - TradeValidationError and its subclasses are returned to the triggering
      caller only and never change session state.
    - PreconditionFailedError / ExternalCommitError raised at commit time have
      already moved the session to CANCELLED when the caller sees them.
"""


class TradeError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "TRADE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Validation Errors ---


class TradeValidationError(TradeError):
    """Raised when a request is not allowed for the actor or the current state."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR") -> None:
        super().__init__(message=message, code=code)


class NotParticipantError(TradeValidationError):
    """Raised when the actor is not one of the two trade participants."""

    def __init__(self, session_id: str, actor_id: str) -> None:
        super().__init__(
            message=f"User {actor_id} is not part of trade {session_id}",
            code="NOT_PARTICIPANT",
        )
        self.session_id = session_id
        self.actor_id = actor_id


class InvalidStateTransitionError(TradeValidationError):
    """Raised when an event is not legal from the session's current status.

    Example: LOCK while BOTH_LOCKED, ACCEPT_FINAL while NEGOTIATING.
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {attempted} is not allowed in {current_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted = attempted


class OfferLockedError(TradeValidationError):
    """Raised when a participant edits or re-locks an offer they already locked."""

    def __init__(self, actor_id: str) -> None:
        super().__init__(
            message=f"User {actor_id} has locked their offer and cannot change it",
            code="OFFER_LOCKED",
        )
        self.actor_id = actor_id


class AlreadyAcceptedError(TradeValidationError):
    """Raised when a participant accepts the final trade twice."""

    def __init__(self, actor_id: str) -> None:
        super().__init__(
            message=f"User {actor_id} has already accepted the trade",
            code="ALREADY_ACCEPTED",
        )
        self.actor_id = actor_id


class ItemNotTradableError(TradeValidationError):
    """Raised when an offered item is not tradable or not held in sufficient quantity."""

    def __init__(self, actor_id: str, item_id: str, requested: int, available: int) -> None:
        super().__init__(
            message=(
                f"User {actor_id} cannot offer {requested} x {item_id}: "
                f"{available} tradable in inventory"
            ),
            code="ITEM_NOT_TRADABLE",
        )
        self.actor_id = actor_id
        self.item_id = item_id
        self.requested = requested
        self.available = available


class SessionClosedError(TradeValidationError):
    """Raised when an action targets a session that already reached a terminal state."""

    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(
            message=f"Trade {session_id} is no longer active ({status})",
            code="SESSION_CLOSED",
        )
        self.session_id = session_id
        self.status = status


# --- Lookup Errors ---


class SessionNotFoundError(TradeError):
    """Raised when a session ID does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            message=f"Trade not found: {session_id}",
            code="SESSION_NOT_FOUND",
        )
        self.session_id = session_id


class InvitationNotFoundError(TradeError):
    """Raised when an invitation ID does not exist."""

    def __init__(self, invitation_id: str) -> None:
        super().__init__(
            message=f"Trade invitation not found: {invitation_id}",
            code="INVITATION_NOT_FOUND",
        )
        self.invitation_id = invitation_id


# --- Concurrency Errors ---


class DuplicateSessionError(TradeError):
    """Raised when the participant pair already has a live invitation or session."""

    def __init__(self, initiator_id: str, receiver_id: str, existing_id: str | None = None) -> None:
        super().__init__(
            message=f"A trade between {initiator_id} and {receiver_id} is already active",
            code="DUPLICATE_SESSION",
        )
        self.initiator_id = initiator_id
        self.receiver_id = receiver_id
        self.existing_id = existing_id


class PreconditionFailedError(TradeError):
    """Raised on a stale version, or when offered items are gone at commit time."""

    def __init__(self, message: str, reason: str = "STALE_VERSION") -> None:
        super().__init__(message=message, code="PRECONDITION_FAILED")
        self.reason = reason


class StaleVersionError(PreconditionFailedError):
    """Raised when a request was computed from an outdated snapshot."""

    def __init__(self, session_id: str, expected: int, actual: int) -> None:
        super().__init__(
            message=(
                f"Trade {session_id} changed (version {actual}, request was for "
                f"{expected}); refresh and try again"
            ),
            reason="STALE_VERSION",
        )
        self.expected = expected
        self.actual = actual


class ExpiredError(TradeError):
    """Raised when an action arrives after the relevant deadline already passed."""

    def __init__(self, target_id: str) -> None:
        super().__init__(
            message=f"Trade {target_id} has expired",
            code="EXPIRED",
        )
        self.target_id = target_id


# --- Settlement Errors ---


class ExternalCommitError(TradeError):
    """Raised when the inventory ledger rejects, errors, or times out during commit."""

    def __init__(self, message: str, session_id: str | None = None) -> None:
        super().__init__(message=message, code="EXTERNAL_COMMIT_FAILURE")
        self.session_id = session_id
