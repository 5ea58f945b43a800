"""Trade Session State Machine.

Two layers:

1. TradeLifecycle uses python-statemachine to enforce legal status-level
   transitions. No matter what the API or a timer asks for, an illegal event
   (e.g., ACCEPT_FINAL while NEGOTIATING) raises TransitionNotAllowed, which is
   translated into InvalidStateTransitionError.

2. transition() is a pure function (session, event) -> Transition. It checks
   the version precondition, the actor, and the participant flags, consults
   TradeLifecycle for the status move, and returns a new immutable session.
   It never touches the clock, the offers, or the inventory.

Transition table:
    REQUESTED    -> NEGOTIATING   (invitation_accepted)
    NEGOTIATING  -> NEGOTIATING   (items_proposed, offer_locked)
    NEGOTIATING  -> BOTH_LOCKED   (offers_locked, second lock)
    BOTH_LOCKED  -> BOTH_LOCKED   (final_accepted)
    BOTH_LOCKED  -> COMMITTED     (settled, after the ledger succeeded)
    BOTH_LOCKED  -> CANCELLED     (aborted, commit-time failure)
    any live     -> DECLINED      (declined)
    any live     -> CANCELLED     (cancelled)
    any live     -> EXPIRED       (expired, timer or late action)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from trade_engine.domain.enums import DeadlinePhase, TradeAction, TradeStatus
from trade_engine.domain.exceptions import (
    AlreadyAcceptedError,
    InvalidStateTransitionError,
    NotParticipantError,
    OfferLockedError,
    SessionClosedError,
    StaleVersionError,
    TradeValidationError,
)
from trade_engine.domain.models import TradeState

if TYPE_CHECKING:
    from collections.abc import Callable

    from trade_engine.domain.models import TradeSession


class TradeLifecycle(StateMachine):
    """State machine that guards trade session status transitions.

    Usage:
        sm = TradeLifecycle(current_status="NEGOTIATING")
        sm.offers_locked()   # transitions to BOTH_LOCKED
        sm.status            # "BOTH_LOCKED"
    """

    # --- States ---
    REQUESTED = State("REQUESTED", initial=True)
    NEGOTIATING = State("NEGOTIATING")
    BOTH_LOCKED = State("BOTH_LOCKED")
    COMMITTED = State("COMMITTED", final=True)
    DECLINED = State("DECLINED", final=True)
    CANCELLED = State("CANCELLED", final=True)
    EXPIRED = State("EXPIRED", final=True)

    # --- Events / Transitions ---

    # Invitation
    invitation_accepted = REQUESTED.to(NEGOTIATING)

    # Negotiation (flag changes that keep the status)
    items_proposed = NEGOTIATING.to.itself()
    offer_locked = NEGOTIATING.to.itself()
    offers_locked = NEGOTIATING.to(BOTH_LOCKED)

    # Final acceptance and settlement
    final_accepted = BOTH_LOCKED.to.itself()
    settled = BOTH_LOCKED.to(COMMITTED)
    aborted = BOTH_LOCKED.to(CANCELLED)

    # Exits available from every live state
    declined = REQUESTED.to(DECLINED) | NEGOTIATING.to(DECLINED) | BOTH_LOCKED.to(DECLINED)
    cancelled = REQUESTED.to(CANCELLED) | NEGOTIATING.to(CANCELLED) | BOTH_LOCKED.to(CANCELLED)
    expired = REQUESTED.to(EXPIRED) | NEGOTIATING.to(EXPIRED) | BOTH_LOCKED.to(EXPIRED)

    def __init__(self, current_status: str = "REQUESTED") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current TradeStatus value (e.g., "NEGOTIATING").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches TradeStatus enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a status transition and return the new status.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = TradeLifecycle(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status


# ---------------------------------------------------------------------------
# Pure transition function
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TradeEvent:
    """An event applied to a session.

    Attributes:
        action: What happened.
        actor_id: The participant behind the event (None for engine events).
        expected_version: The snapshot version the caller acted on, if known.
        reason: Free-text cause recorded on terminal outcomes.
    """

    action: TradeAction
    actor_id: str | None = None
    expected_version: int | None = None
    reason: str | None = None


@dataclass(frozen=True)
class Transition:
    """Result of applying an event.

    Attributes:
        session: The next session value (version already incremented).
        arm: Deadline phase the caller must arm, if the phase changed.
        settle: True when both participants have now accepted; the caller
            must run the commit before releasing the session.
    """

    session: TradeSession
    arm: DeadlinePhase | None = None
    settle: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.session.state.is_terminal


_PARTICIPANT_ACTIONS = frozenset(
    {
        TradeAction.ACCEPT_INVITATION,
        TradeAction.PROPOSE_ITEMS,
        TradeAction.LOCK,
        TradeAction.ACCEPT_FINAL,
        TradeAction.DECLINE,
        TradeAction.CANCEL,
    }
)


def transition(session: TradeSession, event: TradeEvent) -> Transition:
    """Apply `event` to `session` and return the next value.

    Raises:
        SessionClosedError: The session is already terminal.
        StaleVersionError: `expected_version` does not match.
        NotParticipantError: The actor is not one of the two participants.
        InvalidStateTransitionError: The event is illegal in the current status.
        OfferLockedError / AlreadyAcceptedError: Flag preconditions failed.
    """
    if session.state.is_terminal:
        raise SessionClosedError(session.id, session.status.value)

    if event.expected_version is not None and event.expected_version != session.version:
        raise StaleVersionError(session.id, event.expected_version, session.version)

    if event.action in _PARTICIPANT_ACTIONS:
        if event.actor_id is None or not session.involves(event.actor_id):
            raise NotParticipantError(session.id, str(event.actor_id))

    return _HANDLERS[event.action](session, event)


def _fire(session: TradeSession, event_name: str, action: TradeAction) -> TradeStatus:
    try:
        return TradeStatus(validate_transition(session.status.value, event_name))
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(session.status.value, action.value) from err


def _bump(session: TradeSession, state: TradeState, **changes: object) -> TradeSession:
    return session.evolve(state=state, version=session.version + 1, **changes)


def _close(
    session: TradeSession,
    state: TradeState,
    reason: str | None,
    bump: bool = True,
) -> TradeSession:
    # SETTLE and ABORT finish the ACCEPT_FINAL step that already bumped the version.
    return session.evolve(
        state=state,
        version=session.version + 1 if bump else session.version,
        generation=session.generation + 1,
        phase=None,
        deadline_at=None,
        reason=reason,
    )


def _accept_invitation(session: TradeSession, event: TradeEvent) -> Transition:
    if event.actor_id != session.receiver_id:
        raise TradeValidationError(
            "Only the invited user can accept this trade request", code="NOT_RECEIVER"
        )
    status = _fire(session, "invitation_accepted", event.action)
    nxt = _bump(
        session,
        TradeState(status),
        generation=session.generation + 1,
        phase=DeadlinePhase.NEGOTIATION,
    )
    return Transition(nxt, arm=DeadlinePhase.NEGOTIATION)


def _propose_items(session: TradeSession, event: TradeEvent) -> Transition:
    _fire(session, "items_proposed", event.action)
    if session.state.is_locked(event.actor_id):
        raise OfferLockedError(event.actor_id)
    return Transition(_bump(session, session.state))


def _lock(session: TradeSession, event: TradeEvent) -> Transition:
    _fire(session, "offer_locked", event.action)
    if session.state.is_locked(event.actor_id):
        raise OfferLockedError(event.actor_id)

    locked = session.state.locked | {event.actor_id}
    if len(locked) < 2:
        return Transition(_bump(session, TradeState(session.status, locked=locked)))

    status = _fire(session, "offers_locked", event.action)
    nxt = _bump(
        session,
        TradeState(status, locked=locked),
        generation=session.generation + 1,
        phase=DeadlinePhase.ACCEPTANCE,
    )
    return Transition(nxt, arm=DeadlinePhase.ACCEPTANCE)


def _accept_final(session: TradeSession, event: TradeEvent) -> Transition:
    _fire(session, "final_accepted", event.action)
    if session.state.has_accepted(event.actor_id):
        raise AlreadyAcceptedError(event.actor_id)

    accepted = session.state.accepted | {event.actor_id}
    state = TradeState(session.status, locked=session.state.locked, accepted=accepted)
    return Transition(_bump(session, state), settle=len(accepted) == 2)


def _decline(session: TradeSession, event: TradeEvent) -> Transition:
    status = _fire(session, "declined", event.action)
    state = TradeState(status, locked=session.state.locked, accepted=session.state.accepted)
    return Transition(_close(session, state, event.reason or f"Declined by {event.actor_id}"))


def _cancel(session: TradeSession, event: TradeEvent) -> Transition:
    status = _fire(session, "cancelled", event.action)
    state = TradeState(status, locked=session.state.locked, accepted=session.state.accepted)
    return Transition(_close(session, state, event.reason or f"Cancelled by {event.actor_id}"))


def _expire(session: TradeSession, event: TradeEvent) -> Transition:
    status = _fire(session, "expired", event.action)
    state = TradeState(status, locked=session.state.locked, accepted=session.state.accepted)
    phase = session.phase.value if session.phase else "UNKNOWN"
    return Transition(_close(session, state, event.reason or f"{phase} window elapsed"))


def _settle(session: TradeSession, event: TradeEvent) -> Transition:
    status = _fire(session, "settled", event.action)
    state = TradeState(status, locked=session.state.locked, accepted=session.state.accepted)
    return Transition(_close(session, state, event.reason, bump=False))


def _abort(session: TradeSession, event: TradeEvent) -> Transition:
    status = _fire(session, "aborted", event.action)
    state = TradeState(status, locked=session.state.locked, accepted=session.state.accepted)
    return Transition(_close(session, state, event.reason or "Commit aborted", bump=False))


_HANDLERS: dict[TradeAction, Callable[[TradeSession, TradeEvent], Transition]] = {
    TradeAction.ACCEPT_INVITATION: _accept_invitation,
    TradeAction.PROPOSE_ITEMS: _propose_items,
    TradeAction.LOCK: _lock,
    TradeAction.ACCEPT_FINAL: _accept_final,
    TradeAction.DECLINE: _decline,
    TradeAction.CANCEL: _cancel,
    TradeAction.EXPIRE: _expire,
    TradeAction.SETTLE: _settle,
    TradeAction.ABORT: _abort,
}
