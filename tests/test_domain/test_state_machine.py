"""Tests for the TradeLifecycle guard and the pure transition function.

These tests verify that:
    1. All valid status transitions are allowed.
    2. Invalid transitions are blocked.
    3. validate_transition works as a one-shot check.
    4. transition() enforces version, actor and flag preconditions and bumps
       version / generation exactly as documented.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
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
from trade_engine.domain.models import TradeSession, TradeState
from trade_engine.domain.state_machine import (
    TradeEvent,
    TradeLifecycle,
    transition,
    validate_transition,
)

NOW = datetime(2026, 1, 1, tzinfo=UTC)


def _session(
    status: TradeStatus = TradeStatus.NEGOTIATING,
    locked: frozenset[str] = frozenset(),
    accepted: frozenset[str] = frozenset(),
    version: int = 1,
    generation: int = 2,
) -> TradeSession:
    return TradeSession(
        id="trade-1",
        initiator_id="alice",
        receiver_id="bob",
        state=TradeState(status, locked=locked, accepted=accepted),
        created_at=NOW,
        phase=DeadlinePhase.NEGOTIATION,
        version=version,
        generation=generation,
    )


def _event(action: TradeAction, actor: str | None = "alice", **kw: object) -> TradeEvent:
    return TradeEvent(action, actor_id=actor, **kw)


# ---------------------------------------------------------------------------
# TradeLifecycle
# ---------------------------------------------------------------------------


class TestHappyPath:
    """Test the full lifecycle: REQUESTED -> COMMITTED."""

    def test_full_lifecycle(self) -> None:
        sm = TradeLifecycle("REQUESTED")
        assert sm.status == "REQUESTED"

        sm.invitation_accepted()
        assert sm.status == "NEGOTIATING"

        sm.items_proposed()
        sm.offer_locked()
        assert sm.status == "NEGOTIATING"

        sm.offers_locked()
        assert sm.status == "BOTH_LOCKED"

        sm.final_accepted()
        assert sm.status == "BOTH_LOCKED"

        sm.settled()
        assert sm.status == "COMMITTED"


class TestExits:
    @pytest.mark.parametrize("status", ["REQUESTED", "NEGOTIATING", "BOTH_LOCKED"])
    @pytest.mark.parametrize(
        ("event", "target"),
        [("declined", "DECLINED"), ("cancelled", "CANCELLED"), ("expired", "EXPIRED")],
    )
    def test_every_live_state_can_exit(self, status: str, event: str, target: str) -> None:
        assert validate_transition(status, event) == target

    def test_abort_only_from_both_locked(self) -> None:
        assert validate_transition("BOTH_LOCKED", "aborted") == "CANCELLED"
        with pytest.raises(TransitionNotAllowed):
            validate_transition("NEGOTIATING", "aborted")


class TestInvalidTransitions:
    def test_cannot_accept_final_while_negotiating(self) -> None:
        sm = TradeLifecycle("NEGOTIATING")
        with pytest.raises(TransitionNotAllowed):
            sm.final_accepted()

    def test_cannot_propose_after_both_locked(self) -> None:
        sm = TradeLifecycle("BOTH_LOCKED")
        with pytest.raises(TransitionNotAllowed):
            sm.items_proposed()

    def test_cannot_settle_from_negotiating(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("NEGOTIATING", "settled")

    def test_terminal_states_have_no_events(self) -> None:
        for status in ("COMMITTED", "DECLINED", "CANCELLED", "EXPIRED"):
            assert TradeLifecycle(status).get_allowed_events() == []

    def test_unknown_status_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            TradeLifecycle("PENDING")

    def test_unknown_event_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            validate_transition("NEGOTIATING", "teleport")


class TestAllowedEvents:
    def test_requested_events(self) -> None:
        events = set(TradeLifecycle("REQUESTED").get_allowed_events())
        assert events == {"invitation_accepted", "declined", "cancelled", "expired"}

    def test_both_locked_events(self) -> None:
        events = set(TradeLifecycle("BOTH_LOCKED").get_allowed_events())
        assert "final_accepted" in events
        assert "settled" in events
        assert "items_proposed" not in events


# ---------------------------------------------------------------------------
# transition()
# ---------------------------------------------------------------------------


class TestInvitationAcceptance:
    def test_receiver_accepts(self) -> None:
        session = _session(TradeStatus.REQUESTED, version=0, generation=1)
        result = transition(session, _event(TradeAction.ACCEPT_INVITATION, "bob"))
        assert result.session.status is TradeStatus.NEGOTIATING
        assert result.session.version == 1
        assert result.session.generation == 2
        assert result.arm is DeadlinePhase.NEGOTIATION

    def test_initiator_cannot_accept_own_invitation(self) -> None:
        session = _session(TradeStatus.REQUESTED, version=0)
        with pytest.raises(TradeValidationError) as exc_info:
            transition(session, _event(TradeAction.ACCEPT_INVITATION, "alice"))
        assert exc_info.value.code == "NOT_RECEIVER"


class TestNegotiation:
    def test_propose_bumps_version_only(self) -> None:
        session = _session()
        result = transition(session, _event(TradeAction.PROPOSE_ITEMS))
        assert result.session.version == 2
        assert result.session.generation == session.generation
        assert result.arm is None

    def test_first_lock_stays_negotiating(self) -> None:
        result = transition(_session(), _event(TradeAction.LOCK))
        assert result.session.status is TradeStatus.NEGOTIATING
        assert result.session.state.is_locked("alice")
        assert result.arm is None

    def test_second_lock_moves_to_both_locked_and_arms_acceptance(self) -> None:
        session = _session(locked=frozenset({"alice"}))
        result = transition(session, _event(TradeAction.LOCK, "bob"))
        assert result.session.status is TradeStatus.BOTH_LOCKED
        assert result.session.generation == session.generation + 1
        assert result.session.phase is DeadlinePhase.ACCEPTANCE
        assert result.arm is DeadlinePhase.ACCEPTANCE

    def test_relock_rejected(self) -> None:
        session = _session(locked=frozenset({"alice"}))
        with pytest.raises(OfferLockedError):
            transition(session, _event(TradeAction.LOCK))

    def test_locked_actor_cannot_propose(self) -> None:
        session = _session(locked=frozenset({"alice"}))
        with pytest.raises(OfferLockedError):
            transition(session, _event(TradeAction.PROPOSE_ITEMS))

    def test_counterparty_can_still_propose_after_other_locked(self) -> None:
        session = _session(locked=frozenset({"alice"}))
        result = transition(session, _event(TradeAction.PROPOSE_ITEMS, "bob"))
        assert result.session.version == session.version + 1


class TestFinalAcceptance:
    def test_first_accept_does_not_settle(self) -> None:
        session = _session(TradeStatus.BOTH_LOCKED, locked=frozenset({"alice", "bob"}))
        result = transition(session, _event(TradeAction.ACCEPT_FINAL))
        assert result.session.state.has_accepted("alice")
        assert result.settle is False

    def test_second_accept_requests_settlement(self) -> None:
        session = _session(
            TradeStatus.BOTH_LOCKED,
            locked=frozenset({"alice", "bob"}),
            accepted=frozenset({"alice"}),
        )
        result = transition(session, _event(TradeAction.ACCEPT_FINAL, "bob"))
        assert result.settle is True
        assert result.session.status is TradeStatus.BOTH_LOCKED

    def test_double_accept_rejected(self) -> None:
        session = _session(
            TradeStatus.BOTH_LOCKED,
            locked=frozenset({"alice", "bob"}),
            accepted=frozenset({"alice"}),
        )
        with pytest.raises(AlreadyAcceptedError):
            transition(session, _event(TradeAction.ACCEPT_FINAL))

    def test_accept_while_negotiating_is_invalid(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            transition(_session(), _event(TradeAction.ACCEPT_FINAL))
        assert exc_info.value.current_state == "NEGOTIATING"
        assert exc_info.value.attempted == "ACCEPT_FINAL"

    def test_settle_commits(self) -> None:
        session = _session(
            TradeStatus.BOTH_LOCKED,
            locked=frozenset({"alice", "bob"}),
            accepted=frozenset({"alice", "bob"}),
        )
        result = transition(session, TradeEvent(TradeAction.SETTLE))
        assert result.session.status is TradeStatus.COMMITTED
        assert result.session.version == session.version
        assert result.is_terminal
        assert result.session.phase is None
        assert result.session.deadline_at is None


class TestPreconditions:
    def test_stale_version_rejected(self) -> None:
        with pytest.raises(StaleVersionError) as exc_info:
            transition(_session(version=3), _event(TradeAction.LOCK, expected_version=2))
        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 3

    def test_matching_version_accepted(self) -> None:
        result = transition(_session(version=3), _event(TradeAction.LOCK, expected_version=3))
        assert result.session.version == 4

    def test_outsider_rejected(self) -> None:
        with pytest.raises(NotParticipantError):
            transition(_session(), _event(TradeAction.PROPOSE_ITEMS, "mallory"))

    def test_terminal_session_rejects_everything(self) -> None:
        closed = _session(TradeStatus.DECLINED)
        with pytest.raises(SessionClosedError):
            transition(closed, TradeEvent(TradeAction.EXPIRE))


class TestTermination:
    @pytest.mark.parametrize(
        ("action", "status"),
        [
            (TradeAction.DECLINE, TradeStatus.DECLINED),
            (TradeAction.CANCEL, TradeStatus.CANCELLED),
        ],
    )
    def test_participant_exit_records_reason(
        self, action: TradeAction, status: TradeStatus
    ) -> None:
        session = _session(locked=frozenset({"bob"}))
        result = transition(session, _event(action, "bob"))
        assert result.session.status is status
        assert result.session.generation == session.generation + 1
        assert "bob" in (result.session.reason or "")

    def test_expire_names_phase(self) -> None:
        result = transition(_session(), TradeEvent(TradeAction.EXPIRE))
        assert result.session.status is TradeStatus.EXPIRED
        assert result.session.reason == "NEGOTIATION window elapsed"

    def test_abort_keeps_given_reason(self) -> None:
        session = _session(
            TradeStatus.BOTH_LOCKED,
            locked=frozenset({"alice", "bob"}),
            accepted=frozenset({"alice", "bob"}),
        )
        result = transition(session, TradeEvent(TradeAction.ABORT, reason="sword is gone"))
        assert result.session.status is TradeStatus.CANCELLED
        assert result.session.reason == "sword is gone"
