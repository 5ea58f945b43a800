"""Trade Session Store: authoritative owner of every live trade.

This is the application layer that coordinates between:
    - Domain transition function (state + flag guard)
    - ItemOfferRegistry (who offers what)
    - CommitCoordinator (atomic settlement)
    - ExpirationScheduler (invitation / negotiation / acceptance windows)
    - Duplicate index (one live trade per unordered pair)

Both the REST routes and the Discord interaction handlers call into this
store, ensuring a single source of truth for all business rules.

Serialization: every invitation/session id owns one asyncio.Lock. All
mutating operations, including the commit and timer firings, run inside that
lock, so operations on one session are totally ordered while different
sessions never wait on each other. Reads (get_snapshot) take no lock; they
observe the last installed immutable value.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import OrderedDict
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING, NoReturn

from trade_engine.config import get_settings
from trade_engine.domain.enums import DeadlinePhase, TradeAction, TradeStatus
from trade_engine.domain.exceptions import (
    DuplicateSessionError,
    ExpiredError,
    ExternalCommitError,
    InvitationNotFoundError,
    PreconditionFailedError,
    SessionClosedError,
    SessionNotFoundError,
    TradeValidationError,
)
from trade_engine.domain.models import Invitation, TradeSnapshot, pair_key
from trade_engine.domain.state_machine import TradeEvent, transition
from trade_engine.logging_config import get_logger, trade_context
from trade_engine.services.commit_coordinator import CommitCoordinator
from trade_engine.services.expiration import ExpirationScheduler, SystemClock
from trade_engine.services.offer_registry import ItemOfferRegistry
from trade_engine.services.pair_index import DuplicateIndex

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from trade_engine.config import Settings
    from trade_engine.domain.models import ItemStack, TradeSession
    from trade_engine.domain.ports import (
        Clock,
        InventoryLedger,
        InventoryQuery,
        NotificationPort,
        PairIndex,
    )
    from trade_engine.domain.state_machine import Transition

logger = get_logger(__name__)


class TradeSessionStore:
    """Manages the trade lifecycle from invitation to settlement."""

    def __init__(
        self,
        inventory: InventoryQuery,
        ledger: InventoryLedger,
        *,
        notifier: NotificationPort | None = None,
        clock: Clock | None = None,
        pair_index: PairIndex | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._clock = clock or SystemClock()
        self._notifier = notifier
        self._pair_index = pair_index or DuplicateIndex()
        self._registry = ItemOfferRegistry(inventory)
        self._coordinator = CommitCoordinator(
            inventory, ledger, timeout_seconds=settings.trade_commit_timeout_seconds
        )
        self._scheduler = ExpirationScheduler(self._clock, self._on_deadline)
        self._windows = {
            DeadlinePhase.INVITATION: timedelta(seconds=settings.trade_invitation_window_seconds),
            DeadlinePhase.NEGOTIATION: timedelta(seconds=settings.trade_negotiation_window_seconds),
            DeadlinePhase.ACCEPTANCE: timedelta(seconds=settings.trade_acceptance_window_seconds),
        }

        self._invitations: dict[str, Invitation] = {}
        self._sessions: dict[str, TradeSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._closed: OrderedDict[str, TradeSnapshot] = OrderedDict()
        self._closed_limit = settings.trade_closed_history_size
        self._one_per_user = settings.trade_one_active_per_user
        self._busy: dict[str, tuple[str, tuple[str, str]]] = {}
        self._background: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------

    async def create_invitation(self, initiator_id: str, receiver_id: str) -> Invitation:
        """Open a trade request from `initiator_id` to `receiver_id`.

        Raises:
            TradeValidationError: Both ids are the same user, or (with
                trade_one_active_per_user) either user is already trading
                with someone else.
            DuplicateSessionError: The pair already has a live invitation or session.
        """
        if initiator_id == receiver_id:
            raise TradeValidationError("You cannot trade with yourself", code="SELF_TRADE")

        invitation_id = str(uuid.uuid4())
        key = pair_key(initiator_id, receiver_id)
        if self._one_per_user:
            self._reserve_users(invitation_id, key, initiator_id, receiver_id)
        existing = await self._pair_index.claim(key, invitation_id)
        if existing is not None:
            self._release_users(invitation_id, key)
            logger.warning(
                "trade.duplicate_invitation",
                initiator=initiator_id,
                receiver=receiver_id,
                existing_id=existing,
            )
            raise DuplicateSessionError(initiator_id, receiver_id, existing_id=existing)

        now = self._clock.now()
        invitation = Invitation(
            id=invitation_id,
            initiator_id=initiator_id,
            receiver_id=receiver_id,
            created_at=now,
            deadline_at=now + self._windows[DeadlinePhase.INVITATION],
            generation=1,
        )
        self._invitations[invitation_id] = invitation
        self._locks[invitation_id] = asyncio.Lock()
        self._scheduler.arm(
            invitation_id, DeadlinePhase.INVITATION, invitation.generation, invitation.deadline_at
        )

        logger.info(
            "trade.invitation_created",
            invitation_id=invitation_id,
            initiator=initiator_id,
            receiver=receiver_id,
        )
        self._publish(TradeSnapshot.capture(invitation.as_session(), {}))
        return invitation

    async def accept_invitation(self, invitation_id: str, actor_id: str) -> TradeSnapshot:
        """Promote an invitation into a NEGOTIATING session. Receiver only.

        The session keeps the invitation id as its session id.
        """
        async with self._serialized_invitation(invitation_id) as invitation:
            result = transition(
                invitation.as_session(),
                TradeEvent(TradeAction.ACCEPT_INVITATION, actor_id=actor_id),
            )
            del self._invitations[invitation_id]
            self._registry.open(result.session)
            snapshot = self._install(result)

        logger.info("trade.started", session_id=invitation_id, receiver=actor_id)
        self._publish(snapshot)
        return snapshot

    async def decline_invitation(self, invitation_id: str, actor_id: str) -> TradeSnapshot:
        """Refuse (receiver) or withdraw (initiator) a pending invitation."""
        async with self._serialized_invitation(invitation_id) as invitation:
            result = transition(
                invitation.as_session(),
                TradeEvent(TradeAction.DECLINE, actor_id=actor_id),
            )
            snapshot = await self._close(result.session)

        self._publish(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------

    async def propose_items(
        self,
        session_id: str,
        actor_id: str,
        items: Iterable[ItemStack | tuple[str, int]],
        expected_version: int | None = None,
    ) -> TradeSnapshot:
        """Replace the actor's offer. Only while NEGOTIATING and unlocked."""
        async with self._serialized(session_id) as session:
            result = transition(
                session,
                TradeEvent(
                    TradeAction.PROPOSE_ITEMS,
                    actor_id=actor_id,
                    expected_version=expected_version,
                ),
            )
            await self._registry.set_offer(session, actor_id, items)
            snapshot = self._install(result)

        self._publish(snapshot)
        return snapshot

    async def lock(
        self,
        session_id: str,
        actor_id: str,
        expected_version: int | None = None,
    ) -> TradeSnapshot:
        """Freeze the actor's offer. The second lock moves the trade to BOTH_LOCKED."""
        async with self._serialized(session_id) as session:
            result = transition(
                session,
                TradeEvent(TradeAction.LOCK, actor_id=actor_id, expected_version=expected_version),
            )
            snapshot = self._install(result)

        logger.info(
            "trade.locked",
            session_id=session_id,
            actor=actor_id,
            status=snapshot.status.value,
        )
        self._publish(snapshot)
        return snapshot

    async def accept_final(
        self,
        session_id: str,
        actor_id: str,
        expected_version: int | None = None,
    ) -> TradeSnapshot:
        """Record the actor's final acceptance; the second one settles the trade.

        Settlement runs inside the same serialized step, so no caller can
        observe a both-accepted-but-uncommitted session.

        Raises:
            PreconditionFailedError: Stale version, or an offered item vanished
                before commit (session is then CANCELLED).
            ExternalCommitError: The ledger failed (session is then CANCELLED).
        """
        failure: PreconditionFailedError | ExternalCommitError | None = None

        async with self._serialized(session_id) as session:
            result = transition(
                session,
                TradeEvent(
                    TradeAction.ACCEPT_FINAL,
                    actor_id=actor_id,
                    expected_version=expected_version,
                ),
            )
            if not result.settle:
                snapshot = self._install(result)
            else:
                accepted = result.session
                try:
                    await self._coordinator.commit(accepted, self._registry.offers(session_id))
                except (PreconditionFailedError, ExternalCommitError) as err:
                    failure = err
                    logger.warning(
                        "trade.commit_aborted",
                        session_id=session_id,
                        code=err.code,
                        reason=err.message,
                    )
                    aborted = transition(
                        accepted, TradeEvent(TradeAction.ABORT, reason=err.message)
                    )
                    snapshot = await self._close(aborted.session)
                else:
                    settled = transition(accepted, TradeEvent(TradeAction.SETTLE))
                    snapshot = await self._close(settled.session)
                    logger.info("trade.committed", session_id=session_id)

        self._publish(snapshot)
        if failure is not None:
            raise failure
        return snapshot

    async def decline(self, session_id: str, actor_id: str) -> TradeSnapshot:
        """Refuse the trade. Immediate and terminal, from any live state."""
        return await self._terminate(session_id, TradeEvent(TradeAction.DECLINE, actor_id=actor_id))

    async def cancel(self, session_id: str, actor_id: str) -> TradeSnapshot:
        """Call the trade off. Immediate and terminal, from any live state."""
        return await self._terminate(session_id, TradeEvent(TradeAction.CANCEL, actor_id=actor_id))

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    def get_snapshot(self, session_id: str) -> TradeSnapshot:
        """Current view of a live session/invitation, or the final view of a closed one."""
        session = self._sessions.get(session_id)
        if session is not None:
            return TradeSnapshot.capture(session, self._registry.offers(session_id))
        invitation = self._invitations.get(session_id)
        if invitation is not None:
            return TradeSnapshot.capture(invitation.as_session(), {})
        closed = self._closed.get(session_id)
        if closed is not None:
            return closed
        raise SessionNotFoundError(session_id)

    def list_sessions_for_user(self, user_id: str) -> list[TradeSnapshot]:
        """Every live invitation and session the user takes part in, oldest first."""
        snapshots = [
            TradeSnapshot.capture(inv.as_session(), {})
            for inv in self._invitations.values()
            if inv.involves(user_id)
        ]
        snapshots.extend(
            TradeSnapshot.capture(session, self._registry.offers(session.id))
            for session in self._sessions.values()
            if session.involves(user_id)
        )
        return sorted(snapshots, key=lambda snap: snap.created_at)

    @property
    def active_count(self) -> int:
        return len(self._invitations) + len(self._sessions)

    # ------------------------------------------------------------------
    # Timer side
    # ------------------------------------------------------------------

    async def handle_deadline(self, target_id: str, phase: DeadlinePhase, generation: int) -> bool:
        """Apply an expiry if `generation` still matches. Returns True if applied.

        A firing that lost the race against another transition is dropped.
        """
        lock = self._locks.get(target_id)
        if lock is None:
            logger.debug("trade.timer_stale", target_id=target_id, phase=phase.value)
            return False

        with trade_context(target_id):
            async with lock:
                invitation = self._invitations.get(target_id)
                session = invitation.as_session() if invitation else self._sessions.get(target_id)
                if (
                    session is None
                    or session.generation != generation
                    or session.phase is not phase
                ):
                    logger.debug(
                        "trade.timer_stale",
                        target_id=target_id,
                        phase=phase.value,
                        generation=generation,
                    )
                    return False
                snapshot = await self._expire(session)

        self._publish(snapshot)
        return True

    async def shutdown(self) -> None:
        """Cancel timers and wait for in-flight notifications."""
        await self._scheduler.shutdown()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("trade.store_stopped", live=self.active_count)

    async def _on_deadline(self, target_id: str, phase: DeadlinePhase, generation: int) -> None:
        await self.handle_deadline(target_id, phase, generation)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _serialized(self, session_id: str) -> AsyncIterator[TradeSession]:
        """Hold the session lock and yield the live session.

        A session whose deadline already passed is expired here, before the
        caller's event is considered.
        """
        lock = self._locks.get(session_id)
        if lock is None:
            self._raise_missing(session_id)
        with trade_context(session_id):
            async with lock:
                session = self._sessions.get(session_id)
                if session is None:
                    self._raise_missing(session_id)
                if self._deadline_passed(session):
                    self._publish(await self._expire(session))
                    raise ExpiredError(session_id)
                yield session

    @asynccontextmanager
    async def _serialized_invitation(self, invitation_id: str) -> AsyncIterator[Invitation]:
        lock = self._locks.get(invitation_id)
        if lock is None:
            self._raise_missing(invitation_id, invitation=True)
        with trade_context(invitation_id):
            async with lock:
                invitation = self._invitations.get(invitation_id)
                if invitation is None:
                    self._raise_missing(invitation_id, invitation=True)
                if self._deadline_passed(invitation):
                    self._publish(await self._expire(invitation.as_session()))
                    raise ExpiredError(invitation_id)
                yield invitation

    def _raise_missing(self, target_id: str, invitation: bool = False) -> NoReturn:
        closed = self._closed.get(target_id)
        if closed is not None:
            if closed.status is TradeStatus.EXPIRED:
                raise ExpiredError(target_id)
            raise SessionClosedError(target_id, closed.status.value)
        if invitation and target_id in self._sessions:
            raise TradeValidationError(
                "This trade request was already accepted", code="INVITATION_ACCEPTED"
            )
        if not invitation and target_id in self._invitations:
            raise TradeValidationError(
                "This trade request has not been accepted yet", code="INVITATION_PENDING"
            )
        if invitation:
            raise InvitationNotFoundError(target_id)
        raise SessionNotFoundError(target_id)

    def _deadline_passed(self, target: TradeSession | Invitation) -> bool:
        return target.deadline_at is not None and self._clock.now() >= target.deadline_at

    async def _terminate(self, session_id: str, event: TradeEvent) -> TradeSnapshot:
        """Apply DECLINE or CANCEL to a live session or a still pending invitation."""
        lock = self._locks.get(session_id)
        if lock is None:
            self._raise_missing(session_id)
        with trade_context(session_id):
            async with lock:
                invitation = self._invitations.get(session_id)
                target = invitation.as_session() if invitation else self._sessions.get(session_id)
                if target is None:
                    self._raise_missing(session_id)
                if self._deadline_passed(target):
                    self._publish(await self._expire(target))
                    raise ExpiredError(session_id)
                snapshot = await self._close(transition(target, event).session)
        self._publish(snapshot)
        return snapshot

    def _reserve_users(
        self, trade_id: str, key: tuple[str, str], initiator_id: str, receiver_id: str
    ) -> None:
        """Mark both users as trading in `trade_id`; check and insert happen in one step."""
        for user_id in (initiator_id, receiver_id):
            held = self._busy.get(user_id)
            if held is None:
                continue
            held_id, held_key = held
            if held_key == key:
                raise DuplicateSessionError(initiator_id, receiver_id, existing_id=held_id)
            logger.info("trade.user_busy", user_id=user_id, existing_id=held_id)
            if user_id == initiator_id:
                raise TradeValidationError("You are already in an active trade!", code="USER_BUSY")
            raise TradeValidationError(
                f"{receiver_id} is already in an active trade!", code="USER_BUSY"
            )
        for user_id in (initiator_id, receiver_id):
            self._busy[user_id] = (trade_id, key)

    def _release_users(self, trade_id: str, key: tuple[str, str]) -> None:
        for user_id in key:
            held = self._busy.get(user_id)
            if held is not None and held[0] == trade_id:
                del self._busy[user_id]

    async def _expire(self, session: TradeSession) -> TradeSnapshot:
        phase = session.phase.value if session.phase else None
        logger.info("trade.expired", session_id=session.id, phase=phase)
        result = transition(session, TradeEvent(TradeAction.EXPIRE))
        return await self._close(result.session)

    def _install(self, result: Transition) -> TradeSnapshot:
        """Store a non-terminal session value, arming the next phase if it changed."""
        session = result.session
        if result.arm is not None:
            deadline = self._clock.now() + self._windows[result.arm]
            session = session.evolve(deadline_at=deadline)
            self._scheduler.arm(session.id, result.arm, session.generation, deadline)
        self._sessions[session.id] = session
        return TradeSnapshot.capture(session, self._registry.offers(session.id))

    async def _close(self, session: TradeSession) -> TradeSnapshot:
        """Remove a terminal session from every live structure and remember its outcome."""
        self._sessions.pop(session.id, None)
        self._invitations.pop(session.id, None)
        self._locks.pop(session.id, None)
        self._scheduler.disarm(session.id)
        offers = self._registry.discard(session.id)
        await self._pair_index.release(session.pair, session.id)
        self._release_users(session.id, session.pair)

        snapshot = TradeSnapshot.capture(session, offers)
        if self._closed_limit:
            self._closed[session.id] = snapshot
            while len(self._closed) > self._closed_limit:
                self._closed.popitem(last=False)

        log = logger.info if session.status is TradeStatus.COMMITTED else logger.warning
        log(
            "trade.closed",
            session_id=session.id,
            status=session.status.value,
            reason=session.reason,
            version=session.version,
        )
        return snapshot

    def _publish(self, snapshot: TradeSnapshot) -> None:
        """Hand a snapshot to the NotificationPort without waiting for it."""
        if self._notifier is None:
            return
        task = asyncio.get_running_loop().create_task(self._render(snapshot))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _render(self, snapshot: TradeSnapshot) -> None:
        try:
            await self._notifier.render(snapshot.session_id, snapshot)
        except Exception as exc:
            logger.warning(
                "notify.render_failed",
                session_id=snapshot.session_id,
                status=snapshot.status.value,
                error=str(exc),
            )
