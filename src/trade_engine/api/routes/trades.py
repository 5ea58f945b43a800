"""Trade REST API routes.

These endpoints give the HTTP interface onto the TradeSessionStore. The
Discord interaction handlers call the same store, so both surfaces share
one set of business rules.

Routes:
    POST   /api/v1/trades/invitations                - Open a trade request
    POST   /api/v1/trades/invitations/{id}/accept    - Receiver accepts the request
    POST   /api/v1/trades/invitations/{id}/decline   - Refuse / withdraw the request
    GET    /api/v1/trades/users/{user_id}            - Live trades of one user
    GET    /api/v1/trades/{id}                       - Current or final snapshot
    POST   /api/v1/trades/{id}/offer                 - Replace the actor's offer
    POST   /api/v1/trades/{id}/lock                  - Lock the actor's offer
    POST   /api/v1/trades/{id}/accept                - Final acceptance (may settle)
    POST   /api/v1/trades/{id}/decline               - Decline the trade
    POST   /api/v1/trades/{id}/cancel                - Cancel the trade
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from trade_engine.api.deps import get_trade_store
from trade_engine.logging_config import get_logger
from trade_engine.schemas.trade import (
    ActorRequest,
    CreateInvitationRequest,
    InvitationResponse,
    ProposeItemsRequest,
    TradeSnapshotResponse,
    VersionedActorRequest,
)
from trade_engine.services.session_store import TradeSessionStore  # noqa: TC001

router = APIRouter(prefix="/api/v1/trades", tags=["Trades"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@router.post(
    "/invitations",
    response_model=InvitationResponse,
    status_code=201,
    summary="Open a trade request",
)
async def create_invitation(
    request: CreateInvitationRequest,
    store: TradeSessionStore = Depends(get_trade_store),
) -> InvitationResponse:
    """Invite another user to trade. Only one live trade may exist per pair."""
    invitation = await store.create_invitation(request.initiator_id, request.receiver_id)
    return InvitationResponse.model_validate(invitation)


@router.post(
    "/invitations/{invitation_id}/accept",
    response_model=TradeSnapshotResponse,
    summary="Accept a trade request",
)
async def accept_invitation(
    invitation_id: str,
    request: ActorRequest,
    store: TradeSessionStore = Depends(get_trade_store),
) -> TradeSnapshotResponse:
    """Receiver accepts. Transitions REQUESTED -> NEGOTIATING under the same id."""
    snapshot = await store.accept_invitation(invitation_id, request.actor_id)
    return TradeSnapshotResponse.model_validate(snapshot)


@router.post(
    "/invitations/{invitation_id}/decline",
    response_model=TradeSnapshotResponse,
    summary="Decline or withdraw a trade request",
)
async def decline_invitation(
    invitation_id: str,
    request: ActorRequest,
    store: TradeSessionStore = Depends(get_trade_store),
) -> TradeSnapshotResponse:
    snapshot = await store.decline_invitation(invitation_id, request.actor_id)
    return TradeSnapshotResponse.model_validate(snapshot)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get(
    "/users/{user_id}",
    response_model=list[TradeSnapshotResponse],
    summary="List a user's live trades",
)
async def list_user_trades(
    user_id: str,
    store: TradeSessionStore = Depends(get_trade_store),
) -> list[TradeSnapshotResponse]:
    return [
        TradeSnapshotResponse.model_validate(snapshot)
        for snapshot in store.list_sessions_for_user(user_id)
    ]


@router.get(
    "/{session_id}",
    response_model=TradeSnapshotResponse,
    summary="Get a trade snapshot",
)
async def get_trade(
    session_id: str,
    store: TradeSessionStore = Depends(get_trade_store),
) -> TradeSnapshotResponse:
    """Current view of a live trade, or the final view of a recently closed one."""
    return TradeSnapshotResponse.model_validate(store.get_snapshot(session_id))


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


@router.post(
    "/{session_id}/offer",
    response_model=TradeSnapshotResponse,
    summary="Replace the actor's offer",
)
async def propose_items(
    session_id: str,
    request: ProposeItemsRequest,
    store: TradeSessionStore = Depends(get_trade_store),
) -> TradeSnapshotResponse:
    """Replace the whole offer. Rejected once the actor has locked."""
    snapshot = await store.propose_items(
        session_id,
        request.actor_id,
        [(item.item_id, item.quantity) for item in request.items],
        expected_version=request.expected_version,
    )
    return TradeSnapshotResponse.model_validate(snapshot)


@router.post(
    "/{session_id}/lock",
    response_model=TradeSnapshotResponse,
    summary="Lock the actor's offer",
)
async def lock_offer(
    session_id: str,
    request: VersionedActorRequest,
    store: TradeSessionStore = Depends(get_trade_store),
) -> TradeSnapshotResponse:
    """Freeze the actor's offer. The second lock transitions to BOTH_LOCKED."""
    snapshot = await store.lock(
        session_id, request.actor_id, expected_version=request.expected_version
    )
    return TradeSnapshotResponse.model_validate(snapshot)


@router.post(
    "/{session_id}/accept",
    response_model=TradeSnapshotResponse,
    summary="Give final acceptance",
)
async def accept_final(
    session_id: str,
    request: VersionedActorRequest,
    store: TradeSessionStore = Depends(get_trade_store),
) -> TradeSnapshotResponse:
    """Record final acceptance. The second acceptance settles the trade atomically.

    Returns the COMMITTED snapshot on success; a failed settlement answers
    409 (item gone) or 502 (ledger failure) and leaves the trade CANCELLED.
    """
    snapshot = await store.accept_final(
        session_id, request.actor_id, expected_version=request.expected_version
    )
    if snapshot.is_terminal:
        logger.info("api.trade_settled", session_id=session_id, status=snapshot.status.value)
    return TradeSnapshotResponse.model_validate(snapshot)


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------


@router.post(
    "/{session_id}/decline",
    response_model=TradeSnapshotResponse,
    summary="Decline the trade",
)
async def decline_trade(
    session_id: str,
    request: ActorRequest,
    store: TradeSessionStore = Depends(get_trade_store),
) -> TradeSnapshotResponse:
    snapshot = await store.decline(session_id, request.actor_id)
    return TradeSnapshotResponse.model_validate(snapshot)


@router.post(
    "/{session_id}/cancel",
    response_model=TradeSnapshotResponse,
    summary="Cancel the trade",
)
async def cancel_trade(
    session_id: str,
    request: ActorRequest,
    store: TradeSessionStore = Depends(get_trade_store),
) -> TradeSnapshotResponse:
    snapshot = await store.cancel(session_id, request.actor_id)
    return TradeSnapshotResponse.model_validate(snapshot)
