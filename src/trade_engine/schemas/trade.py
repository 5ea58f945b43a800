"""Pydantic schemas for the Trade API.

These schemas define the request/response shapes for the REST API. They are
separate from the domain dataclasses to keep the HTTP contract stable while
the engine internals evolve.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from trade_engine.domain.enums import TradeStatus

# Discord snowflakes are 17-20 digits; string ids keep them exact in JSON.
UserId = Annotated[str, Field(min_length=1, max_length=32, examples=["180976518912802817"])]

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateInvitationRequest(BaseModel):
    """Request body for opening a trade request."""

    initiator_id: UserId
    receiver_id: UserId


class ActorRequest(BaseModel):
    """Request body identifying who performs an action."""

    actor_id: UserId


class VersionedActorRequest(ActorRequest):
    """Actor plus an optional optimistic-concurrency precondition."""

    expected_version: int | None = Field(
        default=None,
        ge=0,
        description="Reject the action unless the session is still at this version",
    )


class ItemStackModel(BaseModel):
    """One item line in an offer."""

    model_config = ConfigDict(from_attributes=True)

    item_id: str = Field(..., min_length=1, max_length=64, examples=["diamond_sword"])
    quantity: int = Field(default=1, ge=1, examples=[1])


class ProposeItemsRequest(VersionedActorRequest):
    """Request body replacing the actor's offer."""

    items: list[ItemStackModel] = Field(
        default_factory=list,
        max_length=50,
        description="Full replacement offer; an empty list withdraws every item",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class InvitationResponse(BaseModel):
    """Response schema for a freshly created trade request."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    initiator_id: str
    receiver_id: str
    status: TradeStatus = TradeStatus.REQUESTED
    created_at: datetime
    deadline_at: datetime


class TradeSnapshotResponse(BaseModel):
    """Response schema for the current (or final) view of a trade."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    initiator_id: str
    receiver_id: str
    status: TradeStatus
    version: int
    initiator_locked: bool
    receiver_locked: bool
    initiator_accepted: bool
    receiver_accepted: bool
    initiator_offer: list[ItemStackModel]
    receiver_offer: list[ItemStackModel]
    created_at: datetime
    deadline_at: datetime | None
    reason: str | None = None


class ErrorResponse(BaseModel):
    """Body of every non-2xx response produced by the error middleware."""

    error: str
    message: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    active_trades: int = 0
