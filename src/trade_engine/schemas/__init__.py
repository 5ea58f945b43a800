"""Pydantic API schemas."""

from trade_engine.schemas.trade import (
    ActorRequest,
    CreateInvitationRequest,
    ErrorResponse,
    HealthResponse,
    InvitationResponse,
    ItemStackModel,
    ProposeItemsRequest,
    TradeSnapshotResponse,
    VersionedActorRequest,
)

__all__ = [
    "ActorRequest",
    "CreateInvitationRequest",
    "ErrorResponse",
    "HealthResponse",
    "InvitationResponse",
    "ItemStackModel",
    "ProposeItemsRequest",
    "TradeSnapshotResponse",
    "VersionedActorRequest",
]
