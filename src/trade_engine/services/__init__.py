"""Application services: use case orchestration."""

from trade_engine.services.commit_coordinator import CommitCoordinator, CompensatingLedger
from trade_engine.services.expiration import ExpirationScheduler, SystemClock
from trade_engine.services.offer_registry import ItemOfferRegistry
from trade_engine.services.pair_index import DuplicateIndex
from trade_engine.services.session_store import TradeSessionStore

__all__ = [
    "CommitCoordinator",
    "CompensatingLedger",
    "DuplicateIndex",
    "ExpirationScheduler",
    "ItemOfferRegistry",
    "SystemClock",
    "TradeSessionStore",
]
