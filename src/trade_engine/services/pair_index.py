"""In-process duplicate-invitation index.

Maps the unordered participant pair (min, max) to the id of the live
invitation or session for that pair. Each method runs to completion without
awaiting, so check-and-insert is a single step on the event loop.

For multi-process deployments use RedisDuplicateIndex
(infrastructure/redis_client.py), which offers the same interface.
"""

from __future__ import annotations

from trade_engine.logging_config import get_logger

logger = get_logger(__name__)


class DuplicateIndex:
    """At most one live entry per unordered participant pair."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], str] = {}

    async def claim(self, key: tuple[str, str], owner_id: str) -> str | None:
        existing = self._entries.setdefault(key, owner_id)
        if existing != owner_id:
            return existing
        return None

    async def release(self, key: tuple[str, str], owner_id: str) -> bool:
        if self._entries.get(key) != owner_id:
            logger.debug("pair_index.release_skipped", key=key, owner_id=owner_id)
            return False
        del self._entries[key]
        return True

    async def lookup(self, key: tuple[str, str]) -> str | None:
        return self._entries.get(key)

    def __len__(self) -> int:
        return len(self._entries)
