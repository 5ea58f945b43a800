"""Notification adapters.

The Discord embed renderer lives in the bot process; this service only ships
a structured-log notifier, which is what the REST deployment uses and what
the bot tails when it runs out-of-process.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from trade_engine.logging_config import get_logger

if TYPE_CHECKING:
    from trade_engine.domain.models import ItemStack, TradeSnapshot

logger = get_logger(__name__)


def describe_offer(items: tuple[ItemStack, ...]) -> str:
    if not items:
        return "nothing"
    return ", ".join(f"{stack.quantity}x {stack.item_id}" for stack in items)


class LogNotifier:
    """Emits one `notify.trade_snapshot` log line per rendered snapshot."""

    async def render(self, session_id: str, snapshot: TradeSnapshot) -> None:
        logger.info(
            "notify.trade_snapshot",
            session_id=session_id,
            status=snapshot.status.value,
            version=snapshot.version,
            initiator=snapshot.initiator_id,
            receiver=snapshot.receiver_id,
            initiator_offer=describe_offer(snapshot.initiator_offer),
            receiver_offer=describe_offer(snapshot.receiver_offer),
            locked=[snapshot.initiator_locked, snapshot.receiver_locked],
            accepted=[snapshot.initiator_accepted, snapshot.receiver_accepted],
            deadline_at=snapshot.deadline_at.isoformat() if snapshot.deadline_at else None,
            reason=snapshot.reason,
        )
