"""Expiration Scheduler: fires time-bound transitions for invitations and sessions.

Each timer carries the generation token read when it was armed. Firing does
not change anything by itself: it calls back into the store, which re-checks
the generation under the session lock and drops the firing if the session has
moved on. Cancelling a timer is therefore only resource hygiene; correctness
comes from the generation check.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from trade_engine.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from trade_engine.domain.enums import DeadlinePhase
    from trade_engine.domain.ports import Clock

    FireCallback = Callable[[str, DeadlinePhase, int], Awaitable[None]]

logger = get_logger(__name__)


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ExpirationScheduler:
    """One pending asyncio timer per invitation/session id."""

    def __init__(self, clock: Clock, on_fire: FireCallback) -> None:
        self._clock = clock
        self._on_fire = on_fire
        self._timers: dict[str, asyncio.Task[None]] = {}

    def arm(
        self,
        target_id: str,
        phase: DeadlinePhase,
        generation: int,
        deadline_at: datetime,
    ) -> None:
        """Schedule a firing for `target_id` at `deadline_at`.

        Any timer previously armed for the same id is cancelled first.
        """
        self.disarm(target_id)
        delay = max(0.0, (deadline_at - self._clock.now()).total_seconds())
        task = asyncio.get_running_loop().create_task(
            self._run(target_id, phase, generation, delay),
            name=f"trade-expiry:{target_id}:{phase.value}",
        )
        self._timers[target_id] = task
        logger.debug(
            "expiry.armed",
            target_id=target_id,
            phase=phase.value,
            generation=generation,
            delay=round(delay, 3),
        )

    def disarm(self, target_id: str) -> bool:
        task = self._timers.pop(target_id, None)
        if task is None or task is asyncio.current_task():
            return False
        task.cancel()
        return True

    @property
    def pending(self) -> int:
        return len(self._timers)

    def is_armed(self, target_id: str) -> bool:
        return target_id in self._timers

    async def shutdown(self) -> None:
        """Cancel every pending timer and wait for them to finish."""
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("expiry.shutdown", cancelled=len(tasks))

    async def _run(
        self,
        target_id: str,
        phase: DeadlinePhase,
        generation: int,
        delay: float,
    ) -> None:
        await asyncio.sleep(delay)
        if self._timers.get(target_id) is asyncio.current_task():
            del self._timers[target_id]
        logger.debug("expiry.fired", target_id=target_id, phase=phase.value, generation=generation)
        try:
            await self._on_fire(target_id, phase, generation)
        except Exception as exc:
            logger.exception(
                "expiry.callback_failed",
                target_id=target_id,
                phase=phase.value,
                error=str(exc),
            )
