"""Per-giveaway end timers backed by asyncio tasks."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Awaitable, Callable, Dict

from .models import GiveawayRecord

log = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 5.0


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class GiveawayScheduler:
    """Owns at most one pending end timer per giveaway id.

    Timers are derived state: they can always be rebuilt from the persisted
    records, which is how restarts recover scheduled endings.
    """

    def __init__(
        self,
        on_due: Callable[[str], Awaitable[object]],
        *,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._on_due = on_due
        self.grace_seconds = grace_seconds
        self._clock = clock
        self._sleep = sleep
        self._timers: Dict[str, asyncio.Task] = {}

    def arm(self, record: GiveawayRecord) -> None:
        if record.ended:
            return
        self.cancel(record.id)

        delay = (record.end_at - self._clock()).total_seconds()
        if delay <= 0:
            log.info(
                "Giveaway %s is overdue; ending it in %.0fs.", record.id, self.grace_seconds
            )
            delay = self.grace_seconds

        giveaway_id = record.id

        async def waiter() -> None:
            try:
                await self._sleep(delay)
            except asyncio.CancelledError:
                log.debug("Finish timer for giveaway %s cancelled", giveaway_id)
                raise
            # Drop the handle before firing so the end transition's own
            # cancel() does not cancel this task.
            if self._timers.get(giveaway_id) is asyncio.current_task():
                del self._timers[giveaway_id]
            try:
                await self._on_due(giveaway_id)
            except Exception:
                log.exception("Automatic end of giveaway %s failed", giveaway_id)

        self._timers[giveaway_id] = asyncio.create_task(
            waiter(), name=f"giveaway-end-{giveaway_id}"
        )
        log.debug("Armed giveaway %s to end in %.1fs", giveaway_id, delay)

    def cancel(self, giveaway_id: str) -> bool:
        task = self._timers.pop(giveaway_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for giveaway_id in list(self._timers):
            self.cancel(giveaway_id)

    def is_armed(self, giveaway_id: str) -> bool:
        return giveaway_id in self._timers

    def __len__(self) -> int:
        return len(self._timers)
