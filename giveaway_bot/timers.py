"""In-process registry of pending giveaway expiry tasks."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict

log = logging.getLogger(__name__)


class TimerRegistry:
    """Maps giveaway IDs to at most one pending asyncio wake-up each.

    Timers live only as long as the process; callers re-arm them from the
    store on startup.
    """

    def __init__(self) -> None:
        self._tasks: Dict[int, asyncio.Task] = {}

    def __contains__(self, giveaway_id: int) -> bool:
        return giveaway_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def arm(
        self,
        giveaway_id: int,
        delay_ms: int,
        callback: Callable[[int], Awaitable[object]],
    ) -> asyncio.Task:
        """Schedule ``callback(giveaway_id)`` after ``delay_ms``, replacing any existing timer."""
        self.cancel(giveaway_id)
        delay = max(0, delay_ms) / 1000

        async def runner() -> None:
            try:
                if delay > 0:
                    await asyncio.sleep(delay)
                await callback(giveaway_id)
            except asyncio.CancelledError:
                log.debug("Timer for giveaway %s cancelled", giveaway_id)
                raise
            except Exception:
                log.exception("Timer callback for giveaway %s failed", giveaway_id)
            finally:
                if self._tasks.get(giveaway_id) is task:
                    del self._tasks[giveaway_id]

        task = asyncio.create_task(runner(), name=f"giveaway-timer-{giveaway_id}")
        self._tasks[giveaway_id] = task
        log.debug("Armed timer for giveaway %s (%.1fs)", giveaway_id, delay)
        return task

    def cancel(self, giveaway_id: int) -> bool:
        """Drop the pending timer for ``giveaway_id``.

        A timer cancelling itself from inside its own callback is only
        unregistered, never interrupted.
        """
        task = self._tasks.pop(giveaway_id, None)
        if task is None:
            return False
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current and not task.done():
            task.cancel()
        return True

    def cancel_all(self) -> None:
        for giveaway_id in list(self._tasks):
            self.cancel(giveaway_id)
