"""
Session Timer Module
One countdown per question, driven by an asyncio task.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from interview_rooms.core.constants import TIMER_TICK_SECONDS

logger = logging.getLogger(__name__)

TickCallback = Callable[[int], Any]
ExpireCallback = Callable[[], Any]


async def _call(callback: Optional[Callable[..., Any]], *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class SessionTimer:
    """
    Countdown with one-tick resolution.

    ``on_tick(remaining)`` runs after every tick (including the final one at 0),
    ``on_expire()`` runs exactly once when the countdown reaches zero. Callbacks
    are awaited in order, so a tick never starts before the previous one returned.
    Starting a new countdown cancels the one in flight.
    """

    def __init__(self, tick_interval: float = TIMER_TICK_SECONDS):
        self.tick_interval = tick_interval
        self._task: Optional[asyncio.Task] = None
        self.remaining: int = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, duration: int, on_tick: TickCallback = None, on_expire: ExpireCallback = None) -> None:
        if duration <= 0:
            raise ValueError(f"Countdown duration must be positive, got {duration}")
        self.cancel()
        self.remaining = duration
        self._task = asyncio.create_task(self._run(duration, on_tick, on_expire))
        logger.debug(f"Countdown started ({duration} ticks)")

    def restart(self, duration: int, on_tick: TickCallback = None, on_expire: ExpireCallback = None) -> None:
        """Cancel the current countdown (if any) and start a fresh one."""
        self.cancel()
        self.start(duration, on_tick, on_expire)

    def cancel(self) -> None:
        """Stop the countdown in flight. Safe to call when nothing is running."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        # An expire handler may cancel the timer from inside the timer's own task
        if task is asyncio.current_task():
            return
        task.cancel()
        logger.debug("Countdown cancelled")

    async def _run(self, duration: int, on_tick: TickCallback, on_expire: ExpireCallback) -> None:
        remaining = duration
        try:
            while remaining > 0:
                await asyncio.sleep(self.tick_interval)
                remaining -= 1
                self.remaining = remaining
                logger.debug(f"Tick: {remaining} left")
                await _call(on_tick, remaining)
                if self._task is not asyncio.current_task():
                    # Cancelled by the tick handler itself
                    return

            # Drop our own handle first so the expire handler may start a new countdown
            if self._task is asyncio.current_task():
                self._task = None
            await _call(on_expire)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Timer callback failed: {e}", exc_info=True)
