"""Adaptive polling scheduler for the garage door accessory.

Polls quickly while the door is presumably moving (current and target
state disagree) and slowly otherwise.  There is never more than one
pending timer: scheduling a tick always cancels the previous one, and a
tick is never started while another is still running.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from config import PollConfig

_LOGGER = logging.getLogger(__name__)


class PollScheduler:
    """Owns the single pending poll timer."""

    def __init__(self, poll_config: PollConfig):
        self._config = poll_config
        self._handle: asyncio.TimerHandle | None = None
        self._poll_task: asyncio.Task | None = None
        self._deferred_delay: float | None = None
        self._poll_callback: Callable[[], Awaitable] | None = None
        self._last_interval: float | None = None
        self._last_poll_time: float = 0

    @property
    def active_interval(self) -> float:
        return float(self._config.active_interval_sec)

    @property
    def idle_interval(self) -> float:
        return float(self._config.idle_interval_sec)

    @property
    def last_interval(self) -> float | None:
        """Delay used by the most recent schedule() call."""
        return self._last_interval

    @property
    def is_scheduled(self) -> bool:
        return self._handle is not None

    def set_poll_callback(self, poll_callback: Callable[[], Awaitable]) -> None:
        self._poll_callback = poll_callback

    def next_interval(self, current, target) -> float:
        """Calculate the next poll interval in seconds."""
        if int(current) != int(target):
            interval, mode = self.active_interval, "active"
        else:
            interval, mode = self.idle_interval, "idle"
        _LOGGER.debug("Poll mode: %s, interval: %ss", mode, interval)
        return interval

    def schedule(self, delay: float) -> None:
        """Schedule the next poll ``delay`` seconds from now.

        While a tick is in flight a request from outside it is held back
        and applied once the tick completes, so ticks never overlap.
        """
        if self._tick_in_flight():
            if self._deferred_delay is None or delay < self._deferred_delay:
                self._deferred_delay = delay
            return
        self.cancel()
        self._last_interval = delay
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire)

    def _tick_in_flight(self) -> bool:
        task = self._poll_task
        return (
            task is not None
            and not task.done()
            and task is not asyncio.current_task()
        )

    def _fire(self) -> None:
        self._handle = None
        if self._poll_callback is None:
            return
        if self._tick_in_flight():
            self._deferred_delay = 0
            return
        self._poll_task = asyncio.ensure_future(self._poll_callback())
        self._poll_task.add_done_callback(self._on_poll_done)

    def _on_poll_done(self, task: asyncio.Future) -> None:
        if task is not self._poll_task:
            return
        self._poll_task = None
        delay, self._deferred_delay = self._deferred_delay, None
        if delay is not None and not task.cancelled():
            _LOGGER.debug("Running deferred poll in %ss", delay)
            self.schedule(delay)

    def cancel(self) -> None:
        """Cancel the pending timer, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def mark_polled(self) -> None:
        """Mark that a poll just occurred."""
        self._last_poll_time = time.monotonic()

    def stop(self) -> None:
        """Cancel the pending timer and any poll still running."""
        self._deferred_delay = None
        self.cancel()
        task = self._poll_task
        self._poll_task = None
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

    def get_status(self) -> dict:
        """Get scheduler status for diagnostics."""
        last = self._last_interval
        return {
            "mode": (
                None if last is None
                else "active" if last == self.active_interval
                else "idle" if last == self.idle_interval
                else "immediate"
            ),
            "next_interval_sec": last,
            "scheduled": self.is_scheduled,
            "poll_in_flight": (
                self._poll_task is not None and not self._poll_task.done()
            ),
            "last_poll_ago_sec": (
                round(time.monotonic() - self._last_poll_time, 1)
                if self._last_poll_time else None
            ),
        }
