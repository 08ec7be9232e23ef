"""Fixed-interval background jobs."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Union

LOGGER = logging.getLogger(__name__)


class PeriodicTask:
    """Runs a callback every ``interval_seconds`` until stop() is called.

    A failing run is logged and the next run still happens on schedule.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Union[None, Awaitable[None]]],
        interval_seconds: float,
    ) -> None:
        self.name = name
        self._callback = callback
        self._interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()

    async def run_once(self) -> None:
        try:
            result = self._callback()
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Periodic task %s failed", self.name)

    async def run_forever(self) -> None:
        """Run loop until stop() is called."""

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_seconds)
            except asyncio.TimeoutError:
                await self.run_once()

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()
