"""Cancellable waits for backoff and inter-batch pauses.

Every wait a session performs goes through a ``TimerRegistry`` so the host
can drop them all at once: when a new run supersedes a pending retry, and on
teardown. A cleared wait wakes its waiter with ``SessionCancelledError``
instead of returning, which is how a discarded run learns it must not touch
shared state any more.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict

from .exceptions import SessionCancelledError

logger = logging.getLogger(__name__)


def _wake(waiter: "asyncio.Future[None]") -> None:
    if not waiter.done():
        waiter.set_result(None)


class TimerRegistry:
    """Tracks outstanding waits so they can be cleared together."""

    def __init__(self) -> None:
        self._timers: Dict[asyncio.TimerHandle, "asyncio.Future[None]"] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._timers)

    async def sleep(self, delay_seconds: float) -> None:
        """Wait for ``delay_seconds`` unless cleared first.

        Raises:
            SessionCancelledError: If the registry is closed or the wait was cleared
        """
        if self._closed:
            raise SessionCancelledError("Timer registry is closed")

        loop = asyncio.get_running_loop()
        waiter: "asyncio.Future[None]" = loop.create_future()
        handle = loop.call_later(max(0.0, delay_seconds), _wake, waiter)
        self._timers[handle] = waiter
        try:
            await waiter
        finally:
            handle.cancel()
            self._timers.pop(handle, None)

    def clear_all(self, reason: str = "cleared") -> int:
        """Cancel every outstanding wait. Returns how many were cleared."""
        cleared = 0
        for handle, waiter in list(self._timers.items()):
            handle.cancel()
            if not waiter.done():
                waiter.set_exception(SessionCancelledError(f"Timer cleared: {reason}"))
                cleared += 1
        self._timers.clear()
        if cleared:
            logger.debug(f"[Timers] Cleared {cleared} pending timer(s): {reason}")
        return cleared

    def close(self) -> None:
        """Clear everything and refuse new waits."""
        self._closed = True
        self.clear_all("host teardown")
