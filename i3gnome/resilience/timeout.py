"""Timeout helpers for probe calls and poll deadlines.

Provides:
- Bounded waits that surface as ProbeTimeout
- A monotonic deadline shared by a whole poll
"""

import asyncio
import logging
import time
from typing import Any, Awaitable

from ..probes import ProbeTimeout

logger = logging.getLogger(__name__)


async def with_probe_timeout(
    awaitable: Awaitable[Any],
    timeout_seconds: float,
    endpoint: str = "",
) -> Any:
    """Await a probe call with a bounded wait.

    Args:
        awaitable: Probe coroutine
        timeout_seconds: Timeout in seconds
        endpoint: Endpoint name for the error message

    Returns:
        Probe result

    Raises:
        ProbeTimeout: If the timeout is exceeded
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise ProbeTimeout(
            f"{endpoint or 'probe'} timed out after {timeout_seconds}s",
            timeout_seconds,
        ) from None


class Deadline:
    """A fixed point in monotonic time."""

    def __init__(self, seconds: float, clock=time.monotonic):
        self._clock = clock
        self.started = clock()
        self.expires = self.started + seconds

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self.expires - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self.expires

    def elapsed(self) -> float:
        return self._clock() - self.started
