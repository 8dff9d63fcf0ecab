"""Minimum spacing between outbound calls of one client instance."""

import asyncio
import time
from collections.abc import Awaitable, Callable

from review_aggregator.telemetry.logger import get_logger


class RequestThrottle:
    """Serializes callers so consecutive requests start at least ``min_delay`` apart.

    The "last request" timestamp lives on the instance and is guarded by a lock,
    so concurrent callers sharing one client queue up behind each other instead
    of racing on a stale timestamp.
    """

    def __init__(
        self,
        min_delay_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_delay = max(0.0, min_delay_seconds)
        self.request_count = 0
        self.last_request_time: float | None = None
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.logger = get_logger("request_throttle")

    async def acquire(self) -> float:
        """Wait for the next slot.

        Returns:
            Seconds spent waiting
        """
        async with self._lock:
            waited = 0.0
            if self.last_request_time is not None:
                elapsed = self._clock() - self.last_request_time
                if elapsed < self.min_delay:
                    waited = self.min_delay - elapsed
                    self.logger.debug(
                        "Throttling outbound request",
                        extra={"wait_seconds": waited, "operation": "throttle_wait"},
                    )
                    await self._sleep(waited)
            self.last_request_time = self._clock()
            self.request_count += 1
            return waited

    def reset(self) -> None:
        self.request_count = 0
        self.last_request_time = None
