import asyncio
import logging
from collections import deque

from .clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)


class RateGate:
    """
    Sliding-window gate in front of the mapping provider.

    Once max_calls have been made inside the window, acquire() waits for the
    oldest call to age out instead of failing the caller.
    """

    def __init__(self, max_calls: int = 100, window_seconds: float = 60.0, clock: Clock = SYSTEM_CLOCK):
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.clock = clock
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    async def acquire(self) -> None:
        async with self._lock:
            now = self.clock.monotonic()
            self._prune(now)

            while len(self._calls) >= self.max_calls:
                wait = self.window_seconds - (now - self._calls[0])
                logger.warning("Mapping rate gate saturated, pausing %.1fs", wait)
                await self.clock.sleep(max(wait, 0))
                now = self.clock.monotonic()
                self._prune(now)

            self._calls.append(now)

    def __len__(self) -> int:
        return len(self._calls)
