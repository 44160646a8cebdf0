from __future__ import annotations
import asyncio
import time


class IntervalGate:
    """
    Async admission gate for CoinGecko requests.

    Awaiting the gate returns once at least `min_interval_sec` has passed since
    the previously admitted request. Concurrent waiters are admitted one at a time.

    Demo keys allow ~30 calls/min (2.2s spacing); Pro Analyst ~250/min (0.24s).
    """

    def __init__(self, min_interval_sec: float = 2.2):
        self.min_interval = max(0.0, float(min_interval_sec))
        self.last_call = 0.0
        self.admitted = 0
        self._lock = asyncio.Lock()

    async def __call__(self) -> None:
        async with self._lock:
            delay = self.min_interval - (time.monotonic() - self.last_call)
            if delay > 0:
                await asyncio.sleep(delay)
            self.last_call = time.monotonic()
            self.admitted += 1
