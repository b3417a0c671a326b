"""Per-job minimum interval between successive requests."""
from __future__ import annotations

import asyncio


class RateGate:
    """Suspends the caller for ``1 / rate`` seconds on every :meth:`wait`.

    One gate per job loop; it is not safe to share between jobs.
    """

    def __init__(self, rate: float = 1.0) -> None:
        self._interval = 1.0 / rate if rate > 0 else 0.0

    @property
    def interval(self) -> float:
        """Seconds slept per call."""
        return self._interval

    async def wait(self) -> None:
        if self._interval <= 0:
            return
        await asyncio.sleep(self._interval)
