from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    """Source of wall-clock time and sleeping.

    Injected everywhere a TTL, cooldown, cadence or backoff is evaluated so
    that tests can drive time explicitly.
    """

    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
