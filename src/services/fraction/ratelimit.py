from __future__ import annotations

import asyncio
import math
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from .tools import log


SESSION_LIMIT_DEFAULT = 6


def seconds_until_next_hour(now: datetime) -> float:
    next_hour = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    return (next_hour - now).total_seconds()


def format_remaining(seconds: int) -> str:
    minutes, secs = divmod(max(0, seconds), 60)
    return f"{minutes}:{secs:02d}"


class SessionRateLimiter:
    """Caps successful match starts per wall-clock hour.

    The window is aligned to the top of the hour rather than sliding from the
    first start, matching a provider quota that resets on the hour. Counters
    are mutated only in synchronous code, so tasks sharing one limiter on the
    same event loop always observe each other's updates.
    """

    def __init__(
        self,
        *,
        limit: int = SESSION_LIMIT_DEFAULT,
        scope: str = "global",
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        tick_interval: float = 1.0,
    ) -> None:
        self.limit = limit
        self.scope = scope
        self._clock = clock
        self._sleep = sleep
        self._tick_interval = tick_interval
        self.count = 0
        self.last_start: Optional[datetime] = None

    @property
    def log_scope(self) -> str:
        return f"quota:{self.scope}"

    def can_start(self) -> bool:
        return self.count < self.limit

    def record_start(self) -> int:
        self.count += 1
        self.last_start = self._clock()
        return self.count

    def usage(self) -> str:
        return f"{self.count}/{self.limit}"

    def reset(self) -> None:
        self.count = 0
        self.last_start = None

    async def _countdown(self, remaining_seconds: int) -> None:
        while remaining_seconds >= 0:
            await asyncio.sleep(self._tick_interval)
            log(
                self.log_scope,
                "Waiting for the next hour to start... "
                f"[{format_remaining(remaining_seconds)} remaining]",
            )
            remaining_seconds -= 1

    async def wait_for_reset(self) -> None:
        remaining = seconds_until_next_hour(self._clock())
        countdown: Optional[asyncio.Task[None]] = None
        try:
            if remaining > 0:
                log(
                    self.log_scope,
                    f"Session limit reached ({self.usage()}). Waiting for "
                    f"{math.ceil(remaining / 60)} minutes until the next hour...",
                )
                countdown = asyncio.create_task(
                    self._countdown(int(remaining)),
                    name=f"countdown:{self.scope}",
                )
                await self._sleep(remaining)
        finally:
            if countdown is not None:
                countdown.cancel()
                try:
                    await countdown
                except asyncio.CancelledError:
                    pass
            self.reset()
