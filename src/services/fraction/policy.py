from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from .tools import log


class MatchAttemptPolicy:
    """Bounded retry around a single start-match call.

    ``max_retries`` counts attempts, not extra retries: with the default of 3
    the start function runs at most three times with a fixed wait between
    attempts. Errors never leave :meth:`attempt`; an exhausted budget returns
    ``None``. Quota bookkeeping is left to the caller.

    ``guard`` is checked before every attempt, including retries after a
    backoff; when it returns false no further call is made and ``None`` is
    returned.
    """

    def __init__(
        self,
        *,
        max_retries: int = 3,
        retry_delay: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        scope: str = "match",
    ) -> None:
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._sleep = sleep
        self.scope = scope

    async def attempt(
        self,
        start_fn: Callable[[], Awaitable[Any]],
        guard: Optional[Callable[[], bool]] = None,
    ) -> Optional[Any]:
        attempt = 0
        while attempt < self.max_retries:
            if guard is not None and not guard():
                log(self.scope, "Session limit reached before attempt. Skipping...")
                return None
            try:
                result = await start_fn()
                if result:
                    return result
                error = "match was not started"
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = str(exc) or exc.__class__.__name__

            attempt += 1
            log(self.scope, f"Attempt {attempt}/{self.max_retries}: {error}")
            if attempt >= self.max_retries:
                log(self.scope, f"Failed to start match after {self.max_retries} attempts. Skipping...")
                return None
            log(self.scope, "Waiting before retrying...")
            await self._sleep(self.retry_delay)
        return None
