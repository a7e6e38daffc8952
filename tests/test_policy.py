from __future__ import annotations

import asyncio
from typing import Any, List

import pytest

from conftest import SleepRecorder
from src.services.fraction.policy import MatchAttemptPolicy


class FlakyStart:
    def __init__(self, failures: int, result: Any = None) -> None:
        self.failures = failures
        self.result = result if result is not None else {"matchId": "m-1"}
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"boom {self.calls}")
        return self.result


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [0, 1, 2])
async def test_returns_result_after_recoverable_failures(failures: int, sleep: SleepRecorder) -> None:
    start = FlakyStart(failures)
    policy = MatchAttemptPolicy(sleep=sleep)

    result = await policy.attempt(start)

    assert result == {"matchId": "m-1"}
    assert start.calls == failures + 1
    assert sleep.calls == [10.0] * failures


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [3, 7])
async def test_gives_up_after_three_attempts(
    failures: int,
    sleep: SleepRecorder,
    capsys: pytest.CaptureFixture[str],
) -> None:
    start = FlakyStart(failures)
    policy = MatchAttemptPolicy(sleep=sleep)

    result = await policy.attempt(start)

    assert result is None
    assert start.calls == 3
    assert sleep.calls == [10.0, 10.0]
    out = capsys.readouterr().out
    assert "Attempt 1/3: boom 1" in out
    assert "Attempt 3/3: boom 3" in out
    assert "Failed to start match after 3 attempts. Skipping..." in out


@pytest.mark.asyncio
async def test_falsy_result_counts_as_failed_attempt(sleep: SleepRecorder) -> None:
    results: List[Any] = [None, {}, {"matchId": "m-2"}]

    async def start() -> Any:
        return results.pop(0)

    policy = MatchAttemptPolicy(sleep=sleep)

    assert await policy.attempt(start) == {"matchId": "m-2"}
    assert sleep.calls == [10.0, 10.0]


@pytest.mark.asyncio
async def test_cancellation_is_not_retried(sleep: SleepRecorder) -> None:
    calls = 0

    async def start() -> Any:
        nonlocal calls
        calls += 1
        raise asyncio.CancelledError()

    policy = MatchAttemptPolicy(sleep=sleep)

    with pytest.raises(asyncio.CancelledError):
        await policy.attempt(start)
    assert calls == 1
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_guard_is_checked_before_each_retry(sleep: SleepRecorder, capsys: pytest.CaptureFixture[str]) -> None:
    start = FlakyStart(failures=5)
    allowed = [True, False]

    def guard() -> bool:
        return allowed.pop(0) if allowed else False

    policy = MatchAttemptPolicy(sleep=sleep)

    assert await policy.attempt(start, guard=guard) is None
    assert start.calls == 1
    assert sleep.calls == [10.0]
    assert "Session limit reached before attempt. Skipping..." in capsys.readouterr().out


@pytest.mark.asyncio
async def test_closed_guard_prevents_any_call(sleep: SleepRecorder) -> None:
    start = FlakyStart(failures=0)
    policy = MatchAttemptPolicy(sleep=sleep)

    assert await policy.attempt(start, guard=lambda: False) is None
    assert start.calls == 0
    assert sleep.calls == []
