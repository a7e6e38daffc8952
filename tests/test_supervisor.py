from __future__ import annotations

from typing import Any, List

import pytest

from conftest import SleepRecorder, make_config
from src.services.fraction.engine import BotEngine


class StubWorker:
    """Worker whose run() returns or raises immediately."""

    instances: List["StubWorker"] = []
    failures_left = 0

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.name = kwargs["name"]
        self.status = "booting"
        StubWorker.instances.append(self)

    async def run(self) -> None:
        if StubWorker.failures_left > 0:
            StubWorker.failures_left -= 1
            raise RuntimeError("wallet loop escaped")
        self.status = "done"


@pytest.fixture(autouse=True)
def reset_stub() -> None:
    StubWorker.instances = []
    StubWorker.failures_left = 0


class KeysSequence:
    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.paths: List[str] = []

    def __call__(self, path: str) -> List[str]:
        self.paths.append(path)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_key_loading_failures_restart_the_bot(
    sleep: SleepRecorder,
    capsys: pytest.CaptureFixture[str],
) -> None:
    keys = KeysSequence(
        RuntimeError("Please create data.txt with your private keys (one per line)"),
        [],
        ["0xaaa", "0xbbb"],
    )
    engine = BotEngine(make_config(), keys_loader=keys, worker_factory=StubWorker, sleep=sleep)

    assert await engine.run() == 0

    assert keys.paths == ["data.txt"] * 3
    assert sleep.calls == [5.0, 5.0]
    assert [w.name for w in StubWorker.instances] == ["wallet-1", "wallet-2"]
    out = capsys.readouterr().out
    assert "Critical error: Please create data.txt" in out
    assert "Critical error: No private keys found in data.txt" in out
    assert "Loaded 2 wallet(s)" in out


@pytest.mark.asyncio
async def test_escaped_wallet_error_relaunches_all_wallets(sleep: SleepRecorder) -> None:
    StubWorker.failures_left = 1
    keys = KeysSequence(["0xaaa", "0xbbb"], ["0xaaa", "0xbbb"])
    engine = BotEngine(make_config(), keys_loader=keys, worker_factory=StubWorker, sleep=sleep)

    assert await engine.run() == 0

    assert len(keys.paths) == 2
    assert len(StubWorker.instances) == 4
    assert sleep.calls == [5.0]
    assert engine.workers_snapshot() == {"wallet-1": "done", "wallet-2": "done"}


@pytest.mark.asyncio
async def test_global_scope_shares_one_limiter(sleep: SleepRecorder) -> None:
    keys = KeysSequence(["0xaaa", "0xbbb"])
    engine = BotEngine(make_config(quota_scope="global"), keys_loader=keys, worker_factory=StubWorker, sleep=sleep)

    await engine.run()

    first, second = StubWorker.instances
    assert first.kwargs["limiter"] is second.kwargs["limiter"]
    assert engine.quota_snapshot() == {"global": "0/6"}


@pytest.mark.asyncio
async def test_wallet_scope_isolates_limiters_and_survives_restart(sleep: SleepRecorder) -> None:
    StubWorker.failures_left = 1
    keys = KeysSequence(["0xaaa", "0xbbb"], ["0xaaa", "0xbbb"])
    engine = BotEngine(make_config(quota_scope="wallet"), keys_loader=keys, worker_factory=StubWorker, sleep=sleep)

    await engine.run()

    first_run = StubWorker.instances[:2]
    second_run = StubWorker.instances[2:]
    assert first_run[0].kwargs["limiter"] is not first_run[1].kwargs["limiter"]
    assert first_run[0].kwargs["limiter"] is second_run[0].kwargs["limiter"]
    assert engine.quota_snapshot() == {"wallet-1": "0/6", "wallet-2": "0/6"}
