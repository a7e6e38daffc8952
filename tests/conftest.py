from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from src.services.fraction.models import (
    Agent,
    ApiRoutes,
    AppConfig,
    RuntimeSettings,
    Session,
    SessionType,
    TelegramSettings,
    WalletState,
)


FIXED_NOW = datetime(2024, 5, 1, 12, 30, 0)
ADDRESS = "0x" + "ab" * 20


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeWalletClient:
    """In-memory stand-in for WalletClient; start results are consumed in order."""

    def __init__(
        self,
        *,
        agents: Optional[List[Agent]] = None,
        sessions: Optional[List[Session]] = None,
        start_results: Optional[List[Any]] = None,
        fail_on: str = "",
    ) -> None:
        self.agents = agents or []
        self.sessions = sessions or []
        self.start_results = list(start_results or [])
        self.fail_on = fail_on
        self.calls: List[str] = []
        self.start_calls: List[tuple] = []
        self.closed = False

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name:
            raise RuntimeError(f"{name} failed")

    def connect(self) -> str:
        self._record("connect")
        return ADDRESS

    def get_balance(self) -> Decimal:
        self._record("get_balance")
        return Decimal("1.5")

    def login(self) -> Dict[str, Any]:
        self._record("login")
        return {"id": "user-1"}

    def get_agents(self) -> List[Agent]:
        self._record("get_agents")
        return self.agents

    def get_sessions(self) -> List[Session]:
        self._record("get_sessions")
        return self.sessions

    def get_fractal_info(self) -> Dict[str, Any]:
        self._record("get_fractal_info")
        return {"fractals": 42}

    def _next_result(self) -> Any:
        result = self.start_results.pop(0) if self.start_results else {"ok": True}
        if isinstance(result, Exception):
            raise result
        return result

    def start_match(self, agent: Agent, session: Session) -> Any:
        self.start_calls.append(("manual", agent.name, session.session_id))
        return self._next_result()

    def start_auto_match(self, agent: Agent, session: Session, max_games: int, fee: Decimal) -> Any:
        self.start_calls.append(("auto", agent.name, session.session_id, max_games, fee))
        return self._next_result()

    def state(self) -> WalletState:
        return WalletState(
            address=ADDRESS,
            balance=Decimal("1.5"),
            user={"id": "user-1"},
            agents=list(self.agents),
            sessions=list(self.sessions),
            fractal_info={"fractals": 42},
        )

    def close(self) -> None:
        self.closed = True


def make_session(session_id: str, session_type: str = "battle", duration: float = 300, rounds: int = 1) -> Session:
    return Session(
        session_id=session_id,
        session_type=SessionType(session_type=session_type, duration_per_round=duration, rounds=rounds),
    )


def make_agent(name: str = "Alpha", session_type: str = "battle", automation_enabled: bool = False) -> Agent:
    return Agent(
        agent_id=f"id-{name}",
        name=name,
        session_type=SessionType(session_type=session_type),
        automation_enabled=automation_enabled,
    )


def make_config(
    *,
    match_mode: str = "manual",
    agent_name: str = "Alpha",
    quota_scope: str = "global",
) -> AppConfig:
    return AppConfig(
        match_mode=match_mode,
        agent_name=agent_name,
        max_games=10,
        fee=Decimal("0.001"),
        quota_scope=quota_scope,
        api_base="https://api.example.test",
        rpc_url="https://rpc.example.test",
        routes=ApiRoutes(),
        runtime=RuntimeSettings(),
        telegram=TelegramSettings(),
        keys_file="data.txt",
    )


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def app_config() -> AppConfig:
    return make_config()
