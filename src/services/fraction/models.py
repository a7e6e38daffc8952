from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple


AUTO_MATCH_MODE = "auto"
QUOTA_SCOPE_GLOBAL = "global"
QUOTA_SCOPE_WALLET = "wallet"


@dataclass(frozen=True)
class SessionType:
    session_type: str
    duration_per_round: float = 0.0
    rounds: int = 0
    type_id: str = ""

    @property
    def duration(self) -> float:
        return self.duration_per_round * self.rounds


@dataclass
class Agent:
    agent_id: str
    name: str
    session_type: SessionType
    automation_enabled: bool = False
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Session:
    session_id: str
    session_type: SessionType
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WalletState:
    address: str = ""
    balance: Optional[Decimal] = None
    user: Dict[str, Any] = field(default_factory=dict)
    agents: List[Agent] = field(default_factory=list)
    sessions: List[Session] = field(default_factory=list)
    fractal_info: Dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> str:
        return str(self.user.get("id", ""))


@dataclass
class ApiRoutes:
    nonce: str = "/auth/nonce"
    verify: str = "/auth/verify"
    agents: str = "/agents/user/{user_id}"
    sessions: str = "/session-types/live-paginated/user/{user_id}"
    fractal_info: str = "/rewards/fractal/user/{user_id}"
    start_match: str = "/matchmaking/initiate"
    start_auto_match: str = "/automated-matchmaking/enable"


@dataclass
class RuntimeSettings:
    session_limit: int = 6
    max_retries: int = 3
    retry_delay_sec: float = 10.0
    between_matches_sec: float = 2.0
    error_delay_sec: float = 10.0
    no_agents_delay_sec: float = 10.0
    max_cycle_wait_sec: float = 60.0
    restart_delay_sec: float = 5.0
    request_timeout: float = 15.0


@dataclass
class TelegramSettings:
    enabled: bool = False
    token: str = ""
    chat_ids: Tuple[int, ...] = ()


@dataclass
class AppConfig:
    match_mode: str
    agent_name: str
    max_games: int
    fee: Decimal
    quota_scope: str
    api_base: str
    rpc_url: str
    routes: ApiRoutes
    runtime: RuntimeSettings
    telegram: TelegramSettings
    keys_file: str

    @property
    def is_auto_match(self) -> bool:
        return self.match_mode == AUTO_MATCH_MODE
