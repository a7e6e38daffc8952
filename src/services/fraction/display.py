from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from .models import Agent, WalletState
from .tools import log, short_address


def _fmt_balance(value: Optional[Decimal]) -> str:
    if value is None:
        return "?"
    return f"{value.quantize(Decimal('0.0001'))} ETH"


def _fmt_fractal(info: Dict[str, Any]) -> str:
    if not info:
        return "none"
    parts = []
    for key in ("fractals", "totalFractals", "rank", "level"):
        if key in info:
            parts.append(f"{key}={info[key]}")
    if not parts:
        parts = [f"{k}={v}" for k, v in list(info.items())[:4]]
    return " ".join(parts)


class Display:
    """Latest per-wallet snapshots, printed as they arrive."""

    def __init__(self) -> None:
        self._wallets: Dict[str, str] = {}
        self._agents: Dict[str, List[str]] = {}
        self._fractal: Dict[str, str] = {}

    def update_wallet(self, state: WalletState) -> None:
        scope = short_address(state.address)
        line = f"balance={_fmt_balance(state.balance)} user={state.user_id or '?'}"
        self._wallets[scope] = line
        log(scope, f"Wallet: {line}")

    def update_agents(self, address: str, agents: List[Agent]) -> None:
        scope = short_address(address)
        lines = [
            f"{agent.name} [{agent.session_type.session_type}] "
            f"auto={'on' if agent.automation_enabled else 'off'}"
            for agent in agents
        ]
        self._agents[scope] = lines
        if lines:
            log(scope, "Agents: " + "; ".join(lines))
        else:
            log(scope, "Agents: none")

    def update_fractal_info(self, address: str, info: Dict[str, Any]) -> None:
        scope = short_address(address)
        self._fractal[scope] = _fmt_fractal(info)
        log(scope, f"Fractal: {self._fractal[scope]}")

    def snapshot(self) -> Dict[str, str]:
        out: Dict[str, str] = {}
        for scope, wallet in self._wallets.items():
            agents = ", ".join(self._agents.get(scope, [])) or "no agents"
            fractal = self._fractal.get(scope, "none")
            out[scope] = f"{wallet} | {agents} | fractal: {fractal}"
        return out
