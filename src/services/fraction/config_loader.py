from __future__ import annotations

import json
import os
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List

from .models import (
    QUOTA_SCOPE_GLOBAL,
    QUOTA_SCOPE_WALLET,
    ApiRoutes,
    AppConfig,
    RuntimeSettings,
    TelegramSettings,
)


API_BASE_DEFAULT = "https://dapp-backend-4x.fractionai.xyz/api3"
RPC_URL_DEFAULT = "https://ethereum-sepolia-rpc.publicnode.com"
CONFIG_FILE_DEFAULT = "config.json"
KEYS_FILE_DEFAULT = "data.txt"


def _to_decimal(value: Any, field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise RuntimeError(f"Bad decimal for {field_name}: {value}") from exc


def _to_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _read_json(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise RuntimeError(f"Config file not found: {path}")
    try:
        with p.open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Config is not valid JSON: {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise RuntimeError(f"JSON root must be object: {path}")
    return payload


def _parse_runtime(raw: Dict[str, Any]) -> RuntimeSettings:
    base = RuntimeSettings()
    runtime_raw = raw.get("runtime")
    if not isinstance(runtime_raw, dict):
        runtime_raw = {}

    return replace(
        base,
        session_limit=max(1, int(runtime_raw.get("session_limit", base.session_limit))),
        max_retries=max(1, int(runtime_raw.get("max_retries", base.max_retries))),
        retry_delay_sec=max(0.0, float(runtime_raw.get("retry_delay_sec", base.retry_delay_sec))),
        between_matches_sec=max(
            0.0, float(runtime_raw.get("between_matches_sec", base.between_matches_sec))
        ),
        error_delay_sec=max(0.0, float(runtime_raw.get("error_delay_sec", base.error_delay_sec))),
        no_agents_delay_sec=max(
            0.0, float(runtime_raw.get("no_agents_delay_sec", base.no_agents_delay_sec))
        ),
        max_cycle_wait_sec=max(
            1.0, float(runtime_raw.get("max_cycle_wait_sec", base.max_cycle_wait_sec))
        ),
        restart_delay_sec=max(
            0.0, float(runtime_raw.get("restart_delay_sec", base.restart_delay_sec))
        ),
        request_timeout=max(1.0, float(runtime_raw.get("request_timeout", base.request_timeout))),
    )


def _parse_routes(raw: Dict[str, Any]) -> ApiRoutes:
    base = ApiRoutes()
    api_raw = raw.get("api")
    if not isinstance(api_raw, dict):
        api_raw = {}
    routes_raw = api_raw.get("routes")
    if not isinstance(routes_raw, dict):
        routes_raw = {}
    return ApiRoutes(
        nonce=str(routes_raw.get("nonce", base.nonce)),
        verify=str(routes_raw.get("verify", base.verify)),
        agents=str(routes_raw.get("agents", base.agents)),
        sessions=str(routes_raw.get("sessions", base.sessions)),
        fractal_info=str(routes_raw.get("fractal_info", base.fractal_info)),
        start_match=str(routes_raw.get("start_match", base.start_match)),
        start_auto_match=str(routes_raw.get("start_auto_match", base.start_auto_match)),
    )


def _parse_telegram(raw: Dict[str, Any]) -> TelegramSettings:
    tg_raw = raw.get("telegram")
    if not isinstance(tg_raw, dict):
        tg_raw = {}

    token = str(tg_raw.get("token") or os.getenv("TELEGRAM_BOT_TOKEN", "")).strip()
    chat_ids_raw = tg_raw.get("chat_ids")
    if chat_ids_raw is None:
        chat_ids_raw = os.getenv("TELEGRAM_CHAT_IDS", "")
    chat_ids: List[int] = []
    if isinstance(chat_ids_raw, str):
        for part in chat_ids_raw.split(","):
            part = part.strip()
            if part:
                try:
                    chat_ids.append(int(part))
                except ValueError:
                    continue
    elif isinstance(chat_ids_raw, list):
        for item in chat_ids_raw:
            try:
                chat_ids.append(int(item))
            except (TypeError, ValueError):
                continue

    enabled_raw = tg_raw.get("enabled")
    if enabled_raw is None:
        enabled_raw = os.getenv("TELEGRAM_ENABLED")
    enabled = _to_bool(enabled_raw, False) and bool(token)
    return TelegramSettings(enabled=enabled, token=token, chat_ids=tuple(sorted(set(chat_ids))))


def _parse_quota_scope(raw: Dict[str, Any]) -> str:
    scope = str(raw.get("quotaScope") or QUOTA_SCOPE_GLOBAL).strip().lower()
    if scope not in {QUOTA_SCOPE_GLOBAL, QUOTA_SCOPE_WALLET}:
        raise RuntimeError(
            f"quotaScope must be '{QUOTA_SCOPE_GLOBAL}' or '{QUOTA_SCOPE_WALLET}', got: {scope}"
        )
    return scope


def load_app_config(
    config_file: str = CONFIG_FILE_DEFAULT,
    *,
    keys_file: str = "",
) -> AppConfig:
    raw = _read_json(config_file)

    agent_name = str(raw.get("agentName") or "")
    if not agent_name.strip():
        raise RuntimeError(f"'agentName' is required in {config_file}")

    api_raw = raw.get("api")
    api_section = api_raw if isinstance(api_raw, dict) else {}
    api_base = (
        os.getenv("FRACTION_API_BASE", "").strip()
        or str(api_section.get("base", "")).strip()
        or API_BASE_DEFAULT
    )
    rpc_url = (
        os.getenv("FRACTION_RPC_URL", "").strip()
        or str(raw.get("rpcUrl", "")).strip()
        or RPC_URL_DEFAULT
    )

    try:
        max_games = max(1, int(raw.get("maxGames", 1)))
    except (TypeError, ValueError) as exc:
        raise RuntimeError(f"Bad integer for maxGames: {raw.get('maxGames')}") from exc

    return AppConfig(
        match_mode=str(raw.get("matchMode", "")).strip().lower(),
        agent_name=agent_name,
        max_games=max_games,
        fee=_to_decimal(raw.get("fee", "0"), "fee"),
        quota_scope=_parse_quota_scope(raw),
        api_base=api_base.rstrip("/"),
        rpc_url=rpc_url,
        routes=_parse_routes(raw),
        runtime=_parse_runtime(raw),
        telegram=_parse_telegram(raw),
        keys_file=keys_file.strip() or str(raw.get("keysFile") or KEYS_FILE_DEFAULT),
    )


def load_keys(path: str) -> List[str]:
    try:
        data = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(
            f"Please create {path} with your private keys (one per line)"
        ) from exc
    return [line.strip() for line in data.splitlines() if line.strip()]
