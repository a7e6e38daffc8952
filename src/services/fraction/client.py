from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests
from eth_account import Account
from eth_account.messages import encode_defunct
from requests.adapters import HTTPAdapter

from .models import Agent, ApiRoutes, Session, SessionType, WalletState


WEI_PER_ETH = Decimal(10) ** 18
SIGN_IN_DOMAIN = "dapp.fractionai.xyz"
SIGN_IN_CHAIN_ID = 11155111


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_session_type(raw: Any) -> SessionType:
    data = raw if isinstance(raw, dict) else {}
    return SessionType(
        session_type=str(data.get("sessionType") or "").strip(),
        duration_per_round=_to_float(data.get("durationPerRound")),
        rounds=_to_int(data.get("rounds")),
        type_id=str(data.get("id") or ""),
    )


def parse_agent(raw: Dict[str, Any]) -> Agent:
    return Agent(
        agent_id=str(raw.get("id", "")),
        name=str(raw.get("name", "")),
        session_type=parse_session_type(raw.get("sessionType")),
        automation_enabled=bool(raw.get("automationEnabled")),
        raw=raw,
    )


def parse_session(raw: Dict[str, Any]) -> Session:
    return Session(
        session_id=str(raw.get("id", "")),
        session_type=parse_session_type(raw.get("sessionType")),
        raw=raw,
    )


def _results(payload: Any, *keys: str) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        for key in keys:
            items = payload.get(key)
            if isinstance(items, list):
                return [x for x in items if isinstance(x, dict)]
    if isinstance(payload, list):
        return [x for x in payload if isinstance(x, dict)]
    return []


def build_sign_in_message(address: str, nonce: str, issued_at: Optional[datetime] = None) -> str:
    issued = issued_at or datetime.now(tz=timezone.utc)
    stamp = issued.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + (
        f"{issued.microsecond // 1000:03d}Z"
    )
    return (
        f"{SIGN_IN_DOMAIN} wants you to sign in with your Ethereum account:\n"
        f"{address}\n\n"
        "Sign in with your wallet to Fraction AI.\n\n"
        f"URI: https://{SIGN_IN_DOMAIN}\n"
        "Version: 1\n"
        f"Chain ID: {SIGN_IN_CHAIN_ID}\n"
        f"Nonce: {nonce}\n"
        f"Issued At: {stamp}"
    )


class WalletClient:
    """Remote operations for one wallet.

    Every call is blocking; the engine runs them through ``asyncio.to_thread``.
    The hydrated projection is available from :meth:`state` and is rebuilt
    from scratch by creating a new client on every loop iteration.
    """

    def __init__(
        self,
        private_key: str,
        *,
        api_base: str,
        rpc_url: str,
        routes: ApiRoutes,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.private_key = private_key
        self.api_base = api_base.rstrip("/")
        self.rpc_url = rpc_url
        self.routes = routes
        self.timeout = timeout
        self.session = session or requests.Session()
        adapter = HTTPAdapter(pool_connections=4, pool_maxsize=4, max_retries=0)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)
        self.session.headers.update(
            {
                "accept": "application/json, text/plain, */*",
                "origin": f"https://{SIGN_IN_DOMAIN}",
                "referer": f"https://{SIGN_IN_DOMAIN}/",
                "user-agent": (
                    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
                    "AppleWebKit/537.36 (KHTML, like Gecko) "
                    "Chrome/144.0.0.0 Safari/537.36"
                ),
            }
        )

        self.address = ""
        self.balance: Optional[Decimal] = None
        self.access_token = ""
        self.user: Dict[str, Any] = {}
        self.agents: List[Agent] = []
        self.sessions: List[Session] = []
        self.fractal_info: Dict[str, Any] = {}

    def _path(self, path: str, **kwargs: str) -> str:
        rendered = path.format(**kwargs)
        if rendered.startswith("http://") or rendered.startswith("https://"):
            return rendered
        if not rendered.startswith("/"):
            rendered = "/" + rendered
        return f"{self.api_base}{rendered}"

    def _headers(self) -> Dict[str, str]:
        headers = {"x-request-id": str(uuid.uuid4())}
        if self.access_token:
            headers["authorization"] = f"Bearer {self.access_token}"
            headers["allowed-state"] = "na"
        return headers

    def _raise_for_error(self, response: requests.Response) -> None:
        if response.status_code < 400:
            return
        message = response.text
        try:
            payload = response.json()
            if isinstance(payload, dict) and payload.get("error"):
                message = str(payload["error"])
            elif isinstance(payload, dict) and payload.get("message"):
                message = str(payload["message"])
            else:
                message = json.dumps(payload, ensure_ascii=False)
        except ValueError:
            pass
        raise RuntimeError(f"HTTP {response.status_code}: {message}")

    def _json_or_text(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self.session.get(
            path,
            params=params or {},
            headers=self._headers(),
            timeout=self.timeout,
        )
        self._raise_for_error(response)
        return self._json_or_text(response)

    def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        response = self.session.post(
            path,
            json=payload,
            headers={**self._headers(), "content-type": "application/json"},
            timeout=self.timeout,
        )
        self._raise_for_error(response)
        return self._json_or_text(response)

    def _require_login(self) -> str:
        user_id = str(self.user.get("id", ""))
        if not self.access_token or not user_id:
            raise RuntimeError("Wallet is not logged in")
        return user_id

    def connect(self) -> str:
        try:
            account = Account.from_key(self.private_key)
        except Exception as exc:
            raise RuntimeError(f"Invalid private key: {exc}") from exc
        self.address = account.address
        return self.address

    def get_balance(self) -> Decimal:
        if not self.address:
            raise RuntimeError("Wallet is not connected")
        payload = self._post(
            self.rpc_url,
            {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "eth_getBalance",
                "params": [self.address, "latest"],
            },
        )
        if not isinstance(payload, dict) or "result" not in payload:
            raise RuntimeError(f"Bad balance response: {payload}")
        self.balance = Decimal(int(str(payload["result"]), 16)) / WEI_PER_ETH
        return self.balance

    def login(self) -> Dict[str, Any]:
        if not self.address:
            raise RuntimeError("Wallet is not connected")
        nonce_payload = self._get(self._path(self.routes.nonce))
        nonce = ""
        if isinstance(nonce_payload, dict):
            nonce = str(nonce_payload.get("nonce", "")).strip()
        if not nonce:
            raise RuntimeError("Login failed: empty nonce")

        message = build_sign_in_message(self.address, nonce)
        signed = Account.sign_message(encode_defunct(text=message), self.private_key)
        signature = signed.signature.hex()
        if not signature.startswith("0x"):
            signature = "0x" + signature

        payload = self._post(
            self._path(self.routes.verify),
            {"message": message, "signature": signature, "referralCode": ""},
        )
        if not isinstance(payload, dict) or not payload.get("accessToken"):
            raise RuntimeError("Login failed: no access token in response")
        self.access_token = str(payload["accessToken"])
        user = payload.get("user")
        self.user = user if isinstance(user, dict) else {}
        return self.user

    def get_agents(self) -> List[Agent]:
        user_id = self._require_login()
        payload = self._get(self._path(self.routes.agents, user_id=user_id))
        self.agents = [parse_agent(x) for x in _results(payload, "agents", "results")]
        return self.agents

    def get_sessions(self) -> List[Session]:
        user_id = self._require_login()
        payload = self._get(
            self._path(self.routes.sessions, user_id=user_id),
            {"pageSize": 10, "pageNumber": 1, "status": "live"},
        )
        self.sessions = [parse_session(x) for x in _results(payload, "sessions", "results")]
        return self.sessions

    def get_fractal_info(self) -> Dict[str, Any]:
        user_id = self._require_login()
        payload = self._get(self._path(self.routes.fractal_info, user_id=user_id))
        self.fractal_info = payload if isinstance(payload, dict) else {"raw": payload}
        return self.fractal_info

    def start_match(self, agent: Agent, session: Session) -> Any:
        user_id = self._require_login()
        payload = {
            "userId": user_id,
            "agentId": agent.agent_id,
            "entryFees": session.raw.get("entryFees", 0),
            "sessionTypeId": session.session_type.type_id or session.session_type.session_type,
        }
        return self._post(self._path(self.routes.start_match), payload)

    def start_auto_match(
        self,
        agent: Agent,
        session: Session,
        max_games: int,
        fee: Decimal,
    ) -> Any:
        user_id = self._require_login()
        payload = {
            "userId": user_id,
            "agentId": agent.agent_id,
            "sessionTypeId": session.session_type.type_id or session.session_type.session_type,
            "maxGames": int(max_games),
            "feeTier": str(fee),
            "maxParallelGames": 5,
        }
        return self._post(self._path(self.routes.start_auto_match), payload)

    def state(self) -> WalletState:
        return WalletState(
            address=self.address,
            balance=self.balance,
            user=dict(self.user),
            agents=list(self.agents),
            sessions=list(self.sessions),
            fractal_info=dict(self.fractal_info),
        )

    def close(self) -> None:
        self.session.close()
