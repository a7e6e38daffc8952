from __future__ import annotations

import asyncio
import functools
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from .client import WalletClient
from .config_loader import load_keys
from .display import Display
from .models import QUOTA_SCOPE_GLOBAL, Agent, AppConfig, Session, WalletState
from .policy import MatchAttemptPolicy
from .ratelimit import SessionRateLimiter
from .telegram_bot import TelegramSupervisor
from .tools import log, ms_to_time, short_address


Sleep = Callable[[float], Awaitable[None]]
ClientFactory = Callable[[str], WalletClient]


def find_target_agent(agents: Iterable[Agent], name: str) -> Optional[Agent]:
    for agent in agents:
        if agent.name == name:
            return agent
    return None


def matching_sessions(agent: Agent, sessions: Iterable[Session]) -> List[Session]:
    wanted = agent.session_type.session_type
    return [s for s in sessions if s.session_type.session_type == wanted]


def compute_cycle_wait(sessions: Iterable[Session], ceiling: float = 60.0) -> float:
    min_duration = ceiling
    for session in sessions:
        duration = session.session_type.duration
        if 0 < duration < min_duration:
            min_duration = duration
    return min_duration


class WalletWorker:
    def __init__(
        self,
        *,
        app_config: AppConfig,
        private_key: str,
        name: str,
        limiter: SessionRateLimiter,
        display: Display,
        notifier: Optional[TelegramSupervisor] = None,
        client_factory: Optional[ClientFactory] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.app_config = app_config
        self.runtime = app_config.runtime
        self.private_key = private_key
        self.name = name
        self.limiter = limiter
        self.display = display
        self.notifier = notifier
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep
        self.policy = MatchAttemptPolicy(
            max_retries=self.runtime.max_retries,
            retry_delay=self.runtime.retry_delay_sec,
            sleep=sleep,
            scope=name,
        )
        self.state = WalletState()
        self._status = "booting"

    @property
    def status(self) -> str:
        return self._status

    def _default_client(self, private_key: str) -> WalletClient:
        return WalletClient(
            private_key,
            api_base=self.app_config.api_base,
            rpc_url=self.app_config.rpc_url,
            routes=self.app_config.routes,
            timeout=self.runtime.request_timeout,
        )

    async def _call(self, fn, *args, **kwargs):
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def _wait(self, seconds: float, message: Optional[str] = None) -> None:
        if message:
            log(self.name, message)
        await self._sleep(seconds)

    async def _notify(self, text: str) -> None:
        if self.notifier is not None:
            await self.notifier.notify(f"{self.name}: {text}")

    async def _wait_for_quota(self) -> None:
        self._status = f"waiting_quota {self.limiter.usage()}"
        await self._notify(f"session limit reached ({self.limiter.usage()})")
        await self.limiter.wait_for_reset()

    async def _hydrate(self, client: WalletClient) -> WalletState:
        self._status = "connecting"
        address = await self._call(client.connect)
        self.name = short_address(address)
        self.policy.scope = self.name
        await self._call(client.get_balance)

        self._status = "authenticating"
        await self._call(client.login)

        self._status = "discovering"
        await self._call(client.get_agents)
        await self._call(client.get_sessions)
        await self._call(client.get_fractal_info)

        state = client.state()
        self.display.update_wallet(state)
        self.display.update_agents(state.address, state.agents)
        self.display.update_fractal_info(state.address, state.fractal_info)
        return state

    async def _start(self, client: WalletClient, agent: Agent, session: Session) -> Any:
        if self.app_config.is_auto_match:
            return await self._call(
                client.start_auto_match,
                agent,
                session,
                self.app_config.max_games,
                self.app_config.fee,
            )
        return await self._call(client.start_match, agent, session)

    async def run_once(self) -> None:
        client: Optional[WalletClient] = None
        try:
            if not self.limiter.can_start():
                await self._wait_for_quota()
                return

            client = self._client_factory(self.private_key)
            self.state = await self._hydrate(client)

            if not self.state.agents:
                self._status = "no_agents"
                await self._wait(
                    self.runtime.no_agents_delay_sec,
                    "No agents available. Please create an agent first",
                )
                raise RuntimeError("No agents available")

            target = find_target_agent(self.state.agents, self.app_config.agent_name)
            if target is None:
                raise RuntimeError(f"Target agent {self.app_config.agent_name} not found")

            self._status = "matching"
            for session in matching_sessions(target, self.state.sessions):
                if target.automation_enabled:
                    log(self.name, "Already automated, skip to next agent...")
                    continue

                result = await self.policy.attempt(
                    functools.partial(self._start, client, target, session),
                    guard=self.limiter.can_start,
                )
                if not result:
                    if not self.limiter.can_start():
                        await self._wait_for_quota()
                        return
                    continue

                self.limiter.record_start()
                log(self.name, f"Sessions used: {self.limiter.usage()}")
                await self._notify(
                    f"match started for {target.name} "
                    f"[{session.session_type.session_type}] ({self.limiter.usage()})"
                )

                if not self.limiter.can_start():
                    await self._wait_for_quota()
                    return

                await self._wait(self.runtime.between_matches_sec, "Waiting before next match")

            min_duration = compute_cycle_wait(self.state.sessions, self.runtime.max_cycle_wait_sec)
            self._status = "cooling_down"
            await self._wait(
                min_duration,
                f"Processing completed. Waiting for {ms_to_time(min_duration * 1000)}",
            )
        except asyncio.CancelledError:
            self._status = "stopped"
            raise
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._status = f"errored:{message}"
            log(self.name, f"Error: {message}. Retrying in {self.runtime.error_delay_sec:g}s...")
            await self._sleep(self.runtime.error_delay_sec)
        finally:
            if client is not None:
                client.close()

    async def run(self) -> None:
        while True:
            await self.run_once()


WorkerFactory = Callable[..., WalletWorker]


class BotEngine:
    """Runs one wallet loop per key and restarts everything on escaped errors."""

    def __init__(
        self,
        app_config: AppConfig,
        *,
        keys_loader: Callable[[str], List[str]] = load_keys,
        client_factory: Optional[ClientFactory] = None,
        worker_factory: WorkerFactory = WalletWorker,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.app_config = app_config
        self.display = Display()
        self._keys_loader = keys_loader
        self._client_factory = client_factory
        self._worker_factory = worker_factory
        self._sleep = sleep
        self._limiters: Dict[str, SessionRateLimiter] = {}
        self._workers: Dict[str, WalletWorker] = {}
        self.telegram = TelegramSupervisor(
            settings=app_config.telegram,
            workers_snapshot=self.workers_snapshot,
            quota_snapshot=self.quota_snapshot,
            wallets_snapshot=self.display.snapshot,
            logger=lambda msg: log("telegram", msg),
        )

    def workers_snapshot(self) -> Dict[str, str]:
        return {worker.name: worker.status for worker in self._workers.values()}

    def quota_snapshot(self) -> Dict[str, str]:
        return {limiter.scope: limiter.usage() for limiter in self._limiters.values()}

    def limiter_for(self, private_key: str, name: str) -> SessionRateLimiter:
        if self.app_config.quota_scope == QUOTA_SCOPE_GLOBAL:
            key, scope = QUOTA_SCOPE_GLOBAL, QUOTA_SCOPE_GLOBAL
        else:
            key, scope = private_key, name
        limiter = self._limiters.get(key)
        if limiter is None:
            limiter = SessionRateLimiter(
                limit=self.app_config.runtime.session_limit,
                scope=scope,
                sleep=self._sleep,
            )
            self._limiters[key] = limiter
        return limiter

    async def run_wallets(self) -> None:
        log("bot", "Starting Fraction battle bot...")
        keys = self._keys_loader(self.app_config.keys_file)
        if not keys:
            raise RuntimeError(f"No private keys found in {self.app_config.keys_file}")
        log("bot", f"Loaded {len(keys)} wallet(s)")

        self._workers = {}
        tasks: List[asyncio.Task[None]] = []
        for idx, key in enumerate(keys):
            name = f"wallet-{idx + 1}"
            worker = self._worker_factory(
                app_config=self.app_config,
                private_key=key,
                name=name,
                limiter=self.limiter_for(key, name),
                display=self.display,
                notifier=self.telegram,
                client_factory=self._client_factory,
                sleep=self._sleep,
            )
            self._workers[name] = worker
            tasks.append(asyncio.create_task(worker.run(), name=f"worker:{name}"))

        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def run(self) -> int:
        await self.telegram.start()
        try:
            while True:
                try:
                    await self.run_wallets()
                    return 0
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    log("bot", f"Critical error: {exc}")
                    log("bot", "Restarting bot...")
                    await self._sleep(self.app_config.runtime.restart_delay_sec)
        finally:
            await self.telegram.stop()
