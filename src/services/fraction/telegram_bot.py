from __future__ import annotations

import asyncio
import functools
from typing import Awaitable, Callable, Dict, List, Optional

from aiogram import Bot, Dispatcher, Router
from aiogram.filters import Command
from aiogram.types import Message

from .models import TelegramSettings


Snapshot = Callable[[], Dict[str, str]]

HELP_TEXT = "Fraction battle bot online.\nCommands: /workers /quota /wallets"
# command -> (title, text when the snapshot is empty)
STATUS_VIEWS: Dict[str, tuple] = {
    "workers": ("Workers:", "No workers running"),
    "quota": ("Sessions used:", "No sessions yet"),
    "wallets": ("Wallets:", "No wallets loaded yet"),
}


def render_snapshot(title: str, snapshot: Dict[str, str], empty: str) -> str:
    if not snapshot:
        return empty
    lines: List[str] = [title]
    lines.extend(f"{name}: {state}" for name, state in sorted(snapshot.items()))
    return "\n".join(lines)


class TelegramSupervisor:
    """Optional status surface: match and quota notifications plus read-only commands.

    Notifications are queued and delivered by a background sender task so a
    slow Telegram API never blocks a wallet loop. Nothing is queued unless the
    bot authenticated successfully.
    """

    def __init__(
        self,
        *,
        settings: TelegramSettings,
        workers_snapshot: Snapshot,
        quota_snapshot: Snapshot,
        wallets_snapshot: Snapshot,
        logger: Callable[[str], None],
    ) -> None:
        self.settings = settings
        self.log = logger
        self._views: Dict[str, Snapshot] = {
            "workers": workers_snapshot,
            "quota": quota_snapshot,
            "wallets": wallets_snapshot,
        }
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=2000)
        self._bot: Optional[Bot] = None
        self._dp: Optional[Dispatcher] = None
        self._tasks: Dict[str, asyncio.Task[None]] = {}
        self._running = False

    @property
    def enabled(self) -> bool:
        return bool(self.settings.enabled and self.settings.token)

    @property
    def running(self) -> bool:
        return self._running

    def is_allowed(self, chat_id: int) -> bool:
        return not self.settings.chat_ids or chat_id in self.settings.chat_ids

    def reply_for(self, command: str) -> str:
        if command not in STATUS_VIEWS:
            return HELP_TEXT
        title, empty = STATUS_VIEWS[command]
        return render_snapshot(title, self._views[command](), empty)

    def _handler(self, command: str) -> Callable[[Message], Awaitable[None]]:
        async def handle(message: Message) -> None:
            if self.is_allowed(message.chat.id):
                await message.answer(self.reply_for(command))

        return handle

    def _build_router(self) -> Router:
        router = Router()
        for command in ("start", *STATUS_VIEWS):
            router.message.register(self._handler(command), Command(command))
        return router

    def _spawn(self, name: str, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro, name=f"tg-{name}")
        task.add_done_callback(functools.partial(self._on_task_done, name=name))
        self._tasks[name] = task

    def _on_task_done(self, task: asyncio.Task[None], *, name: str) -> None:
        if task.cancelled() or task.exception() is None:
            return
        self._running = False
        self.log(f"[tg] {name} crashed: {task.exception()}")

    async def start(self) -> None:
        if not self.enabled:
            return
        bot = Bot(self.settings.token)
        try:
            me = await bot.get_me()
        except Exception as exc:
            self.log(f"[tg] bot auth failed: {exc}")
            await bot.session.close()
            return
        self.log(f"[tg] connected as @{me.username}" if me.username else f"[tg] connected as id={me.id}")

        self._bot = bot
        self._dp = Dispatcher()
        self._dp.include_router(self._build_router())
        self._spawn("sender", self._sender_loop(bot))
        self._spawn("polling", self._dp.start_polling(bot, handle_signals=False))
        self._running = True
        self.log("[tg] bot started")

    async def _sender_loop(self, bot: Bot) -> None:
        while True:
            text = await self._queue.get()
            try:
                for chat_id in self.settings.chat_ids:
                    try:
                        await bot.send_message(chat_id=chat_id, text=text)
                    except Exception as exc:
                        self.log(f"[tg] send failed chat={chat_id}: {exc}")
            finally:
                self._queue.task_done()

    async def notify(self, text: str) -> None:
        if not self._running:
            return
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            self.log("[tg] queue full, dropping notification")

    async def stop(self) -> None:
        was_running = self._running or bool(self._tasks)
        self._running = False
        for name in ("polling", "sender"):
            task = self._tasks.pop(name, None)
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                self.log(f"[tg] {name} stop error: {exc}")

        if self._bot is not None:
            await self._bot.session.close()
        self._bot = None
        self._dp = None
        if was_running:
            self.log("[tg] bot stopped")
