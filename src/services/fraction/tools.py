from __future__ import annotations

from datetime import datetime


def now_str() -> str:
    return datetime.now().strftime("%H:%M:%S")


def log(scope: str, message: str) -> None:
    print(f"[{now_str()}] [{scope}] {message}", flush=True)


def short_address(address: str) -> str:
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


def ms_to_time(ms: float) -> str:
    total = max(0, int(ms // 1000))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"

