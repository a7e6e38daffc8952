from __future__ import annotations

import argparse
import asyncio
import os
import sys

from .config_loader import CONFIG_FILE_DEFAULT, load_app_config, load_keys
from .engine import BotEngine
from .models import AppConfig
from .tools import log


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fraction AI battle automation bot")
    parser.add_argument(
        "--config",
        default=os.getenv("FRACTION_CONFIG", CONFIG_FILE_DEFAULT),
        help="Path to config JSON",
    )
    parser.add_argument(
        "--keys",
        default=os.getenv("FRACTION_KEYS", ""),
        help="Path to private keys file (one per line); overrides keysFile from config",
    )
    return parser.parse_args()


async def _run(app_config: AppConfig) -> int:
    engine = BotEngine(app_config)
    return await engine.run()


def main() -> int:
    args = parse_args()

    try:
        app_config = load_app_config(args.config, keys_file=args.keys)
    except Exception as e:
        log("bot", f"CONFIG ERROR: {e}")
        return 1

    try:
        keys = load_keys(app_config.keys_file)
    except Exception as e:
        log("bot", f"KEYS ERROR: {e}")
        return 1
    if not keys:
        log("bot", f"KEYS ERROR: No private keys found in {app_config.keys_file}")
        return 1

    mode = "auto-match" if app_config.is_auto_match else "manual match"
    log("bot", f"Mode: {mode} agent={app_config.agent_name} quota_scope={app_config.quota_scope}")
    if app_config.is_auto_match:
        log("bot", f"Auto-match: max_games={app_config.max_games} fee={app_config.fee}")

    try:
        return asyncio.run(_run(app_config))
    except KeyboardInterrupt:
        log("bot", "Stopped by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
