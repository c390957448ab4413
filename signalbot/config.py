"""
Signal bot configuration.

Values come from the environment (a ``.env`` file is loaded first). The
result is a frozen ``BotConfig`` built once at startup and handed to every
component that needs it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from signalbot.errors import ConfigError

load_dotenv()

DEFAULT_BRAND_NAME = "JV Trades"
DEFAULT_DB_PATH = "data/signals.json"


def _required(env: Mapping[str, str], key: str) -> str:
    val = (env.get(key) or "").strip()
    if not val:
        raise ConfigError(f"Missing required env: {key}")
    return val


def _parse_id(key: str, val: str) -> int:
    """Parse a Discord snowflake id."""
    try:
        return int(val)
    except ValueError:
        raise ConfigError(f"Invalid integer for env var {key}: {val!r}") from None


def _optional_id(env: Mapping[str, str], *keys: str) -> Optional[int]:
    """First of ``keys`` that is set, parsed as an id; None if none are set."""
    for key in keys:
        val = (env.get(key) or "").strip()
        if val:
            return _parse_id(key, val)
    return None


@dataclass(frozen=True)
class BotConfig:
    token: str
    owner_id: int
    signals_channel_id: int
    current_trades_channel_id: int
    guild_id: Optional[int] = None
    control_channel_id: Optional[int] = None
    mention_role_id: Optional[int] = None
    brand_name: str = DEFAULT_BRAND_NAME
    db_path: Path = Path(DEFAULT_DB_PATH)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BotConfig":
        env = os.environ if env is None else env
        return cls(
            token=_required(env, "DISCORD_BOT_TOKEN"),
            owner_id=_parse_id("OWNER_ID", _required(env, "OWNER_ID")),
            signals_channel_id=_parse_id(
                "SIGNALS_CHANNEL_ID", _required(env, "SIGNALS_CHANNEL_ID")
            ),
            current_trades_channel_id=_parse_id(
                "CURRENT_TRADES_CHANNEL_ID", _required(env, "CURRENT_TRADES_CHANNEL_ID")
            ),
            guild_id=_optional_id(env, "GUILD_ID"),
            control_channel_id=_optional_id(env, "CONTROL_CHANNEL_ID"),
            mention_role_id=_optional_id(env, "TRADER_ROLE_ID", "MENTION_ROLE_ID"),
            brand_name=(env.get("BRAND_NAME") or "").strip() or DEFAULT_BRAND_NAME,
            db_path=Path((env.get("SIGNALS_DB_PATH") or "").strip() or DEFAULT_DB_PATH),
            log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        )
