"""
Signal Bot — entry point.

Posts operator trade signals to Discord, keeps them updated as the trade
plays out, and maintains an active-trades summary.

Required env vars (a .env file in the working directory is loaded first):
    DISCORD_BOT_TOKEN           Discord bot token
    OWNER_ID                    User id allowed to create and manage signals
    SIGNALS_CHANNEL_ID          Channel for signal posts
    CURRENT_TRADES_CHANNEL_ID   Channel for the active-trades summary

Optional: GUILD_ID, CONTROL_CHANNEL_ID, TRADER_ROLE_ID (or MENTION_ROLE_ID),
BRAND_NAME, SIGNALS_DB_PATH, LOG_LEVEL.
"""

import sys

from signalbot.config import BotConfig
from signalbot.errors import ConfigError


def main() -> None:
    try:
        config = BotConfig.from_env()
    except ConfigError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        sys.exit(1)

    from signalbot.discord_bridge.bot import run_bot

    run_bot(config)


if __name__ == "__main__":
    main()
