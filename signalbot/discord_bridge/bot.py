"""
Signal Discord Bot — implementation module.

Handles:
1. Slash commands: /ping (health check) and /signal (create a signal)
2. Owner control panels (see controls.py) for every active signal
3. Webhook posting of signal messages and the active-trades summary

Called by signalbot/bot.py via run_bot().
"""

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from signalbot.config import BotConfig
from signalbot.discord_bridge.controls import (
    SignalControlView,
    control_panel_text,
    run_operator_action,
)
from signalbot.discord_bridge.poster import WebhookPoster
from signalbot.errors import ExternalPostError, InvalidInputError
from signalbot.journal.models import Signal
from signalbot.journal.store import JsonSignalStore, SignalRepository
from signalbot.service import SignalDesk, SignalDraft

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Bot setup
# ---------------------------------------------------------------------------

intents = discord.Intents.default()


class SignalBot(commands.Bot):
    def __init__(self, config: BotConfig, store: SignalRepository):
        super().__init__(command_prefix="!", intents=intents)
        self.config = config
        self.desk = SignalDesk(
            config,
            store,
            signals_poster=WebhookPoster(self, config.signals_channel_id, config.brand_name),
            summary_poster=WebhookPoster(self, config.current_trades_channel_id, config.brand_name),
        )

    async def setup_hook(self) -> None:
        self.tree.add_command(ping_command)
        self.tree.add_command(signal_command)

        # Keep buttons of still-running signals alive across restarts
        active = await self.desk.active_signals()
        for signal in active:
            self.add_view(SignalControlView(signal))
        logger.info(f"Registered control panels for {len(active)} active signal(s)")

        if self.config.guild_id:
            guild = discord.Object(id=self.config.guild_id)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
        else:
            synced = await self.tree.sync()
        logger.info(f"Synced {len(synced)} slash command(s)")

    async def on_ready(self) -> None:
        logger.info(f"Signal bot connected as {self.user} (id: {self.user.id})")
        try:
            await self.desk.refresh_summary()
        except Exception as exc:
            logger.error(f"Summary refresh on startup failed: {exc}", exc_info=True)

    async def _control_channel(self) -> discord.abc.Messageable:
        channel_id = self.config.control_channel_id
        return self.get_channel(channel_id) or await self.fetch_channel(channel_id)

    async def post_controls(self, interaction: discord.Interaction, signal: Signal) -> None:
        """
        Post the control panel: in the control channel when configured,
        otherwise as an ephemeral message only the owner sees.
        """
        view = SignalControlView(signal)
        text = control_panel_text(signal)
        try:
            if self.config.control_channel_id:
                channel = await self._control_channel()
                msg = await channel.send(text, view=view)
                await self.desk.attach_controls(signal.id, msg.id)
            else:
                await interaction.followup.send(text, view=view, ephemeral=True)
        except discord.HTTPException as exc:
            raise ExternalPostError(
                f"Control panel for {signal.id} failed: {exc}",
                user_message="⚠️ Signal posted, but the control panel could not be sent.",
            ) from exc

    async def retire_controls(self, signal: Signal) -> None:
        """Remove the control panel of a finished or deleted signal."""
        if not (signal.control_message_id and self.config.control_channel_id):
            return
        try:
            channel = await self._control_channel()
            await channel.get_partial_message(signal.control_message_id).delete()
        except discord.NotFound:
            pass
        except discord.HTTPException as exc:
            logger.warning(f"Could not remove control panel for {signal.id}: {exc}")

    async def replace_controls(self, interaction: discord.Interaction, signal: Signal) -> None:
        """Swap the panel for one that matches the signal's current TP levels."""
        await self.retire_controls(signal)
        try:
            await self.post_controls(interaction, signal)
        except ExternalPostError as exc:
            logger.warning(str(exc))
            await interaction.followup.send(
                "⚠️ TP levels saved, but the new control panel could not be sent.",
                ephemeral=True,
            )


# ---------------------------------------------------------------------------
# Slash commands
# ---------------------------------------------------------------------------

ASSET_CHOICES = [
    app_commands.Choice(name=name, value=name) for name in ("BTC", "ETH", "SOL", "OTHER")
]
DIRECTION_CHOICES = [
    app_commands.Choice(name="LONG", value="LONG"),
    app_commands.Choice(name="SHORT", value="SHORT"),
]

Percent = app_commands.Range[float, 0.0, 100.0]


@app_commands.command(name="ping", description="Check that the bot is alive")
async def ping_command(interaction: discord.Interaction) -> None:
    latency_ms = round(interaction.client.latency * 1000)
    await interaction.response.send_message(f"🏓 Pong! ({latency_ms} ms)", ephemeral=True)


@app_commands.command(name="signal", description="Create a new trade signal")
@app_commands.describe(
    asset="BTC/ETH/SOL or select OTHER and fill custom_asset",
    direction="LONG or SHORT",
    entry="Entry price",
    sl="Stop loss",
    tp1="TP1 price",
    tp2="TP2 price",
    tp3="TP3 price",
    tp4="TP4 price",
    tp5="TP5 price",
    reason="Reasoning (optional, use \\n for a new line)",
    custom_asset="Asset name when asset is OTHER",
    extra_role="Extra role to mention",
    tp1_pct="Planned % to close at TP1 (0-100)",
    tp2_pct="Planned % to close at TP2 (0-100)",
    tp3_pct="Planned % to close at TP3 (0-100)",
    tp4_pct="Planned % to close at TP4 (0-100)",
    tp5_pct="Planned % to close at TP5 (0-100)",
)
@app_commands.choices(asset=ASSET_CHOICES, direction=DIRECTION_CHOICES)
async def signal_command(
    interaction: discord.Interaction,
    asset: app_commands.Choice[str],
    direction: app_commands.Choice[str],
    entry: str,
    sl: str,
    tp1: Optional[str] = None,
    tp2: Optional[str] = None,
    tp3: Optional[str] = None,
    tp4: Optional[str] = None,
    tp5: Optional[str] = None,
    reason: Optional[str] = None,
    custom_asset: Optional[str] = None,
    extra_role: Optional[discord.Role] = None,
    tp1_pct: Optional[Percent] = None,
    tp2_pct: Optional[Percent] = None,
    tp3_pct: Optional[Percent] = None,
    tp4_pct: Optional[Percent] = None,
    tp5_pct: Optional[Percent] = None,
) -> None:
    asset_name = asset.value
    if asset_name == "OTHER":
        asset_name = (custom_asset or "").strip()

    draft = SignalDraft(
        asset=asset_name,
        direction=direction.value,
        entry=entry,
        stop=sl,
        take_profits=(tp1, tp2, tp3, tp4, tp5),
        take_profit_plan=(tp1_pct, tp2_pct, tp3_pct, tp4_pct, tp5_pct),
        reason=reason.replace("\\n", "\n") if reason else None,
        extra_mention=str(extra_role.id) if extra_role else None,
    )

    async def create(desk: SignalDesk, user_id: int) -> Signal:
        if not draft.asset:
            raise InvalidInputError(
                "OTHER without custom_asset",
                user_message="❌ Fill custom_asset when asset is OTHER.",
            )
        signal = await desk.create_signal(user_id, draft)
        await interaction.client.post_controls(interaction, signal)
        return signal

    await run_operator_action(
        interaction,
        create,
        lambda s: f"✅ Signal posted: {s.message_ref.jump_url}" if s and s.message_ref else "✅ Signal posted.",
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run_bot(config: Optional[BotConfig] = None) -> None:
    """Configure logging and start the Discord bot. Called by signalbot/bot.py."""
    config = config or BotConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    store = JsonSignalStore(config.db_path)
    bot = SignalBot(config, store)

    logger.info(f"Starting signal bot (data file: {config.db_path})...")
    bot.run(config.token, log_handler=None)
