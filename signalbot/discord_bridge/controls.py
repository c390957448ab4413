"""
Owner control panel for a signal.

Each button carries a ``sig:<code>:<signal id>`` custom id so the panel keeps
working after a restart (views for active signals are re-registered in
``SignalBot.setup_hook``). The code is mapped to a concrete operation when
the panel is built, never parsed back out of the string.

Buttons:
  - TP1..TPn    → mark take-profit n; books the planned close %, or asks
                  for one in a modal when no plan is set
  - SL → BE     → flag stop moved to breakeven
  - Partial     → modal: close price + %
  - Stopped BE  → modal: optional final R
  - Stopped Out → modal: optional final R
  - Fully Close → modal: close price / % or final R
  - Edit TPs, Edit Plan, Edit Trade, Edit Roles → correction modals
  - Delete      → remove the signal and its messages
"""

import logging
from typing import Awaitable, Callable, Optional, Union

import discord

from signalbot.engine import is_number
from signalbot.errors import InvalidInputError, SignalBotError
from signalbot.journal.models import MAX_TAKE_PROFITS, Signal
from signalbot.render import format_direction, render_result_line
from signalbot.service import SignalDesk

logger = logging.getLogger(__name__)

CONTROL_PREFIX = "sig"

Operation = Callable[[SignalDesk, int], Awaitable[Optional[Signal]]]
SuccessText = Union[str, Callable[[Optional[Signal]], str]]


def control_custom_id(code: str, signal_id: str) -> str:
    return f"{CONTROL_PREFIX}:{code}:{signal_id}"


def control_panel_text(signal: Signal) -> str:
    return f"🎛️ Controls — {signal.asset} {format_direction(signal.direction)} (`{signal.id}`)"


# ---------------------------------------------------------------------------
# Interaction boundary
# ---------------------------------------------------------------------------

async def _reply(interaction: discord.Interaction, text: str) -> None:
    try:
        if interaction.response.is_done():
            await interaction.followup.send(text, ephemeral=True)
        else:
            await interaction.response.send_message(text, ephemeral=True)
    except discord.HTTPException as exc:
        logger.warning(f"Could not reply to interaction: {exc}")


async def run_operator_action(
    interaction: discord.Interaction,
    operation: Operation,
    success: SuccessText,
    retire: bool = False,
) -> Optional[Signal]:
    """
    Run ``operation(desk, user_id)`` and report the outcome ephemerally.

    Bot errors become their short user message; anything else is logged and
    reported as an internal error. Nothing is raised to discord.py.
    The control panel is removed once the signal is finished, or always
    when ``retire`` is set.
    """
    bot = interaction.client
    try:
        if not interaction.response.is_done():
            await interaction.response.defer(ephemeral=True, thinking=True)
        signal = await operation(bot.desk, interaction.user.id)
    except SignalBotError as exc:
        logger.warning(f"Operator action failed for user {interaction.user.id}: {exc}")
        await _reply(interaction, exc.user_message)
        return None
    except Exception as exc:
        logger.error(f"Interaction error: {exc}", exc_info=True)
        await _reply(interaction, "❌ Internal error.")
        return None

    if signal is not None and (retire or not signal.is_active):
        await bot.retire_controls(signal)
    await _reply(interaction, success(signal) if callable(success) else success)
    return signal


# ---------------------------------------------------------------------------
# Modals
# ---------------------------------------------------------------------------

class CloseTradeModal(discord.ui.Modal, title="Fully close trade"):
    close_price = discord.ui.TextInput(label="Close price", required=False, max_length=32)
    close_pct = discord.ui.TextInput(
        label="Close % (blank = everything still open)", required=False, max_length=8
    )
    final_r = discord.ui.TextInput(
        label="Final R override (optional)", required=False, max_length=16
    )

    def __init__(self, signal: Signal):
        super().__init__(custom_id=f"{CONTROL_PREFIX}-modal:close:{signal.id}")
        self.signal_id = signal.id

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await run_operator_action(
            interaction,
            lambda desk, uid: desk.close(
                uid,
                self.signal_id,
                price=self.close_price.value,
                percent=self.close_pct.value,
                final_result=self.final_r.value,
            ),
            lambda s: f"✅ Fully closed. {render_result_line(s)}",
        )


class StopModal(discord.ui.Modal):
    final_r = discord.ui.TextInput(
        label="Final R override (optional)",
        placeholder="e.g. 0, -1, -0.5",
        required=False,
        max_length=16,
    )

    def __init__(self, signal: Signal, breakeven: bool):
        code = "stopbe" if breakeven else "stopped"
        super().__init__(
            title="Stopped at breakeven" if breakeven else "Stopped out",
            custom_id=f"{CONTROL_PREFIX}-modal:{code}:{signal.id}",
        )
        self.signal_id = signal.id
        self.breakeven = breakeven

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await run_operator_action(
            interaction,
            lambda desk, uid: desk.stop(
                uid, self.signal_id, self.breakeven, final_result=self.final_r.value
            ),
            lambda s: f"✅ {self.title}. {render_result_line(s)}",
        )


class PartialCloseModal(discord.ui.Modal, title="Partial close"):
    close_price = discord.ui.TextInput(label="Close price", max_length=32)
    close_pct = discord.ui.TextInput(label="Close % of the position", max_length=8)

    def __init__(self, signal: Signal):
        super().__init__(custom_id=f"{CONTROL_PREFIX}-modal:partial:{signal.id}")
        self.signal_id = signal.id

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await run_operator_action(
            interaction,
            lambda desk, uid: desk.record_close(
                uid, self.signal_id, self.close_price.value, self.close_pct.value
            ),
            lambda s: f"✅ Partial close recorded ({self.close_pct.value}% @ {self.close_price.value}).",
        )


class TakeProfitModal(discord.ui.Modal):
    """Asks how much was closed at a TP that has no usable plan."""

    def __init__(self, signal: Signal, index: int):
        super().__init__(
            title=f"TP{index} hit",
            custom_id=f"{CONTROL_PREFIX}-modal:tp{index}:{signal.id}",
        )
        self.signal_id = signal.id
        self.index = index
        planned = signal.planned_close(index)
        self.close_pct = discord.ui.TextInput(
            label=f"Close % at TP{index} (blank = only mark hit)",
            required=False,
            max_length=8,
            default=f"{planned:g}" if planned is not None else None,
        )
        self.add_item(self.close_pct)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await run_operator_action(
            interaction,
            lambda desk, uid: desk.mark_take_profit(
                uid, self.signal_id, self.index, percent=self.close_pct.value
            ),
            f"✅ TP{self.index} recorded.",
        )


class EditTakeProfitsModal(discord.ui.Modal, title="Edit TP levels"):
    def __init__(self, signal: Signal):
        super().__init__(custom_id=f"{CONTROL_PREFIX}-modal:edtp:{signal.id}")
        self.signal_id = signal.id
        self.previous_count = len(signal.take_profits)
        self.levels = [
            discord.ui.TextInput(
                label=f"TP{n}",
                required=False,
                max_length=32,
                default=signal.take_profit(n),
            )
            for n in range(1, MAX_TAKE_PROFITS + 1)
        ]
        for item in self.levels:
            self.add_item(item)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        signal = await run_operator_action(
            interaction,
            lambda desk, uid: desk.edit_take_profits(
                uid, self.signal_id, [item.value for item in self.levels]
            ),
            "✅ TP levels updated.",
        )
        # The panel has one button per TP, so a new count needs a new panel
        if signal is not None and signal.is_active and len(signal.take_profits) != self.previous_count:
            await interaction.client.replace_controls(interaction, signal)


class EditPlanModal(discord.ui.Modal, title="Edit close plan"):
    def __init__(self, signal: Signal):
        if not signal.take_profits:
            raise InvalidInputError(
                f"{signal.id} has no TPs", user_message="❌ Set TP levels first."
            )
        super().__init__(custom_id=f"{CONTROL_PREFIX}-modal:edplan:{signal.id}")
        self.signal_id = signal.id
        self.percents = []
        for n in range(1, len(signal.take_profits) + 1):
            planned = signal.planned_close(n)
            item = discord.ui.TextInput(
                label=f"TP{n} close % (blank = none)",
                required=False,
                max_length=8,
                default=f"{planned:g}" if planned is not None else None,
            )
            self.percents.append(item)
            self.add_item(item)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await run_operator_action(
            interaction,
            lambda desk, uid: desk.edit_plan(
                uid, self.signal_id, [item.value for item in self.percents]
            ),
            "✅ Close plan updated.",
        )


class EditTradeModal(discord.ui.Modal, title="Edit trade"):
    def __init__(self, signal: Signal):
        super().__init__(custom_id=f"{CONTROL_PREFIX}-modal:edtrade:{signal.id}")
        self.signal_id = signal.id
        self.entry = discord.ui.TextInput(label="Entry", max_length=32, default=signal.entry)
        self.stop = discord.ui.TextInput(label="SL", max_length=32, default=signal.stop)
        self.reason = discord.ui.TextInput(
            label="Reasoning",
            style=discord.TextStyle.paragraph,
            required=False,
            max_length=1000,
            default=signal.reason,
        )
        for item in (self.entry, self.stop, self.reason):
            self.add_item(item)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await run_operator_action(
            interaction,
            lambda desk, uid: desk.edit_trade(
                uid, self.signal_id, self.entry.value, self.stop.value, self.reason.value
            ),
            "✅ Trade updated.",
        )


class EditMentionModal(discord.ui.Modal, title="Edit extra role"):
    def __init__(self, signal: Signal):
        super().__init__(custom_id=f"{CONTROL_PREFIX}-modal:edroles:{signal.id}")
        self.signal_id = signal.id
        self.extra_mention = discord.ui.TextInput(
            label="Extra role id or mention (blank = none)",
            required=False,
            max_length=64,
            default=signal.extra_mention,
        )
        self.add_item(self.extra_mention)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await run_operator_action(
            interaction,
            lambda desk, uid: desk.edit_mention(uid, self.signal_id, self.extra_mention.value),
            "✅ Extra role updated.",
        )


# ---------------------------------------------------------------------------
# Buttons
# ---------------------------------------------------------------------------

class ControlButton(discord.ui.Button):
    def __init__(
        self,
        code: str,
        signal_id: str,
        label: str,
        style: discord.ButtonStyle,
        row: int,
        handler: Callable[[discord.Interaction, str], Awaitable[None]],
    ):
        super().__init__(
            label=label,
            style=style,
            custom_id=control_custom_id(code, signal_id),
            row=row,
        )
        self.code = code
        self.signal_id = signal_id
        self._handler = handler

    async def callback(self, interaction: discord.Interaction) -> None:
        logger.info(f"Control {self.code} pressed for {self.signal_id} by {interaction.user.id}")
        await self._handler(interaction, self.signal_id)


async def _owned_signal(interaction: discord.Interaction, signal_id: str) -> Optional[Signal]:
    """Owner check and lookup before a modal opens; replies and returns None on failure."""
    desk = interaction.client.desk
    try:
        desk.authorize(interaction.user.id)
        return await desk.get_signal(signal_id)
    except SignalBotError as exc:
        await _reply(interaction, exc.user_message)
        return None


def _take_profit_handler(index: int):
    async def handle(interaction: discord.Interaction, signal_id: str) -> None:
        signal = await _owned_signal(interaction, signal_id)
        if signal is None:
            return
        planned = signal.planned_close(index)
        if index in signal.take_profits_hit or (
            planned and is_number(signal.take_profit(index))
        ):
            await run_operator_action(
                interaction,
                lambda desk, uid: desk.mark_take_profit(uid, signal_id, index),
                f"✅ TP{index} recorded.",
            )
        else:
            await interaction.response.send_modal(TakeProfitModal(signal, index))
    return handle


async def _breakeven(interaction: discord.Interaction, signal_id: str) -> None:
    await run_operator_action(
        interaction,
        lambda desk, uid: desk.set_breakeven(uid, signal_id),
        "✅ SL moved to breakeven.",
    )


async def _delete(interaction: discord.Interaction, signal_id: str) -> None:
    await run_operator_action(
        interaction,
        lambda desk, uid: desk.delete(uid, signal_id),
        "🗑️ Signal deleted.",
        retire=True,
    )


def _modal_handler(build_modal: Callable[[Signal], discord.ui.Modal]):
    """Owner check first, then open the modal (modals must be the first response)."""
    async def handle(interaction: discord.Interaction, signal_id: str) -> None:
        signal = await _owned_signal(interaction, signal_id)
        if signal is None:
            return
        try:
            modal = build_modal(signal)
        except SignalBotError as exc:
            await _reply(interaction, exc.user_message)
            return
        await interaction.response.send_modal(modal)
    return handle


class SignalControlView(discord.ui.View):
    """Persistent control panel for one signal."""

    def __init__(self, signal: Signal):
        super().__init__(timeout=None)
        self.signal_id = signal.id
        green, red = discord.ButtonStyle.green, discord.ButtonStyle.red
        grey, blurple = discord.ButtonStyle.grey, discord.ButtonStyle.blurple

        for n in range(1, len(signal.take_profits) + 1):
            self._add(f"tp{n}", f"TP{n} hit", green, 0, _take_profit_handler(n))

        self._add("be", "SL → BE", blurple, 1, _breakeven)
        self._add("partial", "Partial Close", grey, 1, _modal_handler(PartialCloseModal))
        self._add("stopbe", "Stopped BE", grey, 2,
                  _modal_handler(lambda s: StopModal(s, breakeven=True)))
        self._add("stopped", "Stopped Out", red, 2,
                  _modal_handler(lambda s: StopModal(s, breakeven=False)))
        self._add("close", "Fully Close", green, 2, _modal_handler(CloseTradeModal))
        self._add("edtp", "Edit TPs", grey, 3, _modal_handler(EditTakeProfitsModal))
        self._add("edplan", "Edit Plan", grey, 3, _modal_handler(EditPlanModal))
        self._add("edtrade", "Edit Trade", grey, 3, _modal_handler(EditTradeModal))
        self._add("edroles", "Edit Roles", grey, 3, _modal_handler(EditMentionModal))
        self._add("del", "Delete", red, 4, _delete)

    def _add(self, code, label, style, row, handler) -> None:
        self.add_item(ControlButton(code, self.signal_id, label, style, row, handler))
