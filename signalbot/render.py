"""
Text rendering for signal posts and the active-trades summary.

Reads signal snapshots only; never changes them.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Iterable, Optional

from signalbot.engine import compute_result, display_result
from signalbot.journal.models import Direction, Signal, SignalStatus

_SNOWFLAKE = re.compile(r"\d{15,21}")

NO_ACTIVE_TRADES = "• No active trades right now."
NO_RESULT = "—"


def format_direction(direction: Direction) -> str:
    return "Short 🔴" if direction == Direction.SHORT else "Long 🟢"


def format_r(value: Decimal) -> str:
    """``Decimal('1.5')`` → ``+1.50R``."""
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.2f}R"


def _tp_label(n: int) -> str:
    return f"TP{n}"


def render_status_text(signal: Signal) -> str:
    lines: list[str] = []

    if signal.is_active:
        lines.append("🟢 Active")
        if signal.take_profits_hit:
            hits = ", ".join(_tp_label(n) for n in signal.take_profits_hit)
            lines.append(f"✅ {hits} hit")
        lines.append(
            "Valid for re-entry: Yes" if signal.valid_for_reentry else "Valid for re-entry: No"
        )
        if signal.stop_at_breakeven:
            lines.append("SL moved to breakeven.")
        result = display_result(signal)
        if result is not None:
            lines.append(f"Result so far: {format_r(result)}")
        return "\n".join(lines)

    lines.append("🔴 Inactive")
    if signal.status == SignalStatus.STOPPED_BE:
        note = "Stopped at breakeven"
        if signal.take_profits_hit:
            note += f" after {_tp_label(signal.take_profits_hit[-1])}"
        lines.append(note)
    elif signal.status == SignalStatus.STOPPED_OUT:
        lines.append("Stopped out")
    else:
        lines.append("Fully closed")
    lines.append("Not valid for re-entry")

    result = display_result(signal)
    lines.append(f"Final result: {format_r(result) if result is not None else NO_RESULT}")
    return "\n".join(lines)


def mention_ids(signal: Signal, role_id: Optional[int] = None) -> list[str]:
    """
    Raw role ids to ping for ``signal``: the trader role plus whatever ids
    appear in the extra mention (``123``, ``<@&123>`` and lists of them).
    """
    ids: list[str] = []
    if role_id:
        ids.append(str(role_id))
    for found in _SNOWFLAKE.findall(signal.extra_mention or ""):
        if found not in ids:
            ids.append(found)
    return ids


def render_signal_message(signal: Signal, mentions: Iterable[str] = ()) -> str:
    """Full text of a posted signal: mentions, trade plan, then status."""
    lines: list[str] = []
    ping = " ".join(f"<@&{rid}>" for rid in mentions)
    if ping:
        lines.append(ping)

    lines.append(f"**{signal.asset} | {format_direction(signal.direction)}**")
    lines.append("")
    lines.append(f"📊 Entry: {signal.entry}")
    lines.append(f"🛑 SL: {signal.stop}")
    for n, level in enumerate(signal.take_profits, start=1):
        mark = " ✅" if n in signal.take_profits_hit else ""
        planned = signal.planned_close(n)
        plan = f" ({planned:g}%)" if planned else ""
        lines.append(f"🎯 {_tp_label(n)}: {level}{plan}{mark}")

    if signal.reason:
        lines.append("")
        lines.append("📝 **Reasoning**")
        lines.append(signal.reason)

    lines.append("")
    lines.append("📍 **Status**")
    lines.append(render_status_text(signal))
    return "\n".join(lines)


def render_summary(signals: Iterable[Signal], brand_name: str = "") -> str:
    """
    Numbered list of RUN_VALID signals in store order (newest first).
    RUN_BE signals are left out; they are no longer fully valid trades.
    """
    title = f"**{brand_name} Active Trades**" if brand_name else "**Active Trades**"
    running = [s for s in signals if s.status == SignalStatus.RUN_VALID]
    if not running:
        return f"{title}\n\n{NO_ACTIVE_TRADES}"

    lines = [title, ""]
    for i, signal in enumerate(running, start=1):
        header = f"{i}. {signal.asset} {format_direction(signal.direction)}"
        if signal.message_ref is not None:
            header += f" — [view signal]({signal.message_ref.jump_url})"
        lines.append(header)
        lines.append(f"   Entry: {signal.entry} | SL: {signal.stop}")
    return "\n".join(lines)


def render_result_line(signal: Signal) -> str:
    """One-line computed-vs-shown result, used in operator replies."""
    computed = compute_result(signal)
    shown = display_result(signal)
    computed_text = format_r(computed) if computed is not None else NO_RESULT
    if signal.result_override is not None and shown is not None:
        return f"Result: {format_r(shown)} (override; computed {computed_text})"
    return f"Result: {computed_text}"
