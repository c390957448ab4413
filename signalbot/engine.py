"""
Signal lifecycle engine.

Pure functions only: ``apply`` turns (signal, action) into the next signal,
``compute_result`` derives the realised R-multiple. Nothing here touches the
store or Discord.

R-multiple of one exit:

    sign * (exit - entry) / |entry - stop| * size% / 100

where sign is +1 for LONG and -1 for SHORT. The signal's result is the sum
over all recorded closes, rounded to 2 decimals.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Any, Optional, Sequence, Union

from signalbot.journal.models import (
    MAX_TAKE_PROFITS,
    CloseFill,
    Direction,
    Signal,
    SignalStatus,
)

_CENT = Decimal("0.01")
# Numbers outside 1e-12 .. 1e12 are treated as typos, not prices
_MAX_EXPONENT = 12


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MarkTakeProfit:
    index: int

    def __post_init__(self):
        if not 1 <= self.index <= MAX_TAKE_PROFITS:
            raise ValueError(f"take-profit index must be 1..{MAX_TAKE_PROFITS}, got {self.index}")


@dataclass(frozen=True)
class SetBreakeven:
    pass


@dataclass(frozen=True)
class StopAtBreakeven:
    pass


@dataclass(frozen=True)
class StoppedOut:
    pass


@dataclass(frozen=True)
class Closed:
    pass


@dataclass(frozen=True)
class Delete:
    """Removes the signal; the store handles it, ``apply`` refuses it."""


@dataclass(frozen=True)
class RecordClose:
    """Exit ``size_percent`` of the position at ``price``; None means the remainder."""
    price: str
    size_percent: Optional[float] = None
    source: str = "MANUAL"


@dataclass(frozen=True)
class OverrideResult:
    value: str


AMENDABLE_FIELDS = frozenset({
    "entry", "stop", "take_profits", "take_profit_plan", "reason", "extra_mention",
})


@dataclass(frozen=True)
class Amend:
    """
    Correct the trade plan after posting. ``changes`` maps field names from
    AMENDABLE_FIELDS to new values; fields not named stay as they are.
    """
    changes: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        unknown = set(self.changes) - AMENDABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot amend {', '.join(sorted(unknown))}")


Action = Union[
    MarkTakeProfit,
    SetBreakeven,
    StopAtBreakeven,
    StoppedOut,
    Closed,
    Delete,
    RecordClose,
    OverrideResult,
    Amend,
]


_TERMINAL_TARGETS = {
    StopAtBreakeven: SignalStatus.STOPPED_BE,
    StoppedOut: SignalStatus.STOPPED_OUT,
    Closed: SignalStatus.CLOSED,
}


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def to_decimal(value) -> Optional[Decimal]:
    """
    Parse a price-like value; None for blanks, garbage, NaN, infinities and
    magnitudes outside 1e-12 .. 1e12. Text with commas is rejected.
    """
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    if number and not -_MAX_EXPONENT <= number.adjusted() <= _MAX_EXPONENT:
        return None
    return number


def is_number(value) -> bool:
    return to_decimal(value) is not None


def closed_percent(signal: Signal) -> float:
    return sum(c.size_percent for c in signal.closes)


def remaining_percent(signal: Signal) -> float:
    return max(0.0, 100.0 - closed_percent(signal))


def _round(value: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() + 4)
        return value.quantize(_CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def apply(signal: Signal, action: Action) -> Signal:
    """
    Return the signal that results from ``action``.

    The input is never modified. Terminal actions on a signal that is already
    terminal return it unchanged, so no action can leave a terminal status.
    """
    if isinstance(action, MarkTakeProfit):
        if action.index in signal.take_profits_hit:
            return signal
        return replace(signal, take_profits_hit=signal.take_profits_hit + (action.index,))

    if isinstance(action, SetBreakeven):
        if signal.stop_at_breakeven:
            return signal
        return replace(signal, stop_at_breakeven=True)

    if isinstance(action, (StopAtBreakeven, StoppedOut, Closed)):
        if not signal.is_active:
            return signal
        return replace(
            signal,
            status=_TERMINAL_TARGETS[type(action)],
            valid_for_reentry=False,
        )

    if isinstance(action, RecordClose):
        size = action.size_percent
        if size is None:
            size = remaining_percent(signal)
            if size <= 0:
                return signal
        fill = CloseFill(price=str(action.price), size_percent=float(size), source=action.source)
        return replace(signal, closes=signal.closes + (fill,))

    if isinstance(action, OverrideResult):
        if not is_number(action.value):
            raise ValueError(f"result override must be numeric, got {action.value!r}")
        return replace(signal, result_override=str(action.value).strip())

    if isinstance(action, Amend):
        return replace(signal, **_amended_fields(signal, action.changes))

    if isinstance(action, Delete):
        raise ValueError("Delete removes the signal from the store; it is not a transition")

    raise TypeError(f"Unhandled action: {action!r}")


def apply_all(signal: Signal, actions) -> Signal:
    for action in actions:
        signal = apply(signal, action)
    return signal


def _amended_fields(signal: Signal, changes: dict[str, Any]) -> dict[str, Any]:
    updates: dict[str, Any] = {}

    for key, label in (("entry", "Entry"), ("stop", "SL")):
        if key in changes:
            text = str(changes[key] or "").strip()
            if not text:
                raise ValueError(f"{label} is required.")
            updates[key] = text

    for key in ("reason", "extra_mention"):
        if key in changes:
            updates[key] = str(changes[key] or "").strip() or None

    levels = signal.take_profits
    if "take_profits" in changes:
        levels = _take_profit_levels(changes["take_profits"])
        for n in signal.take_profits_hit:
            if n > len(levels):
                raise ValueError(f"TP{n} was already hit and cannot be removed.")
        updates["take_profits"] = levels

    if "take_profit_plan" in changes:
        plan = tuple(changes["take_profit_plan"])
        if len(plan) > len(levels):
            raise ValueError("Planned close % given for a TP that is not set.")
    else:
        plan = signal.take_profit_plan[:len(levels)]
    for pct in plan:
        if pct is not None and not 0 <= pct <= 100:
            raise ValueError("Planned close % must be between 0 and 100.")
    if "take_profits" in changes or "take_profit_plan" in changes:
        updates["take_profit_plan"] = plan + (None,) * (len(levels) - len(plan))

    return updates


def _take_profit_levels(values: Sequence[Optional[str]]) -> tuple[str, ...]:
    """Trailing blanks drop a level; blanks in between are a gap."""
    levels = [str(v or "").strip() for v in values]
    while levels and not levels[-1]:
        levels.pop()
    if not all(levels):
        raise ValueError("Take-profit levels must be filled in order, without gaps.")
    if len(levels) > MAX_TAKE_PROFITS:
        raise ValueError(f"At most {MAX_TAKE_PROFITS} take-profits.")
    return tuple(levels)


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------

def compute_result(signal: Signal) -> Optional[Decimal]:
    """
    Realised R-multiple across all closes, rounded to 2 decimals.

    None when entry or stop is not numeric, or when entry == stop (zero
    risk). Closes with a non-numeric price are skipped.
    """
    entry = to_decimal(signal.entry)
    stop = to_decimal(signal.stop)
    if entry is None or stop is None or entry == stop:
        return None

    risk = abs(entry - stop)
    sign = 1 if signal.direction == Direction.LONG else -1

    total = Decimal(0)
    for close in signal.closes:
        price = to_decimal(close.price)
        if price is None:
            continue
        size = Decimal(str(close.size_percent)) / 100
        total += sign * (price - entry) / risk * size
    return _round(total)


def display_result(signal: Signal) -> Optional[Decimal]:
    """
    The result to show: the manual override if set, otherwise the computed
    value once at least one close has been recorded.
    """
    if signal.result_override is not None:
        override = to_decimal(signal.result_override)
        if override is not None:
            return _round(override)
    if not signal.closes:
        return None
    return compute_result(signal)


# ---------------------------------------------------------------------------
# Operator flows
# ---------------------------------------------------------------------------

def take_profit_actions(
    signal: Signal,
    index: int,
    size_percent: Optional[float] = None,
) -> list[Action]:
    """
    Mark TP ``index`` and book a close at the TP level. The size is
    ``size_percent`` when given, else the planned close % for that TP; with
    neither, the TP is only marked. Booking happens once per TP.
    """
    actions: list[Action] = [MarkTakeProfit(index)]
    if index in signal.take_profits_hit:
        return actions

    size = size_percent if size_percent is not None else signal.planned_close(index)
    level = signal.take_profit(index)
    source = f"TP{index}"
    already = any(c.source == source for c in signal.closes)
    if size_percent is not None and not is_number(level):
        raise ValueError(f"TP{index} level is not a number; record a partial close instead.")
    if size and size > 0 and is_number(level) and not already:
        actions.append(RecordClose(price=level, size_percent=min(float(size), 100.0), source=source))
    return actions


def close_actions(
    signal: Signal,
    price: Optional[str] = None,
    percent: Optional[str] = None,
    final_result: Optional[str] = None,
) -> list[Action]:
    """
    Fully-close flow: either a final R override, or a close price plus an
    optional size (defaults to what is still open), then CLOSE.
    """
    if final_result is not None and final_result.strip():
        if not is_number(final_result):
            raise ValueError("Final R must be a number if provided.")
        return [OverrideResult(final_result.strip()), Closed()]

    if not is_number(price):
        raise ValueError("Close price must be a number.")

    size: Optional[float] = None
    if percent is not None and percent.strip():
        if not is_number(percent):
            raise ValueError("Close % must be a number.")
        size = min(100.0, max(0.0, float(to_decimal(percent))))

    actions: list[Action] = []
    if size is None or size > 0:
        actions.append(RecordClose(price=price.strip(), size_percent=size, source="FINAL_CLOSE"))
    actions.append(Closed())
    return actions


def stop_actions(
    signal: Signal,
    breakeven: bool,
    final_result: Optional[str] = None,
) -> list[Action]:
    """
    Stop flow: a final R override if given, otherwise the open remainder is
    booked at entry (breakeven) or at the stop level.
    """
    terminal: Action = StopAtBreakeven() if breakeven else StoppedOut()
    if final_result is not None and final_result.strip():
        if not is_number(final_result):
            raise ValueError("Final R must be a number (e.g., 0, -1, -0.5).")
        return [OverrideResult(final_result.strip()), terminal]

    price = signal.entry if breakeven else signal.stop
    actions: list[Action] = []
    if is_number(price):
        actions.append(RecordClose(price=price, source="STOP_BE" if breakeven else "STOP_OUT"))
    actions.append(terminal)
    return actions
