"""
Type definitions for signal records.

A ``Signal`` is immutable: lifecycle changes produce a new record via
``dataclasses.replace``. ``to_dict`` / ``from_dict`` convert to and from the
JSON document layout used by the store.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence

MAX_TAKE_PROFITS = 5


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class SignalStatus(str, Enum):
    """Lifecycle status of a signal"""
    RUN_VALID = "RUN_VALID"       # Running, valid for re-entry
    RUN_BE = "RUN_BE"             # Running with stop at breakeven
    STOPPED_BE = "STOPPED_BE"     # Stopped at breakeven
    STOPPED_OUT = "STOPPED_OUT"   # Stopped out at the stop level
    CLOSED = "CLOSED"             # Fully closed by the operator


ACTIVE_STATUSES = frozenset({SignalStatus.RUN_VALID, SignalStatus.RUN_BE})
TERMINAL_STATUSES = frozenset(set(SignalStatus) - ACTIVE_STATUSES)


@dataclass(frozen=True)
class CloseFill:
    """A partial or full exit used for the R-multiple calculation."""
    price: str
    size_percent: float
    source: str = "MANUAL"

    def __post_init__(self):
        if not 0 < self.size_percent <= 100:
            raise ValueError(
                f"size_percent must be in (0, 100], got {self.size_percent}"
            )


@dataclass(frozen=True)
class MessageRef:
    """Where a signal was posted."""
    message_id: int
    jump_url: str


def new_signal_id() -> str:
    return uuid.uuid4().hex[:12]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Signal:
    id: str
    asset: str
    direction: Direction
    entry: str
    stop: str
    take_profits: tuple[str, ...] = ()
    # Planned close % per take-profit, aligned with take_profits
    take_profit_plan: tuple[Optional[float], ...] = ()
    reason: Optional[str] = None
    extra_mention: Optional[str] = None
    status: SignalStatus = SignalStatus.RUN_VALID
    valid_for_reentry: bool = True
    stop_at_breakeven: bool = False
    take_profits_hit: tuple[int, ...] = ()
    closes: tuple[CloseFill, ...] = ()
    result_override: Optional[str] = None
    message_ref: Optional[MessageRef] = None
    control_message_id: Optional[int] = None
    created_at: str = field(default_factory=_utc_now)

    def __post_init__(self):
        # Accept plain JSON values (str enums, lists, dicts) and normalise them
        set_ = object.__setattr__
        set_(self, "direction", Direction(self.direction))
        set_(self, "status", SignalStatus(self.status))
        set_(self, "take_profits", tuple(self.take_profits))
        set_(self, "take_profit_plan", tuple(self.take_profit_plan))
        set_(self, "take_profits_hit", tuple(int(n) for n in self.take_profits_hit))
        set_(self, "closes", tuple(
            c if isinstance(c, CloseFill) else CloseFill(**c) for c in self.closes
        ))
        if isinstance(self.message_ref, dict):
            set_(self, "message_ref", MessageRef(**self.message_ref))
        if len(self.take_profits) > MAX_TAKE_PROFITS:
            raise ValueError(f"at most {MAX_TAKE_PROFITS} take-profits, got {len(self.take_profits)}")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def take_profit(self, index: int) -> Optional[str]:
        """Level of TP ``index`` (1-based), or None when not defined."""
        if 1 <= index <= len(self.take_profits):
            return self.take_profits[index - 1]
        return None

    def planned_close(self, index: int) -> Optional[float]:
        if 1 <= index <= len(self.take_profit_plan):
            return self.take_profit_plan[index - 1]
        return None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["direction"] = self.direction.value
        data["status"] = self.status.value
        for key in ("take_profits", "take_profit_plan", "take_profits_hit", "closes"):
            data[key] = list(data[key])
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Signal":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def new_signal(
    asset: str,
    direction: Direction | str,
    entry: str,
    stop: str,
    take_profits: Sequence[Optional[str]] = (),
    take_profit_plan: Sequence[Optional[float]] = (),
    reason: Optional[str] = None,
    extra_mention: Optional[str] = None,
) -> Signal:
    """
    Build a fresh RUN_VALID signal with a new id.

    Blank take-profit slots are dropped, so ``("110", None, "130")`` becomes
    TP1=110, TP2=130 and the plan list is realigned to match.
    """
    levels: list[str] = []
    plan: list[Optional[float]] = []
    for i, level in enumerate(take_profits):
        if level is None or not str(level).strip():
            continue
        levels.append(str(level).strip())
        plan.append(take_profit_plan[i] if i < len(take_profit_plan) else None)

    return Signal(
        id=new_signal_id(),
        asset=asset.strip().upper(),
        direction=direction if isinstance(direction, Direction) else Direction(direction.upper()),
        entry=str(entry).strip(),
        stop=str(stop).strip(),
        take_profits=tuple(levels),
        take_profit_plan=tuple(plan),
        reason=(reason or "").strip() or None,
        extra_mention=extra_mention or None,
    )

