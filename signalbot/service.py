"""
SignalDesk — the operator-facing workflow.

Every mutating operation follows the same path:

    authorize → read from store → engine transition → patch store
              → edit posted signal → refresh summary

Steps run in order and a failure stops the remaining ones without undoing
earlier ones, so the store and Discord can disagree until the next action.
Operations are serialised with one lock, which makes the read-modify-write
store safe for the single-operator setup.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields
from typing import Any, Callable, Iterable, Optional, Protocol, Sequence

from signalbot.config import BotConfig
from signalbot.engine import (
    Action,
    Amend,
    OverrideResult,
    RecordClose,
    SetBreakeven,
    apply_all,
    close_actions,
    is_number,
    stop_actions,
    take_profit_actions,
    to_decimal,
)
from signalbot.errors import (
    ExternalPostError,
    InvalidInputError,
    MessageNotFoundError,
    NotFoundError,
    UnauthorizedError,
)
from signalbot.journal.models import MessageRef, Signal, new_signal
from signalbot.journal.store import SignalRepository
from signalbot.render import mention_ids, render_signal_message, render_summary

logger = logging.getLogger(__name__)


class Poster(Protocol):
    """Sends and edits messages in one channel."""

    async def send(self, text: str, mentions: Iterable[str] = ()) -> MessageRef: ...

    async def edit(self, message_id: int, text: str) -> None: ...

    async def delete(self, message_id: int) -> None: ...


@dataclass(frozen=True)
class SignalDraft:
    """Fields collected by the /signal command."""
    asset: str
    direction: str
    entry: str
    stop: str
    take_profits: Sequence[Optional[str]] = ()
    take_profit_plan: Sequence[Optional[float]] = ()
    reason: Optional[str] = None
    extra_mention: Optional[str] = None


def _changed_fields(before: Signal, after: Signal) -> dict[str, Any]:
    return {
        f.name: getattr(after, f.name)
        for f in fields(after)
        if getattr(before, f.name) != getattr(after, f.name)
    }


def _invalid(exc: ValueError) -> InvalidInputError:
    return InvalidInputError(str(exc), user_message=f"❌ {exc}")


def _require_active(signal: Signal) -> None:
    if not signal.is_active:
        raise ValueError(f"Signal is already finished ({signal.status.value}).")


def _optional_percent(value: Optional[str], label: str) -> Optional[float]:
    """Blank means not given; anything else must be a number in 0..100."""
    if value is None or not str(value).strip():
        return None
    number = to_decimal(value)
    if number is None or not 0 <= number <= 100:
        raise ValueError(f"{label} must be a number between 0 and 100.")
    return float(number)


class SignalDesk:
    def __init__(
        self,
        config: BotConfig,
        store: SignalRepository,
        signals_poster: Poster,
        summary_poster: Poster,
    ):
        self.config = config
        self.store = store
        self.signals_poster = signals_poster
        self.summary_poster = summary_poster
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def authorize(self, user_id: int) -> None:
        if int(user_id) != self.config.owner_id:
            raise UnauthorizedError(f"User {user_id} is not the owner")

    async def _call(self, fn: Callable, *args):
        return await asyncio.to_thread(fn, *args)

    async def _get(self, signal_id: str) -> Signal:
        signal = await self._call(self.store.get_by_id, signal_id)
        if signal is None:
            raise NotFoundError(f"Signal {signal_id} not found")
        return signal

    def _render(self, signal: Signal) -> tuple[str, list[str]]:
        mentions = mention_ids(signal, self.config.mention_role_id)
        return render_signal_message(signal, mentions), mentions

    async def _publish(self, signal: Signal) -> None:
        """Edit the posted signal message to match ``signal``."""
        if signal.message_ref is None:
            logger.warning(f"Signal {signal.id} was never posted; nothing to edit")
            return
        text, _ = self._render(signal)
        try:
            await self.signals_poster.edit(signal.message_ref.message_id, text)
        except MessageNotFoundError:
            logger.warning(
                f"Posted message for signal {signal.id} is gone; store and channel now differ"
            )

    async def _refresh_summary(self) -> int:
        signals = await self._call(self.store.get_all)
        text = render_summary(signals, self.config.brand_name)
        message_id = await self._call(self.store.get_summary_ref)

        if message_id is not None:
            try:
                await self.summary_poster.edit(message_id, text)
                logger.info(f"Summary {message_id} edited")
                return message_id
            except MessageNotFoundError:
                logger.info(f"Summary {message_id} missing, posting a new one")

        ref = await self.summary_poster.send(text)
        await self._call(self.store.set_summary_ref, ref.message_id)
        logger.info(f"Summary {ref.message_id} created")
        return ref.message_id

    async def _transition(
        self,
        user_id: int,
        signal_id: str,
        build: Callable[[Signal], list[Action]],
    ) -> Signal:
        self.authorize(user_id)
        async with self._lock:
            before = await self._get(signal_id)
            try:
                actions = build(before)
                after = apply_all(before, actions)
            except ValueError as exc:
                raise _invalid(exc) from exc

            changes = _changed_fields(before, after)
            if not changes:
                return before

            updated = await self._call(self.store.patch, signal_id, changes)
            if updated is None:
                raise NotFoundError(f"Signal {signal_id} disappeared during update")
            logger.info(
                f"Signal {signal_id}: {', '.join(type(a).__name__ for a in actions)} "
                f"-> {updated.status.value}"
            )
            await self._publish(updated)
            await self._refresh_summary()
            return updated

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_signal(self, user_id: int, draft: SignalDraft) -> Signal:
        self.authorize(user_id)
        try:
            signal = new_signal(
                asset=draft.asset,
                direction=draft.direction,
                entry=draft.entry,
                stop=draft.stop,
                take_profits=draft.take_profits,
                take_profit_plan=draft.take_profit_plan,
                reason=draft.reason,
                extra_mention=draft.extra_mention,
            )
        except ValueError as exc:
            raise _invalid(exc) from exc
        if not signal.asset:
            raise InvalidInputError("empty asset", user_message="❌ Asset is required.")

        async with self._lock:
            await self._call(self.store.create, signal)
            logger.info(f"Created signal {signal.id}: {signal.asset} {signal.direction.value}")

            text, mentions = self._render(signal)
            ref = await self.signals_poster.send(text, mentions)
            signal = await self._call(self.store.patch, signal.id, {"message_ref": ref})
            await self._refresh_summary()
        return signal

    async def mark_take_profit(
        self,
        user_id: int,
        signal_id: str,
        index: int,
        percent: Optional[str] = None,
    ) -> Signal:
        """
        Mark TP ``index`` hit. ``percent``, when given, is the share closed
        at the TP level and replaces the planned close % for it.
        """
        def build(signal: Signal) -> list[Action]:
            if signal.take_profit(index) is None:
                raise ValueError(f"TP{index} is not set on this signal.")
            return take_profit_actions(signal, index, _optional_percent(percent, "Close %"))

        return await self._transition(user_id, signal_id, build)

    async def set_breakeven(self, user_id: int, signal_id: str) -> Signal:
        return await self._transition(user_id, signal_id, lambda s: [SetBreakeven()])

    async def stop(
        self,
        user_id: int,
        signal_id: str,
        breakeven: bool,
        final_result: Optional[str] = None,
    ) -> Signal:
        def build(signal: Signal) -> list[Action]:
            _require_active(signal)
            return stop_actions(signal, breakeven, final_result)

        return await self._transition(user_id, signal_id, build)

    async def close(
        self,
        user_id: int,
        signal_id: str,
        price: Optional[str] = None,
        percent: Optional[str] = None,
        final_result: Optional[str] = None,
    ) -> Signal:
        def build(signal: Signal) -> list[Action]:
            _require_active(signal)
            return close_actions(signal, price, percent, final_result)

        return await self._transition(user_id, signal_id, build)

    async def record_close(
        self,
        user_id: int,
        signal_id: str,
        price: str,
        percent: str,
    ) -> Signal:
        """Book a partial exit without changing the status."""
        def build(signal: Signal) -> list[Action]:
            if not is_number(price):
                raise ValueError("Close price must be a number.")
            size = to_decimal(percent)
            if size is None or not 0 < size <= 100:
                raise ValueError("Close % must be a number between 0 and 100.")
            return [RecordClose(price=price.strip(), size_percent=float(size))]

        return await self._transition(user_id, signal_id, build)

    async def override_result(self, user_id: int, signal_id: str, value: str) -> Signal:
        return await self._transition(
            user_id, signal_id, lambda s: [OverrideResult(value)]
        )

    # Corrections to the posted plan. Allowed in any status.

    async def edit_take_profits(
        self, user_id: int, signal_id: str, levels: Sequence[Optional[str]]
    ) -> Signal:
        """Replace the TP levels; trailing blanks remove levels."""
        return await self._transition(
            user_id, signal_id, lambda s: [Amend({"take_profits": tuple(levels)})]
        )

    async def edit_plan(
        self, user_id: int, signal_id: str, percents: Sequence[Optional[str]]
    ) -> Signal:
        """Replace the planned close % per TP; blank clears a TP's plan."""
        def build(signal: Signal) -> list[Action]:
            plan = tuple(
                _optional_percent(p, f"TP{n} %") for n, p in enumerate(percents, start=1)
            )
            return [Amend({"take_profit_plan": plan})]

        return await self._transition(user_id, signal_id, build)

    async def edit_trade(
        self,
        user_id: int,
        signal_id: str,
        entry: str,
        stop: str,
        reason: Optional[str] = None,
    ) -> Signal:
        changes = {"entry": entry, "stop": stop, "reason": reason}
        return await self._transition(user_id, signal_id, lambda s: [Amend(changes)])

    async def edit_mention(
        self, user_id: int, signal_id: str, extra_mention: Optional[str]
    ) -> Signal:
        """Change the extra role mention. Edits never ping, so nobody is notified."""
        return await self._transition(
            user_id, signal_id, lambda s: [Amend({"extra_mention": extra_mention})]
        )

    async def delete(self, user_id: int, signal_id: str) -> Signal:
        """
        Remove the signal permanently along with its posted message.
        Returns the removed record so callers can clean up its controls.
        """
        self.authorize(user_id)
        async with self._lock:
            signal = await self._get(signal_id)
            if signal.message_ref is not None:
                try:
                    await self.signals_poster.delete(signal.message_ref.message_id)
                except ExternalPostError as exc:
                    logger.warning(f"Could not delete message for signal {signal_id}: {exc}")
            await self._call(self.store.delete, signal_id)
            logger.info(f"Deleted signal {signal_id}")
            await self._refresh_summary()
        return signal

    async def attach_controls(self, signal_id: str, message_id: int) -> Optional[Signal]:
        """Remember where the control panel for ``signal_id`` was posted."""
        async with self._lock:
            return await self._call(
                self.store.patch, signal_id, {"control_message_id": message_id}
            )

    async def refresh_summary(self) -> int:
        """Edit the summary in place, or post a new one if it is missing."""
        async with self._lock:
            return await self._refresh_summary()

    async def active_signals(self) -> list[Signal]:
        return await self._call(self.store.list_active)

    async def get_signal(self, signal_id: str) -> Signal:
        return await self._get(signal_id)
