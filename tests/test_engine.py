"""
Unit tests for the signal lifecycle engine.
Run: python -m pytest tests/ -v
"""
from dataclasses import replace
from decimal import Decimal

import pytest

from signalbot.engine import (
    Amend,
    Closed,
    Delete,
    MarkTakeProfit,
    OverrideResult,
    RecordClose,
    SetBreakeven,
    StopAtBreakeven,
    StoppedOut,
    apply,
    apply_all,
    close_actions,
    compute_result,
    display_result,
    remaining_percent,
    stop_actions,
    take_profit_actions,
    to_decimal,
)
from signalbot.journal.models import (
    ACTIVE_STATUSES,
    CloseFill,
    Direction,
    SignalStatus,
    new_signal,
)

TERMINAL_ACTIONS = [StopAtBreakeven(), StoppedOut(), Closed()]


def btc_long(**overrides):
    kwargs = dict(asset="BTC", direction="LONG", entry="100", stop="90",
                  take_profits=("110", "120", "130"))
    kwargs.update(overrides)
    return new_signal(**kwargs)


class TestMarkTakeProfit:
    def test_appends_in_hit_order(self):
        signal = apply_all(btc_long(), [MarkTakeProfit(2), MarkTakeProfit(1)])
        assert signal.take_profits_hit == (2, 1)

    def test_idempotent(self):
        once = apply(btc_long(), MarkTakeProfit(1))
        twice = apply(once, MarkTakeProfit(1))
        assert twice.take_profits_hit == once.take_profits_hit == (1,)

    def test_status_unchanged(self):
        signal = apply_all(btc_long(), [MarkTakeProfit(1), MarkTakeProfit(2)])
        assert signal.take_profits_hit == (1, 2)
        assert signal.status == SignalStatus.RUN_VALID
        assert signal.valid_for_reentry is True

    def test_index_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            MarkTakeProfit(6)
        with pytest.raises(ValueError):
            MarkTakeProfit(0)

    def test_input_not_mutated(self):
        original = btc_long()
        apply(original, MarkTakeProfit(1))
        assert original.take_profits_hit == ()


class TestBreakeven:
    def test_sets_flag_only(self):
        signal = apply(btc_long(), SetBreakeven())
        assert signal.stop_at_breakeven is True
        assert signal.status == SignalStatus.RUN_VALID

    def test_idempotent(self):
        once = apply(btc_long(), SetBreakeven())
        assert apply(once, SetBreakeven()) is once


class TestTerminalTransitions:
    @pytest.mark.parametrize("action,status", [
        (StopAtBreakeven(), SignalStatus.STOPPED_BE),
        (StoppedOut(), SignalStatus.STOPPED_OUT),
        (Closed(), SignalStatus.CLOSED),
    ])
    def test_sets_status_and_clears_reentry(self, action, status):
        signal = apply(btc_long(), action)
        assert signal.status == status
        assert signal.valid_for_reentry is False

    @pytest.mark.parametrize("first", TERMINAL_ACTIONS)
    @pytest.mark.parametrize("second", TERMINAL_ACTIONS + [SetBreakeven(), MarkTakeProfit(3)])
    def test_terminal_status_is_final(self, first, second):
        terminal = apply(btc_long(), first)
        after = apply(terminal, second)
        assert after.status == terminal.status
        assert after.valid_for_reentry is False

    def test_tp_after_stop_is_recorded(self):
        signal = apply_all(btc_long(), [StoppedOut(), MarkTakeProfit(3)])
        assert signal.status == SignalStatus.STOPPED_OUT
        assert signal.valid_for_reentry is False
        assert signal.take_profits_hit == (3,)

    def test_terminal_keeps_history(self):
        signal = apply_all(btc_long(), [
            MarkTakeProfit(1),
            RecordClose("110", 50),
            OverrideResult("0.7"),
            Closed(),
        ])
        assert signal.take_profits_hit == (1,)
        assert len(signal.closes) == 1
        assert signal.result_override == "0.7"

    @pytest.mark.parametrize("actions", [
        [],
        [MarkTakeProfit(1)],
        [SetBreakeven()],
        [StopAtBreakeven()],
        [StoppedOut(), MarkTakeProfit(2)],
        [Closed(), SetBreakeven()],
    ])
    def test_reentry_tracks_status(self, actions):
        signal = apply_all(btc_long(), actions)
        assert signal.valid_for_reentry == (signal.status in ACTIVE_STATUSES)

    def test_delete_is_not_a_transition(self):
        with pytest.raises(ValueError):
            apply(btc_long(), Delete())


class TestRecordClose:
    def test_explicit_size(self):
        signal = apply(btc_long(), RecordClose("110", 25))
        assert signal.closes == (CloseFill("110", 25.0, "MANUAL"),)

    def test_remainder_defaults(self):
        signal = apply_all(btc_long(), [RecordClose("110", 30), RecordClose("120")])
        assert signal.closes[-1].size_percent == 70.0
        assert remaining_percent(signal) == 0.0

    def test_nothing_left_records_nothing(self):
        full = apply(btc_long(), RecordClose("110", 100))
        assert apply(full, RecordClose("120")) is full

    def test_size_out_of_range(self):
        with pytest.raises(ValueError):
            apply(btc_long(), RecordClose("110", 150))

    def test_override_must_be_numeric(self):
        with pytest.raises(ValueError):
            apply(btc_long(), OverrideResult("lots"))


class TestComputeResult:
    def test_single_full_close_long(self):
        signal = apply(btc_long(), RecordClose("110", 100))
        assert str(compute_result(signal)) == "1.00"

    def test_short_direction(self):
        signal = new_signal(asset="ETH", direction=Direction.SHORT, entry="100", stop="110")
        signal = apply(signal, RecordClose("80", 100))
        assert compute_result(signal) == Decimal("2.00")

    def test_partial_closes_sum(self):
        signal = apply_all(btc_long(), [RecordClose("110", 50), RecordClose("90", 50)])
        assert compute_result(signal) == Decimal("0.00")

    def test_rounding(self):
        signal = apply(btc_long(entry="100", stop="97"), RecordClose("101", 100))
        assert compute_result(signal) == Decimal("0.33")

    def test_zero_risk_is_absent(self):
        signal = apply(btc_long(entry="100", stop="100"), RecordClose("110", 100))
        assert compute_result(signal) is None

    @pytest.mark.parametrize("entry,stop", [("market", "90"), ("100", ""), ("nan", "90")])
    def test_non_numeric_levels_absent(self, entry, stop):
        assert compute_result(btc_long(entry=entry, stop=stop)) is None

    def test_non_numeric_close_skipped(self):
        signal = apply_all(btc_long(), [RecordClose("n/a", 50), RecordClose("110", 50)])
        assert compute_result(signal) == Decimal("0.50")

    def test_no_closes_is_zero(self):
        assert compute_result(btc_long()) == Decimal("0.00")

    def test_override_only_affects_display(self):
        signal = apply_all(btc_long(), [RecordClose("110", 100), OverrideResult("-0.5")])
        assert compute_result(signal) == Decimal("1.00")
        assert display_result(signal) == Decimal("-0.50")

    def test_display_absent_without_closes(self):
        assert display_result(btc_long()) is None


class TestOperatorFlows:
    def test_take_profit_books_planned_close(self):
        signal = btc_long(take_profit_plan=(50, None, None))
        after = apply_all(signal, take_profit_actions(signal, 1))
        assert after.take_profits_hit == (1,)
        assert after.closes == (CloseFill("110", 50.0, "TP1"),)

    def test_take_profit_without_plan(self):
        signal = btc_long()
        after = apply_all(signal, take_profit_actions(signal, 2))
        assert after.take_profits_hit == (2,)
        assert after.closes == ()

    def test_take_profit_books_once(self):
        signal = btc_long(take_profit_plan=(50,))
        once = apply_all(signal, take_profit_actions(signal, 1))
        twice = apply_all(once, take_profit_actions(once, 1))
        assert len(twice.closes) == 1

    def test_close_with_price_books_remainder(self):
        signal = apply(btc_long(), RecordClose("110", 40))
        after = apply_all(signal, close_actions(signal, price="120"))
        assert after.status == SignalStatus.CLOSED
        assert after.closes[-1] == CloseFill("120", 60.0, "FINAL_CLOSE")
        assert compute_result(after) == Decimal("1.60")

    def test_close_percent_not_limited_to_remainder(self):
        signal = apply(btc_long(), RecordClose("110", 60))
        after = apply_all(signal, close_actions(signal, price="120", percent="100"))
        assert after.closes[-1].size_percent == 100.0

    def test_close_with_final_r(self):
        signal = btc_long()
        after = apply_all(signal, close_actions(signal, price="", final_result="2.5"))
        assert after.status == SignalStatus.CLOSED
        assert after.result_override == "2.5"
        assert after.closes == ()

    def test_close_needs_price_or_r(self):
        with pytest.raises(ValueError):
            close_actions(btc_long(), price="", final_result="")

    def test_stop_out_books_remainder_at_stop(self):
        signal = btc_long()
        after = apply_all(signal, stop_actions(signal, breakeven=False))
        assert after.status == SignalStatus.STOPPED_OUT
        assert compute_result(after) == Decimal("-1.00")

    def test_stop_breakeven_after_tp(self):
        signal = btc_long(take_profit_plan=(50,))
        signal = apply_all(signal, take_profit_actions(signal, 1))
        after = apply_all(signal, stop_actions(signal, breakeven=True))
        assert after.status == SignalStatus.STOPPED_BE
        assert compute_result(after) == Decimal("0.50")

    def test_stop_rejects_bad_final_r(self):
        with pytest.raises(ValueError):
            stop_actions(btc_long(), breakeven=True, final_result="abc")

    def test_take_profit_with_given_size(self):
        signal = btc_long()
        after = apply_all(signal, take_profit_actions(signal, 2, size_percent=30))
        assert after.closes == (CloseFill("120", 30.0, "TP2"),)

    def test_given_size_needs_numeric_level(self):
        signal = btc_long(take_profits=("soon",))
        with pytest.raises(ValueError):
            take_profit_actions(signal, 1, size_percent=30)


class TestNumbers:
    @pytest.mark.parametrize("text", ["0,5", "1,000", "1e26", "1e-20", "inf", "", "abc"])
    def test_rejected(self, text):
        assert to_decimal(text) is None

    @pytest.mark.parametrize("text,value", [("0.5", "0.5"), (" -1 ", "-1"), ("0", "0"), ("1e12", "1E+12")])
    def test_accepted(self, text, value):
        assert to_decimal(text) == Decimal(value)

    def test_decimal_comma_override_rejected(self):
        with pytest.raises(ValueError):
            apply(btc_long(), OverrideResult("0,5"))

    def test_huge_stored_override_falls_back_to_computed(self):
        signal = apply(btc_long(), RecordClose("110", 100))
        signal = replace(signal, result_override="1e26")
        assert display_result(signal) == Decimal("1.00")

    def test_large_result_still_rounds(self):
        signal = new_signal(asset="X", direction="SHORT", entry="0.000000000001",
                            stop="0.000000000002")
        signal = apply(signal, RecordClose("999999999999", 100))
        result = compute_result(signal)
        assert result < 0
        assert result.as_tuple().exponent == -2


class TestAmend:
    def test_entry_stop_reason(self):
        signal = apply(btc_long(reason="old"), Amend({"entry": " 101 ", "stop": "95", "reason": ""}))
        assert (signal.entry, signal.stop, signal.reason) == ("101", "95", None)

    def test_entry_required(self):
        with pytest.raises(ValueError):
            apply(btc_long(), Amend({"entry": "  "}))

    def test_unknown_field(self):
        with pytest.raises(ValueError):
            Amend({"status": "CLOSED"})

    def test_take_profits_trailing_blanks_drop_levels(self):
        signal = btc_long(take_profit_plan=(50, 25, 25))
        after = apply(signal, Amend({"take_profits": ("111", "121", "", "", "")}))
        assert after.take_profits == ("111", "121")
        assert after.take_profit_plan == (50, 25)

    def test_take_profits_added_get_empty_plan(self):
        signal = btc_long(take_profit_plan=(50, None, None))
        after = apply(signal, Amend({"take_profits": ("110", "120", "130", "140")}))
        assert after.take_profit_plan == (50, None, None, None)

    def test_take_profit_gap_rejected(self):
        with pytest.raises(ValueError):
            apply(btc_long(), Amend({"take_profits": ("110", "", "130")}))

    def test_hit_take_profit_cannot_be_removed(self):
        signal = apply(btc_long(), MarkTakeProfit(3))
        with pytest.raises(ValueError):
            apply(signal, Amend({"take_profits": ("110", "120")}))

    def test_plan(self):
        after = apply(btc_long(), Amend({"take_profit_plan": (30.0, None)}))
        assert after.take_profit_plan == (30.0, None, None)

    def test_plan_out_of_range(self):
        with pytest.raises(ValueError):
            apply(btc_long(), Amend({"take_profit_plan": (130.0,)}))

    def test_plan_longer_than_levels(self):
        with pytest.raises(ValueError):
            apply(btc_long(), Amend({"take_profit_plan": (10.0, 10.0, 10.0, 10.0)}))

    def test_status_untouched(self):
        stopped = apply(btc_long(), StoppedOut())
        after = apply(stopped, Amend({"extra_mention": "123456789012345678"}))
        assert after.status == SignalStatus.STOPPED_OUT
        assert after.extra_mention == "123456789012345678"
