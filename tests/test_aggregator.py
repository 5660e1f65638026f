from datetime import datetime, timedelta, timezone

import pytest

from signal_store import Signal, SignalAction
from stats import build_snapshot, round_money

# ------------------------- Fixtures ------------------------- #

BASE_TIME = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)


def make_signal(index, pnl=None, *, processed=None, success=None, symbol="EURUSD", hours=0):
    if processed is None:
        processed = pnl is not None
    if success is None and processed:
        success = pnl is not None and pnl > 0
    return Signal(
        id=f"sig-{index}",
        symbol=symbol,
        action=SignalAction.BUY,
        timestamp=BASE_TIME + timedelta(hours=hours if hours else index),
        pnl=pnl,
        processed=processed,
        success=success,
    )


@pytest.fixture
def mixed_signals():
    return [
        make_signal(1, 50.0, symbol="EURUSD"),
        make_signal(2, -20.0, symbol="GBPUSD"),
        make_signal(3, -30.0, symbol="EURUSD"),
        make_signal(4, None),
        make_signal(5, 12.345, symbol="XAUUSD"),
        make_signal(6, processed=True, success=False),
    ]


# ------------------------- Tests ------------------------- #

def test_empty_input_yields_zeroed_snapshot():
    snapshot = build_snapshot([])

    assert snapshot.total_signals == 0
    assert snapshot.processed_signals == 0
    assert snapshot.active_signals == 0
    assert snapshot.success_rate == 0
    assert snapshot.win_loss_ratio == 0
    assert snapshot.profit_factor == 0
    assert snapshot.max_drawdown == 0
    assert snapshot.cumulative_data == ()
    assert snapshot.daily_stats == ()
    assert snapshot.top_symbols == ()


def test_single_winning_trade():
    signal = Signal(
        id="one",
        symbol="EURUSD",
        action=SignalAction.BUY,
        timestamp=BASE_TIME,
        pnl=100.0,
        processed=True,
    )

    snapshot = build_snapshot([signal])

    assert snapshot.winning_trades == 1
    assert snapshot.losing_trades == 0
    assert snapshot.total_pnl == 100
    assert snapshot.max_win_streak == 1
    assert snapshot.max_drawdown == 0
    assert snapshot.win_loss_ratio == 1
    assert [perf.as_dict() for perf in snapshot.top_symbols] == [
        {"symbol": "EURUSD", "trades": 1, "pnl": 100.0, "wins": 1, "losses": 0, "winRate": 100.0}
    ]


def test_drawdown_and_streaks_follow_chronological_order():
    # Supplied out of order on purpose.
    signals = [make_signal(3, -30.0), make_signal(1, 50.0), make_signal(2, -20.0)]

    snapshot = build_snapshot(signals)

    assert [point.cumulative_pnl for point in snapshot.cumulative_data] == [50, 30, 0]
    assert [point.trades for point in snapshot.cumulative_data] == [1, 2, 3]
    assert snapshot.max_drawdown == 50
    assert snapshot.max_loss_streak == 2
    assert snapshot.max_win_streak == 1
    assert snapshot.current_loss_streak == 2
    assert snapshot.current_win_streak == 0


def test_zero_pnl_is_neither_win_nor_loss_but_breaks_win_streak():
    signals = [make_signal(1, 10.0), make_signal(2, 0.0), make_signal(3, 5.0)]

    snapshot = build_snapshot(signals)

    assert snapshot.winning_trades == 2
    assert snapshot.losing_trades == 0
    assert [point.win_streak for point in snapshot.cumulative_data] == [1, 0, 1]
    assert [point.loss_streak for point in snapshot.cumulative_data] == [0, 1, 0]
    assert snapshot.max_loss_streak == 1
    assert snapshot.win_loss_ratio == 2


def test_counts_and_rates(mixed_signals):
    snapshot = build_snapshot(mixed_signals)

    assert snapshot.total_signals == 6
    assert snapshot.processed_signals == 5
    assert snapshot.active_signals == 1
    assert snapshot.successful_signals == 2
    assert snapshot.success_rate == 40.0
    assert snapshot.winning_trades == 2
    assert snapshot.losing_trades == 2
    assert snapshot.win_loss_ratio == 1.0
    assert snapshot.total_pnl == 12.35


def test_averages_and_profit_factor(mixed_signals):
    snapshot = build_snapshot(mixed_signals)

    assert snapshot.avg_win == round_money((50.0 + 12.345) / 2)
    assert snapshot.avg_loss == 25.0
    assert snapshot.profit_factor == round_money(62.345 / 50.0)


def test_profit_factor_is_zero_without_losses():
    snapshot = build_snapshot([make_signal(1, 10.0), make_signal(2, 15.0)])

    assert snapshot.profit_factor == 0
    assert snapshot.avg_loss == 0
    assert snapshot.win_loss_ratio == 2


def test_first_trade_loss_counts_as_drawdown_from_flat_equity():
    snapshot = build_snapshot([make_signal(1, -40.0), make_signal(2, 10.0)])

    assert snapshot.max_drawdown == 40


def test_daily_stats_are_bucketed_by_date_and_sorted():
    signals = [
        make_signal(1, 10.0, hours=49),
        make_signal(2, -5.0, hours=1),
        make_signal(3, 7.5, hours=2),
        make_signal(4, 0.0, hours=3),
    ]

    snapshot = build_snapshot(signals)
    days = [day.as_dict() for day in snapshot.daily_stats]

    assert days == [
        {"date": "2025-03-03", "pnl": 2.5, "trades": 3, "wins": 1, "losses": 1},
        {"date": "2025-03-05", "pnl": 10.0, "trades": 1, "wins": 1, "losses": 0},
    ]


def test_top_symbols_sorted_by_pnl_and_truncated():
    signals = [make_signal(i, float(i), symbol=f"SYM{i:02d}") for i in range(1, 13)]
    signals.append(make_signal(13, -0.5, symbol="SYM12"))

    snapshot = build_snapshot(signals)

    assert len(snapshot.top_symbols) == 10
    assert snapshot.top_symbols[0].symbol == "SYM12"
    assert snapshot.top_symbols[0].pnl == 11.5
    assert snapshot.top_symbols[0].trades == 2
    assert snapshot.top_symbols[0].losses == 1
    assert snapshot.top_symbols[0].win_rate == 50.0
    assert snapshot.top_symbols[1].symbol == "SYM11"
    assert snapshot.top_symbols[-1].symbol == "SYM03"


def test_blank_symbol_excluded_from_symbol_rollup_only():
    signals = [make_signal(1, 5.0, symbol=""), make_signal(2, 3.0, symbol="EURUSD")]

    snapshot = build_snapshot(signals)

    assert snapshot.total_pnl == 8
    assert [perf.symbol for perf in snapshot.top_symbols] == ["EURUSD"]


def test_null_symbol_counted_in_totals_but_not_ranked():
    signals = [make_signal(1, 5.0, symbol=None), make_signal(2, 3.0, symbol="EURUSD")]

    snapshot = build_snapshot(signals)

    assert snapshot.total_pnl == 8
    assert snapshot.winning_trades == 2
    assert [perf.symbol for perf in snapshot.top_symbols] == ["EURUSD"]
    assert snapshot.as_dict()["topSymbols"][0]["symbol"] == "EURUSD"


def test_naive_and_aware_timestamps_are_ordered_together():
    naive = Signal(
        id="naive",
        symbol="EURUSD",
        action=SignalAction.BUY,
        timestamp=datetime(2025, 1, 1),
        pnl=1.0,
        processed=True,
    )
    aware = Signal(
        id="aware",
        symbol="EURUSD",
        action=SignalAction.SELL,
        timestamp=datetime(2025, 1, 2, tzinfo=timezone.utc),
        pnl=2.0,
        processed=True,
    )

    snapshot = build_snapshot([aware, naive])

    assert [point.date for point in snapshot.cumulative_data] == ["2025-01-01", "2025-01-02"]
    assert [point.cumulative_pnl for point in snapshot.cumulative_data] == [1.0, 3.0]


@pytest.mark.parametrize("bad_pnl", [float("inf"), float("-inf"), float("nan")])
def test_non_finite_pnl_counts_as_zero(bad_pnl):
    signals = [make_signal(1, 10.0), make_signal(2, bad_pnl)]

    snapshot = build_snapshot(signals)

    assert snapshot.total_pnl == 10
    assert snapshot.winning_trades == 1
    assert snapshot.losing_trades == 0
    assert snapshot.max_drawdown == 0
    assert snapshot.daily_stats[0].pnl == 10


def test_non_finite_pnl_on_unvalidated_record_counts_as_zero():
    trade = make_signal(1, 10.0)
    broken = make_signal(2, 1.0)
    object.__setattr__(broken, "pnl", float("nan"))

    snapshot = build_snapshot([trade, broken])

    assert snapshot.total_pnl == 10
    assert snapshot.top_symbols[0].pnl == 10
    assert snapshot.cumulative_data[-1].cumulative_pnl == 10


def test_properties_hold(mixed_signals):
    snapshot = build_snapshot(mixed_signals)

    assert snapshot.active_signals + snapshot.processed_signals == snapshot.total_signals
    assert snapshot.max_win_streak >= snapshot.current_win_streak
    assert snapshot.max_loss_streak >= snapshot.current_loss_streak
    assert snapshot.max_drawdown >= 0


def test_idempotent_apart_from_last_updated(mixed_signals):
    first = build_snapshot(mixed_signals).as_dict()
    second = build_snapshot(mixed_signals).as_dict()

    first.pop("lastUpdated")
    second.pop("lastUpdated")
    assert first == second


def test_last_updated_uses_supplied_clock():
    now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    snapshot = build_snapshot([], now=now)

    assert snapshot.as_dict()["lastUpdated"] == "2025-01-01T12:00:00+00:00"


@pytest.mark.parametrize(
    "value, expected",
    [(1.005, 1.01), (-1.005, -1.01), (2.675, 2.68), (0.125, 0.13), (-0.125, -0.13), (3.0, 3.0)],
)
def test_round_money_half_away_from_zero(value, expected):
    assert round_money(value) == expected
    assert round_money(round_money(value)) == round_money(value)
