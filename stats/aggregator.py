from __future__ import annotations

import math

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Sequence

from signal_store.models import Signal, ensure_utc

TOP_SYMBOLS_LIMIT = 10
_CENT = Decimal("0.01")


def round_money(value: float) -> float:
    """Round to 2 decimals, half away from zero."""
    return float(Decimal(repr(float(value))).quantize(_CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CumulativePoint:
    date: str
    cumulative_pnl: float
    daily_pnl: float
    trades: int
    win_streak: int
    loss_streak: int

    def as_dict(self) -> Dict[str, float | int | str]:
        return {
            "date": self.date,
            "cumulativePnL": self.cumulative_pnl,
            "dailyPnL": self.daily_pnl,
            "trades": self.trades,
            "winStreak": self.win_streak,
            "lossStreak": self.loss_streak,
        }


@dataclass(frozen=True)
class DailyStat:
    date: str
    pnl: float
    trades: int
    wins: int
    losses: int

    def as_dict(self) -> Dict[str, float | int | str]:
        return {
            "date": self.date,
            "pnl": self.pnl,
            "trades": self.trades,
            "wins": self.wins,
            "losses": self.losses,
        }


@dataclass(frozen=True)
class SymbolPerformance:
    symbol: str
    trades: int
    pnl: float
    wins: int
    losses: int
    win_rate: float

    def as_dict(self) -> Dict[str, float | int | str]:
        return {
            "symbol": self.symbol,
            "trades": self.trades,
            "pnl": self.pnl,
            "wins": self.wins,
            "losses": self.losses,
            "winRate": self.win_rate,
        }


@dataclass(frozen=True)
class StatsSnapshot:
    """Performance statistics derived from the current signal set."""

    total_signals: int = 0
    processed_signals: int = 0
    successful_signals: int = 0
    active_signals: int = 0
    success_rate: float = 0.0
    total_pnl: float = 0.0
    winning_trades: int = 0
    losing_trades: int = 0
    win_loss_ratio: float = 0.0
    max_win_streak: int = 0
    max_loss_streak: int = 0
    current_win_streak: int = 0
    current_loss_streak: int = 0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    cumulative_data: tuple[CumulativePoint, ...] = ()
    daily_stats: tuple[DailyStat, ...] = ()
    top_symbols: tuple[SymbolPerformance, ...] = ()
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, object]:
        return {
            "totalSignals": self.total_signals,
            "processedSignals": self.processed_signals,
            "successfulSignals": self.successful_signals,
            "activeSignals": self.active_signals,
            "successRate": self.success_rate,
            "totalPnL": self.total_pnl,
            "winningTrades": self.winning_trades,
            "losingTrades": self.losing_trades,
            "winLossRatio": self.win_loss_ratio,
            "maxWinStreak": self.max_win_streak,
            "maxLossStreak": self.max_loss_streak,
            "currentWinStreak": self.current_win_streak,
            "currentLossStreak": self.current_loss_streak,
            "avgWin": self.avg_win,
            "avgLoss": self.avg_loss,
            "profitFactor": self.profit_factor,
            "maxDrawdown": self.max_drawdown,
            "cumulativeData": [point.as_dict() for point in self.cumulative_data],
            "dailyStats": [day.as_dict() for day in self.daily_stats],
            "topSymbols": [symbol.as_dict() for symbol in self.top_symbols],
            "lastUpdated": self.last_updated.isoformat(),
        }


def build_snapshot(signals: Sequence[Signal], *, now: datetime | None = None) -> StatsSnapshot:
    """Aggregate `signals` (any order) into a StatsSnapshot.

    Only processed signals carrying a pnl take part in the trade metrics;
    they are walked in ascending timestamp order. A pnl of exactly 0 is
    neither a win nor a loss for the counters but extends the loss streak.
    """
    last_updated = ensure_utc(now) if now else datetime.now(timezone.utc)

    total = len(signals)
    processed = sum(1 for signal in signals if signal.processed)
    successful = sum(1 for signal in signals if signal.processed and signal.success)

    trades = sorted((signal for signal in signals if signal.is_closed_trade), key=lambda s: ensure_utc(s.timestamp))
    pnls = [_trade_pnl(trade) for trade in trades]

    winning = sum(1 for pnl in pnls if pnl > 0)
    losing = sum(1 for pnl in pnls if pnl < 0)
    gross_profit = sum(pnl for pnl in pnls if pnl > 0)
    gross_loss = sum(pnl for pnl in pnls if pnl < 0)

    success_rate = (successful / processed) * 100 if processed else 0.0
    win_loss_ratio = winning / losing if losing > 0 else float(winning)
    avg_win = gross_profit / winning if winning else 0.0
    avg_loss = abs(gross_loss / losing) if losing else 0.0
    profit_factor = (avg_win * winning) / (avg_loss * losing) if avg_loss > 0 and losing > 0 else 0.0

    cumulative_data = _cumulative_series(trades)
    streaks = _final_streaks(cumulative_data)

    return StatsSnapshot(
        total_signals=total,
        processed_signals=processed,
        successful_signals=successful,
        active_signals=total - processed,
        success_rate=round_money(success_rate),
        total_pnl=round_money(sum(pnls)),
        winning_trades=winning,
        losing_trades=losing,
        win_loss_ratio=round_money(win_loss_ratio),
        max_win_streak=streaks["max_win"],
        max_loss_streak=streaks["max_loss"],
        current_win_streak=streaks["current_win"],
        current_loss_streak=streaks["current_loss"],
        avg_win=round_money(avg_win),
        avg_loss=round_money(avg_loss),
        profit_factor=round_money(profit_factor),
        max_drawdown=round_money(_max_drawdown(cumulative_data)),
        cumulative_data=tuple(cumulative_data),
        daily_stats=tuple(_daily_stats(trades)),
        top_symbols=tuple(_top_symbols(trades)),
        last_updated=last_updated,
    )


def _trade_pnl(signal: Signal) -> float:
    pnl = float(signal.pnl or 0.0)
    return pnl if math.isfinite(pnl) else 0.0


def _trade_date(signal: Signal) -> str:
    return ensure_utc(signal.timestamp).date().isoformat()


def _cumulative_series(trades: Sequence[Signal]) -> List[CumulativePoint]:
    points: List[CumulativePoint] = []
    win_streak = 0
    loss_streak = 0
    cumulative = 0.0
    for index, trade in enumerate(trades, start=1):
        pnl = _trade_pnl(trade)
        if pnl > 0:
            win_streak += 1
            loss_streak = 0
        else:
            loss_streak += 1
            win_streak = 0
        cumulative += pnl
        points.append(
            CumulativePoint(
                date=_trade_date(trade),
                cumulative_pnl=round_money(cumulative),
                daily_pnl=round_money(pnl),
                trades=index,
                win_streak=win_streak,
                loss_streak=loss_streak,
            )
        )
    return points


def _final_streaks(points: Sequence[CumulativePoint]) -> Dict[str, int]:
    return {
        "max_win": max((point.win_streak for point in points), default=0),
        "max_loss": max((point.loss_streak for point in points), default=0),
        "current_win": points[-1].win_streak if points else 0,
        "current_loss": points[-1].loss_streak if points else 0,
    }


def _max_drawdown(points: Sequence[CumulativePoint]) -> float:
    peak = 0.0
    max_drawdown = 0.0
    for point in points:
        peak = max(peak, point.cumulative_pnl)
        max_drawdown = max(max_drawdown, peak - point.cumulative_pnl)
    return max_drawdown


def _daily_stats(trades: Sequence[Signal]) -> List[DailyStat]:
    buckets: Dict[str, Dict[str, float]] = {}
    for trade in trades:
        pnl = _trade_pnl(trade)
        bucket = buckets.setdefault(_trade_date(trade), {"pnl": 0.0, "trades": 0, "wins": 0, "losses": 0})
        bucket["pnl"] += pnl
        bucket["trades"] += 1
        bucket["wins"] += 1 if pnl > 0 else 0
        bucket["losses"] += 1 if pnl < 0 else 0
    return [
        DailyStat(
            date=date,
            pnl=round_money(bucket["pnl"]),
            trades=int(bucket["trades"]),
            wins=int(bucket["wins"]),
            losses=int(bucket["losses"]),
        )
        for date, bucket in sorted(buckets.items())
    ]


def _top_symbols(trades: Sequence[Signal], limit: int = TOP_SYMBOLS_LIMIT) -> List[SymbolPerformance]:
    rollup: Dict[str, Dict[str, float]] = {}
    for trade in trades:
        if not trade.symbol:
            continue
        pnl = _trade_pnl(trade)
        entry = rollup.setdefault(trade.symbol, {"trades": 0, "pnl": 0.0, "wins": 0, "losses": 0})
        entry["trades"] += 1
        entry["pnl"] += pnl
        entry["wins"] += 1 if pnl > 0 else 0
        entry["losses"] += 1 if pnl < 0 else 0

    performances = [
        SymbolPerformance(
            symbol=symbol,
            trades=int(entry["trades"]),
            pnl=round_money(entry["pnl"]),
            wins=int(entry["wins"]),
            losses=int(entry["losses"]),
            win_rate=round_money(entry["wins"] / entry["trades"] * 100) if entry["trades"] else 0.0,
        )
        for symbol, entry in rollup.items()
    ]
    performances.sort(key=lambda perf: perf.pnl, reverse=True)
    return performances[:limit]
