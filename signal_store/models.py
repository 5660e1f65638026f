from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping

_log = logging.getLogger(__name__)

DEFAULT_VOLUME = 0.01


class SignalAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(moment: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Accept datetimes, ISO-8601 strings and epoch seconds/milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        seconds = float(value)
        if seconds > 10**12:
            seconds /= 1000
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def normalize_symbol(symbol: str | None) -> str:
    return (symbol or "").upper().strip()


def new_signal_id() -> str:
    return uuid.uuid4().hex


def _parse_action(value: Any) -> SignalAction:
    if isinstance(value, SignalAction):
        return value
    return SignalAction(str(value or SignalAction.BUY.value).upper().strip())


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _optional_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_pnl(value: Any, signal_id: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        pnl = float(value)
    except (TypeError, ValueError):
        pnl = math.nan
    if not math.isfinite(pnl):
        _log.warning("Non-numeric pnl coerced to 0", extra={"signal_id": signal_id, "pnl": value})
        return 0.0
    return pnl


@dataclass(frozen=True, slots=True)
class Signal:
    """A trade instruction received from TradingView and executed by the EA."""

    id: str
    symbol: str
    action: SignalAction
    timestamp: datetime
    volume: float = DEFAULT_VOLUME
    order_type: str | None = None
    entry_price: float | None = None
    exit_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    pnl: float | None = None
    processed: bool = False
    success: bool | None = None
    comment: str | None = None
    magic_number: int | None = None
    closed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        # Stored datetimes are always UTC-aware so they compare with each other.
        for name in ("timestamp", "closed_at", "created_at", "updated_at"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, parse_timestamp(value))
        if self.symbol is None:
            object.__setattr__(self, "symbol", "")
        if self.pnl is not None:
            object.__setattr__(self, "pnl", _coerce_pnl(self.pnl, self.id))

    @property
    def is_closed_trade(self) -> bool:
        return self.processed and self.pnl is not None

    def normalized(self) -> "Signal":
        """Return a copy honouring the processed/pnl/success invariant."""
        if self.pnl is not None and not self.processed:
            return replace(self, processed=True)
        if not self.processed and (self.pnl is not None or self.success is not None):
            return replace(self, pnl=None, success=None)
        return self

    def with_updates(self, **changes: Any) -> "Signal":
        changes.setdefault("updated_at", utc_now())
        return replace(self, **changes).normalized()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Signal":
        """Build a signal from a database row or a loosely typed payload."""
        signal_id = str(row.get("id") or new_signal_id())
        timestamp = parse_timestamp(row.get("timestamp")) or parse_timestamp(row.get("created_at")) or utc_now()
        magic = row.get("magic_number")
        volume = _optional_float(row.get("volume"))
        return cls(
            id=signal_id,
            symbol=normalize_symbol(row.get("symbol")),
            action=_parse_action(row.get("action")),
            timestamp=timestamp,
            volume=DEFAULT_VOLUME if volume is None else volume,
            order_type=row.get("order_type"),
            entry_price=_optional_float(row.get("entry_price")),
            exit_price=_optional_float(row.get("exit_price")),
            stop_loss=_optional_float(row.get("stop_loss")),
            take_profit=_optional_float(row.get("take_profit")),
            pnl=_coerce_pnl(row.get("pnl"), signal_id),
            processed=bool(row.get("processed") or False),
            success=_optional_bool(row.get("success")),
            comment=row.get("comment"),
            magic_number=int(magic) if magic not in (None, "") else None,
            closed_at=parse_timestamp(row.get("closed_at")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        ).normalized()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "action": self.action.value,
            "order": self.order_type,
            "stopLoss": self.stop_loss,
            "takeProfit": self.take_profit,
            "volume": self.volume,
            "comment": self.comment,
            "timestamp": self.timestamp.isoformat(),
            "processed": self.processed,
            "success": self.success,
            "magic_number": self.magic_number,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "pnl": self.pnl,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class SignalQuery:
    """Filters accepted by ``SignalStore.list_signals``."""

    unprocessed: bool = False
    symbol: str | None = None
    magic_number: int | None = None
    since: datetime | None = None
    limit: int = 50

    def __post_init__(self) -> None:
        if self.limit <= 0:
            raise ValueError("limit must be positive")

    def matches(self, signal: Signal) -> bool:
        if self.unprocessed and signal.processed:
            return False
        if self.symbol and signal.symbol != normalize_symbol(self.symbol):
            return False
        if self.magic_number is not None and signal.magic_number != self.magic_number:
            return False
        if self.since is not None and signal.timestamp < ensure_utc(self.since):
            return False
        return True
