from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator  # type: ignore[import-not-found]

Action = Literal["BUY", "SELL"]


def _upper(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper()
    return value


class TradingViewWebhook(BaseModel):
    """Alert payload posted by TradingView."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, allow_inf_nan=False)

    symbol: str = Field(..., min_length=1)
    action: Action
    price: float | None = None
    volume: float | None = Field(default=None, gt=0)
    stop_loss: float | None = Field(default=None, alias="stopLoss")
    take_profit: float | None = Field(default=None, alias="takeProfit")
    comment: str | None = None
    timestamp: datetime | None = None
    magic_number: int | None = Field(default=None, alias="magic")

    @field_validator("symbol", "action", mode="before")
    @classmethod
    def _normalize_upper(cls, value: Any) -> Any:
        return _upper(value)


class ExecutionReport(BaseModel):
    """Outcome reported back by the MetaTrader EA once a signal was handled."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, allow_inf_nan=False)

    id: str = Field(..., min_length=1)
    success: bool
    entry_price: float | None = Field(default=None, alias="entryPrice")
    exit_price: float | None = Field(default=None, alias="exitPrice")
    pnl: float | None = None


class ManualSignal(BaseModel):
    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    symbol: str = Field(..., min_length=1)
    action: Action
    entry_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    volume: float = Field(default=0.01, gt=0)
    comment: str = "Manual signal"
    order_type: str | None = None
    magic_number: int | None = None

    @field_validator("symbol", "action", mode="before")
    @classmethod
    def _normalize_upper(cls, value: Any) -> Any:
        return _upper(value)


class SignalUpdate(BaseModel):
    """Fields an operator may edit from the dashboard. Unset fields are left alone."""

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    symbol: str | None = Field(default=None, min_length=1)
    action: Action | None = None
    entry_price: float | None = None
    exit_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    volume: float | None = Field(default=None, gt=0)
    pnl: float | None = None
    comment: str | None = None
    processed: bool | None = None
    success: bool | None = None

    @field_validator("symbol", "action", mode="before")
    @classmethod
    def _normalize_upper(cls, value: Any) -> Any:
        return _upper(value)


class WebhookAccepted(BaseModel):
    message: str
    signalId: str
    timestamp: datetime


class SignalMutationResponse(BaseModel):
    message: str
    signal: Dict[str, Any]


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: Literal["ok", "unavailable"]
    store: str
    error: str | None = None
