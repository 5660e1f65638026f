from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

DEFAULT_TRUSTED_HOSTS = [
    "localhost",
    "127.0.0.1",
    "testserver",
]

DEFAULT_ALLOWED_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _list_env(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


def _merge_hosts(configured: List[str]) -> List[str]:
    # Defaults stay available so local tooling is never locked out.
    merged: List[str] = []
    seen: set[str] = set()
    for candidate in configured + DEFAULT_TRUSTED_HOSTS:
        candidate = candidate.strip()
        if not candidate or candidate in seen:
            continue
        merged.append(candidate)
        seen.add(candidate)
    return merged


@dataclass(frozen=True)
class WebSettings:
    store_kind: str = "postgres"
    trusted_hosts: List[str] = field(default_factory=lambda: DEFAULT_TRUSTED_HOSTS.copy())
    allowed_origins: List[str] = field(default_factory=lambda: DEFAULT_ALLOWED_ORIGINS.split(","))
    force_https: bool = False
    webhook_secret: str | None = None
    admin_token: str | None = None
    default_period_days: int = 30
    recent_signals_limit: int = 10
    max_list_limit: int = 500

    def __post_init__(self) -> None:
        if self.default_period_days <= 0:
            raise ValueError("default_period_days must be positive")
        if self.recent_signals_limit <= 0:
            raise ValueError("recent_signals_limit must be positive")
        if self.max_list_limit <= 0:
            raise ValueError("max_list_limit must be positive")

    @classmethod
    def from_env(cls) -> "WebSettings":
        return cls(
            store_kind=os.getenv("SIGNALS_STORE", "postgres"),
            trusted_hosts=_merge_hosts(_list_env("WEB_TRUSTED_HOSTS", "")),
            allowed_origins=_list_env("WEB_ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS),
            force_https=_bool_env("WEB_FORCE_HTTPS", False),
            webhook_secret=os.getenv("TRADINGVIEW_WEBHOOK_SECRET") or None,
            admin_token=os.getenv("ADMIN_API_TOKEN") or None,
            default_period_days=int(os.getenv("STATS_DEFAULT_PERIOD_DAYS", "30")),
        )
