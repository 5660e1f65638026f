"""Periodic client for the statistics endpoint using conditional requests."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

STATS_PATH = "/api/signals/stats"


class StatsFetchError(RuntimeError):
    pass


@dataclass(frozen=True)
class StatsPollerConfig:
    base_url: str
    interval_seconds: float = 30.0
    timeout: float = 10.0
    period_days: int = 30
    proxies: Dict[str, str] | None = None

    def __post_init__(self) -> None:
        if not self.base_url.strip():
            raise ValueError("base_url must not be empty")
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.period_days <= 0:
            raise ValueError("period_days must be positive")


class StatsPoller:
    """Keeps the latest stats payload, re-fetching only when the server reports a change."""

    def __init__(
        self,
        config: StatsPollerConfig,
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._url = config.base_url.rstrip("/") + STATS_PATH
        self._log = logger or logging.getLogger("signals.poller")
        self._session = session or requests.Session()
        if config.proxies:
            self._session.proxies = config.proxies
        self._etag: str | None = None
        self._stats: Dict[str, Any] | None = None

    @property
    def stats(self) -> Dict[str, Any] | None:
        return self._stats

    @property
    def etag(self) -> str | None:
        return self._etag

    def fetch(self) -> bool:
        """Refresh the cached stats. Returns True when new data arrived."""
        headers = {"Accept": "application/json"}
        if self._etag:
            headers["If-None-Match"] = self._etag

        try:
            response = self._session.get(
                self._url,
                params={"period": self._config.period_days},
                headers=headers,
                timeout=self._config.timeout,
            )
        except requests.RequestException as exc:
            raise StatsFetchError(f"Stats request failed: {exc}") from exc

        new_etag = response.headers.get("ETag")
        if new_etag:
            self._etag = new_etag

        if response.status_code == 304:
            self._log.debug("Stats not modified", extra={"etag": self._etag})
            return False

        if not response.ok:
            raise StatsFetchError(f"HTTP {response.status_code}: {response.text[:200]}")

        content_type = response.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            raise StatsFetchError(f"Server returned non-JSON response: {response.text[:200]}")

        self._stats = response.json()
        return True

    def run(
        self,
        on_update: Callable[[Dict[str, Any]], None],
        iterations: Optional[int] = None,
    ) -> None:
        """Poll until interrupted (or for `iterations` cycles), calling `on_update` on change."""
        completed = 0
        try:
            while iterations is None or completed < iterations:
                try:
                    if self.fetch() and self._stats is not None:
                        on_update(self._stats)
                except StatsFetchError as exc:
                    self._log.warning("Stats refresh failed: %s", exc)
                completed += 1
                if iterations is not None and completed >= iterations:
                    break
                time.sleep(self._config.interval_seconds)
        except KeyboardInterrupt:
            self._log.info("Stats poller stopped by user.")

    def close(self) -> None:
        self._session.close()
