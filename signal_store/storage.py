from __future__ import annotations

import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Sequence, Tuple

from .models import Signal, SignalQuery, ensure_utc

try:
    from psycopg.conninfo import make_conninfo
    from psycopg_pool import ConnectionPool
except ImportError as exc:  # pragma: no cover - runtime dependency guard
    ConnectionPool = None  # type: ignore[assignment]
    make_conninfo = None  # type: ignore[assignment]
    _PSYCOPG_IMPORT_ERROR = exc
else:
    _PSYCOPG_IMPORT_ERROR = None


class SignalNotFoundError(LookupError):
    def __init__(self, signal_id: str) -> None:
        super().__init__(f"Signal {signal_id} not found")
        self.signal_id = signal_id


class StoreUnavailableError(RuntimeError):
    """Raised when the backing database cannot be reached."""


class SignalStore(ABC):
    """Abstract persistence boundary for trading signals."""

    @abstractmethod
    def insert(self, signal: Signal) -> Signal:
        """Persist a new signal and return the stored record."""

    @abstractmethod
    def get(self, signal_id: str) -> Signal:
        """Return the signal or raise SignalNotFoundError."""

    @abstractmethod
    def update(self, signal: Signal) -> Signal:
        """Replace an existing signal; raise SignalNotFoundError if absent."""

    @abstractmethod
    def delete(self, signal_id: str) -> None:
        """Remove the signal; raise SignalNotFoundError if absent."""

    @abstractmethod
    def list_signals(self, query: SignalQuery) -> List[Signal]:
        """Return matching signals, newest first, capped at query.limit."""

    @abstractmethod
    def count(self, *, processed: bool | None = None) -> int:
        """Count signals, optionally restricted by processed state."""

    @abstractmethod
    def load_all(self, since: datetime | None = None) -> List[Signal]:
        """Load every signal (optionally from `since`) in no guaranteed order."""

    def ping(self) -> None:
        """Raise StoreUnavailableError when the store cannot serve requests."""

    def close(self) -> None:  # pragma: no cover - optional hook
        """Allow stores with resources to clean up."""


class InMemorySignalStore(SignalStore):
    """Process-local store used for development runs and tests."""

    def __init__(self, signals: Sequence[Signal] = ()) -> None:
        self._signals: Dict[str, Signal] = {}
        self._lock = threading.Lock()
        for signal in signals:
            self.insert(signal)

    def insert(self, signal: Signal) -> Signal:
        signal = signal.normalized()
        with self._lock:
            if signal.id in self._signals:
                raise ValueError(f"Signal {signal.id} already exists")
            self._signals[signal.id] = signal
        return signal

    def get(self, signal_id: str) -> Signal:
        with self._lock:
            signal = self._signals.get(signal_id)
        if signal is None:
            raise SignalNotFoundError(signal_id)
        return signal

    def update(self, signal: Signal) -> Signal:
        signal = signal.normalized()
        with self._lock:
            if signal.id not in self._signals:
                raise SignalNotFoundError(signal.id)
            self._signals[signal.id] = signal
        return signal

    def delete(self, signal_id: str) -> None:
        with self._lock:
            if self._signals.pop(signal_id, None) is None:
                raise SignalNotFoundError(signal_id)

    def list_signals(self, query: SignalQuery) -> List[Signal]:
        with self._lock:
            matches = [signal for signal in self._signals.values() if query.matches(signal)]
        matches.sort(key=lambda signal: signal.timestamp, reverse=True)
        return matches[: query.limit]

    def count(self, *, processed: bool | None = None) -> int:
        with self._lock:
            if processed is None:
                return len(self._signals)
            return sum(1 for signal in self._signals.values() if signal.processed is processed)

    def load_all(self, since: datetime | None = None) -> List[Signal]:
        with self._lock:
            signals = list(self._signals.values())
        if since is None:
            return signals
        cutoff = ensure_utc(since)
        return [signal for signal in signals if signal.timestamp >= cutoff]


# Field -> environment variables, first match wins. Generic POSTGRES_* names
# are accepted so the store can share a docker-compose file with other tools.
_ENV_NAMES: Dict[str, Tuple[str, ...]] = {
    "host": ("SIGNALS_DB_HOST", "POSTGRES_HOST"),
    "port": ("SIGNALS_DB_PORT", "POSTGRES_PORT"),
    "user": ("SIGNALS_DB_USER", "POSTGRES_USER"),
    "password": ("SIGNALS_DB_PASSWORD", "POSTGRES_PASSWORD"),
    "database": ("SIGNALS_DB_NAME", "POSTGRES_DB"),
    "sslmode": ("SIGNALS_DB_SSLMODE", "POSTGRES_SSLMODE"),
    "min_pool_size": ("SIGNALS_DB_MIN_POOL_SIZE",),
    "max_pool_size": ("SIGNALS_DB_MAX_POOL_SIZE",),
    "connect_timeout_seconds": ("SIGNALS_DB_CONNECT_TIMEOUT",),
    "max_idle_seconds": ("SIGNALS_DB_MAX_IDLE_SECONDS",),
    "conninfo": ("SIGNALS_DATABASE_URL", "DATABASE_URL"),
}
_INT_FIELDS = {"port", "min_pool_size", "max_pool_size", "connect_timeout_seconds", "max_idle_seconds"}


@dataclass(frozen=True)
class PostgresConfig:
    """Connection and pool settings for ``PostgresSignalStore``.

    A full ``conninfo`` (URL or key/value string) takes precedence over the
    discrete host/port/user fields.
    """

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = "postgres"
    database: str = "signals"
    sslmode: str = "prefer"
    min_pool_size: int = 1
    max_pool_size: int = 10
    connect_timeout_seconds: int = 10
    max_idle_seconds: int = 300
    conninfo: str | None = None

    def __post_init__(self) -> None:
        if self.min_pool_size < 1 or self.max_pool_size < self.min_pool_size:
            raise ValueError("pool sizes must satisfy 1 <= min_pool_size <= max_pool_size")

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "PostgresConfig":
        """Read settings from the process environment, then from `env_file`."""
        file_values = _load_env_file(Path(env_file) if env_file else None)
        overrides: Dict[str, Any] = {}
        for field_name, names in _ENV_NAMES.items():
            raw = next((value for value in _lookup(names, file_values) if value), None)
            if raw is None:
                continue
            overrides[field_name] = int(raw) if field_name in _INT_FIELDS else raw
        return cls(**overrides)

    def to_conninfo(self) -> str:
        if self.conninfo:
            return self.conninfo
        if make_conninfo is None:
            raise RuntimeError("psycopg is required for the postgres signal store") from _PSYCOPG_IMPORT_ERROR
        return make_conninfo(
            host=self.host,
            port=self.port,
            dbname=self.database,
            user=self.user,
            password=self.password,
            sslmode=self.sslmode,
            connect_timeout=self.connect_timeout_seconds,
        )

    def describe(self) -> str:
        """Connection target without credentials, safe for logs."""
        if self.conninfo:
            return self.conninfo.rsplit("@", 1)[-1]
        return f"{self.host}:{self.port}/{self.database}"


def _lookup(names: Sequence[str], file_values: Mapping[str, str]) -> Iterator[str | None]:
    for name in names:
        yield os.getenv(name)
    for name in names:
        yield file_values.get(name)


_COLUMNS = (
    "id",
    "symbol",
    "action",
    "order_type",
    "entry_price",
    "exit_price",
    "stop_loss",
    "take_profit",
    "volume",
    "pnl",
    "processed",
    "success",
    "comment",
    "magic_number",
    "timestamp",
    "closed_at",
    "created_at",
    "updated_at",
)
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM signals"


def _to_params(signal: Signal) -> Dict[str, Any]:
    return {
        "id": signal.id,
        "symbol": signal.symbol,
        "action": signal.action.value,
        "order_type": signal.order_type,
        "entry_price": signal.entry_price,
        "exit_price": signal.exit_price,
        "stop_loss": signal.stop_loss,
        "take_profit": signal.take_profit,
        "volume": signal.volume,
        "pnl": signal.pnl,
        "processed": signal.processed,
        "success": signal.success,
        "comment": signal.comment,
        "magic_number": signal.magic_number,
        "timestamp": signal.timestamp,
        "closed_at": signal.closed_at,
        "created_at": signal.created_at,
        "updated_at": signal.updated_at,
    }


def _from_row(row: Sequence[Any]) -> Signal:
    return Signal.from_row(dict(zip(_COLUMNS, row)))


class PostgresSignalStore(SignalStore):
    """PostgreSQL-backed store for the `signals` table."""

    def __init__(self, config: PostgresConfig) -> None:
        if ConnectionPool is None:
            raise RuntimeError(
                "PostgreSQL dependencies are missing. Install 'psycopg[binary]' and 'psycopg_pool'."
            ) from _PSYCOPG_IMPORT_ERROR

        self._pool = ConnectionPool(
            conninfo=config.to_conninfo(),
            min_size=max(config.min_pool_size, 1),
            max_size=max(config.max_pool_size, max(config.min_pool_size, 1)),
            kwargs={"autocommit": True},
            max_idle=config.max_idle_seconds,
            open=True,
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS signals (
                        id TEXT PRIMARY KEY,
                        symbol TEXT NOT NULL,
                        action TEXT NOT NULL CHECK (action IN ('BUY', 'SELL')),
                        order_type TEXT,
                        entry_price DOUBLE PRECISION,
                        exit_price DOUBLE PRECISION,
                        stop_loss DOUBLE PRECISION,
                        take_profit DOUBLE PRECISION,
                        volume DOUBLE PRECISION NOT NULL DEFAULT 0.01,
                        pnl DOUBLE PRECISION,
                        processed BOOLEAN NOT NULL DEFAULT FALSE,
                        success BOOLEAN,
                        comment TEXT,
                        magic_number INTEGER,
                        timestamp TIMESTAMPTZ NOT NULL,
                        closed_at TIMESTAMPTZ,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE INDEX IF NOT EXISTS signals_timestamp_idx
                    ON signals (timestamp DESC)
                    """
                )
                cur.execute(
                    """
                    CREATE INDEX IF NOT EXISTS signals_processed_idx
                    ON signals (processed)
                    """
                )

    def insert(self, signal: Signal) -> Signal:
        params = _to_params(signal.normalized())
        placeholders = ", ".join(f"%({column})s" for column in _COLUMNS)
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO signals ({', '.join(_COLUMNS)})
                    VALUES ({placeholders})
                    RETURNING {', '.join(_COLUMNS)}
                    """,
                    params,
                )
                row = cur.fetchone()
        return _from_row(row)

    def get(self, signal_id: str) -> Signal:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"{_SELECT} WHERE id = %s", (signal_id,))
                row = cur.fetchone()
        if row is None:
            raise SignalNotFoundError(signal_id)
        return _from_row(row)

    def update(self, signal: Signal) -> Signal:
        params = _to_params(signal.normalized())
        assignments = ", ".join(f"{column} = %({column})s" for column in _COLUMNS if column != "id")
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE signals SET {assignments}
                    WHERE id = %(id)s
                    RETURNING {', '.join(_COLUMNS)}
                    """,
                    params,
                )
                row = cur.fetchone()
        if row is None:
            raise SignalNotFoundError(signal.id)
        return _from_row(row)

    def delete(self, signal_id: str) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM signals WHERE id = %s", (signal_id,))
                deleted = cur.rowcount
        if not deleted:
            raise SignalNotFoundError(signal_id)

    def list_signals(self, query: SignalQuery) -> List[Signal]:
        clauses: List[str] = []
        params: List[Any] = []
        if query.unprocessed:
            clauses.append("processed = FALSE")
        if query.symbol:
            clauses.append("symbol = %s")
            params.append(query.symbol.upper().strip())
        if query.magic_number is not None:
            clauses.append("magic_number = %s")
            params.append(query.magic_number)
        if query.since is not None:
            clauses.append("timestamp >= %s")
            params.append(ensure_utc(query.since))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(query.limit)
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"{_SELECT}{where} ORDER BY timestamp DESC LIMIT %s", params)
                rows = cur.fetchall()
        return [_from_row(row) for row in rows]

    def count(self, *, processed: bool | None = None) -> int:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                if processed is None:
                    cur.execute("SELECT COUNT(*) FROM signals")
                else:
                    cur.execute("SELECT COUNT(*) FROM signals WHERE processed = %s", (processed,))
                row = cur.fetchone()
        return int(row[0]) if row else 0

    def load_all(self, since: datetime | None = None) -> List[Signal]:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                if since is None:
                    cur.execute(f"{_SELECT} ORDER BY timestamp ASC")
                else:
                    cur.execute(f"{_SELECT} WHERE timestamp >= %s ORDER BY timestamp ASC", (ensure_utc(since),))
                rows = cur.fetchall()
        return [_from_row(row) for row in rows]

    def ping(self) -> None:
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1 FROM signals LIMIT 1")
        except Exception as exc:
            raise StoreUnavailableError(f"Signal store unreachable: {exc}") from exc

    def close(self) -> None:
        self._pool.close()


def build_store(kind: str, env_file: str | Path | None = None) -> SignalStore:
    """Create the signal store named by `kind` (``postgres`` or ``memory``).

    For ``postgres`` the dotenv file is `env_file`, else SIGNALS_DB_ENV_FILE;
    real environment variables always win over values read from the file.
    """
    normalized = (kind or "").strip().lower()
    if normalized == "memory":
        return InMemorySignalStore()
    if normalized == "postgres":
        return PostgresSignalStore(PostgresConfig.from_env(env_file or os.getenv("SIGNALS_DB_ENV_FILE")))
    raise ValueError(f"Unsupported store kind: {kind!r} (expected 'postgres' or 'memory')")


def _load_env_file(path: Path | None) -> Dict[str, str]:
    """Parse ``KEY=value`` lines; missing files yield nothing."""
    if path is None or not path.is_file():
        return {}
    values: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        key, sep, value = line.strip().removeprefix("export ").partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#"):
            continue
        values[key] = value.strip().strip("'\"")
    return values
