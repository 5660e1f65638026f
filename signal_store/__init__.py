"""Signal domain model and persistence backends."""

from .models import Signal, SignalAction, SignalQuery
from .storage import (
    InMemorySignalStore,
    PostgresConfig,
    PostgresSignalStore,
    SignalNotFoundError,
    SignalStore,
    StoreUnavailableError,
    build_store,
)

__all__ = [
    "InMemorySignalStore",
    "PostgresConfig",
    "PostgresSignalStore",
    "Signal",
    "SignalAction",
    "SignalNotFoundError",
    "SignalQuery",
    "SignalStore",
    "StoreUnavailableError",
    "build_store",
]
