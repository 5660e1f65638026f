from .aggregator import (
    CumulativePoint,
    DailyStat,
    StatsSnapshot,
    SymbolPerformance,
    build_snapshot,
    round_money,
)
from .caching import compute_etag, etag_matches
from .poller import StatsFetchError, StatsPoller, StatsPollerConfig

__all__ = [
    "CumulativePoint",
    "DailyStat",
    "StatsFetchError",
    "StatsPoller",
    "StatsPollerConfig",
    "StatsSnapshot",
    "SymbolPerformance",
    "build_snapshot",
    "compute_etag",
    "etag_matches",
    "round_money",
]
