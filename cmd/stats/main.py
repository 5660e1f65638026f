from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from signal_store import build_store
from stats import StatsFetchError, StatsPoller, StatsPollerConfig, build_snapshot


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Print trading signal statistics, either computed from the store or polled from a running API.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--store", default=os.getenv("SIGNALS_STORE", "postgres"), help="Store backend to read from.")
    parser.add_argument("--env-file", type=Path, help="Optional .env file with database settings.")
    parser.add_argument("--url", default=os.getenv("SIGNALS_API_URL", ""), help="Poll this API instead of reading the store.")
    parser.add_argument("--watch", action="store_true", help="Keep polling --url and print every change.")
    parser.add_argument("--interval", type=float, default=30.0, help="Seconds between polls in --watch mode.")
    parser.add_argument("--period", type=int, default=30, help="Days covered by recentSignals when polling.")
    parser.add_argument("--summary", action="store_true", help="Print headline numbers only.")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    return parser


SUMMARY_KEYS: List[str] = [
    "totalSignals",
    "processedSignals",
    "activeSignals",
    "successRate",
    "totalPnL",
    "winningTrades",
    "losingTrades",
    "profitFactor",
    "maxDrawdown",
    "maxWinStreak",
    "maxLossStreak",
]


def render(stats: Dict[str, Any], summary: bool) -> str:
    if summary:
        return "\n".join(f"{key:>18}: {stats.get(key)}" for key in SUMMARY_KEYS)
    return json.dumps(stats, indent=2, default=str)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger = logging.getLogger("signals.stats")

    if args.url:
        poller = StatsPoller(
            StatsPollerConfig(base_url=args.url, interval_seconds=args.interval, period_days=args.period),
            logger=logging.getLogger("signals.poller"),
        )
        try:
            if args.watch:
                poller.run(lambda stats: print(render(stats, args.summary), flush=True))
                return 0
            poller.fetch()
        except StatsFetchError as exc:
            logger.error("Could not fetch stats: %s", exc)
            return 1
        finally:
            poller.close()
        print(render(poller.stats or {}, args.summary))
        return 0

    if args.watch:
        parser.error("--watch requires --url.")

    store = build_store(args.store, args.env_file)
    try:
        signals = store.load_all()
    finally:
        store.close()
    logger.info("Loaded %s signal(s) from %s store", len(signals), args.store)
    print(render(build_snapshot(signals).as_dict(), args.summary))
    return 0


if __name__ == "__main__":
    sys.exit(main())
