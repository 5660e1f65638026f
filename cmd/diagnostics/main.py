from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

from signal_store import PostgresConfig, StoreUnavailableError, build_store

ENV_VARS = (
    "SIGNALS_STORE",
    "SIGNALS_DATABASE_URL",
    "DATABASE_URL",
    "SIGNALS_DB_HOST",
    "TRADINGVIEW_WEBHOOK_SECRET",
    "ADMIN_API_TOKEN",
    "WEB_TRUSTED_HOSTS",
    "WEB_ALLOWED_ORIGINS",
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Check configuration and signal store connectivity.")
    parser.add_argument("--store", default=os.getenv("SIGNALS_STORE", "postgres"), help="Store backend to test.")
    parser.add_argument("--env-file", type=Path, help="Optional .env file with database settings.")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    return parser


def environment_report() -> Dict[str, bool]:
    return {name: bool(os.getenv(name)) for name in ENV_VARS}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger = logging.getLogger("signals.diagnostics")

    for name, present in environment_report().items():
        logger.info("%-28s %s", name, "set" if present else "missing")

    if args.store == "postgres":
        logger.info("Database target: %s", PostgresConfig.from_env(args.env_file).describe())

    try:
        store = build_store(args.store, args.env_file)
    except Exception as exc:
        logger.error("Could not open %s store: %s", args.store, exc)
        return 1

    try:
        store.ping()
        logger.info("Store reachable: %s signal(s), %s unprocessed", store.count(), store.count(processed=False))
    except StoreUnavailableError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        store.close()

    logger.info("Diagnostics complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
