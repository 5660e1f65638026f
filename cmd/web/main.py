from __future__ import annotations

import argparse
import logging
import os
import sys

import uvicorn

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}


class ExtraFormatter(logging.Formatter):
    """Append ``extra={...}`` context as ``key=value`` pairs after the message."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = sorted(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        if not context:
            return line
        pairs = " ".join(f"{key}={_render(value)}" for key, value in context)
        return f"{line} | {pairs}"


def _render(value: object) -> str:
    text = str(value)
    return repr(text) if " " in text else text


def configure_logging(level: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(ExtraFormatter(LOG_FORMAT))
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), handlers=[handler], force=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the trading signal API (webhook, listing, stats).")
    parser.add_argument("--host", default=os.getenv("WEB_HOST", "0.0.0.0"), help="Bind address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=int(os.getenv("WEB_PORT", "8000")), help="Listen port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes")
    parser.add_argument("--log-level", default=os.getenv("WEB_LOG_LEVEL", "info"), help="Log level for app and uvicorn")
    parser.add_argument(
        "--store",
        choices=("postgres", "memory"),
        help="Signal store backend (default: SIGNALS_STORE or postgres)",
    )
    parser.add_argument("--env-file", help="Dotenv file with SIGNALS_DB_* / POSTGRES_* settings")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Bind 127.0.0.1, trust only localhost and skip the HTTPS redirect",
    )
    return parser


def apply_overrides(args: argparse.Namespace) -> str:
    """Push CLI choices into the environment read by ``create_app``; return the bind host."""
    if args.store:
        os.environ["SIGNALS_STORE"] = args.store
    if args.env_file:
        os.environ["SIGNALS_DB_ENV_FILE"] = args.env_file
    if not args.local:
        return args.host
    os.environ["WEB_FORCE_HTTPS"] = "false"
    os.environ.setdefault("WEB_TRUSTED_HOSTS", "localhost,127.0.0.1")
    return "127.0.0.1"


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    host = apply_overrides(args)
    configure_logging(args.log_level)

    logger = logging.getLogger("signals.web")
    logger.info(
        "Starting signal API",
        extra={"host": host, "port": args.port, "store": os.getenv("SIGNALS_STORE", "postgres")},
    )
    server = uvicorn.Server(
        uvicorn.Config(
            "webserver.app:create_app",
            factory=True,
            host=host,
            port=args.port,
            reload=args.reload,
            log_level=args.log_level,
            log_config=None,
        )
    )
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("Signal API stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
