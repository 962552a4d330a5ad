"""Command line entry point: load configuration, set up logging, serve."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import uvicorn

from app.core.errors import CustomError, set_stack_trace_order
from app.core.logging import LEVELS, setup_logging
from app.core.settings import APP_NAME, CONFIG_ENV_VAR, ENV_PREFIX, get_settings


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME, description=f"{APP_NAME} API server")
    parser.add_argument(
        "--log-level",
        choices=sorted(LEVELS),
        default=None,
        help="Log level (default: from config, else info)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Log format (default: from config, else text)",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help=f"YAML config file (default: ${CONFIG_ENV_VAR} or ./config.yaml)",
    )
    return parser


def apply_args(args: argparse.Namespace) -> None:
    # Flags go through the environment so they outrank the config file.
    if args.config:
        os.environ[CONFIG_ENV_VAR] = args.config
    if args.log_level:
        os.environ[f"{ENV_PREFIX}LOG_LEVEL"] = args.log_level
    if args.log_format:
        os.environ[f"{ENV_PREFIX}LOG_FORMAT"] = args.log_format
    get_settings.cache_clear()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    apply_args(args)

    try:
        settings = get_settings()
        setup_logging(settings.log_level, settings.log_format)
    except CustomError as exc:
        print(f"{APP_NAME}: {exc}", file=sys.stderr)
        return 1
    set_stack_trace_order(settings.stack_trace_order)

    server = settings.server
    logger.info("starting %s (log_level=%s)", APP_NAME, settings.log_level)
    # uvicorn stops accepting on SIGINT/SIGTERM and waits up to the grace
    # period for in-flight requests before forcing connections closed.
    uvicorn.run(
        "app.main:app",
        host=server.host,
        port=server.port,
        timeout_keep_alive=server.idle_timeout_seconds,
        timeout_graceful_shutdown=server.shutdown_grace_seconds,
        log_config=None,
        access_log=False,
    )
    logger.info("server exited")
    return 0


if __name__ == "__main__":
    sys.exit(main())
