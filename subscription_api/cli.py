"""
Command line entry point: serve the API, migrate tables, or print the version.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Optional, Sequence

from subscription_api.config import Settings, get_settings
from subscription_api.core.logging import configure_logging
from subscription_api.version import APPLICATION_NAME, __version__

logger = logging.getLogger(__name__)


def load_settings(config_file: Optional[str] = None, port: Optional[int] = None) -> Settings:
    if config_file:
        os.environ["CONFIG_FILE"] = config_file
    get_settings.cache_clear()
    settings = get_settings()
    if port:
        settings = settings.model_copy(update={"port": port})
    return settings


def serve(settings: Settings) -> int:
    import uvicorn

    from subscription_api.database import DatabaseConnectionError, connect
    from subscription_api.integrations.payments import build_payer_proxy
    from subscription_api.main import create_app

    logger.info("Connecting to DB")
    try:
        session_factory = connect(settings)
    except DatabaseConnectionError as exc:
        logger.error("Failed to connect to db: %s", exc)
        return 1

    app = create_app(settings, session_factory, build_payer_proxy(settings))
    logger.info("%s started on: :%d", APPLICATION_NAME, settings.port)
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_config=None)
    logger.info("API Shutdown")
    return 0


def migrate(settings: Settings) -> int:
    from subscription_api.database import DatabaseConnectionError, connect

    try:
        connect(settings.model_copy(update={"db_automigrate": True}))
    except DatabaseConnectionError as exc:
        logger.error("Failed to migrate db: %s", exc)
        return 1
    logger.info("Migration complete")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APPLICATION_NAME, description="Paid-plan subscription API")
    parser.add_argument("-c", "--config", default=None, help="the config file to use")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="run the HTTP API")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="the port to use")

    subparsers.add_parser("migrate", help="create database tables")
    subparsers.add_parser("version", help="print the version")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "serve"

    if command == "version":
        print(f"{APPLICATION_NAME} {__version__}")
        return 0

    try:
        settings = load_settings(args.config, getattr(args, "port", None))
    except ValueError as exc:
        print(f"Failed to load config: {exc}", file=sys.stderr)
        return 1

    configure_logging(settings.log_level, settings.log_file)

    if command == "migrate":
        return migrate(settings)
    return serve(settings)


if __name__ == "__main__":
    sys.exit(main())
