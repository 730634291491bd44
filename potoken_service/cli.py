import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

import uvicorn
from pydantic import ValidationError

from potoken_service.config.settings import Settings
from potoken_service.coordinator import UpdateCoordinator
from potoken_service.errors import AttemptInProgress, ExtractionFailed, ImplausibleToken
from potoken_service.main import create_app
from potoken_service.services.extractor import BrowserSessionDriver, SessionConfig
from potoken_service.services.history import AttemptHistory
from potoken_service.services.telegram_bot import FailureAlerter

logger = logging.getLogger("potoken_service")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="potoken-service",
        description="Extract po_token and visitor_data from a browser session and serve them over HTTP.",
    )
    parser.add_argument("-o", "--oneshot", action="store_true",
                        help="extract a token once, print it to stdout and exit")
    parser.add_argument("--update-interval", "-u", type=float, default=300,
                        help="seconds between scheduled token updates (default: 300)")
    parser.add_argument("--bind", "-b", dest="bind_address", default="0.0.0.0",
                        help="address the web server binds to (default: 0.0.0.0)")
    parser.add_argument("--port", "-p", type=int, default=8080,
                        help="port the web server listens on (default: 8080)")
    parser.add_argument("--browser-path", "-c", default=None,
                        help="path to a Chromium/Chrome executable")
    parser.add_argument("--no-headless", dest="headless", action="store_false",
                        help="show the browser window")
    parser.add_argument("--extraction-timeout", type=float, default=30,
                        help="seconds to wait for the player request (default: 30)")
    parser.add_argument("--attempt-timeout", type=float, default=600,
                        help="hard limit for a whole attempt in seconds (default: 600)")
    parser.add_argument("--min-token-length", type=int, default=160,
                        help="shorter tokens are reported as implausible (default: 160)")
    parser.add_argument("--history-db", dest="history_database_url", default=None,
                        help="SQLAlchemy URL to record attempts, e.g. sqlite+aiosqlite:///attempts.db")
    parser.add_argument("--alert-after", dest="alert_after_failures", type=int, default=5,
                        help="consecutive failures before a Telegram alert (default: 5)")
    parser.add_argument("--log-file", default=None, help="also write logs to this file")
    parser.add_argument("--verbose", "-v", action="store_true", help="enable debug logging")
    return parser


def load_settings(argv: Optional[List[str]] = None) -> Settings:
    args = build_parser().parse_args(argv)
    return Settings(
        **vars(args),
        telegram_bot_token=os.environ.get("POTOKEN_TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=os.environ.get("POTOKEN_TELEGRAM_CHAT_ID"),
    )


def configure_logging(settings: Settings) -> None:
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))
    logging.basicConfig(
        level=logging.DEBUG if settings.verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def build_coordinator(settings: Settings, history: Optional[AttemptHistory] = None) -> UpdateCoordinator:
    driver = BrowserSessionDriver(SessionConfig(
        browser_path=settings.browser_path,
        headless=settings.headless,
        extraction_timeout=settings.extraction_timeout,
    ))
    listeners = []
    if history is not None:
        listeners.append(history)
    if settings.alerts_enabled:
        listeners.append(FailureAlerter(
            settings.telegram_bot_token,
            settings.telegram_chat_id,
            threshold=settings.alert_after_failures,
        ))
    return UpdateCoordinator(
        driver,
        min_token_length=settings.min_token_length,
        attempt_timeout=settings.attempt_timeout,
        listeners=listeners,
    )


async def run_oneshot(settings: Settings, coordinator: Optional[UpdateCoordinator] = None) -> int:
    """Extract a single token, print it and return the process exit code."""
    history = AttemptHistory(settings.history_database_url) if settings.history_database_url else None
    if coordinator is None:
        coordinator = build_coordinator(settings, history)
    if history is not None:
        await history.init()
    try:
        record = await coordinator.run_once()
    except (ExtractionFailed, AttemptInProgress) as e:
        logger.error(f"Failed to extract token: {e}")
        return 1
    finally:
        if history is not None:
            await history.close()

    print(record.to_json())
    try:
        record.ensure_plausible(settings.min_token_length)
    except ImplausibleToken as e:
        logger.warning(f"Extracted token looks invalid, {e}")
        return 1
    return 0


def run_server(settings: Settings) -> None:
    history = AttemptHistory(settings.history_database_url) if settings.history_database_url else None
    coordinator = build_coordinator(settings, history)
    app = create_app(coordinator, update_interval=settings.update_interval, history=history)
    logger.info(f"Starting web-server at {settings.bind_address}:{settings.port}")
    uvicorn.run(app, host=settings.bind_address, port=settings.port, log_config=None)


def main(argv: Optional[List[str]] = None) -> int:
    try:
        settings = load_settings(argv)
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    configure_logging(settings)
    if settings.oneshot:
        return asyncio.run(run_oneshot(settings))

    run_server(settings)
    return 0
