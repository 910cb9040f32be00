#!/usr/bin/env python3
"""
Tierwatch Service - CLI Entry Point
===================================

Runs the portfolio, token price and base token watchers until interrupted.

Usage:
    # Start watchers
    python scripts/run_watcher.py

    # Dry run (alerts logged, no Telegram)
    python scripts/run_watcher.py --dry-run

    # Test Telegram configuration
    python scripts/run_watcher.py --test-telegram

    # Add / remove token watches at startup
    python scripts/run_watcher.py --watch 0xabc...:MyAgent --unwatch 0xdef...

    # Database maintenance
    python scripts/run_watcher.py --vacuum
    python scripts/run_watcher.py --backup backups/tierwatch.db
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tierwatch.alerts import AlertConfig, TelegramAlerts
from tierwatch.api import AgentsClient
from tierwatch.config import Config
from tierwatch.db import SQLiteLoggingHandler, StateStore
from tierwatch.errors import PersistenceError, TransientFetchError, ValidationError
from tierwatch.service import WatchService


def setup_logging(settings: Config, log_level: str):
    """Configure logging for the watcher service."""
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Date-stamped log file (e.g., logs/tierwatch_2026-01-18.log)
    date_str = datetime.now().strftime("%Y-%m-%d")
    dated_log_file = log_dir / f"tierwatch_{date_str}.log"

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # File handler (date-stamped)
    file_handler = logging.FileHandler(dated_log_file)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Reduce noise from HTTP libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    root_logger.info(f"Logging to: {dated_log_file}")


def attach_sqlite_logging(store: StateStore, log_level: str) -> SQLiteLoggingHandler:
    """Persist logs to the store's service_logs table."""
    handler = SQLiteLoggingHandler(store, level=getattr(logging, log_level.upper()))
    logging.getLogger().addHandler(handler)
    return handler


def parse_watch(value: str):
    """TOKEN[:NAME] -> (token, name or None)"""
    token, _, name = value.partition(":")
    token = token.strip()
    if not token:
        raise argparse.ArgumentTypeError(f"Invalid token argument: {value!r}")
    return token, (name.strip() or None)


async def run_service(settings: Config, store: StateStore, sink: TelegramAlerts, args) -> int:
    logger = logging.getLogger(__name__)

    async def apply_watches(service: WatchService):
        for token, name in args.watch:
            try:
                target = await service.watch_token(token, name=name)
                print(f"Watching {target.display_name} ({token})")
            except (ValidationError, TransientFetchError) as e:
                logger.error(f"Could not watch {token}: {e}")

    async with AgentsClient(
        base_url=settings.api_base_url,
        max_retries=settings.max_retries,
        retry_backoff_sec=settings.retry_backoff_sec,
        timeout_sec=settings.request_timeout_sec,
    ) as source:
        service = WatchService(settings, store, source, sink)
        await service.run(on_started=apply_watches if args.watch else None)

    return 0


def main():
    parser = argparse.ArgumentParser(
        description='Tierwatch - tiered threshold alerts for a portfolio and agent token prices',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Watchers:
  - Portfolio: total holdings value of WALLET_ADDRESS (tiered change + USD milestone)
  - Tokens:    price of every watched agent token (tiered change)
  - Base token: base token price (tiered change)

Examples:
  python scripts/run_watcher.py                    # Start watchers
  python scripts/run_watcher.py --dry-run          # Log alerts only
  python scripts/run_watcher.py --test-telegram    # Test Telegram setup
  python scripts/run_watcher.py --watch 0xabc:Agent --watch 0xdef
        """
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Log alerts instead of sending to Telegram'
    )

    parser.add_argument(
        '--test-telegram',
        action='store_true',
        help='Send a test alert to verify Telegram configuration'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Log level (default: LOG_LEVEL from environment, else INFO)'
    )

    parser.add_argument(
        '--watch',
        action='append',
        type=parse_watch,
        default=[],
        metavar='TOKEN[:NAME]',
        help='Watch a token price (repeatable); name resolved from the API when omitted'
    )

    parser.add_argument(
        '--unwatch',
        action='append',
        default=[],
        metavar='TOKEN',
        help='Stop watching a token (repeatable)'
    )

    parser.add_argument(
        '--vacuum',
        action='store_true',
        help='Vacuum the database and exit'
    )

    parser.add_argument(
        '--backup',
        type=Path,
        metavar='PATH',
        help='Copy the database to PATH and exit'
    )

    args = parser.parse_args()

    try:
        settings = Config.from_env()
    except ValidationError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    log_level = args.log_level or settings.log_level
    setup_logging(settings, log_level)
    logger = logging.getLogger(__name__)

    try:
        store = StateStore(settings.db_path, price_history_limit=settings.price_history_limit)
    except PersistenceError as e:
        logger.error(f"Cannot open state store: {e}")
        sys.exit(1)

    if args.vacuum:
        try:
            store.vacuum()
        except PersistenceError as e:
            logger.error(f"Vacuum failed: {e}")
            sys.exit(1)
        print(f"Vacuumed {settings.db_path}")
        sys.exit(0)

    if args.backup:
        try:
            store.backup(args.backup)
        except PersistenceError as e:
            logger.error(f"Backup failed: {e}")
            sys.exit(1)
        print(f"Backed up {settings.db_path} to {args.backup}")
        sys.exit(0)

    sqlite_handler = attach_sqlite_logging(store, log_level)

    settings = settings.with_preferences(store.get_all_preferences())

    if not args.dry_run and not settings.telegram_configured:
        print("\nWARNING: TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID not set!")
        print("Set environment variables or use --dry-run for log-only alerts.")
        sys.exit(1)

    sink = TelegramAlerts(AlertConfig(
        bot_token=settings.telegram_bot_token,
        chat_id=settings.telegram_chat_id,
        dry_run=args.dry_run,
    ))

    # Test Telegram mode
    if args.test_telegram:
        print("Testing Telegram configuration...")
        if sink.send_test_alert():
            print("Test alert sent successfully!")
            sys.exit(0)
        print("Failed to send test alert. Check your TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID.")
        sys.exit(1)

    for token in args.unwatch:
        if store.deactivate_target(token):
            print(f"Stopped watching {token}")
        else:
            print(f"{token} was not being watched")

    # Print configuration
    print("\n" + "=" * 60)
    print("TIERWATCH SERVICE")
    print("=" * 60)
    print(f"Wallet:         {settings.wallet_address or '(none, holdings watcher off)'}")
    print(f"Holdings:       every {settings.holdings_check_interval}s, milestone ${settings.holdings_threshold:,.2f}")
    print(f"Token prices:   every {settings.price_check_interval}s, minor {settings.price_change_threshold:g}%")
    print(f"Base token:     every {settings.base_token_check_interval}s, "
          f"{settings.base_minor_threshold:g}/{settings.base_major_threshold:g}/{settings.base_critical_threshold:g}%")
    print(f"Database:       {settings.db_path}")
    print(f"Dry run:        {args.dry_run}")
    print(f"Log level:      {log_level}")
    print("=" * 60)

    try:
        exit_code = asyncio.run(run_service(settings, store, sink, args))
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
        exit_code = 0
    finally:
        sqlite_handler.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
