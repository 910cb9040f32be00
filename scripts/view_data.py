#!/usr/bin/env python3
"""
View data in the tierwatch database.

Usage:
    python3 scripts/view_data.py targets              # Watched targets
    python3 scripts/view_data.py targets --all        # Include inactive targets
    python3 scripts/view_data.py alerts               # Recent alerts
    python3 scripts/view_data.py alerts --category price
    python3 scripts/view_data.py history 0xabc...     # Price history for a target
    python3 scripts/view_data.py prefs                # Stored preferences
    python3 scripts/view_data.py stats                # Table counts and file size
    python3 scripts/view_data.py logs --hours 6       # Persisted service logs
    python3 scripts/view_data.py logs --target 0xabc... --level WARNING
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from tierwatch.config import Config
from tierwatch.db import StateStore
from tierwatch.errors import PersistenceError, ValidationError
from tierwatch.alerts.messages import strip_html
from tierwatch.utils import format_currency, short_address


def print_header(title: str):
    print("\n" + "=" * 80)
    print(f"  {title}")
    print("=" * 80)


def format_time(value) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def view_targets(store: StateStore, show_all: bool = False):
    print_header("WATCH TARGETS")

    targets = store.load_targets(active_only=not show_all)
    if not targets:
        print("No targets.")
        return

    print(f"{'Kind':<11} {'Target':<15} {'Name':<20} {'Tiers %':<14} {'Every':>6} {'Last value':>16} {'Last sample':<20} {'Active':<6}")
    print("-" * 114)
    for t in targets:
        tiers = f"{t.tiers.minor:g}/{t.tiers.major:g}/{t.tiers.critical:g}"
        print(
            f"{t.kind.value:<11} {short_address(t.target_id):<15} {t.display_name[:20]:<20} "
            f"{tiers:<14} {t.interval_seconds:>5}s {format_currency(t.last_value):>16} "
            f"{format_time(t.last_sample_time):<20} {'yes' if t.active else 'no':<6}"
        )
        if t.threshold_usd is not None:
            latch = "reached" if t.threshold_latched else "armed"
            print(f"{'':<11} milestone {format_currency(t.threshold_usd)} ({latch})")


def view_alerts(store: StateStore, limit: int, category: str = None):
    print_header(f"RECENT ALERTS{f' ({category})' if category else ''}")

    alerts = store.get_recent_alerts(limit=limit, category=category)
    if not alerts:
        print("No alerts.")
        return

    for alert in alerts:
        delivered = "sent" if alert.delivered else "not sent"
        print(f"\n[{format_time(alert.timestamp)}] {alert.category} / {alert.alert_type} "
              f"({alert.severity}, {delivered})")
        print(strip_html(alert.message))


def view_history(store: StateStore, target_id: str, limit: int):
    print_header(f"PRICE HISTORY: {target_id}")

    points = store.get_price_history(target_id, limit=limit)
    if not points:
        print("No samples.")
        return

    print(f"{'Time':<20} {'Value':>18}")
    print("-" * 40)
    for point in points:
        print(f"{format_time(point.timestamp):<20} {format_currency(point.value):>18}")


def view_prefs(store: StateStore):
    print_header("PREFERENCES")

    prefs = store.get_all_preferences()
    if not prefs:
        print("No stored preferences (environment defaults apply).")
        return
    for key, value in prefs.items():
        print(f"{key:<28} {value}")


def view_stats(store: StateStore):
    print_header("DATABASE STATS")

    print(f"Database: {store.db_path}")
    for key, value in store.get_stats().items():
        if key == 'file_size_mb':
            print(f"{key:<22} {value:.2f}")
        else:
            print(f"{key:<22} {value}")


def view_logs(store: StateStore, hours: int, level: str = None, target_id: str = None, limit: int = 200):
    title = f"SERVICE LOGS (last {hours}h)"
    if target_id:
        title += f" for {target_id}"
    print_header(title)

    logs = store.get_logs(hours=hours, min_level=level, target_id=target_id, limit=limit)
    if not logs:
        print("No logs.")
        return
    for log in reversed(logs):
        target = short_address(log.target_id) if log.target_id else "-"
        print(f"{format_time(log.timestamp)} {log.level:<8} {target:<15} {log.logger_name}: {log.message}")
        if log.exc_info:
            print(log.exc_info)


def main():
    parser = argparse.ArgumentParser(description="View tierwatch database contents")
    sub = parser.add_subparsers(dest="view", required=True)

    p = sub.add_parser("targets", help="Watched targets")
    p.add_argument("--all", action="store_true", help="Include inactive targets")

    p = sub.add_parser("alerts", help="Recent alerts")
    p.add_argument("--limit", type=int, default=20)
    p.add_argument("--category", choices=["holdings", "price", "base_price"])

    p = sub.add_parser("history", help="Price history for one target")
    p.add_argument("target_id")
    p.add_argument("--limit", type=int, default=50)

    sub.add_parser("prefs", help="Stored preferences")
    sub.add_parser("stats", help="Table counts")

    p = sub.add_parser("logs", help="Persisted service logs")
    p.add_argument("--hours", type=int, default=24)
    p.add_argument("--level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                   help="Minimum level")
    p.add_argument("--target", help="Only logs for this target id")
    p.add_argument("--limit", type=int, default=200)

    args = parser.parse_args()

    try:
        settings = Config.from_env()
    except ValidationError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    if not settings.db_path.exists():
        print(f"Database not found: {settings.db_path}")
        sys.exit(1)

    try:
        store = StateStore(settings.db_path)
    except PersistenceError as e:
        print(f"Cannot open database: {e}")
        sys.exit(1)

    if args.view == "targets":
        view_targets(store, show_all=args.all)
    elif args.view == "alerts":
        view_alerts(store, args.limit, args.category)
    elif args.view == "history":
        view_history(store, args.target_id, args.limit)
    elif args.view == "prefs":
        view_prefs(store)
    elif args.view == "stats":
        view_stats(store)
    elif args.view == "logs":
        view_logs(store, args.hours, args.level, args.target, args.limit)


if __name__ == "__main__":
    main()
