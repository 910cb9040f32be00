"""
SQLite State Store
==================

System of record for the watchers:
- Watch targets (configuration + last sample, soft-deleted via is_active)
- Alert log (append-only, delivered flag)
- Price history (bounded per target)
- Preferences (process-wide defaults)
- Service logs (persistent logging)

Storage: data/tierwatch.db
"""

import logging
import sqlite3
import sys
import threading
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from pathlib import Path
from queue import Queue, Empty
from typing import Dict, List, Optional

from ..errors import PersistenceError, ValidationError
from ..models import (
    AlertRecord,
    AlertToggles,
    PriceHistoryPoint,
    TierConfig,
    WatcherKind,
    WatchTarget,
)

logger = logging.getLogger(__name__)

# Default retention
PRICE_HISTORY_LIMIT = 1000  # samples kept per target
ALERT_RETENTION_DAYS = 90
SERVICE_LOG_RETENTION_DAYS = 7

# Columns added to service_logs after its first release
SERVICE_LOG_COLUMNS = {
    "level_no": "INTEGER NOT NULL DEFAULT 0",
    "target_id": "TEXT",
}

DEFAULT_DB_PATH = Path(__file__).parent.parent.parent / "data" / "tierwatch.db"


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class StateStore:
    """
    SQLite persistence for the watchers.

    - WAL mode for concurrent reads (log writer thread, view scripts)
    - One connection per operation
    - Any sqlite3 failure surfaces as PersistenceError
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH, price_history_limit: int = PRICE_HISTORY_LIMIT):
        """
        Initialize database and schema.

        Args:
            db_path: Path to SQLite database file
            price_history_limit: Samples retained per target

        Raises:
            PersistenceError: if the database cannot be opened or initialized
        """
        self.db_path = Path(db_path)
        self.price_history_limit = price_history_limit

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create data directory {self.db_path.parent}: {e}") from e

        self._init_schema()
        logger.info(f"State store initialized: {self.db_path}")

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper cleanup."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS watch_targets (
                    target_id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    display_name TEXT NOT NULL,
                    minor_threshold REAL NOT NULL,
                    major_threshold REAL NOT NULL,
                    critical_threshold REAL NOT NULL,
                    enable_minor_alerts INTEGER NOT NULL DEFAULT 1,
                    enable_major_alerts INTEGER NOT NULL DEFAULT 1,
                    enable_critical_alerts INTEGER NOT NULL DEFAULT 1,
                    check_interval INTEGER NOT NULL,
                    threshold_usd REAL,
                    threshold_latched INTEGER NOT NULL DEFAULT 0,
                    last_value REAL NOT NULL DEFAULT 0,
                    last_sample_time TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_watch_targets_kind_active
                ON watch_targets(kind, is_active)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS alerts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    category TEXT NOT NULL,
                    alert_type TEXT NOT NULL,
                    target_id TEXT,
                    message TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    delivered INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_alerts_category_time
                ON alerts(category, timestamp)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS price_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    target_id TEXT NOT NULL,
                    label TEXT NOT NULL,
                    value REAL NOT NULL,
                    timestamp TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_price_history_target_time
                ON price_history(target_id, timestamp)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS preferences (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS service_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    level TEXT NOT NULL,
                    level_no INTEGER NOT NULL DEFAULT 0,
                    logger_name TEXT NOT NULL,
                    target_id TEXT,
                    message TEXT NOT NULL,
                    exc_info TEXT
                )
            """)
            self._add_missing_columns(conn, "service_logs", SERVICE_LOG_COLUMNS)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_service_logs_time
                ON service_logs(timestamp)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_service_logs_target_time
                ON service_logs(target_id, timestamp)
            """)

    @staticmethod
    def _add_missing_columns(conn: sqlite3.Connection, table: str, columns: Dict[str, str]):
        """Bring a table created by an older release up to the current column set."""
        existing = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}
        for name, definition in columns.items():
            if name not in existing:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {definition}")
                logger.info(f"Added column {table}.{name}")

    # =========================================================================
    # Watch Target Operations
    # =========================================================================

    def upsert_target(self, target: WatchTarget):
        """
        Insert or replace a target row (configuration and sample state).

        created_at is preserved when the row already exists.
        """
        now = datetime.now(timezone.utc).isoformat()

        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO watch_targets (
                    target_id, kind, display_name,
                    minor_threshold, major_threshold, critical_threshold,
                    enable_minor_alerts, enable_major_alerts, enable_critical_alerts,
                    check_interval, threshold_usd, threshold_latched,
                    last_value, last_sample_time, is_active,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(target_id) DO UPDATE SET
                    kind = excluded.kind,
                    display_name = excluded.display_name,
                    minor_threshold = excluded.minor_threshold,
                    major_threshold = excluded.major_threshold,
                    critical_threshold = excluded.critical_threshold,
                    enable_minor_alerts = excluded.enable_minor_alerts,
                    enable_major_alerts = excluded.enable_major_alerts,
                    enable_critical_alerts = excluded.enable_critical_alerts,
                    check_interval = excluded.check_interval,
                    threshold_usd = excluded.threshold_usd,
                    threshold_latched = excluded.threshold_latched,
                    last_value = excluded.last_value,
                    last_sample_time = excluded.last_sample_time,
                    is_active = excluded.is_active,
                    updated_at = excluded.updated_at
            """, (
                target.target_id, target.kind.value, target.display_name,
                target.tiers.minor, target.tiers.major, target.tiers.critical,
                int(target.alerts.minor), int(target.alerts.major), int(target.alerts.critical),
                target.interval_seconds, target.threshold_usd, int(target.threshold_latched),
                target.last_value, _to_iso(target.last_sample_time), int(target.active),
                now, now,
            ))

        logger.debug(f"Saved target {target.target_id} ({target.kind.value})")

    def get_target(self, target_id: str) -> Optional[WatchTarget]:
        """Load one target row (active or not)."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM watch_targets WHERE target_id = ?", (target_id,)
            )
            row = cursor.fetchone()

        return self._row_to_target(row) if row else None

    def load_targets(self, kind: Optional[WatcherKind] = None, active_only: bool = True) -> List[WatchTarget]:
        """
        Load target rows.

        Args:
            kind: Only this watcher kind (all kinds if None)
            active_only: Skip soft-deleted rows

        Returns:
            List of WatchTarget, oldest first
        """
        query = "SELECT * FROM watch_targets"
        clauses = []
        params: list = []
        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind.value)
        if active_only:
            clauses.append("is_active = 1")
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at ASC"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()

        targets = []
        for row in rows:
            try:
                targets.append(self._row_to_target(row))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable target row {row['target_id']}: {e}")

        logger.info(f"Loaded {len(targets)} targets (kind={kind.value if kind else 'all'})")
        return targets

    def update_target_sample(
        self,
        target_id: str,
        last_value: float,
        last_sample_time: datetime,
        threshold_latched: bool = False,
    ):
        """Persist the sampling state of a target after a cycle."""
        with self._get_connection() as conn:
            conn.execute("""
                UPDATE watch_targets
                SET last_value = ?, last_sample_time = ?, threshold_latched = ?, updated_at = ?
                WHERE target_id = ?
            """, (
                last_value, _to_iso(last_sample_time), int(threshold_latched),
                datetime.now(timezone.utc).isoformat(), target_id,
            ))

    def deactivate_target(self, target_id: str) -> bool:
        """
        Soft-delete a target. History and alerts are retained.

        Returns:
            True if a row was updated
        """
        with self._get_connection() as conn:
            cursor = conn.execute("""
                UPDATE watch_targets SET is_active = 0, updated_at = ?
                WHERE target_id = ?
            """, (datetime.now(timezone.utc).isoformat(), target_id))
            updated = cursor.rowcount > 0

        if updated:
            logger.debug(f"Deactivated target {target_id}")
        return updated

    @staticmethod
    def _row_to_target(row: sqlite3.Row) -> WatchTarget:
        return WatchTarget(
            target_id=row['target_id'],
            kind=WatcherKind(row['kind']),
            display_name=row['display_name'],
            tiers=TierConfig(
                minor=row['minor_threshold'],
                major=row['major_threshold'],
                critical=row['critical_threshold'],
            ),
            interval_seconds=int(row['check_interval']),
            alerts=AlertToggles(
                minor=bool(row['enable_minor_alerts']),
                major=bool(row['enable_major_alerts']),
                critical=bool(row['enable_critical_alerts']),
            ),
            threshold_usd=row['threshold_usd'],
            last_value=row['last_value'] or 0.0,
            last_sample_time=_from_iso(row['last_sample_time']),
            active=bool(row['is_active']),
            threshold_latched=bool(row['threshold_latched']),
        )

    # =========================================================================
    # Alert Operations
    # =========================================================================

    def append_alert(self, record: AlertRecord) -> int:
        """
        Append an alert to the log and set record.id.

        Returns:
            Row id of the new alert
        """
        with self._get_connection() as conn:
            cursor = conn.execute("""
                INSERT INTO alerts (category, alert_type, target_id, message, severity, timestamp, delivered)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                record.category, record.alert_type, record.target_id, record.message,
                record.severity, record.timestamp.isoformat(), int(record.delivered),
            ))
            record.id = cursor.lastrowid

        return record.id

    def mark_alert_delivered(self, alert_id: int):
        """Flip the delivered flag (the only mutation allowed on an alert)."""
        with self._get_connection() as conn:
            conn.execute("UPDATE alerts SET delivered = 1 WHERE id = ?", (alert_id,))

    def get_recent_alerts(self, limit: int = 50, category: Optional[str] = None) -> List[AlertRecord]:
        """
        Get recent alerts, newest first.

        Args:
            limit: Maximum number of alerts
            category: Only this category ("holdings", "price", "base_price")
        """
        with self._get_connection() as conn:
            if category:
                cursor = conn.execute("""
                    SELECT * FROM alerts WHERE category = ?
                    ORDER BY timestamp DESC, id DESC LIMIT ?
                """, (category, limit))
            else:
                cursor = conn.execute("""
                    SELECT * FROM alerts
                    ORDER BY timestamp DESC, id DESC LIMIT ?
                """, (limit,))
            rows = cursor.fetchall()

        return [
            AlertRecord(
                id=row['id'],
                category=row['category'],
                alert_type=row['alert_type'],
                target_id=row['target_id'],
                message=row['message'],
                severity=row['severity'],
                timestamp=_from_iso(row['timestamp']),
                delivered=bool(row['delivered']),
            )
            for row in rows
        ]

    # =========================================================================
    # Price History Operations
    # =========================================================================

    def append_price_point(self, point: PriceHistoryPoint):
        """Append a sample and evict the target's oldest samples beyond the limit."""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO price_history (target_id, label, value, timestamp)
                VALUES (?, ?, ?, ?)
            """, (point.target_id, point.label, point.value, point.timestamp.isoformat()))

            conn.execute("""
                DELETE FROM price_history
                WHERE target_id = ? AND id NOT IN (
                    SELECT id FROM price_history
                    WHERE target_id = ?
                    ORDER BY timestamp DESC, id DESC
                    LIMIT ?
                )
            """, (point.target_id, point.target_id, self.price_history_limit))

    def get_price_history(self, target_id: str, limit: int = 100) -> List[PriceHistoryPoint]:
        """Most recent samples for a target, newest first."""
        with self._get_connection() as conn:
            cursor = conn.execute("""
                SELECT * FROM price_history
                WHERE target_id = ?
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
            """, (target_id, limit))
            rows = cursor.fetchall()

        return [
            PriceHistoryPoint(
                target_id=row['target_id'],
                label=row['label'],
                value=row['value'],
                timestamp=_from_iso(row['timestamp']),
            )
            for row in rows
        ]

    def get_latest_price(self, target_id: str) -> Optional[PriceHistoryPoint]:
        history = self.get_price_history(target_id, limit=1)
        return history[0] if history else None

    def prune_price_history(self, limit: Optional[int] = None) -> int:
        """
        Keep only the most recent `limit` samples for every target.

        Returns:
            Number of rows deleted
        """
        limit = limit if limit is not None else self.price_history_limit

        with self._get_connection() as conn:
            cursor = conn.execute("""
                DELETE FROM price_history
                WHERE id NOT IN (
                    SELECT id FROM (
                        SELECT id,
                            ROW_NUMBER() OVER (
                                PARTITION BY target_id ORDER BY timestamp DESC, id DESC
                            ) AS rn
                        FROM price_history
                    )
                    WHERE rn <= ?
                )
            """, (limit,))
            return cursor.rowcount

    # =========================================================================
    # Preference Operations
    # =========================================================================

    def set_preference(self, key: str, value: str):
        now = datetime.now(timezone.utc).isoformat()

        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO preferences (key, value, updated_at)
                VALUES (?, ?, ?)
            """, (key, str(value), now))

    def get_preference(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM preferences WHERE key = ?", (key,)
            ).fetchone()
        return row['value'] if row else default

    def get_all_preferences(self) -> Dict[str, str]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT key, value FROM preferences ORDER BY key").fetchall()
        return {row['key']: row['value'] for row in rows}

    # =========================================================================
    # Service Log Operations
    # =========================================================================

    def append_logs(self, entries: List["ServiceLogEntry"]):
        """Write a batch of log entries (called from the log writer thread)."""
        with self._get_connection() as conn:
            conn.executemany("""
                INSERT INTO service_logs (timestamp, level, level_no, logger_name, target_id, message, exc_info)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                (e.timestamp.isoformat(), e.level, e.level_no, e.logger_name, e.target_id, e.message, e.exc_info)
                for e in entries
            ])

    def get_logs(
        self,
        hours: int = 24,
        min_level: Optional[str] = None,
        target_id: Optional[str] = None,
        limit: int = 1000,
    ) -> List["ServiceLogEntry"]:
        """
        Persisted log entries, newest first.

        Args:
            hours: How far back to look
            min_level: Level name; only entries at or above it
            target_id: Only entries logged for this watch target
            limit: Maximum number of entries

        Raises:
            ValidationError: unknown level name
        """
        clauses = ["timestamp > ?"]
        params: list = [(datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()]

        if min_level:
            level_no = logging.getLevelName(min_level.upper())
            if not isinstance(level_no, int):
                raise ValidationError(f"Unknown log level: {min_level}")
            clauses.append("level_no >= ?")
            params.append(level_no)
        if target_id:
            clauses.append("target_id = ?")
            params.append(target_id)
        params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(f"""
                SELECT * FROM service_logs
                WHERE {" AND ".join(clauses)}
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
            """, params).fetchall()

        return [
            ServiceLogEntry(
                timestamp=_from_iso(row['timestamp']),
                level=row['level'],
                level_no=row['level_no'],
                logger_name=row['logger_name'],
                message=row['message'],
                target_id=row['target_id'],
                exc_info=row['exc_info'],
            )
            for row in rows
        ]

    # =========================================================================
    # Maintenance Operations
    # =========================================================================

    def prune_old_data(
        self,
        alert_days: int = ALERT_RETENTION_DAYS,
        log_days: int = SERVICE_LOG_RETENTION_DAYS,
    ) -> dict:
        """
        Remove old alerts and logs and enforce price history retention.

        Returns:
            Dict with counts of deleted rows
        """
        alert_cutoff = (datetime.now(timezone.utc) - timedelta(days=alert_days)).isoformat()
        log_cutoff = (datetime.now(timezone.utc) - timedelta(days=log_days)).isoformat()

        deleted = {'price_history': self.prune_price_history(), 'alerts': 0, 'service_logs': 0}

        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM alerts WHERE timestamp < ?", (alert_cutoff,))
            deleted['alerts'] = cursor.rowcount

            cursor = conn.execute("DELETE FROM service_logs WHERE timestamp < ?", (log_cutoff,))
            deleted['service_logs'] = cursor.rowcount

        if any(v > 0 for v in deleted.values()):
            logger.info(
                f"Pruned old data: {deleted['price_history']} history, "
                f"{deleted['alerts']} alerts, {deleted['service_logs']} logs"
            )

        return deleted

    def vacuum(self):
        """Reclaim disk space after deletions."""
        with self._get_connection() as conn:
            conn.execute("VACUUM")
        logger.info("Database vacuumed")

    def backup(self, backup_path: Path):
        """Copy the database to backup_path using the sqlite backup API."""
        backup_path = Path(backup_path)
        try:
            backup_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create backup directory {backup_path.parent}: {e}") from e

        with self._get_connection() as conn:
            dest = sqlite3.connect(str(backup_path))
            try:
                conn.backup(dest)
            finally:
                dest.close()

        logger.info(f"Database backed up to {backup_path}")

    def get_stats(self) -> dict:
        """Get database statistics."""
        with self._get_connection() as conn:
            stats = {}

            for table in ['watch_targets', 'alerts', 'price_history', 'preferences', 'service_logs']:
                cursor = conn.execute(f"SELECT COUNT(*) as count FROM {table}")
                stats[table] = cursor.fetchone()['count']

            cursor = conn.execute("SELECT COUNT(*) as count FROM watch_targets WHERE is_active = 1")
            stats['active_targets'] = cursor.fetchone()['count']

            cursor = conn.execute("SELECT COUNT(*) as count FROM alerts WHERE delivered = 0")
            stats['undelivered_alerts'] = cursor.fetchone()['count']

        stats['file_size_mb'] = self.db_path.stat().st_size / (1024 * 1024)
        return stats


# =============================================================================
# SQLite Logging Handler
# =============================================================================


@dataclass
class ServiceLogEntry:
    """One row of service_logs."""
    timestamp: datetime
    level: str
    level_no: int
    logger_name: str
    message: str
    target_id: Optional[str] = None
    exc_info: Optional[str] = None


_STOP = object()


class SQLiteLoggingHandler(logging.Handler):
    """
    Persists log records to the store's service_logs table.

    Records logged with extra={"target_id": ...} (every monitor loop does so)
    keep that id, which lets `view_data.py logs --target` follow one watch.
    Rows are written in batches by a background thread; a failed batch is
    reported on stderr, never through logging.
    """

    def __init__(
        self,
        store: StateStore,
        batch_size: int = 50,
        flush_interval: float = 5.0,
        level: int = logging.INFO,
    ):
        super().__init__(level)
        self.store = store
        self.batch_size = batch_size
        self.flush_interval = flush_interval

        self._queue: Queue = Queue()
        self._close_event = threading.Event()
        self._writer = threading.Thread(target=self._write_loop, daemon=True, name="SQLiteLogWriter")
        self._writer.start()

    def emit(self, record: logging.LogRecord):
        if self._close_event.is_set():
            return
        try:
            exc_info = None
            if record.exc_info:
                exc_info = ''.join(traceback.format_exception(*record.exc_info))

            self._queue.put(ServiceLogEntry(
                timestamp=datetime.fromtimestamp(record.created, timezone.utc),
                level=record.levelname,
                level_no=record.levelno,
                logger_name=record.name,
                message=record.getMessage(),
                target_id=getattr(record, "target_id", None),
                exc_info=exc_info,
            ))
        except Exception:
            self.handleError(record)

    def _write_loop(self):
        batch: List[ServiceLogEntry] = []
        deadline = time.monotonic() + self.flush_interval

        while True:
            try:
                entry = self._queue.get(timeout=max(0.0, deadline - time.monotonic()))
            except Empty:
                entry = None

            if entry is _STOP:
                break
            if entry is not None:
                batch.append(entry)

            if len(batch) >= self.batch_size or time.monotonic() >= deadline:
                self._flush(batch)
                batch = []
                deadline = time.monotonic() + self.flush_interval

        # Everything queued before close() precedes the stop marker
        self._flush(batch)

    def _flush(self, batch: List[ServiceLogEntry]):
        if not batch:
            return
        try:
            self.store.append_logs(batch)
        except PersistenceError as e:
            sys.stderr.write(f"Dropped {len(batch)} log records: {e}\n")

    def close(self):
        """Write out queued records and stop the writer thread."""
        if not self._close_event.is_set():
            self._close_event.set()
            self._queue.put(_STOP)
            self._writer.join(timeout=10)
        super().close()
