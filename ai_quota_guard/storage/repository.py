"""
Repository for per-user, per-model, per-day usage counters.

Handles reads of today's usage and the increment performed after a request
has been routed to a model.
"""

import sqlite3
from datetime import datetime, timezone, tzinfo
from typing import List, Optional

import structlog

from ai_quota_guard.core.day_boundary import as_aware, day_key, utc_now
from .db import DEFAULT_DB_PATH, get_connection
from .models import UsageRecord

logger = structlog.get_logger()

_UPSERT_INCREMENT = """
    INSERT INTO model_usage
    (user_id, model_name, day, request_count, last_request_at, updated_at)
    VALUES (?, ?, ?, 1, ?, ?)
    ON CONFLICT (user_id, model_name, day) DO UPDATE SET
        request_count = request_count + 1,
        last_request_at = excluded.last_request_at,
        updated_at = excluded.updated_at
"""

_SELECT_COLUMNS = "user_id, model_name, day, request_count, last_request_at"


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the model_usage table if it doesn't exist.

    One row per (user, model, day). The unique key is what makes the
    upsert increment atomic.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS model_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                model_name TEXT NOT NULL,
                day TEXT NOT NULL,
                request_count INTEGER NOT NULL DEFAULT 0 CHECK (request_count >= 0),
                last_request_at TEXT,
                updated_at TEXT NOT NULL,
                UNIQUE (user_id, model_name, day)
            )
        """)
        conn.commit()
    finally:
        conn.close()


def _row_to_record(row) -> UsageRecord:
    """Decode one row.

    Raises:
        sqlite3.DatabaseError: If the stored values are not a valid counter
    """
    try:
        return UsageRecord(
            user_id=row[0],
            model_name=row[1],
            day=row[2],
            request_count=row[3] or 0,
            last_request_at=datetime.fromisoformat(row[4]) if row[4] else None
        )
    except (TypeError, ValueError) as e:
        raise sqlite3.DatabaseError(f"Corrupt usage row for {row[0]}/{row[1]}/{row[2]}: {e}")


class UsageRepository:
    """Durable usage counters backed by SQLite.

    Increments go through a single upsert statement keyed on
    (user_id, model_name, day), so concurrent increments of the same key
    never lose a count.

    When ``degraded_mode`` is enabled and the upsert fails, the increment
    falls back to reading the current count and writing count + 1. That
    path is NOT safe under concurrent access: two writers can read the same
    count and one increment is lost. It can only under-count.

    Args:
        db_path: Path to SQLite database file
        tz: Reference time zone for day keys
        degraded_mode: Allow the non-atomic increment fallback
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        tz: tzinfo = timezone.utc,
        degraded_mode: bool = False
    ):
        self.db_path = db_path
        self.tz = tz
        self.degraded_mode = degraded_mode
        self.degraded_increments = 0

    def initialize_schema(self) -> None:
        initialize_schema(self.db_path)

    def fetch_usage(self, user_id: str, now: Optional[datetime] = None) -> List[UsageRecord]:
        """Get all of a user's usage records for the day containing ``now``.

        Args:
            user_id: User identifier
            now: Reference time (defaults to current UTC time)

        Returns:
            Usage records for today, one per model used so far
        """
        today = day_key(now, self.tz)
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM model_usage "
                "WHERE user_id = ? AND day = ? ORDER BY model_name",
                (user_id, today)
            )
            return [_row_to_record(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_usage(
        self,
        user_id: str,
        model_name: str,
        now: Optional[datetime] = None
    ) -> Optional[UsageRecord]:
        """Look up one counter. Returns None when nothing was recorded yet."""
        today = day_key(now, self.tz)
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM model_usage "
                "WHERE user_id = ? AND model_name = ? AND day = ?",
                (user_id, model_name, today)
            )
            row = cursor.fetchone()
            return _row_to_record(row) if row else None
        finally:
            conn.close()

    def increment(self, user_id: str, model_name: str, now: Optional[datetime] = None) -> None:
        """Record one request against a model, creating the counter if absent.

        Sets ``last_request_at`` to ``now``.

        Raises:
            sqlite3.Error: If the write fails and degraded mode is off, or
                if the degraded fallback fails as well
        """
        now = as_aware(now or utc_now())
        try:
            self._increment_atomic(user_id, model_name, now)
        except sqlite3.OperationalError as e:
            if not self.degraded_mode:
                raise
            logger.warning(
                "atomic_increment_failed_using_degraded_path",
                user_id=user_id,
                model=model_name,
                error=str(e)
            )
            self._increment_non_atomic(user_id, model_name, now)
            self.degraded_increments += 1

    def prune_before(self, day: str) -> int:
        """Delete counters for days strictly before ``day``.

        Returns:
            Number of rows deleted
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("DELETE FROM model_usage WHERE day < ?", (day,))
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def _increment_atomic(self, user_id: str, model_name: str, now: datetime) -> None:
        stamp = now.isoformat()
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                _UPSERT_INCREMENT,
                (user_id, model_name, day_key(now, self.tz), stamp, stamp)
            )
            conn.commit()
        finally:
            conn.close()

    def _increment_non_atomic(self, user_id: str, model_name: str, now: datetime) -> None:
        # Read-modify-write: concurrent callers may lose increments
        stamp = now.isoformat()
        today = day_key(now, self.tz)
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT request_count FROM model_usage "
                "WHERE user_id = ? AND model_name = ? AND day = ?",
                (user_id, model_name, today)
            ).fetchone()

            if row is None:
                conn.execute("""
                    INSERT OR IGNORE INTO model_usage
                    (user_id, model_name, day, request_count, last_request_at, updated_at)
                    VALUES (?, ?, ?, 1, ?, ?)
                """, (user_id, model_name, today, stamp, stamp))
            else:
                conn.execute("""
                    UPDATE model_usage
                    SET request_count = ?, last_request_at = ?, updated_at = ?
                    WHERE user_id = ? AND model_name = ? AND day = ?
                """, ((row[0] or 0) + 1, stamp, stamp, user_id, model_name, today))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
