"""
Local Event Store

Append-only SQLite log of every event and every lifecycle stage it passes.

Features:
- One row per stage record, full record kept as JSON text
- Updates and deletes rejected by triggers (append-only)
- Single writer lock; reads run concurrently (WAL mode)
- Group/device history projected into trend points
- Read failures degrade to empty results, append failures return False
"""

import json
import sqlite3
import threading
from pathlib import Path

from ..common.logging_setup import get_service_logger
from ..common.models import EventRecord, PointSource, Stage, TrendPoint
from ..common.timestamp import iso_to_unix_seconds

logger = get_service_logger("gateway.event_store")

# Records returned by the history endpoints
HISTORY_LIMIT = 200


class EventStore:
    """
    SQLite-backed append-only event log.

    Insertion order (row id) is temporal order.
    """

    def __init__(self, db_path: str | Path = "./data/events.db"):
        """
        Initialize the event store.

        Args:
            db_path: Path to the SQLite database file. The parent directory
                     is created if missing.
        """
        self.db_path = Path(db_path)
        self._write_lock = threading.Lock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

        logger.info(f"Event store initialized at {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Create tables, indexes and append-only triggers."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL,
                    device_id TEXT,
                    group_id TEXT,
                    stage TEXT NOT NULL,
                    flagged INTEGER DEFAULT 0,
                    received_at TEXT NOT NULL,
                    recorded_at TEXT NOT NULL,
                    record TEXT NOT NULL
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_group ON events(group_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_device ON events(device_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_event_id ON events(event_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_flagged ON events(flagged)")

            conn.execute("""
                CREATE TRIGGER IF NOT EXISTS events_no_update
                BEFORE UPDATE ON events
                BEGIN
                    SELECT RAISE(ABORT, 'events are append-only');
                END
            """)
            conn.execute("""
                CREATE TRIGGER IF NOT EXISTS events_no_delete
                BEFORE DELETE ON events
                BEGIN
                    SELECT RAISE(ABORT, 'events are append-only');
                END
            """)

            conn.commit()

    # ============================================
    # APPEND
    # ============================================

    def append(self, record: EventRecord) -> bool:
        """
        Append a stage record.

        Args:
            record: Record to persist

        Returns:
            True if the record was written
        """
        try:
            data = json.dumps(record.to_dict(), default=str)
            with self._write_lock:
                with self._get_connection() as conn:
                    conn.execute("""
                        INSERT INTO events (
                            event_id, device_id, group_id, stage, flagged,
                            received_at, recorded_at, record
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        record.event_id,
                        record.device_id,
                        record.group_id,
                        record.stage.value,
                        1 if record.flagged else 0,
                        record.received_at,
                        record.recorded_at,
                        data,
                    ))
                    conn.commit()
            return True
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            logger.error(
                f"Append failed for {record.event_id} ({record.stage.value}): {e}",
                extra={"event_id": record.event_id, "stage": record.stage.value},
            )
            return False

    # ============================================
    # READS
    # ============================================

    def _query(self, sql: str, params: tuple = ()) -> list[EventRecord]:
        """Run a SELECT over events, returning [] on any storage error."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Event read failed: {e}")
            return []

        records = []
        for row in rows:
            record = self._row_to_record(row)
            if record is not None:
                records.append(record)
        return records

    def _row_to_record(self, row: sqlite3.Row) -> EventRecord | None:
        """Convert database row to EventRecord (None if the row is unreadable)."""
        try:
            return EventRecord.from_dict(json.loads(row["record"]), row_id=row["id"])
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping unreadable event row {row['id']}: {e}")
            return None

    def read_all(self) -> list[EventRecord]:
        """All records ever appended, oldest first."""
        return self._query("SELECT id, record FROM events ORDER BY id ASC")

    def read_event(self, event_id: str) -> list[EventRecord]:
        """All stage records of one event, oldest first."""
        return self._query(
            "SELECT id, record FROM events WHERE event_id = ? ORDER BY id ASC",
            (event_id,),
        )

    def recent(self, limit: int = HISTORY_LIMIT) -> list[EventRecord]:
        """Most recent records, newest first."""
        return self._query(
            "SELECT id, record FROM events ORDER BY id DESC LIMIT ?",
            (limit,),
        )

    def recent_flagged(self, limit: int = HISTORY_LIMIT) -> list[EventRecord]:
        """Most recent flagged records, newest first."""
        return self._query(
            "SELECT id, record FROM events WHERE flagged = 1 ORDER BY id DESC LIMIT ?",
            (limit,),
        )

    def read_for_group(self, group_id: str, device_id: str | None = None) -> list[TrendPoint]:
        """
        Local history for a group (or device), as trend points.

        Trust values are the resolved oldTS/newTS of each record (missing
        values are stored as the neutral 100). The point time is the
        payload timestamp, else the record's receivedAt.

        Args:
            group_id: Group to match
            device_id: Device to match as well (records of either match)

        Returns:
            Trend points sorted by ts, source=local
        """
        records = self._query(
            "SELECT id, record FROM events WHERE group_id = ? OR device_id = ? ORDER BY id ASC",
            (group_id, device_id if device_id is not None else group_id),
        )

        points = []
        for record in records:
            ts = record.ts
            if ts is None:
                ts = iso_to_unix_seconds(record.received_at)
            if ts is None:
                continue
            points.append(TrendPoint(
                group_id=record.group_id,
                ts=float(ts),
                source=PointSource.LOCAL,
                old_ts=record.old_ts,
                new_ts=record.new_ts,
                reason=record.reason or record.payload.get("reason") or "LOCAL",
            ))

        points.sort(key=lambda p: p.ts)
        return points

    def pending_queue_items(self) -> list[EventRecord]:
        """
        Events whose latest stage is `queued`.

        These were waiting for (or in the middle of) a ledger submission
        when the process stopped.
        """
        return self._query("""
            SELECT e.id, e.record FROM events e
            JOIN (
                SELECT event_id, MAX(id) AS last_id FROM events GROUP BY event_id
            ) latest ON latest.last_id = e.id
            WHERE e.stage = ?
            ORDER BY e.id ASC
        """, (Stage.QUEUED.value,))

    # ============================================
    # STATISTICS
    # ============================================

    def get_stats(self) -> dict:
        """Get store statistics."""
        try:
            with self._get_connection() as conn:
                row = conn.execute("""
                    SELECT COUNT(*) AS total,
                           COUNT(DISTINCT event_id) AS events,
                           SUM(CASE WHEN flagged = 1 THEN 1 ELSE 0 END) AS flagged
                    FROM events
                """).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Stats query failed: {e}")
            return {"records_total": 0, "events_total": 0, "flagged_records": 0}

        return {
            "records_total": row["total"],
            "events_total": row["events"],
            "flagged_records": row["flagged"] or 0,
        }
