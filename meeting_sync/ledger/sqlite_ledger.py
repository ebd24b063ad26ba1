"""
SQLite-based sync ledger.

Used for local development, single-host deployments and tests. Timestamps
are stored as ISO-8601 strings in UTC.
"""

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Iterator

from meeting_sync.config import get_settings
from meeting_sync.exceptions import LedgerError
from meeting_sync.ledger.base import SyncLedger, empty_stats, summary_from_row, to_iso
from meeting_sync.sync.models import (
    Recording,
    RecordingStatus,
    RunSummary,
    TransferredFile,
    utcnow,
)

logger = logging.getLogger(__name__)


class SQLiteLedger(SyncLedger):
    """
    SQLite-backed ledger.

    Provides:
    - Recording registration with completion status
    - Transferred file records (cascade-deleted with their recording)
    - Append-only run summaries
    - A lease row with expiry for run-level mutual exclusion
    """

    def __init__(self, db_path: Path | str | None = None):
        """
        Initialize the ledger.

        Args:
            db_path: Path to SQLite database file (defaults to settings)
        """
        self.db_path = Path(db_path) if db_path else get_settings().ledger_path

    @property
    def backend_name(self) -> str:
        return "sqlite"

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, timeout=30)
        except sqlite3.Error as e:
            raise LedgerError(f"Cannot open ledger at {self.db_path}: {e}") from e
        except OSError as e:
            raise LedgerError(f"Cannot create ledger directory for {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise LedgerError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS synced_recordings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    zoom_uuid TEXT UNIQUE NOT NULL,
                    zoom_topic TEXT,
                    recording_date TEXT,
                    status TEXT NOT NULL DEFAULT 'registered'
                        CHECK (status IN ('registered', 'partial', 'complete')),
                    synced_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS drive_files (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    drive_id TEXT UNIQUE NOT NULL,
                    name TEXT NOT NULL,
                    web_view_link TEXT,
                    created_time TEXT NOT NULL,
                    size INTEGER,
                    mime_type TEXT,
                    file_type TEXT CHECK (file_type IN ('video', 'audio')),
                    source_file_id TEXT,
                    recording_id TEXT NOT NULL
                        REFERENCES synced_recordings(zoom_uuid) ON DELETE CASCADE,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_drive_files_recording
                ON drive_files (recording_id)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_drive_files_created_time
                ON drive_files (created_time DESC)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sync_started_at TEXT,
                    sync_completed_at TEXT,
                    new_recordings_count INTEGER DEFAULT 0,
                    duplicates_skipped_count INTEGER DEFAULT 0,
                    recordings_processed INTEGER DEFAULT 0,
                    failed_items INTEGER DEFAULT 0,
                    error_count INTEGER DEFAULT 0,
                    errors TEXT,
                    status TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_leases (
                    job_name TEXT PRIMARY KEY,
                    holder TEXT NOT NULL,
                    acquired_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)

        logger.info(f"SQLite ledger ready at {self.db_path}")

    def get_recording_states(self) -> dict[str, RecordingStatus]:
        if not self.db_path.exists():
            return {}
        with self._get_connection() as conn:
            rows = conn.execute("SELECT zoom_uuid, status FROM synced_recordings").fetchall()
        return {row["zoom_uuid"]: row["status"] for row in rows}

    def is_synced(self, recording_id: str) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM synced_recordings WHERE zoom_uuid = ?", (recording_id,)
            ).fetchone()
        return row is not None

    def register_recording(self, recording: Recording) -> bool:
        now = utcnow().isoformat()
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO synced_recordings
                    (zoom_uuid, zoom_topic, recording_date, status, synced_at, updated_at)
                VALUES (?, ?, ?, 'registered', ?, ?)
                """,
                (
                    recording.recording_id,
                    recording.title,
                    to_iso(recording.start_time),
                    now,
                    now,
                ),
            )
            return cursor.rowcount == 1

    def set_recording_status(self, recording_id: str, status: RecordingStatus) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE synced_recordings SET status = ?, updated_at = ? WHERE zoom_uuid = ?",
                (status, utcnow().isoformat(), recording_id),
            )

    def get_transferred_file_ids(self, recording_id: str) -> set[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT source_file_id FROM drive_files
                WHERE recording_id = ? AND source_file_id IS NOT NULL
                """,
                (recording_id,),
            ).fetchall()
        return {row["source_file_id"] for row in rows}

    def record_file(self, record: TransferredFile) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO drive_files (
                    drive_id, name, web_view_link, created_time, size,
                    mime_type, file_type, source_file_id, recording_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.drive_id,
                    record.name,
                    record.web_view_link,
                    to_iso(record.created_time),
                    record.size or 0,
                    record.mime_type,
                    record.kind,
                    record.source_file_id,
                    record.recording_id,
                    utcnow().isoformat(),
                ),
            )

    def append_run_summary(self, summary: RunSummary) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_logs (
                    sync_started_at, sync_completed_at, new_recordings_count,
                    duplicates_skipped_count, recordings_processed, failed_items,
                    error_count, errors, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    summary.started_at.isoformat(),
                    summary.completed_at.isoformat(),
                    summary.new_files,
                    summary.duplicates_skipped,
                    summary.recordings_processed,
                    summary.failed_items,
                    summary.error_count,
                    summary.last_error,
                    summary.status,
                    utcnow().isoformat(),
                ),
            )
            return cursor.lastrowid

    def recent_runs(self, limit: int = 10) -> list[RunSummary]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_logs ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [summary_from_row(row) for row in rows]

    def list_files(self, recording_id: str) -> list[dict]:
        """Get the transferred file rows for a recording."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM drive_files WHERE recording_id = ? ORDER BY id",
                (recording_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def delete_recording(self, recording_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM synced_recordings WHERE zoom_uuid = ?", (recording_id,)
            )
            return cursor.rowcount > 0

    def get_stats(self) -> dict:
        stats = empty_stats(self.backend_name)
        with self._get_connection() as conn:
            for row in conn.execute(
                "SELECT status, COUNT(*) AS n FROM synced_recordings GROUP BY status"
            ):
                stats["by_status"][row["status"]] = row["n"]
                stats["recordings"] += row["n"]

            row = conn.execute(
                "SELECT COUNT(*) AS n, COALESCE(SUM(size), 0) AS total FROM drive_files"
            ).fetchone()
            stats["files"] = row["n"]
            stats["bytes_transferred"] = row["total"]

            stats["runs"] = conn.execute("SELECT COUNT(*) FROM sync_logs").fetchone()[0]
            last = conn.execute("SELECT * FROM sync_logs ORDER BY id DESC LIMIT 1").fetchone()

        if last is not None:
            stats["last_run"] = summary_from_row(last).to_dict()
        return stats

    @contextmanager
    def run_lease(self, job_name: str, ttl: timedelta) -> Iterator[bool]:
        holder = uuid.uuid4().hex
        now = utcnow()

        # DELETE opens the write transaction, so expiry and insert are atomic
        with self._get_connection() as conn:
            conn.execute(
                "DELETE FROM job_leases WHERE job_name = ? AND expires_at < ?",
                (job_name, now.isoformat()),
            )
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO job_leases (job_name, holder, acquired_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (job_name, holder, now.isoformat(), (now + ttl).isoformat()),
            )
            acquired = cursor.rowcount == 1

        try:
            yield acquired
        finally:
            if acquired:
                try:
                    with self._get_connection() as conn:
                        conn.execute(
                            "DELETE FROM job_leases WHERE job_name = ? AND holder = ?",
                            (job_name, holder),
                        )
                except LedgerError:
                    logger.exception(f"Could not release lease {job_name}; it expires on its own")
