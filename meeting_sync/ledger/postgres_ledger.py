"""
PostgreSQL sync ledger.

Production backend. Uses the same column names as earlier deployments so an
existing database is upgraded in place by init_schema().
"""

import logging
import zlib
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator

import psycopg2
from psycopg2.extras import RealDictCursor

from meeting_sync.config import get_settings
from meeting_sync.exceptions import ConfigurationError, LedgerError
from meeting_sync.ledger.base import SyncLedger, empty_stats, summary_from_row
from meeting_sync.sync.models import (
    Recording,
    RecordingStatus,
    RunSummary,
    TransferredFile,
)

logger = logging.getLogger(__name__)


class PostgresLedger(SyncLedger):
    """
    Postgres-backed ledger.

    Provides:
    - Recording registration with completion status
    - Transferred file records (cascade-deleted with their recording)
    - Append-only run summaries
    - Session advisory lock as the run lease
    """

    def __init__(self, db_url: str | None = None):
        """
        Initialize the ledger.

        Args:
            db_url: PostgreSQL connection URL (defaults from settings)
        """
        self.db_url = db_url or get_settings().database_url

        if not self.db_url:
            raise ConfigurationError(
                "DATABASE_URL not configured. "
                "Set it in .env or environment variables."
            )

    @property
    def backend_name(self) -> str:
        return "postgres"

    def _connect(self) -> psycopg2.extensions.connection:
        try:
            return psycopg2.connect(self.db_url)
        except psycopg2.Error as e:
            raise LedgerError(f"Cannot connect to ledger database: {e}") from e

    @contextmanager
    def _get_connection(self) -> Iterator[psycopg2.extensions.connection]:
        """Context manager for database connections."""
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            raise LedgerError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self) -> None:
        """Initialize database schema if needed."""
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS synced_recordings (
                        id SERIAL PRIMARY KEY,
                        zoom_uuid VARCHAR(255) UNIQUE NOT NULL,
                        zoom_topic VARCHAR(500),
                        recording_date TIMESTAMPTZ,
                        synced_at TIMESTAMPTZ DEFAULT NOW(),
                        created_at TIMESTAMPTZ DEFAULT NOW()
                    );
                """)

                # Entries written before completion tracking existed count as complete
                cur.execute("""
                    ALTER TABLE synced_recordings
                    ADD COLUMN IF NOT EXISTS status VARCHAR(20) NOT NULL DEFAULT 'complete';
                """)
                cur.execute("""
                    ALTER TABLE synced_recordings
                    ADD COLUMN IF NOT EXISTS updated_at TIMESTAMPTZ DEFAULT NOW();
                """)

                cur.execute("""
                    CREATE TABLE IF NOT EXISTS drive_files (
                        id SERIAL PRIMARY KEY,
                        drive_id VARCHAR(255) UNIQUE NOT NULL,
                        name TEXT NOT NULL,
                        web_view_link TEXT,
                        created_time TIMESTAMPTZ NOT NULL,
                        size BIGINT,
                        mime_type VARCHAR(100),
                        file_type VARCHAR(50) CHECK (file_type IN ('video', 'audio')),
                        recording_id VARCHAR(255) NOT NULL,
                        created_at TIMESTAMPTZ DEFAULT NOW(),

                        CONSTRAINT fk_drive_files_recording
                            FOREIGN KEY (recording_id)
                            REFERENCES synced_recordings(zoom_uuid)
                            ON DELETE CASCADE
                    );
                """)

                cur.execute("""
                    ALTER TABLE drive_files
                    ADD COLUMN IF NOT EXISTS source_file_id VARCHAR(255);
                """)

                cur.execute("""
                    CREATE INDEX IF NOT EXISTS idx_drive_files_recording
                    ON drive_files(recording_id);
                """)

                cur.execute("""
                    CREATE INDEX IF NOT EXISTS idx_created_time
                    ON drive_files(created_time DESC);
                """)

                cur.execute("""
                    CREATE TABLE IF NOT EXISTS sync_logs (
                        id SERIAL PRIMARY KEY,
                        sync_started_at TIMESTAMPTZ,
                        sync_completed_at TIMESTAMPTZ,
                        new_recordings_count INTEGER DEFAULT 0,
                        duplicates_skipped_count INTEGER DEFAULT 0,
                        errors TEXT,
                        status VARCHAR(50),
                        created_at TIMESTAMPTZ DEFAULT NOW()
                    );
                """)

                for column in ("recordings_processed", "failed_items", "error_count"):
                    cur.execute(
                        f"ALTER TABLE sync_logs ADD COLUMN IF NOT EXISTS {column} INTEGER DEFAULT 0;"
                    )

        logger.info("Postgres ledger schema initialized")

    def get_recording_states(self) -> dict[str, RecordingStatus]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT zoom_uuid, status FROM synced_recordings")
                return {zoom_uuid: status for zoom_uuid, status in cur.fetchall()}

    def is_synced(self, recording_id: str) -> bool:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT 1 FROM synced_recordings WHERE zoom_uuid = %s", (recording_id,)
                )
                return cur.fetchone() is not None

    def register_recording(self, recording: Recording) -> bool:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO synced_recordings
                        (zoom_uuid, zoom_topic, recording_date, status, updated_at)
                    VALUES (%s, %s, %s, 'registered', NOW())
                    ON CONFLICT (zoom_uuid) DO NOTHING
                    """,
                    (recording.recording_id, recording.title, recording.start_time),
                )
                return cur.rowcount == 1

    def set_recording_status(self, recording_id: str, status: RecordingStatus) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE synced_recordings SET status = %s, updated_at = NOW()
                    WHERE zoom_uuid = %s
                    """,
                    (status, recording_id),
                )

    def get_transferred_file_ids(self, recording_id: str) -> set[str]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT source_file_id FROM drive_files
                    WHERE recording_id = %s AND source_file_id IS NOT NULL
                    """,
                    (recording_id,),
                )
                return {row[0] for row in cur.fetchall()}

    def record_file(self, record: TransferredFile) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO drive_files (
                        drive_id, name, web_view_link, created_time, size,
                        mime_type, file_type, source_file_id, recording_id
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        record.drive_id,
                        record.name,
                        record.web_view_link,
                        record.created_time,
                        record.size or 0,
                        record.mime_type,
                        record.kind,
                        record.source_file_id,
                        record.recording_id,
                    ),
                )

    def append_run_summary(self, summary: RunSummary) -> int:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO sync_logs (
                        sync_started_at, sync_completed_at, new_recordings_count,
                        duplicates_skipped_count, recordings_processed, failed_items,
                        error_count, errors, status
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        summary.started_at,
                        summary.completed_at,
                        summary.new_files,
                        summary.duplicates_skipped,
                        summary.recordings_processed,
                        summary.failed_items,
                        summary.error_count,
                        summary.last_error,
                        summary.status,
                    ),
                )
                return cur.fetchone()[0]

    def recent_runs(self, limit: int = 10) -> list[RunSummary]:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("SELECT * FROM sync_logs ORDER BY id DESC LIMIT %s", (limit,))
                return [summary_from_row(row) for row in cur.fetchall()]

    def delete_recording(self, recording_id: str) -> bool:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM synced_recordings WHERE zoom_uuid = %s", (recording_id,)
                )
                return cur.rowcount > 0

    def get_stats(self) -> dict:
        stats = empty_stats(self.backend_name)
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    "SELECT status, COUNT(*) AS n FROM synced_recordings GROUP BY status"
                )
                for row in cur.fetchall():
                    stats["by_status"][row["status"]] = row["n"]
                    stats["recordings"] += row["n"]

                cur.execute(
                    "SELECT COUNT(*) AS n, COALESCE(SUM(size), 0) AS total FROM drive_files"
                )
                row = cur.fetchone()
                stats["files"] = row["n"]
                stats["bytes_transferred"] = int(row["total"])

                cur.execute("SELECT COUNT(*) AS n FROM sync_logs")
                stats["runs"] = cur.fetchone()["n"]

                cur.execute("SELECT * FROM sync_logs ORDER BY id DESC LIMIT 1")
                last = cur.fetchone()

        if last is not None:
            stats["last_run"] = summary_from_row(last).to_dict()
        return stats

    @contextmanager
    def run_lease(self, job_name: str, ttl: timedelta) -> Iterator[bool]:
        # Session-level advisory lock: released on unlock or when the connection drops,
        # so the ttl is not needed here
        key = zlib.crc32(job_name.encode("utf-8"))
        conn = self._connect()
        conn.autocommit = True
        try:
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT pg_try_advisory_lock(%s)", (key,))
                    acquired = bool(cur.fetchone()[0])
            except psycopg2.Error as e:
                raise LedgerError(f"Could not acquire lease {job_name}: {e}") from e

            try:
                yield acquired
            finally:
                if acquired:
                    try:
                        with conn.cursor() as cur:
                            cur.execute("SELECT pg_advisory_unlock(%s)", (key,))
                    except psycopg2.Error:
                        logger.exception(
                            f"Could not release lease {job_name}; it ends with the session"
                        )
        finally:
            conn.close()
