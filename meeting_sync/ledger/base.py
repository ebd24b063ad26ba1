"""
Abstract base class for sync ledgers.

The ledger is the persisted registry of processed recordings, the files
produced from them, and one summary row per job run. Backends share the
same table layout so a deployment can move from SQLite to Postgres without
changing the job.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import timedelta
from typing import Mapping, Optional

from meeting_sync.sync.models import (
    Recording,
    RecordingStatus,
    RunSummary,
    TransferredFile,
    parse_datetime,
)


class SyncLedger(ABC):
    """
    Abstract base class for ledger backends.

    Implementations must provide:
    - Idempotent schema provisioning
    - Recording registration and completion tracking
    - Transferred file records
    - Append-only run summaries
    - A run lease for mutual exclusion between overlapping runs
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier ("sqlite" or "postgres")."""
        pass

    @abstractmethod
    def init_schema(self) -> None:
        """Create tables and indexes if they do not exist. Safe to call repeatedly."""
        pass

    @abstractmethod
    def get_recording_states(self) -> dict[str, RecordingStatus]:
        """
        Load every registered recording with its completion status.

        Returns:
            Mapping of recording identifier to status
        """
        pass

    def get_synced_ids(self) -> set[str]:
        """Get the identifiers of all registered recordings."""
        return set(self.get_recording_states())

    def is_synced(self, recording_id: str) -> bool:
        """Check whether a recording identifier is present in the ledger."""
        return recording_id in self.get_synced_ids()

    @abstractmethod
    def register_recording(self, recording: Recording) -> bool:
        """
        Register a recording as synced, before any of its files are transferred.

        Args:
            recording: The recording to register

        Returns:
            True if a new entry was created, False if it already existed
        """
        pass

    @abstractmethod
    def set_recording_status(self, recording_id: str, status: RecordingStatus) -> None:
        """Update the completion status of a registered recording."""
        pass

    @abstractmethod
    def get_transferred_file_ids(self, recording_id: str) -> set[str]:
        """
        Get source file ids already uploaded for a recording.

        Args:
            recording_id: Owning recording identifier

        Returns:
            Set of provider file ids with a transferred file record
        """
        pass

    @abstractmethod
    def record_file(self, record: TransferredFile) -> None:
        """Persist one transferred file record."""
        pass

    @abstractmethod
    def append_run_summary(self, summary: RunSummary) -> int:
        """
        Append a run summary row.

        Args:
            summary: Summary of the finished run

        Returns:
            The new row id
        """
        pass

    @abstractmethod
    def recent_runs(self, limit: int = 10) -> list[RunSummary]:
        """Get the most recent run summaries, newest first."""
        pass

    @abstractmethod
    def delete_recording(self, recording_id: str) -> bool:
        """
        Delete a recording entry and, by cascade, its file records.

        Returns:
            True if an entry was deleted
        """
        pass

    @abstractmethod
    def get_stats(self) -> dict:
        """Get counts of recordings by status, files and runs."""
        pass

    @abstractmethod
    def run_lease(
        self, job_name: str, ttl: timedelta
    ) -> AbstractContextManager[bool]:
        """
        Hold a mutual-exclusion lease for the duration of a run.

        Args:
            job_name: Fixed name identifying the job
            ttl: Lease lifetime for backends that cannot tie it to a session

        Yields:
            True if the lease was acquired, False if another run holds it
        """
        pass


def summary_from_row(row: Mapping) -> RunSummary:
    """Build a RunSummary from a sync_logs row."""
    return RunSummary(
        run_id=row["id"],
        started_at=parse_datetime(row["sync_started_at"]),
        completed_at=parse_datetime(row["sync_completed_at"]),
        status=row["status"],
        new_files=row["new_recordings_count"] or 0,
        duplicates_skipped=row["duplicates_skipped_count"] or 0,
        recordings_processed=row["recordings_processed"] or 0,
        failed_items=row["failed_items"] or 0,
        error_count=row["error_count"] or 0,
        last_error=row["errors"],
        persisted=True,
    )


def empty_stats(backend: str) -> dict:
    """Stats skeleton shared by the backends."""
    return {
        "backend": backend,
        "recordings": 0,
        "by_status": {"registered": 0, "partial": 0, "complete": 0},
        "files": 0,
        "bytes_transferred": 0,
        "runs": 0,
        "last_run": None,
    }


def to_iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None
