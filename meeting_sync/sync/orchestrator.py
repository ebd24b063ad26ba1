"""
Transfer job for incremental recording sync.

Coordinates:
1. Run lease acquisition (one run at a time)
2. Comparison with already-synced recordings (ledger)
3. Recording discovery from Zoom
4. Download to staging and upload to Google Drive for new media files
5. Provenance records and one run summary in the ledger
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from meeting_sync.config import Settings, get_settings
from meeting_sync.exceptions import ConfigurationError, LedgerError
from meeting_sync.ledger import SyncLedger, create_ledger
from meeting_sync.sync.drive_uploader import DriveUploader
from meeting_sync.sync.models import (
    MediaItem,
    Recording,
    RecordingStatus,
    RunStatus,
    RunSummary,
    TransferredFile,
    utcnow,
)
from meeting_sync.sync.staging import staged_file
from meeting_sync.sync.zoom_client import ZoomClient

logger = logging.getLogger(__name__)

JOB_NAME = "recording-sync"

ProgressCallback = Callable[[int, int, str], None]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class RunStats:
    """Counters accumulated while a run is in progress."""

    started_at: datetime = field(default_factory=utcnow)
    new_files: int = 0
    duplicates_skipped: int = 0
    recordings_processed: int = 0
    failed_items: int = 0
    status: RunStatus = "success"
    errors: list[str] = field(default_factory=list)

    def record_failure(self, message: str) -> None:
        """Count a per-item failure; the run continues as partial."""
        self.errors.append(message)
        self.failed_items += 1
        if self.status == "success":
            self.status = "partial"

    def fail(self, message: str) -> None:
        self.errors.append(message)
        self.status = "failed"

    def to_summary(self) -> RunSummary:
        return RunSummary(
            started_at=self.started_at,
            completed_at=utcnow(),
            status=self.status,
            new_files=self.new_files,
            duplicates_skipped=self.duplicates_skipped,
            recordings_processed=self.recordings_processed,
            failed_items=self.failed_items,
            error_count=len(self.errors),
            last_error=self.errors[-1] if self.errors else None,
        )


class TransferJob:
    """
    Runs one sync pass from Zoom to Google Drive.

    Usage:
        job = TransferJob()

        # Full sync
        summary = job.run()

        # Preview without registering or transferring anything
        summary = job.run(dry_run=True)
    """

    def __init__(
        self,
        source: Optional[ZoomClient] = None,
        sink: Optional[DriveUploader] = None,
        ledger: Optional[SyncLedger] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the job.

        Args:
            source: Recording source (ZoomClient built from settings if not provided)
            sink: Upload sink (DriveUploader built from settings if not provided)
            ledger: Sync ledger (backend from settings if not provided)
            settings: Settings override (defaults to the cached settings)
        """
        self.settings = settings or get_settings()

        # Built on first use inside run()
        self._source = source
        self._sink = sink
        self._ledger = ledger

        self.summary_write_failures = 0
        self.last_summary_error: Optional[str] = None
        self.last_summary: Optional[RunSummary] = None

    @property
    def source(self) -> ZoomClient:
        """Lazy-load the Zoom client."""
        if self._source is None:
            self._source = ZoomClient(settings=self.settings)
        return self._source

    @property
    def sink(self) -> DriveUploader:
        """Lazy-load the Drive uploader."""
        if self._sink is None:
            self._sink = DriveUploader(settings=self.settings)
        return self._sink

    @property
    def ledger(self) -> SyncLedger:
        """Lazy-load the ledger, provisioning its schema on first use."""
        if self._ledger is None:
            ledger = create_ledger(self.settings)
            ledger.init_schema()
            self._ledger = ledger
        return self._ledger

    def run(
        self,
        dry_run: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RunSummary:
        """
        Run one sync pass.

        Args:
            dry_run: Classify candidates without registering, transferring or
                writing a summary row
            progress_callback: Optional callback(current, total, message)

        Returns:
            RunSummary with final counts and status
        """
        stats = RunStats()
        logger.info(f"Starting sync{' (dry run)' if dry_run else ''}")

        try:
            if self.settings.run_lease_enabled and not dry_run:
                ttl = timedelta(minutes=self.settings.run_lease_ttl_minutes)
                with self.ledger.run_lease(JOB_NAME, ttl) as acquired:
                    if acquired:
                        self._run_pass(stats, dry_run, progress_callback)
                    else:
                        logger.warning("Another sync run holds the lease, skipping this run")
                        stats.status = "skipped"
                        stats.errors.append("Another sync run is in progress")
            else:
                self._run_pass(stats, dry_run, progress_callback)
        except Exception as e:
            logger.exception("Sync failed")
            stats.fail(str(e))

        summary = stats.to_summary()
        if not dry_run:
            self._write_summary(summary)
        self.last_summary = summary

        logger.info(
            f"Sync finished: {summary.status}, {summary.new_files} new files, "
            f"{summary.duplicates_skipped} duplicates skipped, "
            f"{summary.duration_seconds:.2f}s"
        )
        return summary

    def _run_pass(
        self,
        stats: RunStats,
        dry_run: bool,
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        # Step 1: Get already-synced recordings
        states = self._load_states(self._preview_ledger() if dry_run else self.ledger)
        logger.info(f"Total recordings already in ledger: {len(states)}")

        # Missing Drive folder or credentials fail the run before anything is fetched
        if not dry_run:
            logger.info(f"Uploading to Drive folder {self.sink.folder_id}")

        # Step 2: Fetch recordings in the look-back window
        since = date.today() - timedelta(days=self.settings.lookback_days)
        recordings = self.source.list_recordings(since)

        # Step 3: Most recent first
        recordings.sort(key=lambda r: r.start_time or _EPOCH, reverse=True)

        # Step 4: Process candidates in order
        handled: set[str] = set()
        total = len(recordings)
        for i, recording in enumerate(recordings):
            if progress_callback:
                progress_callback(i + 1, total, f"Processing: {recording.title[:40]}")
            self._process_recording(recording, states, handled, stats, dry_run)

    def _preview_ledger(self) -> SyncLedger:
        """Ledger for dry runs, opened without provisioning its schema."""
        if self._ledger is not None:
            return self._ledger
        return create_ledger(self.settings)

    def _load_states(self, ledger: SyncLedger) -> dict[str, RecordingStatus]:
        """Load ledger state, applying the configured read-failure policy."""
        try:
            return ledger.get_recording_states()
        except LedgerError as e:
            if self.settings.ledger_read_failure == "fail_closed":
                raise
            logger.warning(
                f"Could not read synced recordings, treating every recording as new: {e}"
            )
            return {}

    def _is_duplicate(self, recording_id: str, states: dict[str, RecordingStatus]) -> bool:
        state = states.get(recording_id)
        if state is None:
            return False
        return state == "complete" or not self.settings.retry_incomplete_recordings

    def _process_recording(
        self,
        recording: Recording,
        states: dict[str, RecordingStatus],
        handled: set[str],
        stats: RunStats,
        dry_run: bool,
    ) -> None:
        """Register one recording and transfer its supported media files."""
        if recording.recording_id in handled or self._is_duplicate(recording.recording_id, states):
            logger.info(f"Skipped (duplicate): {recording.title}")
            stats.duplicates_skipped += 1
            return

        items = recording.supported_items
        if dry_run:
            logger.info(f"[DRY RUN] Would transfer {len(items)} files for: {recording.title}")
            handled.add(recording.recording_id)
            stats.recordings_processed += 1
            return

        already_transferred: set[str] = set()
        if recording.recording_id in states:
            logger.info(f"Resuming incomplete recording: {recording.title}")
            try:
                already_transferred = self.ledger.get_transferred_file_ids(recording.recording_id)
            except LedgerError as e:
                logger.exception(f"Could not load transferred files for {recording.title}")
                stats.record_failure(f"{recording.title}: {e}")
                return
        else:
            logger.info(f"Processing new recording: {recording.title}")
            try:
                self.ledger.register_recording(recording)
            except LedgerError as e:
                logger.exception(f"Could not register {recording.title}")
                stats.record_failure(f"{recording.title}: {e}")
                return
            states[recording.recording_id] = "registered"

        handled.add(recording.recording_id)
        stats.recordings_processed += 1

        failures = 0
        uploaded = 0
        for item in items:
            if item.file_id and item.file_id in already_transferred:
                logger.debug(f"Already transferred: {item.file_id}")
                continue

            file_name = recording.file_name(item)
            try:
                self._transfer_item(recording, item, file_name)
            except ConfigurationError:
                raise
            except Exception as e:
                logger.exception(f"Failed: {file_name}")
                stats.record_failure(f"{file_name}: {e}")
                failures += 1
                continue

            logger.info(f"Success: {file_name}")
            stats.new_files += 1
            uploaded += 1

        if not items:
            logger.warning(f"No video or audio files for: {recording.title}")
        elif uploaded == 0 and failures:
            logger.warning(f"No files uploaded for: {recording.title}")

        status: RecordingStatus = "complete" if failures == 0 else "partial"
        try:
            self.ledger.set_recording_status(recording.recording_id, status)
            states[recording.recording_id] = status
        except LedgerError as e:
            logger.exception(f"Could not update status for {recording.title}")
            stats.record_failure(f"{recording.title}: {e}")

    def _transfer_item(self, recording: Recording, item: MediaItem, file_name: str) -> None:
        """Stage, upload and record one media file."""
        with staged_file(
            self.settings.staging_dir,
            suffix=f".{item.extension}",
            expected_size=item.declared_size,
        ) as path:
            logger.info(f"Downloading {item.kind}: {file_name}")
            size = self.source.download(item, path)

            logger.info(f"Uploading to Google Drive: {file_name}")
            drive_file = self.sink.upload(path, file_name, item.mime_type, size)

        self.ledger.record_file(TransferredFile.from_upload(drive_file, recording, item, size))

    def _write_summary(self, summary: RunSummary) -> None:
        """Append the run summary; failures are logged and counted, never raised."""
        try:
            summary.run_id = self.ledger.append_run_summary(summary)
            summary.persisted = True
        except Exception as e:
            self.summary_write_failures += 1
            self.last_summary_error = str(e)
            logger.error(
                f"Could not write run summary ({self.summary_write_failures} failures so far): {e}"
            )

    def get_status(self) -> dict:
        """Get ledger statistics plus job-level observability counters."""
        status = {
            "summary_write_failures": self.summary_write_failures,
            "last_summary_error": self.last_summary_error,
            "last_summary": self.last_summary.to_dict() if self.last_summary else None,
        }
        try:
            status["ledger"] = self.ledger.get_stats()
        except Exception as e:
            status["ledger"] = {"error": str(e)}
        return status
