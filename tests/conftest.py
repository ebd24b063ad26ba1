"""Shared test fixtures for the recording sync service."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from meeting_sync.config import Settings
from meeting_sync.exceptions import SinkTransferError, SourceFetchError
from meeting_sync.ledger.sqlite_ledger import SQLiteLedger
from meeting_sync.sync.models import DriveFile, MediaItem, Recording


def make_recording(
    recording_id: str,
    title: str = "Weekly sync",
    start: datetime | None = None,
    file_types: tuple[str, ...] = ("MP4", "M4A"),
) -> Recording:
    """Build a recording with one media item per file type."""
    start = start or datetime(2024, 5, 1, 15, 0, tzinfo=timezone.utc)
    items = [
        MediaItem(
            file_id=f"{recording_id}-{i}",
            file_type=file_type,
            download_url=f"https://zoom.example/rec/{recording_id}/{i}",
            declared_size=16,
        )
        for i, file_type in enumerate(file_types)
    ]
    return Recording(recording_id=recording_id, title=title, start_time=start, media_items=items)


class FakeSource:
    """In-memory recording source."""

    def __init__(self, recordings: list[Recording] | None = None):
        self.recordings = list(recordings or [])
        self.fail_on: set[str] = set()
        self.list_calls = 0
        self.downloads: list[str] = []

    def list_recordings(self, since, until=None) -> list[Recording]:
        self.list_calls += 1
        return list(self.recordings)

    def download(self, item: MediaItem, destination: Path) -> int:
        self.downloads.append(item.file_id)
        if item.file_id in self.fail_on:
            raise SourceFetchError(f"Download failed (500) for file {item.file_id}")
        data = b"x" * (item.declared_size or 8)
        Path(destination).write_bytes(data)
        return len(data)


class FakeSink:
    """In-memory upload sink that checks the staged file exists at upload time."""

    def __init__(self):
        self.fail_on: set[str] = set()
        self.uploads: list[str] = []
        self.staged_paths: list[Path] = []

    def upload(self, path: Path, name: str, mime_type: str, size: int | None = None) -> DriveFile:
        assert Path(path).exists()
        self.staged_paths.append(Path(path))
        if name in self.fail_on:
            raise SinkTransferError(f"Upload of {name} failed")
        self.uploads.append(name)
        n = len(self.uploads)
        return DriveFile(
            file_id=f"drive-{n}",
            name=name,
            web_view_link=f"https://drive.example/file/drive-{n}/view",
            created_time=datetime(2024, 5, 2, tzinfo=timezone.utc),
            size=size,
        )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at temporary ledger and staging paths."""
    return Settings(
        _env_file=None,
        ledger_backend="sqlite",
        ledger_path=tmp_path / "ledger.sqlite",
        staging_dir=tmp_path / "staging",
        google_drive_folder_id="folder-123",
        sync_enabled=False,
        run_lease_enabled=True,
        retry_incomplete_recordings=True,
        ledger_read_failure="fail_open",
    )


@pytest.fixture
def ledger(settings: Settings) -> SQLiteLedger:
    ledger = SQLiteLedger(db_path=settings.ledger_path)
    ledger.init_schema()
    return ledger


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()
