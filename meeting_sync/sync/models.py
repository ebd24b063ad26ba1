"""
Data model shared by the source client, the uploader, the ledger and the job.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Literal

RecordingStatus = Literal["registered", "partial", "complete"]
RunStatus = Literal["success", "partial", "failed", "skipped"]

SUPPORTED_KINDS = ("video", "audio")

# Zoom file_type -> (kind, extension, MIME type)
FILE_TYPES = {
    "MP4": ("video", "mp4", "video/mp4"),
    "M4A": ("audio", "m4a", "audio/mp4"),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value) -> Optional[datetime]:
    """Parse an ISO datetime string (or pass through a datetime)."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        # Handle both Z suffix and +00:00
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class MediaItem:
    """One downloadable asset belonging to a recording."""

    file_id: str  # Provider file id, stable across listings
    file_type: str  # Provider file type: MP4, M4A, TRANSCRIPT, CHAT, ...
    download_url: str
    declared_size: Optional[int] = None  # Reported by the provider, not always accurate

    @property
    def kind(self) -> str:
        known = FILE_TYPES.get(self.file_type.upper())
        return known[0] if known else self.file_type.lower()

    @property
    def is_supported(self) -> bool:
        return self.kind in SUPPORTED_KINDS

    @property
    def extension(self) -> str:
        known = FILE_TYPES.get(self.file_type.upper())
        return known[1] if known else self.file_type.lower()

    @property
    def mime_type(self) -> str:
        known = FILE_TYPES.get(self.file_type.upper())
        return known[2] if known else "application/octet-stream"


@dataclass
class Recording:
    """A meeting session with its media items, as returned by the source."""

    recording_id: str  # Zoom meeting UUID
    title: str
    start_time: Optional[datetime]
    media_items: list[MediaItem] = field(default_factory=list)
    meeting_id: Optional[str] = None
    duration_minutes: Optional[int] = None

    @property
    def supported_items(self) -> list[MediaItem]:
        return [item for item in self.media_items if item.is_supported]

    def file_name(self, item: MediaItem) -> str:
        """Display name for an uploaded media item."""
        day = self.start_time.date().isoformat() if self.start_time else "undated"
        return f"{self.title} - {item.kind.upper()} - {day}.{item.extension}"


@dataclass
class DriveFile:
    """Descriptor of a file created in the object store."""

    file_id: str
    name: str
    web_view_link: Optional[str] = None
    created_time: Optional[datetime] = None
    size: Optional[int] = None

    @classmethod
    def from_api(cls, data: dict) -> "DriveFile":
        """Create from a Drive API files resource."""
        size = data.get("size")
        return cls(
            file_id=data["id"],
            name=data.get("name", ""),
            web_view_link=data.get("webViewLink"),
            created_time=parse_datetime(data.get("createdTime")),
            size=int(size) if size is not None else None,
        )


@dataclass
class TransferredFile:
    """Provenance row for one successfully uploaded media item."""

    drive_id: str
    name: str
    web_view_link: Optional[str]
    created_time: Optional[datetime]
    size: int
    mime_type: str
    kind: str
    recording_id: str
    source_file_id: Optional[str] = None

    @classmethod
    def from_upload(
        cls, drive_file: DriveFile, recording: Recording, item: MediaItem, size: int
    ) -> "TransferredFile":
        return cls(
            drive_id=drive_file.file_id,
            name=drive_file.name,
            web_view_link=drive_file.web_view_link,
            created_time=drive_file.created_time or utcnow(),
            size=drive_file.size if drive_file.size is not None else size,
            mime_type=item.mime_type,
            kind=item.kind,
            recording_id=recording.recording_id,
            source_file_id=item.file_id,
        )


@dataclass
class RunSummary:
    """Outcome of one transfer job invocation."""

    started_at: datetime
    completed_at: datetime
    status: RunStatus
    new_files: int = 0
    duplicates_skipped: int = 0
    recordings_processed: int = 0
    failed_items: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    run_id: Optional[int] = None
    persisted: bool = False  # Whether the summary row reached the ledger

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "status": self.status,
            "new_files": self.new_files,
            "duplicates_skipped": self.duplicates_skipped,
            "recordings_processed": self.recordings_processed,
            "failed_items": self.failed_items,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "duration_seconds": round(self.duration_seconds, 2),
        }

    def __str__(self) -> str:
        return (
            f"Status: {self.status}\n"
            f"New files uploaded: {self.new_files}\n"
            f"Duplicates skipped: {self.duplicates_skipped}\n"
            f"Recordings processed: {self.recordings_processed}\n"
            f"Failed items: {self.failed_items}\n"
            f"Duration: {self.duration_seconds:.2f}s"
        )
