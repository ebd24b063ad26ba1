"""
Recording sync package.

Discovers Zoom cloud recordings, copies new media files to Google Drive via a
local staging area, and tracks progress in the sync ledger so each run only
transfers what is new. The job itself lives in meeting_sync.sync.orchestrator.
"""

from meeting_sync.sync.models import (
    MediaItem,
    Recording,
    DriveFile,
    TransferredFile,
    RunSummary,
)
from meeting_sync.sync.zoom_client import ZoomClient
from meeting_sync.sync.drive_uploader import DriveUploader

__all__ = [
    "MediaItem",
    "Recording",
    "DriveFile",
    "TransferredFile",
    "RunSummary",
    "ZoomClient",
    "DriveUploader",
]
