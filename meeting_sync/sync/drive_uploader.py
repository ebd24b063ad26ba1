"""
Google Drive upload sink.

Uploads staged media files into a Drive folder, using a simple upload for
small files and a chunked resumable upload for large ones, and optionally
shares them with anyone who has the link.
"""

import logging
from pathlib import Path
from typing import Any, Optional

from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from meeting_sync.config import Settings, get_settings
from meeting_sync.exceptions import ConfigurationError, SinkTransferError
from meeting_sync.sync.models import DriveFile

logger = logging.getLogger(__name__)

DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"
TOKEN_URI = "https://oauth2.googleapis.com/token"
FILE_FIELDS = "id, name, webViewLink, createdTime, size"


class DriveUploader:
    """
    Uploads files to a Google Drive folder.

    Usage:
        uploader = DriveUploader()
        drive_file = uploader.upload(path, "Weekly sync - VIDEO - 2024-05-01.mp4", "video/mp4")
    """

    def __init__(
        self,
        folder_id: Optional[str] = None,
        service: Optional[Any] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the uploader.

        Args:
            folder_id: Destination Drive folder id (or from settings)
            service: Prebuilt Drive v3 service (built from settings if not provided)
            settings: Settings override (defaults to the cached settings)
        """
        settings = settings or get_settings()
        self.settings = settings
        self.folder_id = folder_id or settings.google_drive_folder_id

        if not self.folder_id:
            raise ConfigurationError(
                "GOOGLE_DRIVE_FOLDER_ID not set. Set it in .env or environment variables."
            )

        self.resumable_threshold = settings.resumable_threshold_bytes
        self.chunk_size = settings.chunk_size_bytes
        self.public_links = settings.drive_public_links

        self._service = service
        self._credentials = self._load_credentials() if service is None else None

    @property
    def service(self) -> Any:
        """Lazy-build the Drive API client."""
        if self._service is None:
            self._service = build(
                "drive", "v3", credentials=self._credentials, cache_discovery=False
            )
        return self._service

    def _load_credentials(self):
        settings = self.settings
        if settings.google_service_account_file:
            return service_account.Credentials.from_service_account_file(
                str(settings.google_service_account_file), scopes=[DRIVE_SCOPE]
            )

        if not (
            settings.google_client_id
            and settings.google_client_secret
            and settings.google_refresh_token
        ):
            raise ConfigurationError(
                "Google credentials required. Set GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET and "
                "GOOGLE_REFRESH_TOKEN, or GOOGLE_SERVICE_ACCOUNT_FILE in .env"
            )

        # Access token is fetched on first request from the refresh token
        return Credentials(
            token=None,
            refresh_token=settings.google_refresh_token,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            token_uri=TOKEN_URI,
            scopes=[DRIVE_SCOPE],
        )

    def upload(
        self,
        path: Path,
        name: str,
        mime_type: str,
        size: Optional[int] = None,
    ) -> DriveFile:
        """
        Upload a local file into the destination folder.

        Args:
            path: Local file to upload
            name: Display name in Drive
            mime_type: MIME type of the content
            size: Byte size (read from disk if not given)

        Returns:
            Descriptor of the created Drive file
        """
        size = size if size is not None else Path(path).stat().st_size
        try:
            data = self._create_file(Path(path), name, mime_type, size)
        except (HttpError, OSError) as e:
            raise SinkTransferError(f"Upload of {name} failed: {e}") from e

        drive_file = DriveFile.from_api(data)
        logger.info(f"Upload complete: {name} ({drive_file.file_id})")

        if self.public_links:
            try:
                self.make_public(drive_file.file_id)
            except HttpError as e:
                # The file exists either way and must still be recorded
                logger.warning(f"Uploaded {name} but could not share it: {e}")

        return drive_file

    @retry(
        retry=retry_if_exception_type((HttpError, OSError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    def _create_file(self, path: Path, name: str, mime_type: str, size: int) -> dict:
        body = {"name": name, "parents": [self.folder_id], "mimeType": mime_type}

        if size < self.resumable_threshold:
            logger.info(f"Uploading to Google Drive: {name} ({size / 1024 / 1024:.2f} MB)")
            media = MediaFileUpload(str(path), mimetype=mime_type, resumable=False)
            return (
                self.service.files()
                .create(body=body, media_body=media, fields=FILE_FIELDS, supportsAllDrives=True)
                .execute()
            )

        logger.info(
            f"Starting chunked upload: {name} ({size / 1024 / 1024:.2f} MB, "
            f"{self.chunk_size // 1024 // 1024} MB chunks)"
        )
        media = MediaFileUpload(
            str(path), mimetype=mime_type, chunksize=self.chunk_size, resumable=True
        )
        request = self.service.files().create(
            body=body, media_body=media, fields=FILE_FIELDS, supportsAllDrives=True
        )

        response = None
        while response is None:
            status, response = request.next_chunk()
            if status is not None:
                logger.debug(
                    f"Uploading {name}: {status.progress():.0%} "
                    f"({status.resumable_progress / 1024 / 1024:.2f} MB / {size / 1024 / 1024:.2f} MB)"
                )
        return response

    @retry(
        retry=retry_if_exception_type(HttpError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    def make_public(self, file_id: str) -> None:
        """Grant read access to anyone with the link."""
        self.service.permissions().create(
            fileId=file_id,
            body={"role": "reader", "type": "anyone"},
            supportsAllDrives=True,
        ).execute()
