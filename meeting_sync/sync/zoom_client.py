"""
Zoom cloud recording source.

Lists recordings through the Zoom REST API (v2) using a server-to-server
OAuth app, and streams individual recording files to local disk.
"""

import time
import logging
from datetime import date
from pathlib import Path
from typing import Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from meeting_sync.config import Settings, get_settings
from meeting_sync.exceptions import ConfigurationError, SourceFetchError
from meeting_sync.sync.models import MediaItem, Recording, parse_datetime

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024
MAX_RATE_LIMIT_WAITS = 3
TOKEN_REFRESH_MARGIN_SECONDS = 60

transient_network_error = retry(
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(min=1, max=10),
    reraise=True,
)


class ZoomClient:
    """
    Lists and downloads Zoom cloud recordings.

    Supports two operations:
    1. list_recordings(): Enumerate recordings in a date window (all pages)
    2. download(): Stream one recording file to a local path
    """

    def __init__(
        self,
        account_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        session: Optional[requests.Session] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the client.

        Args:
            account_id: Zoom account id (or from settings)
            client_id: OAuth app client id (or from settings)
            client_secret: OAuth app client secret (or from settings)
            session: Optional requests session (for connection reuse and tests)
            settings: Settings override (defaults to the cached settings)
        """
        settings = settings or get_settings()
        self.account_id = account_id or settings.zoom_account_id
        self.client_id = client_id or settings.zoom_client_id
        self.client_secret = client_secret or settings.zoom_client_secret

        if not (self.account_id and self.client_id and self.client_secret):
            raise ConfigurationError(
                "Zoom credentials required. Set ZOOM_ACCOUNT_ID, ZOOM_CLIENT_ID "
                "and ZOOM_CLIENT_SECRET in .env"
            )

        self.base_url = settings.zoom_api_base_url.rstrip("/")
        self.oauth_url = settings.zoom_oauth_url
        self.user_id = settings.zoom_user_id
        self.page_size = settings.zoom_page_size
        self.timeout = settings.request_timeout_seconds

        self.session = session or requests.Session()
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    @transient_network_error
    def get_access_token(self) -> str:
        """Get a bearer token, requesting a new one when the cached one is about to expire."""
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        response = self.session.post(
            self.oauth_url,
            params={"grant_type": "account_credentials", "account_id": self.account_id},
            auth=(self.client_id, self.client_secret),
            timeout=self.timeout,
        )
        if response.status_code != 200:
            raise SourceFetchError(
                f"Zoom token request failed ({response.status_code}): {response.text[:200]}"
            )

        data = response.json()
        token = data.get("access_token")
        if not token:
            raise SourceFetchError("Zoom token response did not include an access_token")

        expires_in = int(data.get("expires_in", 3600))
        self._access_token = token
        self._token_expires_at = time.monotonic() + max(
            expires_in - TOKEN_REFRESH_MARGIN_SECONDS, 0
        )
        logger.debug(f"Obtained Zoom access token (expires in {expires_in}s)")
        return token

    def invalidate_token(self) -> None:
        self._access_token = None
        self._token_expires_at = 0.0

    @transient_network_error
    def _get(
        self, url: str, params: Optional[dict] = None, stream: bool = False
    ) -> requests.Response:
        """GET with bearer auth, rate limit handling and one token refresh on 401."""
        refreshed = False
        rate_limit_waits = 0

        while True:
            response = self.session.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {self.get_access_token()}"},
                timeout=self.timeout,
                stream=stream,
            )

            if response.status_code == 429 and rate_limit_waits < MAX_RATE_LIMIT_WAITS:
                wait = _retry_after(response)
                logger.warning(f"Rate limited by Zoom. Waiting {wait} seconds...")
                response.close()
                time.sleep(wait)
                rate_limit_waits += 1
                continue

            if response.status_code == 401 and not refreshed:
                logger.info("Zoom rejected the access token, requesting a new one")
                response.close()
                self.invalidate_token()
                refreshed = True
                continue

            return response

    def list_recordings(self, since: date, until: Optional[date] = None) -> list[Recording]:
        """
        List all cloud recordings in a date window.

        Args:
            since: First day of the window (inclusive)
            until: Last day of the window (defaults to today)

        Returns:
            Recordings in the order the API returned them
        """
        url = f"{self.base_url}/users/{self.user_id}/recordings"
        params = {
            "from": since.isoformat(),
            "to": (until or date.today()).isoformat(),
            "page_size": self.page_size,
        }

        recordings: list[Recording] = []
        while True:
            try:
                response = self._get(url, params=params)
            except requests.RequestException as e:
                raise SourceFetchError(f"Listing Zoom recordings failed: {e}") from e

            if response.status_code != 200:
                raise SourceFetchError(
                    f"Zoom API error {response.status_code}: {response.text[:200]}"
                )

            data = response.json()
            for meeting in data.get("meetings") or []:
                recordings.append(self._extract_recording(meeting))

            next_page_token = data.get("next_page_token")
            if not next_page_token:
                break
            params = {**params, "next_page_token": next_page_token}

        logger.info(f"Found {len(recordings)} Zoom recordings since {since.isoformat()}")
        return recordings

    def _extract_recording(self, meeting: dict) -> Recording:
        """Extract a Recording from an API meeting object."""
        items = [
            MediaItem(
                file_id=str(f.get("id", "")),
                file_type=f.get("file_type") or "",
                download_url=f.get("download_url", ""),
                declared_size=f.get("file_size"),
            )
            for f in meeting.get("recording_files") or []
        ]
        meeting_id = meeting.get("id")

        return Recording(
            recording_id=meeting["uuid"],
            title=meeting.get("topic") or "Untitled meeting",
            start_time=parse_datetime(meeting.get("start_time")),
            media_items=items,
            meeting_id=str(meeting_id) if meeting_id is not None else None,
            duration_minutes=meeting.get("duration"),
        )

    def download(self, item: MediaItem, destination: Path) -> int:
        """
        Stream a recording file to disk.

        Args:
            item: The media item to fetch
            destination: Local file to write (overwritten)

        Returns:
            Number of bytes written
        """
        try:
            response = self._get(item.download_url, stream=True)
        except requests.RequestException as e:
            raise SourceFetchError(f"Download of {item.file_id} failed: {e}") from e

        with response:
            if response.status_code != 200:
                raise SourceFetchError(
                    f"Download failed ({response.status_code}) for file {item.file_id}"
                )

            total = int(response.headers.get("Content-Length") or 0) or item.declared_size
            written = 0
            next_report = 0.1
            try:
                with open(destination, "wb") as fh:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if not chunk:
                            continue
                        fh.write(chunk)
                        written += len(chunk)
                        if total and written / total >= next_report:
                            logger.debug(
                                f"Download {item.file_id}: {written / total:.0%} "
                                f"({written / 1024 / 1024:.2f} MB / {total / 1024 / 1024:.2f} MB)"
                            )
                            next_report += 0.1
            except requests.RequestException as e:
                raise SourceFetchError(f"Download of {item.file_id} interrupted: {e}") from e

        if item.declared_size and written != item.declared_size:
            logger.warning(
                f"Size mismatch for {item.file_id}: declared {item.declared_size}, got {written}"
            )

        logger.info(f"Downloaded {item.file_id} ({written / 1024 / 1024:.2f} MB)")
        return written


def _retry_after(response: requests.Response) -> int:
    """Seconds to wait from a Retry-After header (defaults to 1)."""
    try:
        return max(int(response.headers.get("Retry-After", 1)), 1)
    except (TypeError, ValueError):
        return 1
