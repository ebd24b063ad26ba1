"""Tests for the Zoom recording source."""

from datetime import date

import pytest
import requests
from tenacity import wait_none

from meeting_sync.exceptions import ConfigurationError, SourceFetchError
from meeting_sync.sync import zoom_client
from meeting_sync.sync.models import MediaItem
from meeting_sync.sync.zoom_client import ZoomClient


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, body=b"", headers=None):
        self.status_code = status_code
        self._json = json_data or {}
        self._body = body
        self.headers = headers or {}
        self.text = str(json_data or body)
        self.closed = False

    def json(self):
        return self._json

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start:start + chunk_size]

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FakeSession:
    """Replays queued responses and records every call."""

    def __init__(self, get_responses=(), post_responses=None):
        self.get_responses = list(get_responses)
        self.post_responses = list(post_responses or [_token_response("token-1")])
        self.gets = []
        self.posts = []

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        return self.post_responses.pop(0)

    def get(self, url, **kwargs):
        self.gets.append((url, kwargs))
        response = self.get_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _token_response(token: str, expires_in: int = 3600) -> FakeResponse:
    return FakeResponse(json_data={"access_token": token, "expires_in": expires_in})


def _meeting(uuid: str, files=None) -> dict:
    return {
        "uuid": uuid,
        "id": 81234567890,
        "topic": f"Meeting {uuid}",
        "start_time": "2024-05-01T15:00:00Z",
        "duration": 45,
        "recording_files": files
        if files is not None
        else [
            {
                "id": f"{uuid}-video",
                "file_type": "MP4",
                "file_size": 1024,
                "download_url": f"https://zoom.example/rec/{uuid}/video",
                "recording_type": "shared_screen_with_speaker_view",
            },
            {
                "id": f"{uuid}-chat",
                "file_type": "CHAT",
                "file_size": 12,
                "download_url": f"https://zoom.example/rec/{uuid}/chat",
            },
        ],
    }


@pytest.fixture
def zoom_settings(settings):
    settings.zoom_account_id = "acct"
    settings.zoom_client_id = "client"
    settings.zoom_client_secret = "secret"
    return settings


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(zoom_client.time, "sleep", sleeps.append)
    monkeypatch.setattr(ZoomClient._get.retry, "wait", wait_none())
    monkeypatch.setattr(ZoomClient.get_access_token.retry, "wait", wait_none())
    return sleeps


def _client(settings, session) -> ZoomClient:
    return ZoomClient(session=session, settings=settings)


def test_missing_credentials(settings) -> None:
    with pytest.raises(ConfigurationError, match="ZOOM_ACCOUNT_ID"):
        ZoomClient(settings=settings)


class TestAccessToken:
    def test_requests_account_credentials_token(self, zoom_settings) -> None:
        session = FakeSession()

        token = _client(zoom_settings, session).get_access_token()

        assert token == "token-1"
        [(url, kwargs)] = session.posts
        assert url == "https://zoom.us/oauth/token"
        assert kwargs["params"] == {"grant_type": "account_credentials", "account_id": "acct"}
        assert kwargs["auth"] == ("client", "secret")

    def test_token_is_cached(self, zoom_settings) -> None:
        session = FakeSession()
        client = _client(zoom_settings, session)

        client.get_access_token()
        client.get_access_token()

        assert len(session.posts) == 1

    def test_token_failure(self, zoom_settings) -> None:
        session = FakeSession(post_responses=[FakeResponse(400, {"reason": "Invalid client"})])

        with pytest.raises(SourceFetchError, match="token request failed"):
            _client(zoom_settings, session).get_access_token()


class TestListRecordings:
    def test_follows_pagination(self, zoom_settings) -> None:
        session = FakeSession(
            get_responses=[
                FakeResponse(json_data={"meetings": [_meeting("a")], "next_page_token": "p2"}),
                FakeResponse(json_data={"meetings": [_meeting("b")], "next_page_token": ""}),
            ]
        )

        recordings = _client(zoom_settings, session).list_recordings(
            date(2024, 4, 1), until=date(2024, 5, 1)
        )

        assert [r.recording_id for r in recordings] == ["a", "b"]
        first_params = session.gets[0][1]["params"]
        assert first_params == {"from": "2024-04-01", "to": "2024-05-01", "page_size": 30}
        assert session.gets[1][1]["params"]["next_page_token"] == "p2"
        assert session.gets[0][0] == "https://api.zoom.us/v2/users/me/recordings"
        assert session.gets[0][1]["headers"] == {"Authorization": "Bearer token-1"}

    def test_extracts_recording_fields(self, zoom_settings) -> None:
        session = FakeSession(get_responses=[FakeResponse(json_data={"meetings": [_meeting("a")]})])

        [recording] = _client(zoom_settings, session).list_recordings(date(2024, 4, 1))

        assert recording.title == "Meeting a"
        assert recording.start_time.isoformat() == "2024-05-01T15:00:00+00:00"
        assert recording.meeting_id == "81234567890"
        assert recording.duration_minutes == 45
        assert [item.kind for item in recording.media_items] == ["video", "chat"]
        assert [item.file_id for item in recording.supported_items] == ["a-video"]
        assert recording.media_items[0].declared_size == 1024

    def test_meeting_without_files(self, zoom_settings) -> None:
        session = FakeSession(
            get_responses=[FakeResponse(json_data={"meetings": [_meeting("a", files=[])]})]
        )

        [recording] = _client(zoom_settings, session).list_recordings(date(2024, 4, 1))

        assert recording.media_items == []

    def test_api_error_raises(self, zoom_settings) -> None:
        session = FakeSession(get_responses=[FakeResponse(500, {"message": "boom"})])

        with pytest.raises(SourceFetchError, match="Zoom API error 500"):
            _client(zoom_settings, session).list_recordings(date(2024, 4, 1))

    def test_expired_token_is_refreshed_once(self, zoom_settings) -> None:
        session = FakeSession(
            get_responses=[
                FakeResponse(401, {"code": 124}),
                FakeResponse(json_data={"meetings": []}),
            ],
            post_responses=[_token_response("token-1"), _token_response("token-2")],
        )

        _client(zoom_settings, session).list_recordings(date(2024, 4, 1))

        assert len(session.posts) == 2
        assert session.gets[1][1]["headers"] == {"Authorization": "Bearer token-2"}

    def test_rate_limit_waits_for_retry_after(self, zoom_settings, no_sleep) -> None:
        session = FakeSession(
            get_responses=[
                FakeResponse(429, headers={"Retry-After": "7"}),
                FakeResponse(json_data={"meetings": [_meeting("a")]}),
            ]
        )

        recordings = _client(zoom_settings, session).list_recordings(date(2024, 4, 1))

        assert len(recordings) == 1
        assert no_sleep == [7]

    def test_rate_limit_gives_up(self, zoom_settings) -> None:
        session = FakeSession(get_responses=[FakeResponse(429) for _ in range(4)])

        with pytest.raises(SourceFetchError, match="429"):
            _client(zoom_settings, session).list_recordings(date(2024, 4, 1))

    def test_connection_error_is_retried(self, zoom_settings) -> None:
        session = FakeSession(
            get_responses=[
                requests.ConnectionError("reset by peer"),
                FakeResponse(json_data={"meetings": [_meeting("a")]}),
            ]
        )

        recordings = _client(zoom_settings, session).list_recordings(date(2024, 4, 1))

        assert len(recordings) == 1

    def test_persistent_connection_error_raises(self, zoom_settings) -> None:
        session = FakeSession(get_responses=[requests.ConnectionError("down")] * 3)

        with pytest.raises(SourceFetchError, match="Listing Zoom recordings failed"):
            _client(zoom_settings, session).list_recordings(date(2024, 4, 1))


class TestDownload:
    def _item(self, size=None) -> MediaItem:
        return MediaItem(
            file_id="a-video",
            file_type="MP4",
            download_url="https://zoom.example/rec/a/video",
            declared_size=size,
        )

    def test_streams_to_destination(self, zoom_settings, tmp_path) -> None:
        body = b"0123456789" * 300_000
        response = FakeResponse(body=body, headers={"Content-Length": str(len(body))})
        session = FakeSession(get_responses=[response])
        destination = tmp_path / "video.mp4"

        written = _client(zoom_settings, session).download(self._item(len(body)), destination)

        assert written == len(body)
        assert destination.read_bytes() == body
        assert session.gets[0][1]["stream"] is True
        assert response.closed

    def test_size_mismatch_is_not_fatal(self, zoom_settings, tmp_path) -> None:
        session = FakeSession(get_responses=[FakeResponse(body=b"abc")])

        written = _client(zoom_settings, session).download(self._item(10), tmp_path / "f")

        assert written == 3

    def test_failed_download_raises(self, zoom_settings, tmp_path) -> None:
        session = FakeSession(get_responses=[FakeResponse(404)])

        with pytest.raises(SourceFetchError, match="404"):
            _client(zoom_settings, session).download(self._item(), tmp_path / "f")
