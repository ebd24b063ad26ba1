"""Tests for the SQLite ledger backend."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_recording
from meeting_sync.exceptions import LedgerError
from meeting_sync.ledger import create_ledger
from meeting_sync.ledger.sqlite_ledger import SQLiteLedger
from meeting_sync.sync.models import RunSummary, TransferredFile


def _file(recording_id: str, drive_id: str, source_file_id: str = "src-1") -> TransferredFile:
    return TransferredFile(
        drive_id=drive_id,
        name=f"{drive_id}.mp4",
        web_view_link=f"https://drive.example/{drive_id}",
        created_time=datetime(2024, 5, 2, tzinfo=timezone.utc),
        size=2048,
        mime_type="video/mp4",
        kind="video",
        recording_id=recording_id,
        source_file_id=source_file_id,
    )


def _summary(status: str = "success", new_files: int = 1) -> RunSummary:
    started = datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)
    return RunSummary(
        started_at=started,
        completed_at=started + timedelta(seconds=42),
        status=status,
        new_files=new_files,
        duplicates_skipped=3,
        recordings_processed=1,
    )


def test_init_schema_is_idempotent(ledger: SQLiteLedger) -> None:
    ledger.init_schema()
    ledger.init_schema()
    assert ledger.get_recording_states() == {}


def test_create_ledger_uses_sqlite_path(settings) -> None:
    ledger = create_ledger(settings)
    assert isinstance(ledger, SQLiteLedger)
    assert ledger.db_path == settings.ledger_path


class TestRecordings:
    def test_register_is_idempotent(self, ledger: SQLiteLedger) -> None:
        recording = make_recording("uuid-1")

        assert ledger.register_recording(recording) is True
        assert ledger.register_recording(recording) is False
        assert ledger.get_recording_states() == {"uuid-1": "registered"}

    def test_registration_keeps_topic_and_date(self, ledger: SQLiteLedger) -> None:
        ledger.register_recording(make_recording("uuid-1", title="Board review"))

        with sqlite3.connect(ledger.db_path) as conn:
            topic, recording_date = conn.execute(
                "SELECT zoom_topic, recording_date FROM synced_recordings"
            ).fetchone()

        assert topic == "Board review"
        assert recording_date.startswith("2024-05-01T15:00:00")

    def test_status_transitions(self, ledger: SQLiteLedger) -> None:
        ledger.register_recording(make_recording("uuid-1"))

        ledger.set_recording_status("uuid-1", "partial")
        assert ledger.get_recording_states()["uuid-1"] == "partial"

        ledger.set_recording_status("uuid-1", "complete")
        assert ledger.get_recording_states()["uuid-1"] == "complete"

    def test_unknown_status_is_rejected(self, ledger: SQLiteLedger) -> None:
        ledger.register_recording(make_recording("uuid-1"))
        with pytest.raises(LedgerError):
            ledger.set_recording_status("uuid-1", "done")

    def test_synced_ids(self, ledger: SQLiteLedger) -> None:
        ledger.register_recording(make_recording("uuid-1"))
        ledger.register_recording(make_recording("uuid-2"))

        assert ledger.get_synced_ids() == {"uuid-1", "uuid-2"}
        assert ledger.is_synced("uuid-1")
        assert not ledger.is_synced("uuid-3")


class TestFiles:
    def test_record_and_list_files(self, ledger: SQLiteLedger) -> None:
        ledger.register_recording(make_recording("uuid-1"))
        ledger.record_file(_file("uuid-1", "drive-a", "src-1"))
        ledger.record_file(_file("uuid-1", "drive-b", "src-2"))

        rows = ledger.list_files("uuid-1")

        assert [row["drive_id"] for row in rows] == ["drive-a", "drive-b"]
        assert ledger.get_transferred_file_ids("uuid-1") == {"src-1", "src-2"}

    def test_file_requires_registered_recording(self, ledger: SQLiteLedger) -> None:
        with pytest.raises(LedgerError):
            ledger.record_file(_file("missing", "drive-a"))

    def test_drive_id_is_unique(self, ledger: SQLiteLedger) -> None:
        ledger.register_recording(make_recording("uuid-1"))
        ledger.record_file(_file("uuid-1", "drive-a"))

        with pytest.raises(LedgerError):
            ledger.record_file(_file("uuid-1", "drive-a"))

    def test_delete_recording_cascades_to_files(self, ledger: SQLiteLedger) -> None:
        ledger.register_recording(make_recording("uuid-1"))
        ledger.record_file(_file("uuid-1", "drive-a"))

        assert ledger.delete_recording("uuid-1") is True
        assert ledger.delete_recording("uuid-1") is False
        assert ledger.list_files("uuid-1") == []
        assert ledger.get_recording_states() == {}


class TestRunSummaries:
    def test_append_and_read_back(self, ledger: SQLiteLedger) -> None:
        run_id = ledger.append_run_summary(_summary())

        [run] = ledger.recent_runs()

        assert run.run_id == run_id
        assert run.status == "success"
        assert run.new_files == 1
        assert run.duplicates_skipped == 3
        assert run.duration_seconds == 42
        assert run.persisted

    def test_recent_runs_newest_first_with_limit(self, ledger: SQLiteLedger) -> None:
        for i in range(5):
            ledger.append_run_summary(_summary(new_files=i))

        runs = ledger.recent_runs(limit=3)

        assert [run.new_files for run in runs] == [4, 3, 2]

    def test_stats(self, ledger: SQLiteLedger) -> None:
        ledger.register_recording(make_recording("uuid-1"))
        ledger.register_recording(make_recording("uuid-2"))
        ledger.set_recording_status("uuid-1", "complete")
        ledger.record_file(_file("uuid-1", "drive-a"))
        ledger.append_run_summary(_summary(status="partial"))

        stats = ledger.get_stats()

        assert stats["backend"] == "sqlite"
        assert stats["recordings"] == 2
        assert stats["by_status"] == {"registered": 1, "partial": 0, "complete": 1}
        assert stats["files"] == 1
        assert stats["bytes_transferred"] == 2048
        assert stats["runs"] == 1
        assert stats["last_run"]["status"] == "partial"


class TestRunLease:
    def test_second_holder_is_refused(self, ledger: SQLiteLedger) -> None:
        with ledger.run_lease("job", timedelta(minutes=5)) as first:
            with ledger.run_lease("job", timedelta(minutes=5)) as second:
                assert first is True
                assert second is False

    def test_lease_is_released_on_exit(self, ledger: SQLiteLedger) -> None:
        with ledger.run_lease("job", timedelta(minutes=5)) as acquired:
            assert acquired

        with ledger.run_lease("job", timedelta(minutes=5)) as acquired:
            assert acquired

    def test_expired_lease_can_be_taken_over(self, ledger: SQLiteLedger) -> None:
        with sqlite3.connect(ledger.db_path) as conn:
            conn.execute(
                "INSERT INTO job_leases (job_name, holder, acquired_at, expires_at) "
                "VALUES ('job', 'crashed-run', '2024-01-01T00:00:00+00:00', "
                "'2024-01-01T03:00:00+00:00')"
            )

        with ledger.run_lease("job", timedelta(minutes=5)) as acquired:
            assert acquired

    def test_leases_are_per_job(self, ledger: SQLiteLedger) -> None:
        with ledger.run_lease("job-a", timedelta(minutes=5)) as a:
            with ledger.run_lease("job-b", timedelta(minutes=5)) as b:
                assert a and b


def test_unreadable_database_raises_ledger_error(tmp_path) -> None:
    path = tmp_path / "not-a-db.sqlite"
    path.write_bytes(b"this is not a sqlite database" * 100)

    with pytest.raises(LedgerError):
        SQLiteLedger(db_path=path).get_recording_states()


def test_reading_a_missing_ledger_does_not_create_it(tmp_path) -> None:
    path = tmp_path / "data" / "ledger.sqlite"

    assert SQLiteLedger(db_path=path).get_recording_states() == {}
    assert not path.parent.exists()
