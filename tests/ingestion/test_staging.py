"""Tests for the staging record state machine."""

import datetime as dt

import pytest

from enduro_ingest.core.errors import InvalidTransitionError, StagingWriteError
from enduro_ingest.db.models import IngestStaging
from enduro_ingest.db.session import get_session
from enduro_ingest.ingestion import staging
from enduro_ingest.ingestion.formats import FileFormat
from tests.conftest import ATHLETE_ID


def _create(**overrides) -> staging.StagingRecord:
    values = {
        "athlete_id": ATHLETE_ID,
        "filename": "run.tcx",
        "file_type": FileFormat.TCX,
        "file_size": 5120,
    }
    values.update(overrides)
    return staging.create_staging_record(**values)


class TestLifecycle:
    """received -> uploaded -> parsed -> normalized, error from any non-terminal state."""

    def test_created_at_received(self, db_engine):
        record = _create(source="watch", notes="easy run", content_type="application/xml")

        assert record.status == staging.RECEIVED
        assert record.storage_path is None
        assert record.session_id is None
        assert record.error_message is None
        assert record.created_at == record.updated_at
        assert record.created_at.tzinfo is not None
        assert record.source == "watch"
        assert staging.get_staging_record(record.ingest_id) == record

    def test_planned_key_survives_early_failure(self, db_engine):
        record = _create(storage_path="raw/a/b/c.tcx", content_sha256="c" * 64)
        failed = staging.mark_error(record.ingest_id, "Storage upload failed: bucket unavailable")

        assert record.storage_path == "raw/a/b/c.tcx"
        assert failed.status == staging.ERROR
        assert failed.storage_path == "raw/a/b/c.tcx"
        assert failed.content_sha256 == "c" * 64

    def test_happy_path(self, db_engine):
        record = _create()
        uploaded = staging.mark_uploaded(record.ingest_id, "raw/a/b/c.tcx", "c" * 64)
        parsed = staging.mark_parsed(record.ingest_id, {"sport": "run"})
        normalized = staging.mark_normalized(record.ingest_id, "session-1")

        assert uploaded.status == staging.UPLOADED
        assert uploaded.storage_path == "raw/a/b/c.tcx"
        assert parsed.parsed_snapshot == {"sport": "run"}
        assert normalized.status == staging.NORMALIZED
        assert normalized.session_id == "session-1"
        assert normalized.storage_path == "raw/a/b/c.tcx"
        assert normalized.is_terminal
        assert record.updated_at <= uploaded.updated_at <= parsed.updated_at <= normalized.updated_at

    @pytest.mark.parametrize("steps", [0, 1, 2])
    def test_error_from_any_non_terminal_state(self, db_engine, steps):
        record = _create()
        if steps >= 1:
            staging.mark_uploaded(record.ingest_id, "raw/a/b/c.tcx")
        if steps >= 2:
            staging.mark_parsed(record.ingest_id, {})

        failed = staging.mark_error(record.ingest_id, "Parse error: bad lap")

        assert failed.status == staging.ERROR
        assert failed.error_message == "Parse error: bad lap"
        assert failed.session_id is None

    def test_terminal_records_are_immutable(self, db_engine):
        record = _create()
        staging.mark_error(record.ingest_id, "Storage upload failed: down")

        with pytest.raises(InvalidTransitionError):
            staging.mark_uploaded(record.ingest_id, "raw/a/b/c.tcx")
        with pytest.raises(InvalidTransitionError):
            staging.mark_error(record.ingest_id, "again")

        assert staging.get_staging_record(record.ingest_id).error_message == "Storage upload failed: down"

    def test_steps_cannot_be_skipped(self, db_engine):
        record = _create()
        with pytest.raises(InvalidTransitionError) as exc_info:
            staging.mark_normalized(record.ingest_id, "session-1")

        assert exc_info.value.current == staging.RECEIVED
        assert staging.get_staging_record(record.ingest_id).status == staging.RECEIVED

    def test_unknown_record(self, db_engine):
        with pytest.raises(StagingWriteError, match="not found"):
            staging.mark_uploaded("00000000-0000-0000-0000-00000000dead", "raw/x")
        assert staging.get_staging_record("00000000-0000-0000-0000-00000000dead") is None


def test_updated_at_never_moves_backwards(db_engine):
    record = _create()
    future = dt.datetime.now(dt.timezone.utc) + dt.timedelta(hours=1)
    with get_session() as session:
        session.get(IngestStaging, record.ingest_id).updated_at = future

    uploaded = staging.mark_uploaded(record.ingest_id, "raw/a/b/c.tcx")

    assert uploaded.updated_at == future


def test_error_messages_are_sanitized(db_engine):
    record = _create()
    failed = staging.mark_error(record.ingest_id, "Parse error:\x00 bad\nline\x1b[31m" + "x" * 1000)

    assert "\x00" not in failed.error_message
    assert "\n" not in failed.error_message
    assert "\x1b" not in failed.error_message
    assert len(failed.error_message) == staging.MAX_ERROR_MESSAGE_LENGTH
    assert failed.error_message.endswith("...")


def test_invalid_file_type_is_rejected(db_engine):
    with pytest.raises(ValueError):
        _create(file_type="docx")
