"""Tests for session materialization."""

import datetime as dt

import pytest
from sqlalchemy import select

from enduro_ingest.core.errors import SessionCreationError
from enduro_ingest.db.models import TrainingSession
from enduro_ingest.db.session import get_session
from enduro_ingest.ingestion.formats import FileFormat
from enduro_ingest.ingestion.materializer import build_session_row, materialize_session
from enduro_ingest.ingestion.workout import CanonicalWorkout, Sport
from tests.conftest import ATHLETE_ID


def _workout(**overrides) -> CanonicalWorkout:
    values = {
        "sport": Sport.BIKE,
        "date": dt.date(2024, 5, 2),
        "title": "Evening Ride",
        "duration_minutes": 61,
        "distance_meters": 18500.0,
        "source_format": FileFormat.GPX,
        "metadata": {"point_count": 3},
    }
    values.update(overrides)
    return CanonicalWorkout(**values)


def test_row_mapping():
    row = build_session_row(_workout(), ATHLETE_ID, "ingest-1")

    assert row.athlete_id == ATHLETE_ID
    assert row.date == dt.date(2024, 5, 2)
    assert row.sport == "bike"
    assert row.title == "Evening Ride"
    assert row.status == "completed"
    assert row.structure_json == {"segments": [], "source": "file_upload", "metadata": {"point_count": 3}}
    assert row.actual_duration_min == 61
    assert row.actual_distance_m == 18500.0
    assert row.source_file_type == "gpx"
    assert row.source_ingest_id == "ingest-1"


def test_title_fallback():
    row = build_session_row(_workout(title=None, sport=Sport.SWIM), ATHLETE_ID, "ingest-1")
    assert row.title == "Swim Workout"


def test_materialize_persists_session(db_engine):
    session_id = materialize_session(_workout(), ATHLETE_ID, "ingest-1")

    with get_session() as session:
        stored = session.execute(select(TrainingSession)).scalars().all()
        assert [s.session_id for s in stored] == [session_id]
        assert stored[0].source_ingest_id == "ingest-1"


def test_at_most_one_session_per_ingest(db_engine):
    materialize_session(_workout(), ATHLETE_ID, "ingest-1")

    with pytest.raises(SessionCreationError) as exc_info:
        materialize_session(_workout(), ATHLETE_ID, "ingest-1")

    assert exc_info.value.code == "SessionCreationFailed"
    with get_session() as session:
        assert len(session.execute(select(TrainingSession)).scalars().all()) == 1
