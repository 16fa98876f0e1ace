"""Session materializer: turns a validated workout into a completed training session."""

from __future__ import annotations

import uuid

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from enduro_ingest.core.errors import SessionCreationError
from enduro_ingest.db.models import TrainingSession
from enduro_ingest.db.session import get_session
from enduro_ingest.ingestion.workout import CanonicalWorkout


def build_session_row(workout: CanonicalWorkout, athlete_id: str, ingest_id: str) -> TrainingSession:
    """Map a canonical workout 1:1 onto a sessions row (not yet persisted).

    Uploaded workouts are already done, so status is always "completed" and the
    structure is an empty placeholder carrying the decoder metadata.
    """
    title = (workout.title or "").strip() or f"{workout.sport.value.capitalize()} Workout"
    return TrainingSession(
        session_id=str(uuid.uuid4()),
        athlete_id=athlete_id,
        date=workout.date,
        sport=workout.sport.value,
        title=title,
        status="completed",
        structure_json={
            "segments": [],
            "source": "file_upload",
            "metadata": workout.snapshot()["metadata"],
        },
        actual_duration_min=workout.duration_minutes,
        actual_distance_m=workout.distance_meters,
        source_file_type=workout.source_format.value,
        source_ingest_id=ingest_id,
    )


def materialize_session(workout: CanonicalWorkout, athlete_id: str, ingest_id: str) -> str:
    """Insert the session for one ingest and return its id.

    At most one session exists per ingest: source_ingest_id is unique, so a
    second attempt for the same ingest fails here instead of duplicating.

    Raises:
        SessionCreationError: If the insert fails
    """
    row = build_session_row(workout, athlete_id, ingest_id)
    try:
        with get_session() as session:
            session.add(row)
            session.flush()
            session_id = row.session_id
    except SQLAlchemyError as e:
        logger.error(f"[SESSION] Insert failed for ingest {ingest_id}: {type(e).__name__}")
        raise SessionCreationError(f"Could not create session: {type(e).__name__}") from e

    logger.info(f"[SESSION] Created session {session_id} from ingest {ingest_id}")
    return session_id
