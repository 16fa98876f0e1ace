"""Domain checks on a decoded workout before it becomes a session."""

from __future__ import annotations

import datetime as dt

from loguru import logger

from enduro_ingest.config.settings import settings
from enduro_ingest.core.errors import ParseValidationError
from enduro_ingest.ingestion.formats import FileFormat
from enduro_ingest.ingestion.workout import CanonicalWorkout


def collect_violations(
    workout: CanonicalWorkout,
    expected_format: FileFormat | None = None,
    today: dt.date | None = None,
) -> list[str]:
    """Return every domain violation found in workout (empty when valid)."""
    errors: list[str] = []
    today = today or dt.datetime.now(dt.timezone.utc).date()

    if workout.sport.value not in settings.accepted_sports:
        errors.append(f"Sport {workout.sport.value} is not accepted")

    if workout.duration_minutes <= 0:
        errors.append("Duration must be greater than 0")
    elif workout.duration_minutes > settings.max_duration_minutes:
        errors.append(f"Duration cannot exceed {settings.max_duration_minutes} minutes")

    if workout.distance_meters is not None:
        if workout.distance_meters < 0:
            errors.append("Distance cannot be negative")
        elif workout.distance_meters > settings.max_distance_meters:
            errors.append(f"Distance cannot exceed {settings.max_distance_meters / 1000:.0f}km")

    if workout.date < settings.earliest_workout_date:
        errors.append(f"Workout date {workout.date.isoformat()} is before {settings.earliest_workout_date.isoformat()}")
    elif workout.date > today + dt.timedelta(days=1):
        errors.append(f"Workout date {workout.date.isoformat()} is in the future")

    if expected_format is not None and workout.source_format != expected_format:
        errors.append(f"Decoded format {workout.source_format} does not match upload format {expected_format}")

    return errors


def validate_parsed(
    workout: CanonicalWorkout,
    expected_format: FileFormat | None = None,
    today: dt.date | None = None,
) -> CanonicalWorkout:
    """Check domain invariants of a decoded workout.

    Args:
        workout: Decoder output
        expected_format: Format resolved at upload time
        today: Reference date for the future-date check (defaults to UTC today)

    Returns:
        The same workout, unchanged

    Raises:
        ParseValidationError: Carrying every violation found, not just the first
    """
    errors = collect_violations(workout, expected_format, today)
    if errors:
        logger.warning(f"[VALIDATE] Parsed workout rejected: {errors}")
        raise ParseValidationError(errors)
    return workout
