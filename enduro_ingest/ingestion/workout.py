"""Canonical workout representation shared by every decoder.

A decoder turns file bytes into a CanonicalWorkout; the parsed-data validator
checks it, the staging store snapshots it and the materializer turns it into
a training session.
"""

from __future__ import annotations

import datetime as dt
import math
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from enduro_ingest.ingestion.formats import FileFormat


class Sport(StrEnum):
    RUN = "run"
    BIKE = "bike"
    SWIM = "swim"
    STRENGTH = "strength"
    MOBILITY = "mobility"


# Raw sport labels seen in TCX Sport attributes, GPX <type> and the FIT sport enum
SPORT_ALIASES: dict[str, Sport] = {
    "run": Sport.RUN,
    "running": Sport.RUN,
    "trail_running": Sport.RUN,
    "treadmill_running": Sport.RUN,
    "walking": Sport.RUN,
    "hiking": Sport.RUN,
    "bike": Sport.BIKE,
    "biking": Sport.BIKE,
    "cycling": Sport.BIKE,
    "ride": Sport.BIKE,
    "e_biking": Sport.BIKE,
    "swim": Sport.SWIM,
    "swimming": Sport.SWIM,
    "lap_swimming": Sport.SWIM,
    "open_water": Sport.SWIM,
    "strength": Sport.STRENGTH,
    "training": Sport.STRENGTH,
    "strength_training": Sport.STRENGTH,
    "fitness_equipment": Sport.STRENGTH,
    "other": Sport.STRENGTH,
    "mobility": Sport.MOBILITY,
    "yoga": Sport.MOBILITY,
    "pilates": Sport.MOBILITY,
    "flexibility_training": Sport.MOBILITY,
}


def normalize_sport(raw: str | None, default: str | Sport) -> Sport:
    """Map a format-specific sport label onto the canonical enumeration.

    Unknown or missing labels resolve to ``default``; an invalid default falls
    back to running.
    """
    if raw:
        key = raw.strip().lower().replace(" ", "_").replace("-", "_")
        if key in SPORT_ALIASES:
            return SPORT_ALIASES[key]
    try:
        return Sport(str(default).lower())
    except ValueError:
        return Sport.RUN


def minutes_from_seconds(seconds: float) -> int:
    """Whole minutes, rounding halves up (2530s -> 42, 2550s -> 43)."""
    return math.floor(seconds / 60 + 0.5)


def default_title(sport: Sport, workout_date: dt.date) -> str:
    return f"{sport.value.capitalize()} - {workout_date.isoformat()}"


class CanonicalWorkout(BaseModel):
    """Format-independent workout produced by a decoder.

    Domain invariants (positive duration, plausible date) are checked by
    parsed_validator after the snapshot is stored, not by this model.
    """

    sport: Sport
    date: dt.date
    title: str | None = None
    duration_minutes: int
    distance_meters: float | None = None
    source_format: FileFormat
    started_at: dt.datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe dump stored on the staging record for audit."""
        return self.model_dump(mode="json")
