"""GPX decoder.

Only the first track is read. Points keep their segment boundaries so the
gap between two segments (a paused recording) never counts as distance.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import gpxpy
import gpxpy.geo
import gpxpy.gpx
from loguru import logger

from enduro_ingest.config.settings import settings
from enduro_ingest.core.errors import DecodeError
from enduro_ingest.ingestion.decoders.base import WorkoutDecoder
from enduro_ingest.ingestion.formats import FileFormat
from enduro_ingest.ingestion.workout import CanonicalWorkout, default_title, minutes_from_seconds, normalize_sport


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def segment_distance(points: list[gpxpy.gpx.GPXTrackPoint]) -> float:
    """Cumulative great-circle distance between consecutive points, in meters."""
    total = 0.0
    for previous, current in zip(points, points[1:]):
        total += gpxpy.geo.haversine_distance(
            previous.latitude,
            previous.longitude,
            current.latitude,
            current.longitude,
        )
    return total


class GpxDecoder(WorkoutDecoder):
    source_format = FileFormat.GPX

    def decode(self, payload: bytes) -> CanonicalWorkout:
        try:
            text = payload.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise DecodeError("Invalid GPX file: content is not UTF-8 text") from e

        try:
            gpx = gpxpy.parse(text)
        except gpxpy.gpx.GPXException as e:
            raise DecodeError(f"Invalid GPX file: {e}") from e

        if not gpx.tracks:
            raise DecodeError("Invalid GPX file: no tracks")

        track = gpx.tracks[0]
        timestamps: list[datetime] = []
        distance_meters = 0.0
        point_count = 0
        for segment in track.segments:
            point_count += len(segment.points)
            distance_meters += segment_distance(segment.points)
            timestamps.extend(_as_utc(point.time) for point in segment.points if point.time is not None)

        if point_count == 0:
            raise DecodeError("Invalid GPX file: track has no points")
        if len(timestamps) < 2:
            raise DecodeError("Invalid GPX file: track needs at least two timestamped points")

        started_at = timestamps[0]
        duration_seconds = (timestamps[-1] - started_at).total_seconds()

        sport = normalize_sport(track.type, settings.gpx_default_sport)
        workout_date = started_at.date()
        title = (track.name or gpx.name or "").strip() or default_title(sport, workout_date)

        metadata: dict[str, Any] = {
            "creator": gpx.creator,
            "track_count": len(gpx.tracks),
            "segment_count": len(track.segments),
            "point_count": point_count,
            "duration_seconds": round(duration_seconds, 3),
            "raw_sport": track.type,
        }

        logger.debug(f"[GPX] Decoded {point_count} points in {len(track.segments)} segments, {distance_meters:.0f}m")

        return CanonicalWorkout(
            sport=sport,
            date=workout_date,
            title=title,
            duration_minutes=minutes_from_seconds(duration_seconds),
            distance_meters=round(distance_meters, 2),
            source_format=self.source_format,
            started_at=started_at,
            metadata=metadata,
        )
