"""TCX (Training Center XML) decoder.

Hierarchy is activity -> lap -> track -> trackpoint. Lap summaries are the
authoritative totals; trackpoints are only used when a file has no laps.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from loguru import logger
from lxml import etree

from enduro_ingest.config.settings import settings
from enduro_ingest.core.errors import DecodeError
from enduro_ingest.ingestion.decoders.base import WorkoutDecoder
from enduro_ingest.ingestion.formats import FileFormat
from enduro_ingest.ingestion.workout import CanonicalWorkout, default_title, minutes_from_seconds, normalize_sport


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _float_text(element: etree._Element | None) -> float | None:
    if element is None or element.text is None:
        return None
    try:
        return float(element.text)
    except ValueError:
        return None


class TcxDecoder(WorkoutDecoder):
    source_format = FileFormat.TCX

    def decode(self, payload: bytes) -> CanonicalWorkout:
        parser = etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True)
        try:
            root = etree.fromstring(payload, parser=parser)
        except etree.XMLSyntaxError as e:
            raise DecodeError(f"Invalid TCX file: malformed XML ({e.msg})") from e

        # Hand-written exports sometimes omit xmlns; fall back to bare tag names
        namespace = etree.QName(root).namespace

        def _tag(name: str) -> str:
            return f"{{{namespace}}}{name}" if namespace else name

        activity = root.find(f".//{_tag('Activity')}")
        if activity is None:
            raise DecodeError("Invalid TCX file: no Activity element")

        laps = activity.findall(_tag("Lap"))
        trackpoint_times: list[datetime] = []
        trackpoint_distances: list[float] = []
        trackpoint_count = 0
        for point in activity.iter(_tag("Trackpoint")):
            trackpoint_count += 1
            point_time = _parse_time(point.findtext(_tag("Time")))
            if point_time is not None:
                trackpoint_times.append(point_time)
            distance = _float_text(point.find(_tag("DistanceMeters")))
            if distance is not None:
                trackpoint_distances.append(distance)

        if laps:
            duration_seconds = 0.0
            lap_distances: list[float] = []
            calories = 0
            for lap in laps:
                lap_seconds = _float_text(lap.find(_tag("TotalTimeSeconds")))
                if lap_seconds is not None:
                    duration_seconds += lap_seconds
                lap_distance = _float_text(lap.find(_tag("DistanceMeters")))
                if lap_distance is not None:
                    lap_distances.append(lap_distance)
                lap_calories = _float_text(lap.find(_tag("Calories")))
                if lap_calories is not None:
                    calories += int(lap_calories)
            if lap_distances:
                distance_meters: float | None = sum(lap_distances)
            else:
                distance_meters = max(trackpoint_distances) if trackpoint_distances else None
        else:
            if len(trackpoint_times) < 2:
                raise DecodeError("Invalid TCX file: no laps and not enough timed trackpoints")
            duration_seconds = (max(trackpoint_times) - min(trackpoint_times)).total_seconds()
            distance_meters = max(trackpoint_distances) if trackpoint_distances else None
            calories = 0

        started_at = _parse_time(activity.findtext(_tag("Id")))
        if started_at is None and laps:
            started_at = _parse_time(laps[0].get("StartTime"))
        if started_at is None and trackpoint_times:
            started_at = min(trackpoint_times)
        if started_at is None:
            raise DecodeError("Invalid TCX file: no start time")

        sport = normalize_sport(activity.get("Sport"), settings.default_sport)
        workout_date = started_at.date()

        metadata: dict[str, Any] = {
            "lap_count": len(laps),
            "trackpoint_count": trackpoint_count,
            "duration_seconds": round(duration_seconds, 3),
            "raw_sport": activity.get("Sport"),
        }
        if calories:
            metadata["calories"] = calories
        creator = activity.find(_tag("Creator"))
        if creator is not None:
            metadata["creator"] = creator.findtext(_tag("Name"))
            major = creator.findtext(f"{_tag('Version')}/{_tag('VersionMajor')}")
            minor = creator.findtext(f"{_tag('Version')}/{_tag('VersionMinor')}")
            if major is not None:
                metadata["creator_version"] = f"{major}.{minor or 0}"

        logger.debug(f"[TCX] Decoded {len(laps)} laps, {trackpoint_count} trackpoints, {duration_seconds:.0f}s")

        return CanonicalWorkout(
            sport=sport,
            date=workout_date,
            title=default_title(sport, workout_date),
            duration_minutes=minutes_from_seconds(duration_seconds),
            distance_meters=distance_meters,
            source_format=self.source_format,
            started_at=started_at,
            metadata=metadata,
        )
