"""FIT (Flexible and Interoperable Data Transfer) decoder.

The container is walked in two explicit passes:

1. ``frame_records`` checks the header and CRCs, then frames every record,
   building the local message type -> field layout mapping as definition
   messages appear. A local type may be redefined mid-file; each data record
   keeps a reference to the layout that was active when it was read.
2. ``decode_messages`` decodes each framed data record against its layout,
   using the fitparse profile for message names, field names, scale, offset
   and enum values.

Message types missing from the profile (vendor extensions) are skipped and
counted. Workout totals come from session messages, falling back to the
activity message; laps only feed metadata.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from fitparse.profile import MESSAGE_TYPES
from fitparse.records import BASE_TYPES, Crc
from loguru import logger

from enduro_ingest.config.settings import settings
from enduro_ingest.core.errors import DecodeError, NotSupportedFormatError
from enduro_ingest.ingestion.decoders.base import WorkoutDecoder
from enduro_ingest.ingestion.formats import FileFormat
from enduro_ingest.ingestion.workout import CanonicalWorkout, default_title, minutes_from_seconds, normalize_sport

FIT_SIGNATURE = b".FIT"
FIT_EPOCH = datetime(1989, 12, 31, tzinfo=timezone.utc)
# Timestamps below this are seconds since device power-on, not since the epoch
MIN_ABSOLUTE_TIMESTAMP = 0x10000000
TIMESTAMP_FIELD = 253
VALID_HEADER_SIZES = (12, 14)

COMPRESSED_HEADER_MASK = 0x80
DEFINITION_MASK = 0x40
DEVELOPER_DATA_MASK = 0x20


@dataclass(frozen=True)
class FitHeader:
    header_size: int
    protocol_version: int
    profile_version: int
    data_size: int


@dataclass(frozen=True)
class FieldDefinition:
    number: int
    size: int
    base_type: int


@dataclass(frozen=True)
class DeveloperFieldDefinition:
    number: int
    size: int
    developer_index: int


@dataclass(frozen=True)
class MessageLayout:
    """Field layout announced by one definition message."""

    local_type: int
    global_number: int
    big_endian: bool
    fields: tuple[FieldDefinition, ...]
    developer_fields: tuple[DeveloperFieldDefinition, ...] = ()

    @property
    def size(self) -> int:
        return sum(f.size for f in self.fields) + sum(f.size for f in self.developer_fields)


@dataclass(frozen=True)
class DataRecordRef:
    offset: int  # first content byte, after the record header
    layout: MessageLayout
    time_offset: int | None = None  # set for compressed-timestamp headers


@dataclass
class FitFrame:
    """Result of the framing pass."""

    header: FitHeader
    records: list[DataRecordRef]
    layouts: dict[int, list[MessageLayout]]
    definition_count: int


@dataclass
class FitMessage:
    name: str
    global_number: int
    values: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


@dataclass
class DecodedFit:
    header: FitHeader
    messages: list[FitMessage]
    skipped_messages: int

    def by_name(self, name: str) -> list[FitMessage]:
        return [m for m in self.messages if m.name == name]


def read_header(payload: bytes) -> FitHeader:
    """Validate the file header and both CRCs.

    The signature is checked before anything else so a file that is not FIT
    at all is reported as such instead of as a corrupt FIT file.
    """
    if len(payload) < 12 or payload[8:12] != FIT_SIGNATURE:
        raise NotSupportedFormatError("Uploaded file is not a valid FIT file (missing .FIT signature)")

    header_size = payload[0]
    if header_size not in VALID_HEADER_SIZES or len(payload) < header_size:
        raise DecodeError(f"Invalid FIT file: unsupported header size {header_size}")

    protocol_version = payload[1]
    profile_version, data_size = struct.unpack("<HI", payload[2:8])
    end = header_size + data_size
    if end + 2 > len(payload):
        raise DecodeError(
            f"Invalid FIT file: header declares {data_size} data bytes but only {max(len(payload) - header_size - 2, 0)} are present"
        )

    if settings.fit_check_crc:
        if header_size == 14:
            (header_crc,) = struct.unpack("<H", payload[12:14])
            # A zero header CRC means the writer did not compute one
            if header_crc != 0 and header_crc != Crc.calculate(payload[:12]):
                raise DecodeError("Invalid FIT file: header CRC mismatch")
        (file_crc,) = struct.unpack("<H", payload[end : end + 2])
        if file_crc != Crc.calculate(payload[:end]):
            raise DecodeError("Invalid FIT file: file CRC mismatch")

    return FitHeader(
        header_size=header_size,
        protocol_version=protocol_version,
        profile_version=profile_version,
        data_size=data_size,
    )


def frame_records(payload: bytes) -> FitFrame:
    """First pass: frame every record and resolve each data record's layout."""
    header = read_header(payload)
    end = header.header_size + header.data_size
    pos = header.header_size

    active: dict[int, MessageLayout] = {}
    layouts: dict[int, list[MessageLayout]] = {}
    records: list[DataRecordRef] = []
    definition_count = 0

    def _require(count: int, what: str) -> None:
        if pos + count > end:
            raise DecodeError(f"Invalid FIT file: truncated {what} at byte {pos}")

    while pos < end:
        record_header = payload[pos]
        pos += 1

        if record_header & COMPRESSED_HEADER_MASK:
            local_type = (record_header >> 5) & 0x03
            layout = active.get(local_type)
            if layout is None:
                raise DecodeError(f"Invalid FIT file: data record uses undefined local message type {local_type}")
            _require(layout.size, "data record")
            records.append(DataRecordRef(offset=pos, layout=layout, time_offset=record_header & 0x1F))
            pos += layout.size
            continue

        local_type = record_header & 0x0F

        if record_header & DEFINITION_MASK:
            _require(5, "definition message")
            architecture = payload[pos + 1]
            if architecture not in (0, 1):
                raise DecodeError(f"Invalid FIT file: unknown architecture {architecture}")
            big_endian = architecture == 1
            (global_number,) = struct.unpack(">H" if big_endian else "<H", payload[pos + 2 : pos + 4])
            field_count = payload[pos + 4]
            pos += 5

            _require(field_count * 3, "field definitions")
            fields = tuple(
                FieldDefinition(number=payload[i], size=payload[i + 1], base_type=payload[i + 2])
                for i in range(pos, pos + field_count * 3, 3)
            )
            pos += field_count * 3

            developer_fields: tuple[DeveloperFieldDefinition, ...] = ()
            if record_header & DEVELOPER_DATA_MASK:
                _require(1, "developer field count")
                developer_count = payload[pos]
                pos += 1
                _require(developer_count * 3, "developer field definitions")
                developer_fields = tuple(
                    DeveloperFieldDefinition(number=payload[i], size=payload[i + 1], developer_index=payload[i + 2])
                    for i in range(pos, pos + developer_count * 3, 3)
                )
                pos += developer_count * 3

            layout = MessageLayout(
                local_type=local_type,
                global_number=global_number,
                big_endian=big_endian,
                fields=fields,
                developer_fields=developer_fields,
            )
            active[local_type] = layout
            layouts.setdefault(local_type, []).append(layout)
            definition_count += 1
            continue

        layout = active.get(local_type)
        if layout is None:
            raise DecodeError(f"Invalid FIT file: data record uses undefined local message type {local_type}")
        _require(layout.size, "data record")
        records.append(DataRecordRef(offset=pos, layout=layout))
        pos += layout.size

    return FitFrame(header=header, records=records, layouts=layouts, definition_count=definition_count)


def _read_raw_value(raw: bytes, base_type_number: int, big_endian: bool) -> Any:
    """Unpack one field's bytes using its base type; None means the FIT invalid value."""
    base_type = BASE_TYPES.get(base_type_number)

    if base_type is not None and base_type.name == "string":
        text = raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace")
        return text or None

    if base_type is None or base_type.name == "byte":
        return None if all(b == 0xFF for b in raw) else bytes(raw)

    element_size = struct.calcsize(base_type.fmt)
    if element_size == 0 or len(raw) % element_size:
        # Size is not a multiple of the base type: keep the bytes as-is
        return bytes(raw)

    count = len(raw) // element_size
    endian = ">" if big_endian else "<"
    values = [base_type.parse(v) for v in struct.unpack(endian + base_type.fmt * count, raw)]
    if count == 1:
        return values[0]
    if all(v is None for v in values):
        return None
    return values


def _to_datetime(seconds: int) -> datetime:
    return FIT_EPOCH + timedelta(seconds=seconds)


def _apply_profile(value: Any, profile_field: Any) -> Any:
    """Convert a raw value using its profile field: date_time, enum, then scale/offset."""
    if value is None or isinstance(value, bytes | str):
        return value

    field_type = profile_field.type
    type_name = getattr(field_type, "name", None)

    if type_name in ("date_time", "local_date_time") and isinstance(value, int):
        return _to_datetime(value) if value >= MIN_ABSOLUTE_TIMESTAMP else value

    enum_values = getattr(field_type, "values", None)
    if enum_values and isinstance(value, int):
        return enum_values.get(value, value)

    scale = profile_field.scale
    offset = profile_field.offset
    if isinstance(scale, int | float) or isinstance(offset, int | float):
        scale = scale if isinstance(scale, int | float) and scale else 1
        offset = offset if isinstance(offset, int | float) else 0

        def _convert(v: Any) -> Any:
            return None if v is None else v / scale - offset

        if isinstance(value, list):
            return [_convert(v) for v in value]
        return _convert(value)

    return value


def decode_messages(payload: bytes, frame: FitFrame) -> DecodedFit:
    """Second pass: decode every framed data record against its layout."""
    messages: list[FitMessage] = []
    skipped = 0
    last_timestamp: int | None = None

    for ref in frame.records:
        layout = ref.layout
        message_type = MESSAGE_TYPES.get(layout.global_number)
        values: dict[str, Any] = {}

        pos = ref.offset
        for definition in layout.fields:
            raw = payload[pos : pos + definition.size]
            pos += definition.size
            value = _read_raw_value(raw, definition.base_type, layout.big_endian)

            if definition.number == TIMESTAMP_FIELD and isinstance(value, int):
                last_timestamp = value

            if message_type is None:
                continue
            profile_field = message_type.fields.get(definition.number)
            if profile_field is None:
                continue
            values[profile_field.name] = _apply_profile(value, profile_field)

        if ref.time_offset is not None:
            if last_timestamp is None:
                raise DecodeError("Invalid FIT file: compressed timestamp before any full timestamp")
            last_timestamp += (ref.time_offset - (last_timestamp & 0x1F)) & 0x1F
            values["timestamp"] = _to_datetime(last_timestamp)

        if message_type is None:
            skipped += 1
            continue

        messages.append(FitMessage(name=message_type.name, global_number=layout.global_number, values=values))

    return DecodedFit(header=frame.header, messages=messages, skipped_messages=skipped)


def _first_datetime(messages: list[FitMessage], key: str) -> datetime | None:
    for message in messages:
        value = message.get(key)
        if isinstance(value, datetime):
            return value
    return None


def _sum_present(messages: list[FitMessage], *keys: str) -> float | None:
    """Sum the first present key of each message; None when no message has any."""
    total: float | None = None
    for message in messages:
        for key in keys:
            value = message.get(key)
            if isinstance(value, int | float):
                total = (total or 0.0) + value
                break
    return total


class FitDecoder(WorkoutDecoder):
    source_format = FileFormat.FIT

    def decode(self, payload: bytes) -> CanonicalWorkout:
        frame = frame_records(payload)
        decoded = decode_messages(payload, frame)
        if decoded.skipped_messages:
            logger.info(f"[FIT] Skipped {decoded.skipped_messages} messages of unknown type")

        sessions = decoded.by_name("session")
        laps = decoded.by_name("lap")
        records = decoded.by_name("record")
        activities = decoded.by_name("activity")
        file_ids = decoded.by_name("file_id")

        totals_source = "session"
        duration_seconds = _sum_present(sessions, "total_timer_time", "total_elapsed_time")
        distance_meters = _sum_present(sessions, "total_distance")
        if duration_seconds is None:
            totals_source = "activity"
            duration_seconds = _sum_present(activities, "total_timer_time")
            record_distances = [r.get("distance") for r in records if isinstance(r.get("distance"), int | float)]
            distance_meters = max(record_distances) if record_distances else None
        if duration_seconds is None:
            raise DecodeError("Invalid FIT file: no session or activity totals")

        started_at = (
            _first_datetime(sessions, "start_time")
            or _first_datetime(records, "timestamp")
            or _first_datetime(file_ids, "time_created")
        )
        if started_at is None:
            raise DecodeError("Invalid FIT file: no start time")

        raw_sport = next((s.get("sport") for s in sessions if isinstance(s.get("sport"), str)), None)
        if raw_sport is None:
            raw_sport = next((s.get("sport") for s in decoded.by_name("sport") if isinstance(s.get("sport"), str)), None)
        sport = normalize_sport(raw_sport, settings.default_sport)
        workout_date = started_at.date()

        metadata: dict[str, Any] = {
            "protocol_version": decoded.header.protocol_version,
            "profile_version": decoded.header.profile_version,
            "session_count": len(sessions),
            "lap_count": len(laps),
            "record_count": len(records),
            "skipped_messages": decoded.skipped_messages,
            "totals_source": totals_source,
            "duration_seconds": round(duration_seconds, 3),
            "raw_sport": raw_sport,
        }
        if file_ids:
            metadata["manufacturer"] = file_ids[0].get("manufacturer")
            metadata["product"] = file_ids[0].get("product")
        calories = _sum_present(sessions, "total_calories")
        if calories is not None:
            metadata["calories"] = int(calories)
        average_hr = next((s.get("avg_heart_rate") for s in sessions if s.get("avg_heart_rate") is not None), None)
        max_hr = max((s.get("max_heart_rate") for s in sessions if s.get("max_heart_rate") is not None), default=None)
        if average_hr is not None:
            metadata["avg_heart_rate"] = average_hr
        if max_hr is not None:
            metadata["max_heart_rate"] = max_hr

        logger.debug(
            f"[FIT] Decoded {len(decoded.messages)} messages ({len(sessions)} sessions, {len(laps)} laps), "
            f"totals from {totals_source}"
        )

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
