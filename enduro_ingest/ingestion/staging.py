"""Staging record store.

Every upload gets one ingest_staging row that follows it through the
pipeline. Callers never see ORM objects: each operation returns a frozen
StagingRecord snapshot taken inside the transaction that wrote it.

Allowed transitions:
    received -> uploaded -> parsed -> normalized
    any non-terminal status -> error
normalized and error are terminal.
"""

from __future__ import annotations

import datetime as dt
import re
import uuid
from dataclasses import dataclass
from typing import Any

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from enduro_ingest.core.errors import InvalidTransitionError, StagingWriteError
from enduro_ingest.db.models import IngestStaging
from enduro_ingest.db.session import get_session
from enduro_ingest.ingestion.formats import FileFormat

RECEIVED = "received"
UPLOADED = "uploaded"
PARSED = "parsed"
NORMALIZED = "normalized"
ERROR = "error"

TERMINAL_STATUSES = frozenset({NORMALIZED, ERROR})

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    RECEIVED: frozenset({UPLOADED, ERROR}),
    UPLOADED: frozenset({PARSED, ERROR}),
    PARSED: frozenset({NORMALIZED, ERROR}),
    NORMALIZED: frozenset(),
    ERROR: frozenset(),
}

MAX_ERROR_MESSAGE_LENGTH = 500
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


@dataclass(frozen=True)
class StagingRecord:
    ingest_id: str
    athlete_id: str
    filename: str
    file_type: str
    file_size: int
    content_type: str | None
    status: str
    error_message: str | None
    storage_path: str | None
    content_sha256: str | None
    parsed_snapshot: dict[str, Any] | None
    session_id: str | None
    source: str | None
    notes: str | None
    created_at: dt.datetime
    updated_at: dt.datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def _utc(value: dt.datetime) -> dt.datetime:
    # SQLite drops tzinfo on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _to_record(row: IngestStaging) -> StagingRecord:
    return StagingRecord(
        ingest_id=row.ingest_id,
        athlete_id=row.athlete_id,
        filename=row.filename,
        file_type=row.file_type,
        file_size=row.file_size,
        content_type=row.content_type,
        status=row.status,
        error_message=row.error_message,
        storage_path=row.storage_path,
        content_sha256=row.content_sha256,
        parsed_snapshot=row.parsed_snapshot,
        session_id=row.session_id,
        source=row.source,
        notes=row.notes,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


def sanitize_error_message(message: str) -> str:
    """Strip control characters and cap length so messages are safe to store and display."""
    cleaned = _CONTROL_CHARS.sub(" ", message).replace("\n", " ").strip()
    if len(cleaned) > MAX_ERROR_MESSAGE_LENGTH:
        cleaned = cleaned[: MAX_ERROR_MESSAGE_LENGTH - 3] + "..."
    return cleaned or "Unknown error"


def create_staging_record(
    athlete_id: str,
    filename: str,
    file_type: FileFormat,
    file_size: int,
    content_type: str | None = None,
    source: str | None = None,
    notes: str | None = None,
    ingest_id: str | None = None,
    storage_path: str | None = None,
    content_sha256: str | None = None,
) -> StagingRecord:
    """Insert a new staging record in status received.

    storage_path is the key the raw bytes are about to be written under; it is
    recorded up front so a record that fails at any stage still names it.

    Raises:
        StagingWriteError: If the row could not be inserted
    """
    now = dt.datetime.now(dt.timezone.utc)
    row = IngestStaging(
        ingest_id=ingest_id or str(uuid.uuid4()),
        athlete_id=athlete_id,
        filename=filename,
        file_type=FileFormat(file_type).value,
        file_size=file_size,
        content_type=content_type,
        status=RECEIVED,
        source=source,
        notes=notes,
        storage_path=storage_path,
        content_sha256=content_sha256,
        created_at=now,
        updated_at=now,
    )
    try:
        with get_session() as session:
            session.add(row)
            session.flush()
            record = _to_record(row)
    except SQLAlchemyError as e:
        raise StagingWriteError(f"Could not create staging record: {type(e).__name__}") from e

    logger.info(f"[STAGING] Created {record.ingest_id} for athlete {athlete_id} ({record.file_type}, {file_size} bytes)")
    return record


def _transition(ingest_id: str, target: str, **changes: Any) -> StagingRecord:
    try:
        with get_session() as session:
            row = session.get(IngestStaging, ingest_id)
            if row is None:
                raise StagingWriteError(f"Staging record {ingest_id} not found")

            allowed = ALLOWED_TRANSITIONS.get(row.status, frozenset())
            if target not in allowed:
                raise InvalidTransitionError(ingest_id, row.status, target)

            previous = row.status
            for name, value in changes.items():
                setattr(row, name, value)
            row.status = target
            now = dt.datetime.now(dt.timezone.utc)
            row.updated_at = max(now, _utc(row.updated_at))
            session.flush()
            record = _to_record(row)
    except SQLAlchemyError as e:
        raise StagingWriteError(f"Could not move staging record {ingest_id} to {target}: {type(e).__name__}") from e

    logger.info(f"[STAGING] {ingest_id}: {previous} -> {target}")
    return record


def mark_uploaded(ingest_id: str, storage_path: str, content_sha256: str | None = None) -> StagingRecord:
    return _transition(ingest_id, UPLOADED, storage_path=storage_path, content_sha256=content_sha256)


def mark_parsed(ingest_id: str, parsed_snapshot: dict[str, Any]) -> StagingRecord:
    return _transition(ingest_id, PARSED, parsed_snapshot=parsed_snapshot)


def mark_normalized(ingest_id: str, session_id: str) -> StagingRecord:
    return _transition(ingest_id, NORMALIZED, session_id=session_id)


def mark_error(ingest_id: str, message: str) -> StagingRecord:
    """Move a non-terminal record to error with a sanitized message.

    Also the entry point for manual failure injection from the operator CLI.
    """
    return _transition(ingest_id, ERROR, error_message=sanitize_error_message(message))


def get_staging_record(ingest_id: str) -> StagingRecord | None:
    try:
        with get_session() as session:
            row = session.get(IngestStaging, ingest_id)
            return _to_record(row) if row is not None else None
    except SQLAlchemyError as e:
        raise StagingWriteError(f"Could not read staging record {ingest_id}: {type(e).__name__}") from e
