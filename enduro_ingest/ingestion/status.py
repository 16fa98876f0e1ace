"""Status reader for polling clients.

Projects a staging record to its public fields and derives a strong
validator token from the canonical serialization of that projection, so
clients can poll with If-None-Match and get "unchanged" until the record
moves.
"""

from __future__ import annotations

import base64
import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any

from loguru import logger

from enduro_ingest.core.errors import IngestNotFoundError, InvalidIngestIdError
from enduro_ingest.ingestion.staging import StagingRecord, get_staging_record

_UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

PUBLIC_FIELDS = (
    "ingest_id",
    "filename",
    "file_type",
    "file_size",
    "status",
    "error_message",
    "session_id",
    "created_at",
    "updated_at",
)


@dataclass(frozen=True)
class StatusReadResult:
    not_modified: bool
    etag: str
    body: dict[str, Any] | None


def project_record(record: StagingRecord) -> dict[str, Any]:
    """Public-safe subset of a staging record; timestamps as ISO-8601 strings."""
    return {
        "ingest_id": record.ingest_id,
        "filename": record.filename,
        "file_type": record.file_type,
        "file_size": record.file_size,
        "status": record.status,
        "error_message": record.error_message,
        "session_id": record.session_id,
        "created_at": record.created_at.isoformat(),
        "updated_at": record.updated_at.isoformat(),
    }


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def compute_etag(value: Any) -> str:
    """Quoted, unpadded base64url SHA-256 of the canonical JSON of value."""
    digest = hashlib.sha256(canonical_json(value).encode("utf-8")).digest()
    return '"' + base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii") + '"'


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    """Weak comparison of If-None-Match against etag (RFC 9110 section 13.1.2)."""
    if not if_none_match:
        return False
    if if_none_match.strip() == "*":
        return True
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == etag:
            return True
    return False


def read_ingest_status(ingest_id: str, athlete_id: str, if_none_match: str | None = None) -> StatusReadResult:
    """Ownership-checked read of one ingest's status.

    Args:
        ingest_id: Staging record id (UUID)
        athlete_id: Requesting athlete
        if_none_match: Client's prior validator token(s), if any

    Returns:
        StatusReadResult; body is None when the client's token is current

    Raises:
        InvalidIngestIdError: If ingest_id is not a UUID
        IngestNotFoundError: If the record does not exist or belongs to another athlete
    """
    if not _UUID_PATTERN.match(ingest_id or ""):
        raise InvalidIngestIdError("Invalid ingest ID format")

    record = get_staging_record(ingest_id.lower())
    if record is None or record.athlete_id != athlete_id:
        if record is not None:
            logger.warning(f"[STATUS] Athlete {athlete_id} requested ingest {ingest_id} owned by another athlete")
        raise IngestNotFoundError("Ingest record not found")

    body = project_record(record)
    etag = compute_etag(body)
    if etag_matches(if_none_match, etag):
        logger.debug(f"[STATUS] {ingest_id} unchanged ({record.status})")
        return StatusReadResult(not_modified=True, etag=etag, body=None)

    return StatusReadResult(not_modified=False, etag=etag, body=body)
