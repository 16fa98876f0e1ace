"""Workout file ingest endpoints.

POST /ingest/workout runs the full pipeline synchronously and answers with
the terminal outcome. GET /ingest/workout/{ingest_id} is the polling read
path, with ETag / If-None-Match support.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Header, Response, UploadFile, status
from fastapi.responses import JSONResponse
from loguru import logger

from enduro_ingest.api.dependencies.auth import get_current_athlete_id
from enduro_ingest.api.dependencies.ingest import get_pipeline
from enduro_ingest.api.headers import apply_security_headers
from enduro_ingest.config.settings import settings
from enduro_ingest.ingestion.pipeline import UploadedFile, WorkoutIngestPipeline
from enduro_ingest.ingestion.status import read_ingest_status

router = APIRouter(prefix="/ingest", tags=["ingest"])


def _read_upload(file: UploadFile | None, max_bytes: int) -> UploadedFile:
    """Read at most max_bytes + 1 so oversized uploads are detected without buffering them whole."""
    if file is None:
        return UploadedFile(filename=None, payload=None)
    payload = file.file.read(max_bytes + 1)
    size = file.size if file.size is not None else len(payload)
    return UploadedFile(
        filename=file.filename,
        payload=payload,
        content_type=file.content_type,
        size=max(size, len(payload)),
    )


@router.post("/workout", status_code=status.HTTP_201_CREATED)
def ingest_workout(
    file: UploadFile | None = File(None),
    source: str | None = Form(None),
    notes: str | None = Form(None),
    athlete_id: str = Depends(get_current_athlete_id),
    pipeline: WorkoutIngestPipeline = Depends(get_pipeline),
):
    """Upload a TCX, GPX or FIT file and turn it into a completed training session.

    Args:
        file: Workout file (multipart field "file")
        source: Optional free-text origin of the file
        notes: Optional free-text notes
        athlete_id: Authenticated athlete (from auth dependency)
        pipeline: Ingest pipeline (from dependency)

    Returns:
        201 with ingest_id, status "normalized" and session_id

    Raises:
        IngestError: Rendered by the application error handler
    """
    logger.info(f"[INGEST] Upload request for athlete_id={athlete_id}, filename={file.filename if file else None}")
    upload = _read_upload(file, pipeline.settings.max_upload_bytes)
    result = pipeline.run(upload, athlete_id, source=source, notes=notes)

    response = JSONResponse(status_code=status.HTTP_201_CREATED, content=result.to_dict())
    return apply_security_headers(response, no_store=True)


@router.get("/workout/{ingest_id}")
def get_ingest_status(
    ingest_id: str,
    athlete_id: str = Depends(get_current_athlete_id),
    if_none_match: str | None = Header(None),
):
    """Current status of one ingest, with a strong ETag.

    Returns:
        200 with the status projection, or 304 with no body when If-None-Match is current
    """
    result = read_ingest_status(ingest_id, athlete_id, if_none_match)

    if result.not_modified:
        response = Response(status_code=status.HTTP_304_NOT_MODIFIED)
    else:
        response = JSONResponse(status_code=status.HTTP_200_OK, content=result.body)
    response.headers["ETag"] = result.etag
    return apply_security_headers(response, cache_hint=settings.status_cache_hint)
