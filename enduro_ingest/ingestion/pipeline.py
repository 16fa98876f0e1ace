"""Workout ingest pipeline.

Runs one upload through validate -> stage -> store -> decode -> validate ->
materialize, keeping the staging record in step with what the caller sees.
Every run is disposable: a failed run ends at status error and a retry is a
new upload with a new ingest id.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from loguru import logger

from enduro_ingest.config.settings import Settings
from enduro_ingest.config.settings import settings as default_settings
from enduro_ingest.core.errors import (
    DecodeError,
    IngestError,
    IngestInternalError,
    ParseValidationError,
    SessionCreationError,
    StagingWriteError,
    StorageWriteError,
)
from enduro_ingest.ingestion import staging
from enduro_ingest.ingestion.decoders.registry import decode_workout
from enduro_ingest.ingestion.formats import FileFormat
from enduro_ingest.ingestion.materializer import materialize_session
from enduro_ingest.ingestion.parsed_validator import validate_parsed
from enduro_ingest.ingestion.storage import BlobStore, StoredObject, plan_raw_file, store_raw_file
from enduro_ingest.ingestion.upload_validator import validate_upload

SUCCESS_MESSAGE = "Workout uploaded and processed successfully"


@dataclass(frozen=True)
class UploadedFile:
    filename: str | None
    payload: bytes | None
    content_type: str | None = None
    size: int | None = None


@dataclass(frozen=True)
class IngestResult:
    ingest_id: str
    status: str
    session_id: str
    filename: str
    file_size: int
    file_type: str
    message: str = SUCCESS_MESSAGE

    def to_dict(self) -> dict[str, str | int]:
        return {
            "ingest_id": self.ingest_id,
            "status": self.status,
            "session_id": self.session_id,
            "filename": self.filename,
            "file_size": self.file_size,
            "file_type": self.file_type,
            "message": self.message,
        }


@dataclass
class _RunState:
    ingest_id: str
    planned: StoredObject
    session_id: str | None = None


class WorkoutIngestPipeline:
    """Sequential, synchronous ingest of one uploaded workout file.

    Attributes:
        blob_store: Durable store for raw uploads
        settings: Runtime limits and defaults
    """

    def __init__(self, blob_store: BlobStore, settings: Settings | None = None):
        self.blob_store = blob_store
        self.settings = settings or default_settings

    def run(
        self,
        upload: UploadedFile,
        athlete_id: str,
        source: str | None = None,
        notes: str | None = None,
    ) -> IngestResult:
        """Ingest one file for athlete_id.

        Input rejections are raised before any record exists. Once a staging
        record is created every failure moves it to error (with a stage-prefixed
        message) before the matching IngestError is re-raised. Log lines of the
        run carry the ingest id through logger.contextualize().

        Raises:
            IngestError: The client-visible failure category
        """
        file_format = validate_upload(
            upload.payload,
            upload.filename,
            size=upload.size,
            content_type=upload.content_type,
            max_bytes=self.settings.max_upload_bytes,
        )
        assert upload.payload is not None and upload.filename is not None
        file_size = upload.size if upload.size is not None else len(upload.payload)

        ingest_id = str(uuid.uuid4())
        planned = plan_raw_file(athlete_id, ingest_id, upload.payload, file_format)

        with logger.contextualize(ingest_id=ingest_id):
            staging.create_staging_record(
                athlete_id=athlete_id,
                filename=upload.filename,
                file_type=file_format,
                file_size=file_size,
                content_type=upload.content_type,
                source=source,
                notes=notes,
                ingest_id=ingest_id,
                storage_path=planned.path,
                content_sha256=planned.sha256,
            )
            state = _RunState(ingest_id=ingest_id, planned=planned)
            logger.info(f"[INGEST] Accepted {upload.filename} as {file_format} for athlete {athlete_id}")

            try:
                self._process(state, upload.payload, athlete_id, file_format)
            except IngestError:
                raise
            except Exception as e:
                logger.exception(f"[INGEST] Unexpected failure: {type(e).__name__}")
                if state.session_id is None:
                    self._fail(ingest_id, "Internal error while processing the workout file")
                raise IngestInternalError("Unexpected error while processing the workout file") from e

            assert state.session_id is not None
            logger.info(f"[INGEST] Normalized into session {state.session_id}")

        return IngestResult(
            ingest_id=ingest_id,
            status=staging.NORMALIZED,
            session_id=state.session_id,
            filename=upload.filename,
            file_size=file_size,
            file_type=file_format.value,
        )

    def _process(self, state: _RunState, payload: bytes, athlete_id: str, file_format: FileFormat) -> None:
        ingest_id = state.ingest_id

        try:
            stored = store_raw_file(self.blob_store, athlete_id, ingest_id, payload, file_format, planned=state.planned)
        except StorageWriteError as e:
            self._fail(ingest_id, f"Storage upload failed: {e.detail}")
            raise

        try:
            staging.mark_uploaded(ingest_id, stored.path, stored.sha256)
        except Exception as e:
            # Bytes are durable but the record never reached uploaded
            self._discard_blob(stored.path)
            if isinstance(e, StagingWriteError):
                self._fail(ingest_id, f"Staging update failed: {e.detail}")
            raise

        try:
            workout = decode_workout(payload, file_format)
        except DecodeError as e:
            self._fail(ingest_id, f"Parse error: {e.detail}")
            self._log_orphan(stored.path)
            raise

        try:
            staging.mark_parsed(ingest_id, workout.snapshot())
        except StagingWriteError as e:
            self._fail(ingest_id, f"Staging update failed: {e.detail}")
            raise

        try:
            validate_parsed(workout, expected_format=file_format)
        except ParseValidationError as e:
            self._fail(ingest_id, f"Parse validation failed: {e.detail}")
            self._log_orphan(stored.path)
            raise

        try:
            session_id = materialize_session(workout, athlete_id, ingest_id)
        except SessionCreationError as e:
            self._fail(ingest_id, f"Session creation failed: {e.detail}")
            self._log_orphan(stored.path)
            raise
        state.session_id = session_id

        try:
            staging.mark_normalized(ingest_id, session_id)
        except StagingWriteError:
            # A session exists, so the record must not move to error
            logger.error(f"[INGEST] Session {session_id} created but staging record could not be finalized; left at parsed")
            raise

    def _fail(self, ingest_id: str, message: str) -> None:
        """Record a terminal failure; a failure to record it is logged, never raised over the original."""
        try:
            staging.mark_error(ingest_id, message)
        except Exception as e:
            logger.error(f"[INGEST] Could not record failure ({type(e).__name__}: {e}); original failure: {message}")
        else:
            logger.warning(f"[INGEST] {message}")

    def _discard_blob(self, path: str) -> None:
        """Single best-effort delete of an object the record never confirmed."""
        try:
            self.blob_store.delete(path)
            logger.info(f"[INGEST] Removed unconfirmed object {path}")
        except Exception as e:
            logger.warning(f"[INGEST] Could not remove unconfirmed object {path}: {e}")

    def _log_orphan(self, path: str) -> None:
        logger.info(f"[INGEST] Raw object kept for audit at {path}")
