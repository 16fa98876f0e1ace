"""Canonical ingestion error types.

Every failure the ingestion core reports to a caller is one of these types.
Each carries a stable machine-readable ``code`` and a human-readable
``detail``; HTTP and CLI surfaces render both and nothing else.

Categories:
- Input rejection (raised before any durable write): MissingFile, FileTooLarge,
  EmptyFile, UnsupportedFileType
- Decode failures (raw bytes already durable): DecodeError, NotSupportedFormat
- Domain validation: ParseValidationFailed
- Downstream writes (infrastructure trouble): StorageWriteFailed,
  StagingWriteFailed, SessionCreationFailed, InternalError
- Status reads: IngestNotFound, InvalidIngestId
"""

from __future__ import annotations


class IngestError(RuntimeError):
    """Base class for failures surfaced to ingestion callers.

    Attributes:
        code: Stable error category (e.g., "FileTooLarge")
        detail: Human-readable description, safe to show to clients
        http_status: Status code used by the HTTP surface
    """

    code = "IngestError"
    http_status = 500

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"{self.code}: {detail}")


class InputRejectedError(IngestError):
    """Upload rejected before any durable work happened."""

    http_status = 400


class MissingFileError(InputRejectedError):
    code = "MissingFile"


class FileTooLargeError(InputRejectedError):
    code = "FileTooLarge"
    http_status = 413


class EmptyFileError(InputRejectedError):
    code = "EmptyFile"


class UnsupportedFileTypeError(InputRejectedError):
    code = "UnsupportedFileType"
    http_status = 415


class DecodeError(IngestError):
    """File content could not be decoded into a workout."""

    code = "DecodeError"
    http_status = 422


class NotSupportedFormatError(DecodeError):
    """File does not carry the signature of the format it claims to be."""

    code = "NotSupportedFormat"


class ParseValidationError(IngestError):
    """Decoded workout violates domain invariants.

    Attributes:
        errors: Individual violation messages
    """

    code = "ParseValidationFailed"
    http_status = 422

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(", ".join(errors))


class StorageWriteError(IngestError):
    code = "StorageWriteFailed"


class StagingWriteError(IngestError):
    code = "StagingWriteFailed"


class SessionCreationError(IngestError):
    code = "SessionCreationFailed"


class IngestInternalError(IngestError):
    code = "InternalError"


class IngestNotFoundError(IngestError):
    code = "IngestNotFound"
    http_status = 404


class InvalidIngestIdError(IngestError):
    code = "InvalidIngestId"
    http_status = 400


class InvalidTransitionError(RuntimeError):
    """Raised when a staging record is asked to make an illegal status change."""

    def __init__(self, ingest_id: str, current: str, target: str):
        self.ingest_id = ingest_id
        self.current = current
        self.target = target
        super().__init__(f"Illegal staging transition for {ingest_id}: {current} -> {target}")
