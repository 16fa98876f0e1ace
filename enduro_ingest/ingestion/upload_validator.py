"""Upload validation.

Pure checks on an incoming file, run before anything durable happens: a
rejected upload never creates a staging record or a stored object.
"""

from __future__ import annotations

from pathlib import PurePosixPath

from loguru import logger

from enduro_ingest.config.settings import settings
from enduro_ingest.core.errors import EmptyFileError, FileTooLargeError, MissingFileError, UnsupportedFileTypeError
from enduro_ingest.ingestion.formats import (
    CONTENT_TYPE_FORMATS,
    EXTENSION_FORMATS,
    GENERIC_CONTENT_TYPES,
    FileFormat,
    allowed_extensions,
)


def _extension(filename: str) -> str:
    # Browsers on Windows may send full paths
    name = filename.replace("\\", "/")
    return PurePosixPath(name).suffix.lower()


def _normalize_content_type(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def resolve_file_format(filename: str, content_type: str | None = None) -> FileFormat:
    """Resolve the single supported format an upload belongs to.

    Args:
        filename: Declared file name
        content_type: Declared MIME type, if any

    Returns:
        The resolved FileFormat

    Raises:
        UnsupportedFileTypeError: If the name/type pair maps to no format, or is ambiguous
    """
    ext_format = EXTENSION_FORMATS.get(_extension(filename))
    mime = _normalize_content_type(content_type)
    allowed = ", ".join(allowed_extensions())

    if mime in GENERIC_CONTENT_TYPES:
        if ext_format is None:
            raise UnsupportedFileTypeError(f"File type not supported. Allowed: {allowed}")
        return ext_format

    mime_formats = CONTENT_TYPE_FORMATS.get(mime)
    if mime_formats is None:
        raise UnsupportedFileTypeError(f"MIME type {mime} not supported. Allowed extensions: {allowed}")

    if ext_format is not None:
        if ext_format not in mime_formats:
            raise UnsupportedFileTypeError(f"MIME type {mime} does not match file extension {_extension(filename)}")
        return ext_format

    if len(mime_formats) == 1:
        return next(iter(mime_formats))

    raise UnsupportedFileTypeError(f"Unable to determine file type from MIME type {mime}. Allowed: {allowed}")


def validate_upload(
    payload: bytes | None,
    filename: str | None,
    size: int | None = None,
    content_type: str | None = None,
    max_bytes: int | None = None,
) -> FileFormat:
    """Validate an incoming upload and resolve its format.

    Checks run in a fixed order: presence, maximum size, non-zero size,
    extension/content-type allow-list.

    Args:
        payload: Raw file bytes (None when no file part was sent)
        filename: Declared file name
        size: Declared byte length; falls back to len(payload)
        content_type: Declared MIME type
        max_bytes: Size cap override (defaults to settings.max_upload_bytes)

    Returns:
        The resolved FileFormat

    Raises:
        MissingFileError, FileTooLargeError, EmptyFileError, UnsupportedFileTypeError
    """
    if payload is None or not filename:
        raise MissingFileError("File is required")

    limit = max_bytes if max_bytes is not None else settings.max_upload_bytes
    byte_length = size if size is not None else len(payload)

    if byte_length > limit:
        logger.info(f"[UPLOAD] Rejected {filename}: {byte_length} bytes exceeds {limit}")
        raise FileTooLargeError(f"File size {byte_length} exceeds maximum {limit} bytes ({limit / (1024 * 1024):.0f}MB)")

    if byte_length == 0 or len(payload) == 0:
        raise EmptyFileError("File is empty")

    return resolve_file_format(filename, content_type)
