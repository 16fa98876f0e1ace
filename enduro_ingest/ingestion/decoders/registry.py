"""Closed mapping from resolved file format to its decoder."""

from __future__ import annotations

from loguru import logger

from enduro_ingest.core.errors import DecodeError
from enduro_ingest.ingestion.decoders.base import WorkoutDecoder
from enduro_ingest.ingestion.decoders.fit import FitDecoder
from enduro_ingest.ingestion.decoders.gpx import GpxDecoder
from enduro_ingest.ingestion.decoders.tcx import TcxDecoder
from enduro_ingest.ingestion.formats import FORMAT_LABELS, FileFormat
from enduro_ingest.ingestion.workout import CanonicalWorkout

DECODERS: dict[FileFormat, WorkoutDecoder] = {
    FileFormat.TCX: TcxDecoder(),
    FileFormat.GPX: GpxDecoder(),
    FileFormat.FIT: FitDecoder(),
}


def get_decoder(file_format: FileFormat) -> WorkoutDecoder:
    return DECODERS[FileFormat(file_format)]


def decode_workout(payload: bytes, file_format: FileFormat) -> CanonicalWorkout:
    """Decode payload with the decoder registered for file_format.

    DecodeError passes through unchanged. Anything else a decoder raises is a
    decoder bug or an unforeseen input shape; it is logged with its traceback
    and reported as a generic DecodeError so no internals reach the caller.
    """
    decoder = get_decoder(file_format)
    label = FORMAT_LABELS[decoder.source_format]
    try:
        return decoder.decode(payload)
    except DecodeError:
        raise
    except Exception as e:
        logger.exception(f"[DECODE] Unexpected {type(e).__name__} while decoding {label} file")
        raise DecodeError(f"Unable to read {label} file") from e
