"""Durable object store adapter for raw uploads.

Provides a small blob-store interface and the local-directory implementation
shipped with the service. Keys are content-addressed and scoped by athlete
and ingest, and an existing key is never overwritten.
"""

from __future__ import annotations

import hashlib
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from enduro_ingest.core.errors import StorageWriteError
from enduro_ingest.ingestion.formats import STORED_CONTENT_TYPES, FileFormat

_UNSAFE_SEGMENT_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class BlobStore(ABC):
    """Minimal object storage contract used by the ingest pipeline."""

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store data under path without overwriting.

        Returns:
            The stored path

        Raises:
            StorageWriteError: If the object could not be written, or already exists
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, path: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def delete(self, path: str) -> None:
        raise NotImplementedError

    def check_health(self) -> bool:
        return True


class LocalBlobStore(BlobStore):
    """Blob store backed by a directory tree on the local filesystem."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        root = self.root.resolve()
        if root not in target.parents:
            raise StorageWriteError(f"Storage path escapes the store root: {path}")
        return target

    def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise StorageWriteError(f"Object already exists: {path}") from e
        except OSError as e:
            raise StorageWriteError(f"Could not write {path}: {e.strerror or e}") from e
        logger.debug(f"[STORAGE] Wrote {len(data)} bytes to {path} ({content_type})")
        return path

    def get(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    def delete(self, path: str) -> None:
        self._resolve(path).unlink()
        logger.debug(f"[STORAGE] Deleted {path}")

    def check_health(self) -> bool:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"[STORAGE] Store root {self.root} is not usable: {e}")
            return False
        return self.root.is_dir()


@dataclass(frozen=True)
class StoredObject:
    path: str
    sha256: str


def _safe_segment(value: str) -> str:
    cleaned = _UNSAFE_SEGMENT_CHARS.sub("_", value).strip(".")
    return cleaned or "_"


def build_storage_path(athlete_id: str, ingest_id: str, digest: str, file_format: FileFormat) -> str:
    """raw/{athlete_id}/{ingest_id}/{sha256}.{ext}"""
    return f"raw/{_safe_segment(athlete_id)}/{_safe_segment(ingest_id)}/{digest}.{file_format.value}"


def plan_raw_file(athlete_id: str, ingest_id: str, payload: bytes, file_format: FileFormat) -> StoredObject:
    """Content-addressed key and digest the upload will be stored under."""
    digest = hashlib.sha256(payload).hexdigest()
    return StoredObject(path=build_storage_path(athlete_id, ingest_id, digest, file_format), sha256=digest)


def store_raw_file(
    store: BlobStore,
    athlete_id: str,
    ingest_id: str,
    payload: bytes,
    file_format: FileFormat,
    planned: StoredObject | None = None,
) -> StoredObject:
    """Write the raw upload to the blob store under its content-addressed key.

    Any failure raised by the store is reported as StorageWriteError, whatever
    the backend's own exception type.

    Raises:
        StorageWriteError: If the store rejects the write
    """
    planned = planned or plan_raw_file(athlete_id, ingest_id, payload, file_format)
    try:
        stored_path = store.put(planned.path, payload, STORED_CONTENT_TYPES[file_format])
    except StorageWriteError:
        raise
    except Exception as e:
        logger.error(f"[STORAGE] Write of {planned.path} failed: {type(e).__name__}: {e}")
        raise StorageWriteError(f"Could not write {planned.path}: {type(e).__name__}") from e
    logger.info(f"[STORAGE] Stored ingest {ingest_id} at {stored_path}")
    return StoredObject(path=stored_path, sha256=planned.sha256)
