"""Dependencies wiring the ingest pipeline into request handlers."""

from __future__ import annotations

from fastapi import Depends

from enduro_ingest.config.settings import settings
from enduro_ingest.ingestion.pipeline import WorkoutIngestPipeline
from enduro_ingest.ingestion.storage import BlobStore, LocalBlobStore


def get_blob_store() -> BlobStore:
    return LocalBlobStore(settings.storage_root)


def get_pipeline(blob_store: BlobStore = Depends(get_blob_store)) -> WorkoutIngestPipeline:
    return WorkoutIngestPipeline(blob_store, settings)
