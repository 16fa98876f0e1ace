"""Base decoder abstraction for workout files.

Provides a common interface for every supported upload format.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

from enduro_ingest.ingestion.formats import FileFormat
from enduro_ingest.ingestion.workout import CanonicalWorkout


class WorkoutDecoder(ABC):
    """Base class for format decoders.

    Decoders are pure: they read bytes and settings, never the database or
    the blob store.
    """

    source_format: ClassVar[FileFormat]

    @abstractmethod
    def decode(self, payload: bytes) -> CanonicalWorkout:
        """Decode raw file bytes into a canonical workout.

        Args:
            payload: Raw file bytes as uploaded

        Returns:
            CanonicalWorkout with source_format set to this decoder's format

        Raises:
            DecodeError: If the content is malformed or lacks required data
        """
        raise NotImplementedError
