from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import JSON, CheckConstraint, Date, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""


class IngestStaging(Base):
    """Audit row tracking one workout-file upload from intake to terminal outcome.

    Lifecycle: received -> uploaded -> parsed -> normalized, with error
    reachable from any non-terminal status. Rows in normalized or error are
    never modified again.

    Invariants:
    - session_id is set iff status == "normalized"
    - error_message is set iff status == "error"
    - storage_path names the content-addressed key from creation on, so every
      record past received (error included) points at its raw bytes
    - updated_at never moves backwards
    """

    __tablename__ = "ingest_staging"

    ingest_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    athlete_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String, nullable=False)
    file_type: Mapped[str] = mapped_column(String, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="received", index=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    storage_path: Mapped[str | None] = mapped_column(String, nullable=True)
    content_sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    parsed_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String, nullable=True)
    source: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: dt.datetime.now(dt.timezone.utc))
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: dt.datetime.now(dt.timezone.utc))

    __table_args__ = (
        CheckConstraint(
            "status IN ('received', 'uploaded', 'parsed', 'normalized', 'error')",
            name="ck_ingest_staging_status",
        ),
        CheckConstraint("file_type IN ('tcx', 'gpx', 'fit')", name="ck_ingest_staging_file_type"),
        Index("idx_ingest_staging_athlete_created", "athlete_id", "created_at"),
    )


class TrainingSession(Base):
    """Completed training session produced from an uploaded workout file.

    Created exactly once per successful ingest (source_ingest_id is unique);
    afterwards owned by the session-management side of the platform.
    """

    __tablename__ = "sessions"

    session_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    athlete_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    sport: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="completed")
    structure_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    actual_duration_min: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_distance_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    source_file_type: Mapped[str] = mapped_column(String, nullable=False)
    source_ingest_id: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: dt.datetime.now(dt.timezone.utc))

    __table_args__ = (
        UniqueConstraint("source_ingest_id", name="uq_sessions_source_ingest_id"),
        Index("idx_sessions_athlete_date", "athlete_id", "date"),
    )
