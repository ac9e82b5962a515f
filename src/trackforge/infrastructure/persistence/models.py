"""SQLAlchemy ORM models for TrackForge."""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Hey future me, utc_now() ensures ALL timestamps are UTC! Never store naive datetimes.
def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# SQLite drops tzinfo on the way back. Attach UTC before comparing with aware datetimes.
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models.

    All models inherit from this to use the same metadata registry.
    """

    pass


class ArtistModel(Base):
    """Catalog artist. Every user gets a personal one for the inbox."""

    __tablename__ = "trackforge_artists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_personal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (Index("ix_trackforge_artists_user_personal", "user_id", "is_personal"),)


class ProjectModel(Base):
    """Catalog project. ``is_inbox`` marks the auto-created landing project of an artist."""

    __tablename__ = "trackforge_projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    artist_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("trackforge_artists.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    is_inbox: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (Index("ix_trackforge_projects_artist_inbox", "artist_id", "is_inbox"),)


# Listen up, the (variant_group_id, variant_number) unique constraint is what makes variant
# creation race-safe. Two reconcilers inserting variant 2 at once -> one gets IntegrityError
# and treats it as "already created". SQL treats NULLs as distinct so tracks without a group
# are unaffected.
class TrackModel(Base):
    """Catalog track produced from a generation result."""

    __tablename__ = "trackforge_tracks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("trackforge_projects.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    track_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    audio_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    lyrics: Mapped[str | None] = mapped_column(Text, nullable=True)
    style_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False
    )
    generation_job_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("generation_jobs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    variant_group_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    variant_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_master_variant: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "variant_group_id", "variant_number", name="uq_trackforge_tracks_variant"
        ),
        Index("ix_trackforge_tracks_project_number", "project_id", "track_number"),
    )


class GenerationJobModel(Base):
    """One submitted provider task."""

    __tablename__ = "generation_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    service: Mapped[str] = mapped_column(String(32), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    parameters: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False
    )
    result_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    track_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    variant_group_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("service", "external_id", name="uq_generation_jobs_service_external"),
        Index("ix_generation_jobs_status_created", "status", "created_at"),
    )


# Hey future me - expires_at is epoch seconds (float), not a DateTime. The lock compares it
# against an injected clock inside the ON CONFLICT WHERE clause and floats keep that
# comparison identical on SQLite and PostgreSQL.
class OperationLockModel(Base):
    """Ephemeral mutex row. No business meaning."""

    __tablename__ = "operation_locks"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    owner: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False, index=True)


class RateLimitCounterModel(Base):
    """Fixed-window request counter per (caller, service)."""

    __tablename__ = "rate_limit_counters"

    caller_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    service: Mapped[str] = mapped_column(String(32), primary_key=True)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    window_reset_at: Mapped[float] = mapped_column(Float, nullable=False)
    last_admitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
