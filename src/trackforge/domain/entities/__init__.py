"""Domain entities."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from trackforge.domain.value_objects import ResultCandidate, ServiceName


def _now() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    """Generate a new entity id."""
    return str(uuid.uuid4())


class JobStatus(StrEnum):
    """Lifecycle of a generation job as stored in our database."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Hey future me - GenerationJob is the ledger for ONE provider task. ``parameters`` is the
# request snapshot and never changes after creation. ``metadata`` is append-only: we merge
# new keys in, we don't drop old ones. The ingestion pipeline keys its idempotency off
# metadata["local_storage_path"] so never clear it!
@dataclass
class GenerationJob:
    """One submitted request to a generation provider."""

    user_id: str
    service: ServiceName
    prompt: str
    id: str = field(default_factory=new_id)
    status: JobStatus = JobStatus.PENDING
    external_id: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    result_url: str | None = None
    track_id: str | None = None
    variant_group_id: str | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None

    @property
    def local_storage_path(self) -> str | None:
        return self.metadata.get("local_storage_path")

    @property
    def is_ingested(self) -> bool:
        return bool(self.local_storage_path)

    @property
    def result_candidates(self) -> list[ResultCandidate]:
        """Ordered result candidates the provider reported (variant 1 first)."""
        return [
            ResultCandidate.from_dict(item)
            for item in self.metadata.get("results") or []
            if item.get("audio_url")
        ]

    @property
    def primary_result_url(self) -> str | None:
        candidates = self.result_candidates
        return candidates[0].audio_url if candidates else None

    def merge_metadata(self, **values: Any) -> None:
        self.metadata = {**self.metadata, **values}
        self.updated_at = _now()

    def mark_processing(self, external_id: str, provider_response: dict[str, Any]) -> None:
        self.external_id = external_id
        self.status = JobStatus.PROCESSING
        self.merge_metadata(
            provider_response=provider_response,
            submitted_at=_now().isoformat(),
        )

    def record_results(self, candidates: list[ResultCandidate], raw_status: str | None) -> None:
        self.merge_metadata(
            results=[candidate.to_dict() for candidate in candidates],
            provider_status=raw_status,
            total_variants=len(candidates),
        )

    def mark_failed(self, reason: str) -> None:
        self.status = JobStatus.FAILED
        self.error_message = reason
        self.merge_metadata(failure_reason=reason, failed_at=_now().isoformat())

    def mark_ingested(
        self,
        public_url: str,
        storage_path: str,
        original_url: str,
        file_size: int,
        content_sha256: str,
    ) -> None:
        now = _now()
        self.status = JobStatus.COMPLETED
        self.result_url = public_url
        self.completed_at = now
        self.error_message = None
        self.merge_metadata(
            local_storage_path=storage_path,
            original_external_url=original_url,
            downloaded_at=now.isoformat(),
            file_size=file_size,
            content_sha256=content_sha256,
        )

    def record_variant_download(
        self, track_id: str, public_url: str, storage_path: str, file_size: int
    ) -> None:
        downloads = dict(self.metadata.get("variant_downloads") or {})
        downloads[track_id] = {
            "public_url": public_url,
            "local_storage_path": storage_path,
            "file_size": file_size,
            "downloaded_at": _now().isoformat(),
        }
        self.merge_metadata(variant_downloads=downloads)


@dataclass
class Artist:
    """Catalog artist owned by a user."""

    user_id: str
    name: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=_now)


@dataclass
class Project:
    """Catalog project (album-like container) owned by an artist."""

    artist_id: str
    title: str
    is_inbox: bool = False
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=_now)


@dataclass
class Track:
    """One materialized audio result in the catalog."""

    project_id: str
    title: str
    track_number: int
    id: str = field(default_factory=new_id)
    audio_url: str | None = None
    duration: float | None = None
    lyrics: str | None = None
    style_prompt: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    generation_job_id: str | None = None
    variant_group_id: str | None = None
    variant_number: int | None = None
    is_master_variant: bool = False
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def local_storage_path(self) -> str | None:
        return self.metadata.get("local_storage_path")


__all__ = [
    "Artist",
    "GenerationJob",
    "JobStatus",
    "Project",
    "Track",
    "new_id",
]
