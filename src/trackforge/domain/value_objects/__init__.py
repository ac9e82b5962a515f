"""Value objects shared across layers."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ServiceName(StrEnum):
    """Supported generation providers."""

    SUNO = "suno"
    MUREKA = "mureka"


class TaskStatus(StrEnum):
    """Provider-independent task status.

    Hey future me - every provider vocabulary collapses into these four.
    Only SUCCEEDED and FAILED are terminal.
    """

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


class InputMode(StrEnum):
    """How the user supplied the song content."""

    DESCRIPTION = "description"
    LYRICS = "lyrics"


class ContentSource(StrEnum):
    """Which branch of content preparation produced the lyrics."""

    INSTRUMENTAL = "instrumental"
    USER_LYRICS = "user_lyrics"
    LYRICS_PLACEHOLDER = "lyrics_placeholder"
    AUTO_LYRICS = "auto_lyrics"


@dataclass(frozen=True)
class GenerationRequest:
    """A caller's request to generate a song.

    ``parameters`` snapshots the request onto the job and is never mutated.
    """

    service: ServiceName
    prompt: str = ""
    lyrics: str | None = None
    custom_lyrics: str | None = None
    input_mode: InputMode = InputMode.DESCRIPTION
    instrumental: bool = False
    style: str | None = None
    title: str | None = None
    model: str | None = None
    project_id: str | None = None
    artist_id: str | None = None
    use_inbox: bool = False

    def to_parameters(self) -> dict[str, Any]:
        return {
            "service": self.service.value,
            "prompt": self.prompt,
            "lyrics": self.lyrics,
            "custom_lyrics": self.custom_lyrics,
            "input_mode": self.input_mode.value,
            "instrumental": self.instrumental,
            "style": self.style,
            "title": self.title,
            "model": self.model,
            "project_id": self.project_id,
            "artist_id": self.artist_id,
            "use_inbox": self.use_inbox,
        }


@dataclass(frozen=True)
class PreparedContent:
    """Lyrics and prompt as sent to a provider."""

    lyrics: str
    prompt: str
    source: ContentSource


@dataclass(frozen=True)
class ResultCandidate:
    """One audio result a provider reported for a task."""

    audio_url: str
    external_track_id: str | None = None
    title: str | None = None
    duration: float | None = None
    lyrics: str | None = None
    tags: str | None = None
    model_name: str | None = None
    image_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "audio_url": self.audio_url,
            "external_track_id": self.external_track_id,
            "title": self.title,
            "duration": self.duration,
            "lyrics": self.lyrics,
            "tags": self.tags,
            "model_name": self.model_name,
            "image_url": self.image_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResultCandidate":
        return cls(
            audio_url=data["audio_url"],
            external_track_id=data.get("external_track_id"),
            title=data.get("title"),
            duration=data.get("duration"),
            lyrics=data.get("lyrics"),
            tags=data.get("tags"),
            model_name=data.get("model_name"),
            image_url=data.get("image_url"),
        )


@dataclass(frozen=True)
class TaskSnapshot:
    """Provider view of a task at one point in time."""

    task_id: str
    status: TaskStatus
    raw_status: str | None = None
    # Percent complete (0..100) when the provider reports it
    progress: float | None = None
    results: list[ResultCandidate] = field(default_factory=list)
    error_reason: str | None = None

    @property
    def result_urls(self) -> list[str]:
        return [candidate.audio_url for candidate in self.results]


@dataclass(frozen=True)
class SubmitResult:
    """What a provider returned when accepting a task."""

    task_id: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AdmissionResult:
    """Outcome of a rate limiter admission check."""

    allowed: bool
    retry_after_seconds: int = 0
    remaining: int = 0
    reset_at: float | None = None


@dataclass(frozen=True)
class IngestionResult:
    """Outcome of one ingestion call.

    ``in_progress`` is set when another call holds the lock and its result
    did not show up within the contention wait.
    """

    job_id: str
    track_id: str | None = None
    storage_path: str | None = None
    public_url: str | None = None
    already_downloaded: bool = False
    in_progress: bool = False


@dataclass(frozen=True)
class ReconcileResult:
    """Tracks created by one reconcile pass."""

    job_id: str
    created_count: int = 0
    created_track_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SweepResult:
    """Counts from one sweeper pass."""

    reexamined: int = 0
    resolved: int = 0


__all__ = [
    "AdmissionResult",
    "ContentSource",
    "GenerationRequest",
    "IngestionResult",
    "InputMode",
    "PreparedContent",
    "ReconcileResult",
    "ResultCandidate",
    "ServiceName",
    "SubmitResult",
    "SweepResult",
    "TaskSnapshot",
    "TaskStatus",
]
