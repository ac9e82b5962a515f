"""API schemas for generation, ingestion and maintenance endpoints.

Wire format is camelCase (``jobId``, ``retryAfterSeconds``); Python attributes stay
snake_case. ``populate_by_name`` lets tests and internal callers use either.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from trackforge.domain.value_objects import (
    GenerationRequest,
    IngestionResult,
    InputMode,
    ServiceName,
    TaskSnapshot,
    TaskStatus,
)


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerationCreateRequest(CamelModel):
    """Request schema for submitting a generation."""

    service: ServiceName = Field(default=ServiceName.SUNO, description="Provider to use")
    prompt: str = Field(default="", description="Song description or style prompt")
    lyrics: str | None = Field(default=None, description="Lyrics (lyrics mode)")
    custom_lyrics: str | None = Field(default=None, description="User-written lyrics")
    input_type: InputMode = Field(
        default=InputMode.DESCRIPTION, description="description or lyrics"
    )
    instrumental: bool = Field(default=False, description="Generate without vocals")
    style: str | None = Field(default=None, description="Style tags")
    title: str | None = Field(default=None, description="Track title")
    model: str | None = Field(default=None, description="Provider model name")
    project_id: str | None = Field(default=None, description="Destination project")
    artist_id: str | None = Field(default=None, description="Destination artist")
    use_inbox: bool = Field(default=False, description="Put the track in the inbox")

    def to_domain(self) -> GenerationRequest:
        return GenerationRequest(
            service=self.service,
            prompt=self.prompt,
            lyrics=self.lyrics,
            custom_lyrics=self.custom_lyrics,
            input_mode=self.input_type,
            instrumental=self.instrumental,
            style=self.style,
            title=self.title,
            model=self.model,
            project_id=None if self.use_inbox else self.project_id,
            artist_id=self.artist_id,
            use_inbox=self.use_inbox,
        )


class GenerationAccepted(CamelModel):
    """Response for an accepted generation."""

    job_id: str
    task_id: str


class GenerationStatusResponse(CamelModel):
    """Normalized task status."""

    status: TaskStatus
    progress: int = Field(ge=0, le=100)
    result_urls: list[str] | None = None
    error_reason: str | None = None

    @classmethod
    def from_snapshot(cls, snapshot: TaskSnapshot) -> "GenerationStatusResponse":
        progress = snapshot.progress
        if progress is None:
            progress = 100.0 if snapshot.status == TaskStatus.SUCCEEDED else 0.0
        return cls(
            status=snapshot.status,
            progress=max(0, min(100, round(progress))),
            result_urls=snapshot.result_urls or None,
            error_reason=snapshot.error_reason,
        )


class IngestionCreateRequest(CamelModel):
    """Request schema for triggering an ingestion."""

    job_id: str | None = None
    task_id: str | None = None
    result_url: str = Field(min_length=1)
    track_id: str | None = None

    @model_validator(mode="after")
    def require_job_reference(self) -> "IngestionCreateRequest":
        if not self.job_id and not self.task_id:
            raise ValueError("jobId or taskId is required")
        return self

    @property
    def job_ref(self) -> str:
        return self.job_id or self.task_id or ""


class IngestionResponse(CamelModel):
    """Stored result of an ingestion."""

    track_id: str | None = None
    storage_path: str | None = None
    public_url: str | None = None
    already_downloaded: bool = False
    in_progress: bool = False

    @classmethod
    def from_result(cls, result: IngestionResult) -> "IngestionResponse":
        return cls(
            track_id=result.track_id,
            storage_path=result.storage_path,
            public_url=result.public_url,
            already_downloaded=result.already_downloaded,
            in_progress=result.in_progress,
        )


class ReconcileResponse(CamelModel):
    created_count: int
    created_track_ids: list[str] = Field(default_factory=list)


class SweepResponse(CamelModel):
    reexamined: int
    resolved: int


class CallbackAck(CamelModel):
    status: str = "received"
