"""Repository implementations for domain entities."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trackforge.domain.entities import (
    Artist,
    GenerationJob,
    JobStatus,
    Project,
    Track,
)
from trackforge.domain.exceptions import EntityNotFoundException
from trackforge.domain.ports import IGenerationJobRepository
from trackforge.domain.value_objects import ServiceName

from .models import (
    ArtistModel,
    GenerationJobModel,
    ProjectModel,
    TrackModel,
    ensure_utc_aware,
)


class GenerationJobRepository(IGenerationJobRepository):
    """SQLAlchemy implementation of the GenerationJob repository."""

    # Hey future me, the session is injected and NOT committed here. The caller's
    # session_scope() owns the transaction boundary.
    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    def _model_to_entity(self, model: GenerationJobModel) -> GenerationJob:
        return GenerationJob(
            id=model.id,
            user_id=model.user_id,
            service=ServiceName(model.service),
            prompt=model.prompt,
            status=JobStatus(model.status),
            external_id=model.external_id,
            parameters=dict(model.parameters or {}),
            metadata=dict(model.metadata_ or {}),
            result_url=model.result_url,
            track_id=model.track_id,
            variant_group_id=model.variant_group_id,
            error_message=model.error_message,
            created_at=ensure_utc_aware(model.created_at),
            updated_at=ensure_utc_aware(model.updated_at),
            completed_at=ensure_utc_aware(model.completed_at) if model.completed_at else None,
        )

    async def add(self, job: GenerationJob) -> None:
        """Add a new job."""
        self.session.add(
            GenerationJobModel(
                id=job.id,
                user_id=job.user_id,
                service=job.service.value,
                external_id=job.external_id,
                status=job.status.value,
                prompt=job.prompt,
                parameters=job.parameters,
                metadata_=job.metadata,
                result_url=job.result_url,
                track_id=job.track_id,
                variant_group_id=job.variant_group_id,
                error_message=job.error_message,
                created_at=job.created_at,
                updated_at=job.updated_at,
                completed_at=job.completed_at,
            )
        )
        await self.session.flush()

    # Yo, update() never writes track_id or variant_group_id! Those two are only ever set
    # through the conditional claim_* methods below so a stale entity can't clobber them.
    async def update(self, job: GenerationJob) -> None:
        """Update an existing job."""
        model = await self.session.get(GenerationJobModel, job.id)
        if model is None:
            raise EntityNotFoundException("GenerationJob", job.id)

        model.status = job.status.value
        model.external_id = job.external_id
        # Append-only: keys written by a concurrent caller survive a stale update
        model.metadata_ = {**(model.metadata_ or {}), **job.metadata}
        model.result_url = job.result_url
        model.error_message = job.error_message
        model.completed_at = job.completed_at
        model.updated_at = job.updated_at
        await self.session.flush()

    async def get_by_id(self, job_id: str) -> GenerationJob | None:
        """Get a job by internal id."""
        model = await self.session.get(GenerationJobModel, job_id, populate_existing=True)
        return self._model_to_entity(model) if model else None

    async def get_by_external_id(
        self, external_id: str, service: ServiceName | None = None
    ) -> GenerationJob | None:
        """Get a job by provider task id."""
        stmt = select(GenerationJobModel).where(GenerationJobModel.external_id == external_id)
        if service is not None:
            stmt = stmt.where(GenerationJobModel.service == service.value)
        result = await self.session.execute(stmt.limit(1))
        model = result.scalar_one_or_none()
        return self._model_to_entity(model) if model else None

    async def get_by_reference(self, job_ref: str) -> GenerationJob | None:
        """Resolve either an internal job id or a provider task id."""
        job = await self.get_by_id(job_ref)
        if job is None:
            job = await self.get_by_external_id(job_ref)
        return job

    async def list_by_status(
        self,
        status: JobStatus,
        older_than: datetime | None = None,
        limit: int = 50,
    ) -> list[GenerationJob]:
        """List jobs in a status, oldest first."""
        stmt = select(GenerationJobModel).where(GenerationJobModel.status == status.value)
        if older_than is not None:
            stmt = stmt.where(GenerationJobModel.created_at < older_than)
        stmt = stmt.order_by(GenerationJobModel.created_at).limit(limit)
        result = await self.session.execute(stmt)
        return [self._model_to_entity(model) for model in result.scalars().all()]

    async def list_for_user(self, user_id: str | None, status: JobStatus) -> list[GenerationJob]:
        """All jobs in a status, optionally restricted to one user."""
        stmt = select(GenerationJobModel).where(GenerationJobModel.status == status.value)
        if user_id is not None:
            stmt = stmt.where(GenerationJobModel.user_id == user_id)
        result = await self.session.execute(stmt.order_by(GenerationJobModel.created_at))
        return [self._model_to_entity(model) for model in result.scalars().all()]

    async def claim_variant_group(self, job_id: str, group_id: str) -> str:
        """Set the job's variant group id if unset and return the effective one."""
        await self.session.execute(
            update(GenerationJobModel)
            .where(
                GenerationJobModel.id == job_id,
                GenerationJobModel.variant_group_id.is_(None),
            )
            .values(variant_group_id=group_id)
        )
        result = await self.session.execute(
            select(GenerationJobModel.variant_group_id).where(GenerationJobModel.id == job_id)
        )
        effective = result.scalar_one_or_none()
        if effective is None:
            raise EntityNotFoundException("GenerationJob", job_id)
        return effective

    async def claim_track(self, job_id: str, track_id: str) -> bool:
        """Set the job's track id only if it is still empty."""
        result = await self.session.execute(
            update(GenerationJobModel)
            .where(
                GenerationJobModel.id == job_id,
                GenerationJobModel.track_id.is_(None),
            )
            .values(track_id=track_id)
        )
        return bool(result.rowcount)  # type: ignore[attr-defined]


class CatalogRepository:
    """SQLAlchemy access to artists, projects and tracks."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    # Hey future me - this is the ONE place that maps a TrackModel to a Track entity.
    def _track_to_entity(self, model: TrackModel) -> Track:
        return Track(
            id=model.id,
            project_id=model.project_id,
            title=model.title,
            track_number=model.track_number,
            audio_url=model.audio_url,
            duration=model.duration,
            lyrics=model.lyrics,
            style_prompt=model.style_prompt,
            metadata=dict(model.metadata_ or {}),
            generation_job_id=model.generation_job_id,
            variant_group_id=model.variant_group_id,
            variant_number=model.variant_number,
            is_master_variant=model.is_master_variant,
            created_at=ensure_utc_aware(model.created_at),
            updated_at=ensure_utc_aware(model.updated_at),
        )

    @staticmethod
    def _project_to_entity(model: ProjectModel) -> Project:
        return Project(
            id=model.id,
            artist_id=model.artist_id,
            title=model.title,
            is_inbox=model.is_inbox,
            created_at=ensure_utc_aware(model.created_at),
        )

    async def get_artist(self, artist_id: str) -> Artist | None:
        model = await self.session.get(ArtistModel, artist_id)
        if model is None:
            return None
        return Artist(
            id=model.id,
            user_id=model.user_id,
            name=model.name,
            created_at=ensure_utc_aware(model.created_at),
        )

    async def get_personal_artist_id(self, user_id: str) -> str | None:
        result = await self.session.execute(
            select(ArtistModel.id)
            .where(ArtistModel.user_id == user_id, ArtistModel.is_personal.is_(True))
            .order_by(ArtistModel.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def add_artist(self, artist: Artist, is_personal: bool = False) -> None:
        self.session.add(
            ArtistModel(
                id=artist.id,
                user_id=artist.user_id,
                name=artist.name,
                is_personal=is_personal,
                created_at=artist.created_at,
            )
        )
        await self.session.flush()

    async def get_project(self, project_id: str) -> Project | None:
        model = await self.session.get(ProjectModel, project_id)
        return self._project_to_entity(model) if model else None

    async def get_inbox(self, artist_id: str) -> Project | None:
        result = await self.session.execute(
            select(ProjectModel)
            .where(ProjectModel.artist_id == artist_id, ProjectModel.is_inbox.is_(True))
            .order_by(ProjectModel.created_at)
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return self._project_to_entity(model) if model else None

    async def add_project(self, project: Project) -> None:
        self.session.add(
            ProjectModel(
                id=project.id,
                artist_id=project.artist_id,
                title=project.title,
                is_inbox=project.is_inbox,
                created_at=project.created_at,
            )
        )
        await self.session.flush()

    async def get_track(self, track_id: str) -> Track | None:
        model = await self.session.get(TrackModel, track_id, populate_existing=True)
        return self._track_to_entity(model) if model else None

    async def list_tracks_for_job(self, job_id: str) -> list[Track]:
        result = await self.session.execute(
            select(TrackModel)
            .where(TrackModel.generation_job_id == job_id)
            .order_by(TrackModel.variant_number)
        )
        return [self._track_to_entity(model) for model in result.scalars().all()]

    async def get_variant(self, group_id: str, variant_number: int) -> Track | None:
        result = await self.session.execute(
            select(TrackModel).where(
                TrackModel.variant_group_id == group_id,
                TrackModel.variant_number == variant_number,
            )
        )
        model = result.scalar_one_or_none()
        return self._track_to_entity(model) if model else None

    async def list_project_titles(self, project_id: str) -> list[str]:
        result = await self.session.execute(
            select(TrackModel.title).where(TrackModel.project_id == project_id)
        )
        return list(result.scalars().all())

    async def next_track_number(self, project_id: str) -> int:
        result = await self.session.execute(
            select(func.max(TrackModel.track_number)).where(TrackModel.project_id == project_id)
        )
        return (result.scalar_one_or_none() or 0) + 1

    async def add_track(self, track: Track) -> None:
        self.session.add(
            TrackModel(
                id=track.id,
                project_id=track.project_id,
                title=track.title,
                track_number=track.track_number,
                audio_url=track.audio_url,
                duration=track.duration,
                lyrics=track.lyrics,
                style_prompt=track.style_prompt,
                metadata_=track.metadata,
                generation_job_id=track.generation_job_id,
                variant_group_id=track.variant_group_id,
                variant_number=track.variant_number,
                is_master_variant=track.is_master_variant,
                created_at=track.created_at,
                updated_at=track.updated_at,
            )
        )
        await self.session.flush()

    async def update_track_media(
        self, track_id: str, audio_url: str, metadata: dict[str, object]
    ) -> Track:
        """Point a track at new audio and merge metadata keys."""
        model = await self.session.get(TrackModel, track_id)
        if model is None:
            raise EntityNotFoundException("Track", track_id)
        model.audio_url = audio_url
        model.metadata_ = {**(model.metadata_ or {}), **metadata}
        await self.session.flush()
        return self._track_to_entity(model)
