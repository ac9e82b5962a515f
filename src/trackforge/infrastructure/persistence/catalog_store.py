"""SQL-backed catalog store.

Hey future me - every public method here is ONE transaction. The variant and
primary-track paths share ``_ensure_variant`` so there is exactly one place that
decides titles, track numbers and the variant group. Races between the
ingestion pipeline and the reconciler (or two reconcilers) are settled by the
``(variant_group_id, variant_number)`` unique constraint: the loser gets an
IntegrityError, its transaction rolls back, and the retry finds the winner's row.
"""

import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trackforge.domain.entities import Artist, GenerationJob, Project, Track, new_id
from trackforge.domain.exceptions import DataIntegrityError, ValidationError
from trackforge.domain.ports import ICatalogStore
from trackforge.domain.value_objects import ResultCandidate
from trackforge.domain.value_objects.track_naming import (
    dedupe_title,
    title_from_job,
    variant_title,
)

from .repositories import CatalogRepository, GenerationJobRepository

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]
T = TypeVar("T")

PERSONAL_ARTIST_NAME = "My Music"
INBOX_TITLE = "Inbox"


class SqlCatalogStore(ICatalogStore):
    """Catalog store over the application database."""

    def __init__(self, session_scope: SessionScope, max_conflict_retries: int = 3) -> None:
        self._session_scope = session_scope
        self._max_conflict_retries = max_conflict_retries

    async def _run(self, operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run an operation in a fresh transaction, retrying on unique-constraint races."""
        for attempt in range(1, self._max_conflict_retries + 1):
            try:
                async with self._session_scope() as session:
                    return await operation(session)
            except IntegrityError as e:
                if attempt == self._max_conflict_retries:
                    raise
                logger.info(
                    "Catalog write lost a race (attempt %d), re-reading: %s",
                    attempt,
                    e.orig,
                )
        raise RuntimeError("unreachable")

    # -- destination -------------------------------------------------------

    async def _ensure_inbox_for_artist(
        self, catalog: CatalogRepository, artist_id: str
    ) -> Project:
        inbox = await catalog.get_inbox(artist_id)
        if inbox is None:
            inbox = Project(artist_id=artist_id, title=INBOX_TITLE, is_inbox=True)
            await catalog.add_project(inbox)
            logger.info("Created inbox project %s for artist %s", inbox.id, artist_id)
        return inbox

    async def _ensure_user_inbox(self, catalog: CatalogRepository, user_id: str) -> Project:
        artist_id = await catalog.get_personal_artist_id(user_id)
        if artist_id is None:
            artist = Artist(user_id=user_id, name=PERSONAL_ARTIST_NAME)
            await catalog.add_artist(artist, is_personal=True)
            artist_id = artist.id
            logger.info("Created personal artist %s for user %s", artist_id, user_id)
        return await self._ensure_inbox_for_artist(catalog, artist_id)

    async def _resolve_destination(
        self,
        catalog: CatalogRepository,
        user_id: str,
        project_id: str | None,
        artist_id: str | None,
    ) -> Project:
        if project_id:
            project = await catalog.get_project(project_id)
            owner = await catalog.get_artist(project.artist_id) if project is not None else None
            if project is not None and owner is not None and owner.user_id == user_id:
                return project
            logger.warning(
                "Project %s not usable for user %s, falling back to inbox", project_id, user_id
            )
        if artist_id:
            artist = await catalog.get_artist(artist_id)
            if artist is not None and artist.user_id == user_id:
                return await self._ensure_inbox_for_artist(catalog, artist_id)
            logger.warning(
                "Artist %s not usable for user %s, using personal inbox", artist_id, user_id
            )
        return await self._ensure_user_inbox(catalog, user_id)

    async def ensure_user_inbox(self, user_id: str) -> Project:
        return await self._run(
            lambda session: self._ensure_user_inbox(CatalogRepository(session), user_id)
        )

    async def resolve_destination_project(
        self,
        user_id: str,
        project_id: str | None = None,
        artist_id: str | None = None,
    ) -> Project:
        return await self._run(
            lambda session: self._resolve_destination(
                CatalogRepository(session), user_id, project_id, artist_id
            )
        )

    # -- reads -------------------------------------------------------------

    async def get_track(self, track_id: str) -> Track | None:
        async with self._session_scope() as session:
            return await CatalogRepository(session).get_track(track_id)

    async def list_tracks_for_job(self, job_id: str) -> list[Track]:
        async with self._session_scope() as session:
            return await CatalogRepository(session).list_tracks_for_job(job_id)

    # -- writes ------------------------------------------------------------

    async def _load_job(self, session: AsyncSession, job_id: str) -> GenerationJob:
        job = await GenerationJobRepository(session).get_by_id(job_id)
        if job is None:
            raise DataIntegrityError("GenerationJob", job_id)
        return job

    async def _ensure_variant(
        self,
        session: AsyncSession,
        job: GenerationJob,
        variant_number: int,
        candidate: ResultCandidate,
        total_variants: int,
        project_id: str | None = None,
    ) -> tuple[Track, bool]:
        jobs = GenerationJobRepository(session)
        catalog = CatalogRepository(session)

        group_id = await jobs.claim_variant_group(job.id, job.variant_group_id or new_id())
        existing = await catalog.get_variant(group_id, variant_number)
        if existing is not None:
            return existing, False

        params = job.parameters
        project = await self._resolve_destination(
            catalog,
            job.user_id,
            project_id or params.get("project_id"),
            params.get("artist_id"),
        )
        fallback = title_from_job(params.get("title"), params.get("style"), job.prompt)
        title = variant_title(
            candidate.title or params.get("title"),
            candidate.lyrics or params.get("lyrics") or job.prompt,
            variant_number,
            fallback=fallback,
        )
        title = dedupe_title(title, await catalog.list_project_titles(project.id))

        track = Track(
            project_id=project.id,
            title=title,
            track_number=await catalog.next_track_number(project.id),
            audio_url=candidate.audio_url,
            duration=candidate.duration,
            lyrics=candidate.lyrics or params.get("lyrics"),
            style_prompt=params.get("style") or candidate.tags,
            generation_job_id=job.id,
            variant_group_id=group_id,
            variant_number=variant_number,
            is_master_variant=variant_number == 1,
            metadata={
                "generation_id": job.id,
                "service": job.service.value,
                "external_task_id": job.external_id,
                "external_track_id": candidate.external_track_id,
                "external_audio_url": candidate.audio_url,
                "model_name": candidate.model_name,
                "track_variant": variant_number,
                "total_variants": total_variants,
                "is_primary": variant_number == 1,
            },
        )
        await catalog.add_track(track)
        if variant_number == 1:
            await jobs.claim_track(job.id, track.id)

        logger.info(
            "Created track %s (variant %d/%d) for job %s in project %s",
            track.id,
            variant_number,
            total_variants,
            job.id,
            project.id,
        )
        return track, True

    async def ensure_variant_track(
        self,
        job_id: str,
        variant_number: int,
        candidate: ResultCandidate,
        total_variants: int,
    ) -> tuple[Track, bool]:
        async def operation(session: AsyncSession) -> tuple[Track, bool]:
            job = await self._load_job(session, job_id)
            return await self._ensure_variant(
                session, job, variant_number, candidate, total_variants
            )

        return await self._run(operation)

    async def create_or_update_track_from_job(
        self, job_id: str, project_id: str | None = None
    ) -> str:
        """Atomically create or update the primary track of an ingested job.

        Either updates the track the job already points at, or creates
        variant 1 and links it to the job. Both happen in one transaction.

        Raises:
            DataIntegrityError: If the job doesn't exist
            ValidationError: If the job has no stored media yet
        """

        async def operation(session: AsyncSession) -> str:
            job = await self._load_job(session, job_id)
            if not job.is_ingested or not job.result_url:
                raise ValidationError(f"Job {job_id} has no stored media yet")

            catalog = CatalogRepository(session)
            track_id = job.track_id
            if track_id is None or await catalog.get_track(track_id) is None:
                candidates = job.result_candidates
                candidate = (
                    candidates[0]
                    if candidates
                    else ResultCandidate(audio_url=job.metadata.get("original_external_url", ""))
                )
                track, _ = await self._ensure_variant(
                    session, job, 1, candidate, max(len(candidates), 1), project_id
                )
                track_id = track.id

            await catalog.update_track_media(
                track_id, job.result_url, self._media_metadata(job)
            )
            return track_id

        return await self._run(operation)

    @staticmethod
    def _media_metadata(job: GenerationJob) -> dict[str, Any]:
        return {
            "generation_id": job.id,
            "local_storage_path": job.local_storage_path,
            "original_external_url": job.metadata.get("original_external_url"),
            "file_size": job.metadata.get("file_size"),
            "content_sha256": job.metadata.get("content_sha256"),
            "downloaded_at": job.metadata.get("downloaded_at"),
        }

    async def attach_media(
        self,
        track_id: str,
        public_url: str,
        storage_path: str,
        file_size: int,
    ) -> Track:
        async with self._session_scope() as session:
            return await CatalogRepository(session).update_track_media(
                track_id,
                public_url,
                {"local_storage_path": storage_path, "file_size": file_size},
            )
