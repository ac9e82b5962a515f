"""Idempotent ingestion of generated media.

Hey future me - this is the "exactly once" part of the whole system. The rules:

1. The operation lock is the ONLY thing that serializes ingestion of the same job.
   Losing the lock is not an error: we wait a little for the winner's result and
   hand it back (``already_downloaded=True``), or answer ``in_progress``.
2. Under the lock we re-read the job. ``metadata.local_storage_path`` set means
   done; we return the stored result without touching the network.
3. The job row is updated BEFORE the catalog. A track must never point at a job
   that hasn't recorded its storage path.
4. The lock is released in ``finally`` no matter what blew up.

A failed download or upload leaves the job untouched (still processing). The next
attempt writes to a NEW random path, so a half-finished earlier attempt never
collides with anything.
"""

import asyncio
import hashlib
import logging
import re
import secrets
import time
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from trackforge.config.settings import IngestionSettings
from trackforge.domain.entities import GenerationJob, Track
from trackforge.domain.exceptions import DataIntegrityError, ValidationError
from trackforge.domain.ports import IBlobStore, ICatalogStore, IOperationLock
from trackforge.domain.value_objects import IngestionResult
from trackforge.infrastructure.integrations.media_downloader import MediaDownloader
from trackforge.infrastructure.persistence.repositories import GenerationJobRepository

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

CONTENT_TYPE_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/flac": "flac",
    "audio/ogg": "ogg",
    "audio/mp4": "m4a",
}

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def lock_key(job_id: str, track_id: str | None = None) -> str:
    """Lock key for a job-level or per-variant ingestion."""
    if track_id:
        return f"download:{job_id}:{track_id}"
    return f"download:{job_id}"


def _path_segment(value: str | None, fallback: str) -> str:
    cleaned = _UNSAFE_PATH_CHARS.sub("_", value or "")
    return cleaned or fallback


class IngestionService:
    """Download a result once, store it, record it on the job and link it to a track."""

    def __init__(
        self,
        session_scope: SessionScope,
        lock: IOperationLock,
        blob_store: IBlobStore,
        downloader: MediaDownloader,
        catalog: ICatalogStore,
        settings: IngestionSettings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session_scope = session_scope
        self._lock = lock
        self._blob_store = blob_store
        self._downloader = downloader
        self._catalog = catalog
        self._settings = settings
        self._clock = clock
        self._sleep = sleep

    async def ingest(
        self, job_ref: str, result_url: str, track_id: str | None = None
    ) -> IngestionResult:
        """Ingest ``result_url`` for a job (or for one explicit variant track).

        Args:
            job_ref: Internal job id or provider task id
            result_url: Provider URL of the audio to store
            track_id: Variant track to ingest into (None = the job's primary result)

        Returns:
            The stored result. ``already_downloaded`` is True when nothing new was
            written; ``in_progress`` is True when another caller still holds the lock.

        Raises:
            ValidationError: result_url is empty
            DataIntegrityError: job or track doesn't exist
            DownloadFailed: fetching the media failed (job untouched)
            StorageWriteFailed: storing the media failed (job untouched)
        """
        if not result_url or not result_url.strip():
            raise ValidationError("result_url is required")

        job = await self._load_job(job_ref)
        track_id = await self._normalize_track_id(job, track_id)
        key = lock_key(job.id, track_id)

        if not await self._lock.acquire(key, self._settings.lock_ttl_seconds):
            logger.info("Ingestion of job %s already running elsewhere (%s)", job.id, key)
            return await self._await_holder(job.id, track_id)

        try:
            # Re-read under the lock: the previous holder may have finished meanwhile
            job = await self._load_job(job.id)
            stored = await self._stored_result(job, track_id)
            if stored is not None:
                logger.info("Job %s already ingested, returning stored result", job.id)
                return await self._complete_catalog_link(job, stored)

            return await self._download_and_store(job, result_url, track_id)
        finally:
            await self._lock.release(key)

    # -- lookups -----------------------------------------------------------

    async def _load_job(self, job_ref: str) -> GenerationJob:
        async with self._session_scope() as session:
            job = await GenerationJobRepository(session).get_by_reference(job_ref)
        if job is None:
            raise DataIntegrityError("GenerationJob", job_ref)
        return job

    async def _normalize_track_id(self, job: GenerationJob, track_id: str | None) -> str | None:
        """Validate an explicit track and fold variant 1 into the job-level path."""
        if track_id is None:
            return None
        track = await self._catalog.get_track(track_id)
        if track is None or track.generation_job_id != job.id:
            raise DataIntegrityError("Track", track_id)
        if track.id == job.track_id or track.variant_number in (None, 1):
            return None
        return track.id

    async def _stored_result(
        self, job: GenerationJob, track_id: str | None
    ) -> IngestionResult | None:
        if track_id is None:
            if not job.is_ingested:
                return None
            return IngestionResult(
                job_id=job.id,
                track_id=job.track_id,
                storage_path=job.local_storage_path,
                public_url=job.result_url,
                already_downloaded=True,
            )

        track = await self._catalog.get_track(track_id)
        if track is None:
            raise DataIntegrityError("Track", track_id)
        if not track.local_storage_path:
            return None
        return IngestionResult(
            job_id=job.id,
            track_id=track.id,
            storage_path=track.local_storage_path,
            public_url=track.audio_url,
            already_downloaded=True,
        )

    async def _complete_catalog_link(
        self, job: GenerationJob, stored: IngestionResult
    ) -> IngestionResult:
        """Finish step 6 for a job that crashed between the job update and the catalog."""
        if stored.track_id is not None:
            return stored
        track_id = await self._catalog.create_or_update_track_from_job(
            job.id, job.parameters.get("project_id")
        )
        logger.info("Linked previously stored media of job %s to track %s", job.id, track_id)
        return IngestionResult(
            job_id=stored.job_id,
            track_id=track_id,
            storage_path=stored.storage_path,
            public_url=stored.public_url,
            already_downloaded=True,
        )

    async def _await_holder(self, job_id: str, track_id: str | None) -> IngestionResult:
        """Wait a bounded time for the lock holder's result to show up."""
        deadline = self._clock() + self._settings.contention_wait_seconds
        while True:
            job = await self._load_job(job_id)
            stored = await self._stored_result(job, track_id)
            if stored is not None and stored.track_id is not None:
                return stored
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await self._sleep(min(self._settings.contention_poll_interval_seconds, remaining))

        logger.info("Ingestion of job %s still in progress elsewhere", job_id)
        return IngestionResult(job_id=job_id, track_id=track_id, in_progress=True)

    # -- the actual work -----------------------------------------------------

    def build_storage_path(
        self, job: GenerationJob, variant_number: int, content_type: str | None = None
    ) -> str:
        """``<user>/<service>/<job8>-<task>-v<variant>-<timestamp>-<rand>.<ext>``"""
        extension = CONTENT_TYPE_EXTENSIONS.get(
            content_type or "", self._settings.default_extension
        )
        timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%f")
        return (
            f"{_path_segment(job.user_id, 'anonymous')}/{job.service.value}/"
            f"{job.id[:8]}-{_path_segment(job.external_id, 'notask')}-v{variant_number}-"
            f"{timestamp}-{secrets.token_hex(4)}.{extension}"
        )

    async def _download_and_store(
        self, job: GenerationJob, result_url: str, track_id: str | None
    ) -> IngestionResult:
        variant_number = 1
        track: Track | None = None
        if track_id is not None:
            track = await self._catalog.get_track(track_id)
            if track is None:
                raise DataIntegrityError("Track", track_id)
            variant_number = track.variant_number or 1

        logger.info(
            "Downloading %s result of job %s (variant %d)",
            job.service.value,
            job.id,
            variant_number,
        )
        media = await self._downloader.download(result_url)
        digest = hashlib.sha256(media.data).hexdigest()

        storage_path = self.build_storage_path(job, variant_number, media.content_type)
        await self._blob_store.upload(storage_path, media.data, media.content_type)
        public_url = self._blob_store.public_url(storage_path)

        # Job first, catalog second
        async with self._session_scope() as session:
            repo = GenerationJobRepository(session)
            current = await repo.get_by_id(job.id)
            if current is None:
                raise DataIntegrityError("GenerationJob", job.id)
            if track is None:
                current.mark_ingested(
                    public_url=public_url,
                    storage_path=storage_path,
                    original_url=result_url,
                    file_size=media.size,
                    content_sha256=digest,
                )
            else:
                current.record_variant_download(track.id, public_url, storage_path, media.size)
            await repo.update(current)

        if track is None:
            linked_track_id = await self._catalog.create_or_update_track_from_job(
                job.id, job.parameters.get("project_id")
            )
        else:
            await self._catalog.attach_media(track.id, public_url, storage_path, media.size)
            linked_track_id = track.id

        logger.info(
            "Stored %d bytes for job %s at %s (track %s)",
            media.size,
            job.id,
            storage_path,
            linked_track_id,
        )
        return IngestionResult(
            job_id=job.id,
            track_id=linked_track_id,
            storage_path=storage_path,
            public_url=public_url,
            already_downloaded=False,
        )
