"""Tests for idempotent media ingestion."""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path

import httpx
import pytest

from trackforge.application.services.ingestion_service import IngestionService, lock_key
from trackforge.config import Settings
from trackforge.domain.entities import GenerationJob, JobStatus
from trackforge.domain.exceptions import DataIntegrityError, DownloadFailed, ValidationError
from trackforge.infrastructure.integrations.media_downloader import MediaDownloader
from trackforge.infrastructure.persistence import (
    Database,
    DatabaseOperationLock,
    SqlCatalogStore,
)
from trackforge.infrastructure.storage import LocalBlobStore

JobFactory = Callable[..., Awaitable[GenerationJob]]

AUDIO = b"ID3" + b"\x00" * 64


class FakeCdn:
    """MockTransport handler that serves audio and counts requests."""

    def __init__(self) -> None:
        self.requests: list[str] = []
        self.fail_with: int | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        if self.fail_with is not None:
            return httpx.Response(self.fail_with)
        return httpx.Response(200, content=AUDIO, headers={"content-type": "audio/mpeg"})


@pytest.fixture
def cdn() -> FakeCdn:
    return FakeCdn()


@pytest.fixture
def catalog(database: Database) -> SqlCatalogStore:
    return SqlCatalogStore(database.session_scope)


@pytest.fixture
def lock(database: Database) -> DatabaseOperationLock:
    return DatabaseOperationLock(database.session_scope)


@pytest.fixture
def service(
    settings: Settings,
    database: Database,
    lock: DatabaseOperationLock,
    catalog: SqlCatalogStore,
    cdn: FakeCdn,
) -> IngestionService:
    """Ingestion service wired to a temp database, temp media root and fake CDN."""
    return IngestionService(
        session_scope=database.session_scope,
        lock=lock,
        blob_store=LocalBlobStore(settings.storage.root_path, settings.storage.public_base_url),
        downloader=MediaDownloader(timeout_seconds=5, transport=httpx.MockTransport(cdn)),
        catalog=catalog,
        settings=settings.ingestion,
    )


def _stored_files(settings: Settings) -> list[Path]:
    root = settings.storage.root_path
    return [p for p in root.rglob("*") if p.is_file()] if root.exists() else []


class TestLockKey:
    def test_job_level_and_variant_keys(self) -> None:
        assert lock_key("job-1") == "download:job-1"
        assert lock_key("job-1", "track-2") == "download:job-1:track-2"


class TestStoragePath:
    async def test_path_layout(self, service: IngestionService, make_job: JobFactory) -> None:
        job = await make_job(external_id="task/../x")

        path = service.build_storage_path(job, 2, "audio/wav")

        user, provider, filename = path.split("/")
        assert user == "user-1"
        assert provider == "suno"
        assert filename.startswith(f"{job.id[:8]}-task____x-v2-")
        assert filename.endswith(".wav")

    async def test_paths_are_unique(self, service: IngestionService, make_job: JobFactory) -> None:
        job = await make_job()

        assert service.build_storage_path(job, 1) != service.build_storage_path(job, 1)


class TestIngest:
    """Job-level ingestion."""

    async def test_first_ingest_stores_and_links(
        self,
        service: IngestionService,
        make_job: JobFactory,
        reload_job: Callable[[str], Awaitable[GenerationJob]],
        catalog: SqlCatalogStore,
        settings: Settings,
    ) -> None:
        job = await make_job(results=["https://cdn.example/1.mp3"])

        result = await service.ingest(job.id, "https://cdn.example/1.mp3")

        assert result.already_downloaded is False
        assert result.in_progress is False
        assert result.public_url == f"/media/{result.storage_path}"
        stored = await reload_job(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.local_storage_path == result.storage_path
        assert stored.metadata["original_external_url"] == "https://cdn.example/1.mp3"
        assert stored.metadata["file_size"] == len(AUDIO)
        assert stored.track_id == result.track_id
        track = await catalog.get_track(result.track_id)
        assert track is not None
        assert track.audio_url == result.public_url
        assert [p.read_bytes() for p in _stored_files(settings)] == [AUDIO]

    async def test_task_id_is_accepted_as_reference(
        self, service: IngestionService, make_job: JobFactory
    ) -> None:
        job = await make_job(external_id="task-77", results=["https://cdn.example/1.mp3"])

        result = await service.ingest("task-77", "https://cdn.example/1.mp3")

        assert result.job_id == job.id

    async def test_repeat_returns_stored_result_without_download(
        self, service: IngestionService, make_job: JobFactory, cdn: FakeCdn
    ) -> None:
        job = await make_job(results=["https://cdn.example/1.mp3"])

        first = await service.ingest(job.id, "https://cdn.example/1.mp3")
        second = await service.ingest(job.id, "https://cdn.example/1.mp3")

        assert second.already_downloaded is True
        assert second.storage_path == first.storage_path
        assert second.track_id == first.track_id
        assert len(cdn.requests) == 1

    async def test_concurrent_ingests_write_once(
        self,
        service: IngestionService,
        make_job: JobFactory,
        catalog: SqlCatalogStore,
        settings: Settings,
        cdn: FakeCdn,
    ) -> None:
        job = await make_job(results=["https://cdn.example/1.mp3"])

        first, second = await asyncio.gather(
            service.ingest(job.id, "https://cdn.example/1.mp3"),
            service.ingest(job.id, "https://cdn.example/1.mp3"),
        )

        assert sorted([first.already_downloaded, second.already_downloaded]) == [False, True]
        assert first.storage_path == second.storage_path
        assert first.track_id == second.track_id
        assert len(cdn.requests) == 1
        assert len(_stored_files(settings)) == 1
        assert len(await catalog.list_tracks_for_job(job.id)) == 1

    async def test_download_failure_leaves_job_retryable(
        self,
        service: IngestionService,
        make_job: JobFactory,
        reload_job: Callable[[str], Awaitable[GenerationJob]],
        lock: DatabaseOperationLock,
        cdn: FakeCdn,
    ) -> None:
        job = await make_job(results=["https://cdn.example/1.mp3"])
        cdn.fail_with = 502

        with pytest.raises(DownloadFailed):
            await service.ingest(job.id, "https://cdn.example/1.mp3")

        stored = await reload_job(job.id)
        assert stored.status == JobStatus.PROCESSING
        assert stored.local_storage_path is None
        # Lock was released, so a retry goes through
        assert await lock.acquire(lock_key(job.id), 60) is True
        await lock.release(lock_key(job.id))

        cdn.fail_with = None
        result = await service.ingest(job.id, "https://cdn.example/1.mp3")
        assert result.already_downloaded is False

    async def test_lost_lock_without_result_reports_in_progress(
        self,
        service: IngestionService,
        make_job: JobFactory,
        lock: DatabaseOperationLock,
        settings: Settings,
    ) -> None:
        job = await make_job(results=["https://cdn.example/1.mp3"])
        settings.ingestion.contention_wait_seconds = 0.05
        await lock.acquire(lock_key(job.id), 60)

        result = await service.ingest(job.id, "https://cdn.example/1.mp3")

        assert result.in_progress is True
        assert result.storage_path is None

    async def test_empty_url_is_rejected(
        self, service: IngestionService, make_job: JobFactory
    ) -> None:
        job = await make_job()

        with pytest.raises(ValidationError):
            await service.ingest(job.id, "  ")

    async def test_unknown_job_is_data_integrity_error(self, service: IngestionService) -> None:
        with pytest.raises(DataIntegrityError):
            await service.ingest("missing", "https://cdn.example/1.mp3")


class TestVariantIngest:
    """Per-track ingestion for variants above 1."""

    async def test_variant_track_gets_its_own_file(
        self,
        service: IngestionService,
        make_job: JobFactory,
        catalog: SqlCatalogStore,
        reload_job: Callable[[str], Awaitable[GenerationJob]],
    ) -> None:
        job = await make_job(results=["https://cdn.example/1.mp3", "https://cdn.example/2.mp3"])
        track, _ = await catalog.ensure_variant_track(job.id, 2, job.result_candidates[1], 2)

        result = await service.ingest(job.id, "https://cdn.example/2.mp3", track_id=track.id)

        assert result.track_id == track.id
        assert "-v2-" in (result.storage_path or "")
        updated = await catalog.get_track(track.id)
        assert updated is not None
        assert updated.local_storage_path == result.storage_path
        stored = await reload_job(job.id)
        assert track.id in stored.metadata["variant_downloads"]
        # Variant downloads don't complete the job itself
        assert stored.status == JobStatus.PROCESSING

    async def test_variant_one_uses_job_level_path(
        self,
        service: IngestionService,
        make_job: JobFactory,
        catalog: SqlCatalogStore,
        reload_job: Callable[[str], Awaitable[GenerationJob]],
    ) -> None:
        job = await make_job(results=["https://cdn.example/1.mp3", "https://cdn.example/2.mp3"])
        track, _ = await catalog.ensure_variant_track(job.id, 1, job.result_candidates[0], 2)

        result = await service.ingest(job.id, "https://cdn.example/1.mp3", track_id=track.id)

        assert result.track_id == track.id
        assert (await reload_job(job.id)).status == JobStatus.COMPLETED

    async def test_track_of_another_job_is_refused(
        self, service: IngestionService, make_job: JobFactory, catalog: SqlCatalogStore
    ) -> None:
        job = await make_job(external_id="task-a", results=["https://cdn.example/1.mp3"])
        other = await make_job(
            external_id="task-b",
            results=["https://cdn.example/1.mp3", "https://cdn.example/2.mp3"],
        )
        track, _ = await catalog.ensure_variant_track(other.id, 2, other.result_candidates[1], 2)

        with pytest.raises(DataIntegrityError):
            await service.ingest(job.id, "https://cdn.example/2.mp3", track_id=track.id)
