"""Tests for the in-memory job queue and the generation worker handlers."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from trackforge.application.workers.generation_worker import GenerationWorker
from trackforge.application.workers.job_queue import Job, JobQueue, JobState, JobType
from trackforge.domain.exceptions import DownloadFailed, ValidationError
from trackforge.domain.value_objects import IngestionResult


@pytest.fixture
def queue() -> JobQueue:
    return JobQueue(max_concurrent_jobs=2, retry_delay_seconds=0)


class TestEnqueue:
    async def test_enqueue_tracks_job(self, queue: JobQueue) -> None:
        job_id = await queue.enqueue(JobType.INGEST_RESULT, {"job_id": "j1"}, correlation_id="c1")

        job = await queue.get_job(job_id)
        assert job is not None
        assert job.state == JobState.PENDING
        assert job.correlation_id == "c1"
        assert queue.stats()["queued"] == 1
        assert queue.stats()["pending"] == 1

    async def test_higher_priority_runs_first(self, queue: JobQueue) -> None:
        order: list[str] = []

        async def handler(job: Job) -> None:
            order.append(job.payload["name"])

        queue.register_handler(JobType.INGEST_RESULT, handler)
        await queue.enqueue(JobType.INGEST_RESULT, {"name": "low"})
        await queue.enqueue(JobType.INGEST_RESULT, {"name": "high"}, priority=5)
        await queue.enqueue(JobType.INGEST_RESULT, {"name": "low-2"})

        await queue.start(num_workers=1)
        await asyncio.wait_for(queue.join(), timeout=5)
        await queue.stop()

        assert order == ["high", "low", "low-2"]


class TestProcess:
    """Retry rules applied by process()."""

    async def test_success_stores_result(self, queue: JobQueue) -> None:
        queue.register_handler(JobType.INGEST_RESULT, AsyncMock(return_value={"ok": True}))
        job = Job(job_type=JobType.INGEST_RESULT, payload={})

        await queue.process(job)

        assert job.state == JobState.COMPLETED
        assert job.result == {"ok": True}
        assert job.finished_at is not None

    async def test_retryable_error_requeues(self, queue: JobQueue) -> None:
        queue.register_handler(
            JobType.INGEST_RESULT,
            AsyncMock(side_effect=DownloadFailed("https://cdn/x", "HTTP 503")),
        )
        job = Job(job_type=JobType.INGEST_RESULT, payload={}, max_retries=2)

        await queue.process(job)

        assert job.state == JobState.PENDING
        assert job.retries == 1
        assert "HTTP 503" in (job.error or "")
        assert queue.stats()["queued"] == 1

    async def test_retries_exhausted_fails(self, queue: JobQueue) -> None:
        queue.register_handler(
            JobType.INGEST_RESULT,
            AsyncMock(side_effect=DownloadFailed("https://cdn/x", "HTTP 503")),
        )
        job = Job(job_type=JobType.INGEST_RESULT, payload={}, max_retries=1, retries=1)

        await queue.process(job)

        assert job.state == JobState.FAILED

    async def test_non_retryable_error_fails_immediately(self, queue: JobQueue) -> None:
        queue.register_handler(
            JobType.INGEST_RESULT, AsyncMock(side_effect=ValidationError("bad"))
        )
        job = Job(job_type=JobType.INGEST_RESULT, payload={}, max_retries=3)

        await queue.process(job)

        assert job.state == JobState.FAILED
        assert job.retries == 0
        assert queue.stats()["queued"] == 0

    async def test_missing_handler_fails(self, queue: JobQueue) -> None:
        job = Job(job_type=JobType.FINALIZE_GENERATION, payload={})

        await queue.process(job)

        assert job.state == JobState.FAILED
        assert "No handler" in (job.error or "")


class TestGenerationWorker:
    """Handlers registered for generation follow-up work."""

    @pytest.fixture
    def ingestion(self) -> MagicMock:
        service = MagicMock()
        service.ingest = AsyncMock(
            return_value=IngestionResult(
                job_id="j1", track_id="t2", storage_path="u/s/x.mp3", public_url="/media/x"
            )
        )
        return service

    @pytest.fixture
    def generation(self) -> MagicMock:
        service = MagicMock()
        service.finalize = AsyncMock(return_value=None)
        service.await_completion = AsyncMock()
        return service

    def test_register_wires_every_job_type(
        self, queue: JobQueue, generation: MagicMock, ingestion: MagicMock
    ) -> None:
        GenerationWorker(queue, generation, ingestion).register()

        assert set(queue._handlers) == set(JobType)

    async def test_ingest_handler_passes_track(
        self, queue: JobQueue, generation: MagicMock, ingestion: MagicMock
    ) -> None:
        worker = GenerationWorker(queue, generation, ingestion)
        job = Job(
            job_type=JobType.INGEST_RESULT,
            payload={"job_id": "j1", "result_url": "https://cdn/2.mp3", "track_id": "t2"},
        )

        result = await worker.handle_ingest(job)

        ingestion.ingest.assert_awaited_once_with("j1", "https://cdn/2.mp3", "t2")
        assert result["track_id"] == "t2"
        assert result["already_downloaded"] is False

    async def test_finalize_without_results(
        self, queue: JobQueue, generation: MagicMock, ingestion: MagicMock
    ) -> None:
        worker = GenerationWorker(queue, generation, ingestion)
        job = Job(job_type=JobType.FINALIZE_GENERATION, payload={"job_id": "j1"})

        assert await worker.handle_finalize(job) == {"job_id": "j1", "finalized": False}
