"""In-memory priority job queue for background work.

Hey future me - this is the hand-off point between request handlers and background
work. A request enqueues a Job and returns right away. Worker tasks pull jobs in
priority order and run the registered handler for the job's type.

Failure semantics:
- handler raises -> job is re-queued until ``max_retries`` is used up, then FAILED
  with the error message kept on the job (``get_job`` shows it)
- ``retryable`` attribute False on the exception -> FAILED immediately
- nothing is swallowed silently: every failure is logged with the job id

Jobs don't survive a restart. That's fine here: the stale job sweeper finds
generation jobs whose follow-up work was lost and finishes them.

USAGE:
    queue = JobQueue(max_concurrent_jobs=4)
    queue.register_handler(JobType.INGEST_RESULT, worker.handle_ingest)
    await queue.start(num_workers=2)
    job_id = await queue.enqueue(JobType.INGEST_RESULT, {"job_id": "..."})
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from trackforge.infrastructure.observability.logging import set_correlation_id

logger = logging.getLogger(__name__)


class JobType(StrEnum):
    """Kinds of background work."""

    AWAIT_GENERATION = "await_generation"
    FINALIZE_GENERATION = "finalize_generation"
    INGEST_RESULT = "ingest_result"


class JobState(StrEnum):
    """Lifecycle of a queued job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Job:
    """One unit of background work."""

    job_type: JobType
    payload: dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    priority: int = 0
    max_retries: int = 3
    retries: int = 0
    state: JobState = JobState.PENDING
    result: Any = None
    error: str | None = None
    correlation_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    finished_at: datetime | None = None


JobHandler = Callable[[Job], Awaitable[Any]]


class JobQueue:
    """Priority queue plus a pool of worker tasks."""

    def __init__(self, max_concurrent_jobs: int = 4, retry_delay_seconds: float = 1.0) -> None:
        self._queue: asyncio.PriorityQueue[tuple[int, int, Job]] = asyncio.PriorityQueue()
        self._jobs: dict[str, Job] = {}
        self._handlers: dict[JobType, JobHandler] = {}
        self._counter = 0
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self._retry_delay = retry_delay_seconds
        self._workers: list[asyncio.Task[None]] = []
        self._running = False

    def register_handler(self, job_type: JobType, handler: JobHandler) -> None:
        """Register the coroutine that processes one job type."""
        self._handlers[job_type] = handler

    async def enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        max_retries: int = 3,
        priority: int = 0,
        correlation_id: str | None = None,
    ) -> str:
        """Add a job. Higher priority runs first; equal priority is FIFO."""
        job = Job(
            job_type=job_type,
            payload=payload,
            max_retries=max_retries,
            priority=priority,
            correlation_id=correlation_id,
        )
        self._jobs[job.id] = job
        await self._put(job)
        logger.debug("Enqueued job %s (%s) with priority %d", job.id, job_type.value, priority)
        return job.id

    async def _put(self, job: Job) -> None:
        await self._queue.put((-job.priority, self._counter, job))
        self._counter += 1

    async def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def stats(self) -> dict[str, int]:
        counts = {state.value: 0 for state in JobState}
        for job in self._jobs.values():
            counts[job.state.value] += 1
        counts["queued"] = self._queue.qsize()
        return counts

    async def start(self, num_workers: int = 2) -> None:
        """Start worker tasks."""
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"job-worker-{i}")
            for i in range(num_workers)
        ]
        logger.info("Job queue started with %d workers", num_workers)

    async def stop(self) -> None:
        """Cancel worker tasks and wait for them to exit."""
        self._running = False
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Job queue stopped")

    async def join(self) -> None:
        """Wait until every enqueued job has been processed (tests)."""
        await self._queue.join()

    async def _worker_loop(self, worker_index: int) -> None:
        while self._running:
            _, _, job = await self._queue.get()
            try:
                async with self._semaphore:
                    await self.process(job)
            finally:
                self._queue.task_done()

    async def process(self, job: Job) -> None:
        """Run one job through its handler, applying retry rules."""
        handler = self._handlers.get(job.job_type)
        if handler is None:
            job.state = JobState.FAILED
            job.error = f"No handler registered for {job.job_type.value}"
            logger.error("Job %s failed: %s", job.id, job.error)
            return

        set_correlation_id(job.correlation_id or job.id)
        job.state = JobState.RUNNING
        job.started_at = datetime.now(UTC)
        try:
            job.result = await handler(job)
        except asyncio.CancelledError:
            job.state = JobState.PENDING
            raise
        except Exception as e:
            job.error = f"{type(e).__name__}: {e}"
            retryable = getattr(e, "retryable", True)
            if retryable and job.retries < job.max_retries:
                job.retries += 1
                job.state = JobState.PENDING
                logger.warning(
                    "Job %s (%s) failed, retry %d/%d: %s",
                    job.id,
                    job.job_type.value,
                    job.retries,
                    job.max_retries,
                    job.error,
                )
                await asyncio.sleep(self._retry_delay * job.retries)
                await self._put(job)
                return
            job.state = JobState.FAILED
            job.finished_at = datetime.now(UTC)
            logger.exception("Job %s (%s) failed permanently", job.id, job.job_type.value)
            return

        job.state = JobState.COMPLETED
        job.finished_at = datetime.now(UTC)
        logger.debug("Job %s (%s) completed", job.id, job.job_type.value)
