"""Job queue handlers for generation follow-up work."""

import logging
from typing import Any

from trackforge.application.services.generation_service import GenerationService
from trackforge.application.services.ingestion_service import IngestionService
from trackforge.application.workers.job_queue import Job, JobQueue, JobType

logger = logging.getLogger(__name__)


class GenerationWorker:
    """Wires the generation pipeline into the job queue.

    AWAIT_GENERATION    poll the provider, then finalize (ingest + reconcile)
    FINALIZE_GENERATION ingest + reconcile a job whose results are recorded
    INGEST_RESULT       download one result (job-level or one variant track)
    """

    def __init__(
        self,
        job_queue: JobQueue,
        generation_service: GenerationService,
        ingestion_service: IngestionService,
    ) -> None:
        self._job_queue = job_queue
        self._generation = generation_service
        self._ingestion = ingestion_service

    def register(self) -> None:
        self._job_queue.register_handler(JobType.AWAIT_GENERATION, self.handle_await_generation)
        self._job_queue.register_handler(JobType.FINALIZE_GENERATION, self.handle_finalize)
        self._job_queue.register_handler(JobType.INGEST_RESULT, self.handle_ingest)
        logger.info("Registered generation job handlers")

    async def handle_await_generation(self, job: Job) -> dict[str, Any]:
        generation = await self._generation.await_completion(job.payload["job_id"])
        return {"job_id": generation.id, "status": generation.status.value}

    async def handle_finalize(self, job: Job) -> dict[str, Any]:
        result = await self._generation.finalize(job.payload["job_id"])
        if result is None:
            return {"job_id": job.payload["job_id"], "finalized": False}
        return {
            "job_id": result.job_id,
            "track_id": result.track_id,
            "storage_path": result.storage_path,
            "in_progress": result.in_progress,
        }

    async def handle_ingest(self, job: Job) -> dict[str, Any]:
        payload = job.payload
        result = await self._ingestion.ingest(
            payload["job_id"], payload["result_url"], payload.get("track_id")
        )
        if result.in_progress:
            logger.info(
                "Ingestion for job %s handled by another worker", payload["job_id"]
            )
        return {
            "job_id": result.job_id,
            "track_id": result.track_id,
            "storage_path": result.storage_path,
            "already_downloaded": result.already_downloaded,
            "in_progress": result.in_progress,
        }
