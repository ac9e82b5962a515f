"""Make sure a job with M result candidates ends up with exactly M tracks."""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession

from trackforge.application.workers.job_queue import JobQueue, JobType
from trackforge.domain.entities import GenerationJob, JobStatus, Track
from trackforge.domain.exceptions import DataIntegrityError
from trackforge.domain.ports import ICatalogStore
from trackforge.domain.value_objects import ReconcileResult
from trackforge.infrastructure.observability.logging import get_correlation_id
from trackforge.infrastructure.persistence.repositories import GenerationJobRepository

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class VariantReconciler:
    """Create the missing variant tracks of a job and hand their downloads to the queue.

    Hey future me - this is safe to run any number of times. We only touch variant
    numbers that have no track yet, so a fully reconciled job costs two reads and
    zero writes. If two reconcilers race on the same variant, the unique
    constraint on (variant_group_id, variant_number) picks a winner and the loser
    sees ``created=False`` from the catalog.

    Downloads are NOT started inline. Every new track gets an INGEST_RESULT job on
    the queue so a failed download is retried and shows up in the job status.
    """

    def __init__(
        self,
        session_scope: SessionScope,
        catalog: ICatalogStore,
        job_queue: JobQueue,
        max_retries: int = 3,
    ) -> None:
        self._session_scope = session_scope
        self._catalog = catalog
        self._job_queue = job_queue
        self._max_retries = max_retries

    async def reconcile(self, job: GenerationJob) -> ReconcileResult:
        """Create tracks for every candidate that doesn't have one yet."""
        candidates = job.result_candidates
        if not candidates:
            logger.debug("Job %s has no result candidates, nothing to reconcile", job.id)
            return ReconcileResult(job_id=job.id)

        existing = {
            track.variant_number
            for track in await self._catalog.list_tracks_for_job(job.id)
            if track.variant_number is not None
        }
        total = len(candidates)
        created: list[str] = []

        for variant_number, candidate in enumerate(candidates, start=1):
            if variant_number in existing:
                continue
            track, was_created = await self._catalog.ensure_variant_track(
                job.id, variant_number, candidate, total
            )
            if not was_created:
                # Lost the race to a concurrent reconciler or ingestion
                continue
            created.append(track.id)
            await self._hand_off(job, track, candidate.audio_url)

        if created:
            logger.info(
                "Reconciled job %s: created %d of %d variant tracks",
                job.id,
                len(created),
                total,
            )
        return ReconcileResult(
            job_id=job.id, created_count=len(created), created_track_ids=created
        )

    async def _hand_off(self, job: GenerationJob, track: Track, result_url: str) -> None:
        payload: dict[str, str] = {"job_id": job.id, "result_url": result_url}
        if track.variant_number == 1:
            if job.is_ingested:
                return
        else:
            payload["track_id"] = track.id
        queued_id = await self._job_queue.enqueue(
            JobType.INGEST_RESULT,
            payload,
            max_retries=self._max_retries,
            correlation_id=get_correlation_id() or None,
        )
        logger.debug(
            "Queued ingestion %s for track %s (variant %s) of job %s",
            queued_id,
            track.id,
            track.variant_number,
            job.id,
        )

    async def reconcile_job(self, job_ref: str) -> ReconcileResult:
        """Reconcile a job by internal id or provider task id."""
        async with self._session_scope() as session:
            job = await GenerationJobRepository(session).get_by_reference(job_ref)
        if job is None:
            raise DataIntegrityError("GenerationJob", job_ref)
        return await self.reconcile(job)

    async def reconcile_pending(self, user_id: str | None = None) -> list[ReconcileResult]:
        """Reconcile every completed multi-candidate job (optionally one user's)."""
        async with self._session_scope() as session:
            jobs = await GenerationJobRepository(session).list_for_user(
                user_id, JobStatus.COMPLETED
            )

        results = []
        for job in jobs:
            if len(job.result_candidates) < 2:
                continue
            result = await self.reconcile(job)
            if result.created_count:
                results.append(result)

        logger.info(
            "Batch reconcile finished: %d jobs checked, %d tracks created",
            len(jobs),
            sum(result.created_count for result in results),
        )
        return results
