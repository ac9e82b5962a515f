"""Stale Job Sweeper - resolves generation jobs nobody is watching anymore.

Hey future me - this worker is the ONLY thing that unblocks a job whose follow-up
work was lost: the process restarted mid-poll, the poller hit its deadline, or a
download kept failing. Without it those jobs sit in ``processing`` forever.

Every cycle:
1. Purge expired operation locks (crashed holders).
2. Take the sweep lock so two instances don't sweep the same jobs at once.
3. Load ``processing`` jobs older than their provider's grace period and resolve each:

   - results recorded but never stored       -> finalize (ingest + reconcile)
   - provider with a cheap status check (Suno):
       succeeded -> record results, finalize
       failed    -> failed with the provider's reason
       running   -> failed with ``stale_no_terminal_state``
       rejected  -> failed with ``provider_rejected``
       transient -> left alone for the next sweep
   - provider without one (Mureka): older than the hard timeout -> failed with ``timeout``

Retryable failures (a download that keeps failing, a provider that keeps timing out)
leave the job for the next sweep until it passes its provider's hard timeout, then
it is failed with ``timeout``. Nothing stays in ``processing`` forever.

A job is "resolved" when this pass moved it to completed or failed.
"""

import asyncio
import logging
import math
from collections.abc import Callable, Mapping
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from trackforge.application.services.generation_service import (
    REASON_PROVIDER_FAILED,
    REASON_PROVIDER_REJECTED,
    GenerationService,
)
from trackforge.config import Settings
from trackforge.domain.entities import GenerationJob, JobStatus
from trackforge.domain.exceptions import DomainException, ProviderRejected
from trackforge.domain.ports import IGenerationProvider
from trackforge.domain.value_objects import ServiceName, SweepResult, TaskStatus
from trackforge.infrastructure.persistence.operation_lock import DatabaseOperationLock
from trackforge.infrastructure.persistence.models import ensure_utc_aware
from trackforge.infrastructure.persistence.repositories import GenerationJobRepository

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

SWEEP_LOCK_KEY = "sweep:stale-jobs"
REASON_STALE = "stale_no_terminal_state"
REASON_TIMEOUT = "timeout"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class StaleJobSweeper:
    """Periodic resolution of abandoned ``processing`` jobs.

    Lifecycle:
    - Created in lifecycle.py during app startup
    - Runs as asyncio task via start()
    - Stopped via stop() during shutdown
    - ``sweep()`` is also called directly by the maintenance endpoint
    """

    def __init__(
        self,
        session_scope: SessionScope,
        providers: Mapping[ServiceName, IGenerationProvider],
        generation_service: GenerationService,
        lock: DatabaseOperationLock,
        settings: Settings,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._session_scope = session_scope
        self._providers = providers
        self._generation = generation_service
        self._lock = lock
        self._settings = settings
        self._clock = clock
        self._running = False
        self._stats: dict[str, Any] = {
            "cycles": 0,
            "total_resolved": 0,
            "last_sweep_at": None,
            "last_result": None,
        }

    async def start(self) -> None:
        """Run sweeps every ``interval_seconds`` until stop() is called."""
        interval = self._settings.sweeper.interval_seconds
        self._running = True
        logger.info("StaleJobSweeper started (interval=%ss)", interval)

        while self._running:
            try:
                await self.sweep()
            except Exception:
                # Next cycle tries again
                logger.exception("StaleJobSweeper cycle failed")
            await asyncio.sleep(interval)

    def stop(self) -> None:
        """Signal the loop to stop after the current cycle."""
        self._running = False
        logger.info("StaleJobSweeper stopping...")

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "running": self._running}

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        """Run one pass over stale jobs."""
        now = ensure_utc_aware(now) if now is not None else self._clock()
        await self._lock.purge_expired()

        if not await self._lock.acquire(SWEEP_LOCK_KEY, self._lock_ttl()):
            logger.info("Another sweep is running, skipping this one")
            return SweepResult()

        try:
            reexamined = 0
            resolved = 0
            for job in await self._stale_jobs(now):
                reexamined += 1
                try:
                    if await self._resolve(job, now):
                        resolved += 1
                except DomainException as e:
                    logger.warning(
                        "Sweeper could not resolve job %s (%s): %s",
                        job.id,
                        e.code,
                        e.message,
                    )
        finally:
            await self._lock.release(SWEEP_LOCK_KEY)

        result = SweepResult(reexamined=reexamined, resolved=resolved)
        self._stats["cycles"] += 1
        self._stats["total_resolved"] += resolved
        self._stats["last_sweep_at"] = now
        self._stats["last_result"] = {"reexamined": reexamined, "resolved": resolved}
        if reexamined:
            logger.info("Sweep re-examined %d stale jobs, resolved %d", reexamined, resolved)
        return result

    def _lock_ttl(self) -> int:
        """Sweep lock lifetime, long enough for a pass that downloads a full batch."""
        sweeper = self._settings.sweeper
        if sweeper.lock_ttl_seconds is not None:
            return sweeper.lock_ttl_seconds
        per_job = math.ceil(self._settings.ingestion.download_timeout_seconds)
        return max(sweeper.interval_seconds, sweeper.batch_size * per_job)

    async def _stale_jobs(self, now: datetime) -> list[GenerationJob]:
        grace = {
            service: timedelta(seconds=self._settings.provider(service.value).stale_after_seconds)
            for service in ServiceName
        }
        async with self._session_scope() as session:
            candidates = await GenerationJobRepository(session).list_by_status(
                JobStatus.PROCESSING,
                older_than=now - min(grace.values()),
                limit=self._settings.sweeper.batch_size,
            )
        return [job for job in candidates if now - job.created_at >= grace[job.service]]

    def _past_hard_timeout(self, job: GenerationJob, now: datetime) -> bool:
        settings = self._settings.provider(job.service.value)
        return now - job.created_at >= timedelta(seconds=settings.hard_timeout_seconds)

    async def _resolve(self, job: GenerationJob, now: datetime) -> bool:
        try:
            return await self._resolve_once(job, now)
        except DomainException as e:
            if not e.retryable or not self._past_hard_timeout(job, now):
                raise
            logger.warning(
                "Job %s still failing after its hard timeout (%s), giving up: %s",
                job.id,
                e.code,
                e.message,
            )
            await self._generation.mark_failed(job.id, REASON_TIMEOUT)
            return True

    async def _resolve_once(self, job: GenerationJob, now: datetime) -> bool:
        if job.result_candidates and not job.is_ingested:
            logger.info("Job %s has results but no stored media, finalizing", job.id)
            return await self._finalize(job.id)

        provider = self._providers.get(job.service)
        if provider is not None and provider.supports_status_check and job.external_id:
            return await self._recheck(job, job.external_id, provider)

        if self._past_hard_timeout(job, now):
            await self._generation.mark_failed(job.id, REASON_TIMEOUT)
            return True
        return False

    async def _recheck(
        self, job: GenerationJob, task_id: str, provider: IGenerationProvider
    ) -> bool:
        try:
            snapshot = await provider.query(task_id)
        except ProviderRejected as e:
            logger.warning("Provider rejected stale job %s: %s", job.id, e.message)
            await self._generation.mark_failed(job.id, REASON_PROVIDER_REJECTED)
            return True

        if snapshot.status == TaskStatus.SUCCEEDED:
            await self._generation.apply_snapshot(job.id, snapshot, schedule_finalize=False)
            return await self._finalize(job.id)
        if snapshot.status == TaskStatus.FAILED:
            await self._generation.mark_failed(
                job.id, snapshot.error_reason or REASON_PROVIDER_FAILED
            )
            return True

        await self._generation.mark_failed(job.id, REASON_STALE)
        return True

    async def _finalize(self, job_id: str) -> bool:
        result = await self._generation.finalize(job_id)
        return result is not None and not result.in_progress and result.storage_path is not None
