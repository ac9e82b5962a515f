"""Generation job orchestration: submit, observe, finalize."""

import logging
from collections.abc import Callable, Mapping
from contextlib import AbstractAsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession

from trackforge.application.services.ingestion_service import IngestionService
from trackforge.application.services.status_poller import StatusPoller
from trackforge.application.services.variant_reconciler import VariantReconciler
from trackforge.application.workers.job_queue import JobQueue, JobType
from trackforge.domain.entities import GenerationJob, JobStatus
from trackforge.domain.exceptions import (
    ConfigurationError,
    DataIntegrityError,
    PollingTimeout,
    ProviderRejected,
    RateLimitExceededError,
    ValidationError,
)
from trackforge.domain.ports import IGenerationProvider, IRateLimiter
from trackforge.domain.value_objects import (
    GenerationRequest,
    IngestionResult,
    InputMode,
    ServiceName,
    TaskSnapshot,
    TaskStatus,
)
from trackforge.domain.value_objects.content_preparation import prepare_content
from trackforge.infrastructure.observability.logging import get_correlation_id
from trackforge.infrastructure.persistence.repositories import GenerationJobRepository

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

MAX_TEXT_LENGTH = 10000

# Failure reasons written to metadata.failure_reason
REASON_PROVIDER_REJECTED = "provider_rejected"
REASON_PROVIDER_FAILED = "provider_failed"


def validate_request(request: GenerationRequest) -> None:
    """Reject requests no provider could turn into a song.

    A prompt is required unless the caller brings their own lyrics (lyrics
    mode) or asks for an instrumental with a style.

    Raises:
        ValidationError: If the request shape is unusable
    """
    has_lyrics = bool((request.custom_lyrics or "").strip() or (request.lyrics or "").strip())
    has_prompt = bool(request.prompt.strip())

    if request.input_mode == InputMode.LYRICS and has_lyrics:
        pass
    elif request.instrumental and (request.style or "").strip():
        pass
    elif not has_prompt:
        raise ValidationError("Prompt is required and cannot be empty")

    for name in ("prompt", "lyrics", "custom_lyrics", "style", "title"):
        value = getattr(request, name) or ""
        if len(value) > MAX_TEXT_LENGTH:
            raise ValidationError(f"{name} exceeds maximum length of {MAX_TEXT_LENGTH} characters")


class GenerationService:
    """Entry point for everything that happens to a generation job.

    Hey future me - the job row is written BEFORE the provider is called, so a crash
    between the two leaves a pending job we can see instead of an orphan task at the
    provider. Everything after the submit (polling, download, variants) runs in the
    background through the job queue.
    """

    def __init__(
        self,
        session_scope: SessionScope,
        providers: Mapping[ServiceName, IGenerationProvider],
        rate_limiter: IRateLimiter,
        job_queue: JobQueue,
        poller: StatusPoller,
        ingestion: IngestionService,
        reconciler: VariantReconciler,
        max_retries: int = 3,
    ) -> None:
        self._session_scope = session_scope
        self._providers = providers
        self._rate_limiter = rate_limiter
        self._job_queue = job_queue
        self._poller = poller
        self._ingestion = ingestion
        self._reconciler = reconciler
        self._max_retries = max_retries

    def provider_for(self, service: ServiceName) -> IGenerationProvider:
        provider = self._providers.get(service)
        if provider is None:
            raise ConfigurationError(f"No provider configured for service '{service}'")
        return provider

    # -- persistence helpers --------------------------------------------------

    async def get_job(self, job_ref: str) -> GenerationJob:
        """Load a job by internal id or provider task id.

        Raises:
            DataIntegrityError: If no such job exists
        """
        async with self._session_scope() as session:
            job = await GenerationJobRepository(session).get_by_reference(job_ref)
        if job is None:
            raise DataIntegrityError("GenerationJob", job_ref)
        return job

    async def mark_failed(self, job_id: str, reason: str) -> GenerationJob:
        async with self._session_scope() as session:
            repo = GenerationJobRepository(session)
            job = await repo.get_by_id(job_id)
            if job is None:
                raise DataIntegrityError("GenerationJob", job_id)
            job.mark_failed(reason)
            await repo.update(job)
        logger.warning("Generation job %s marked failed: %s", job_id, reason)
        return job

    async def _enqueue(self, job_type: JobType, job_id: str) -> str:
        return await self._job_queue.enqueue(
            job_type,
            {"job_id": job_id},
            max_retries=self._max_retries,
            correlation_id=get_correlation_id() or None,
        )

    # -- submit ---------------------------------------------------------------

    async def submit(self, user_id: str, request: GenerationRequest) -> GenerationJob:
        """Admit, prepare and submit a generation request.

        Returns:
            The job, now ``processing`` with the provider task id as ``external_id``

        Raises:
            ValidationError: Unusable request
            RateLimitExceededError: Caller exhausted its window
            ExternalServiceError: Provider refused or was unreachable (job marked failed)
        """
        validate_request(request)
        provider = self.provider_for(request.service)

        admission = await self._rate_limiter.admit(user_id, request.service)
        if not admission.allowed:
            logger.info(
                "Rate limited %s request from user %s (retry in %ss)",
                request.service.value,
                user_id,
                admission.retry_after_seconds,
            )
            raise RateLimitExceededError(request.service.value, admission.retry_after_seconds)

        prepared = prepare_content(request)
        payload = provider.build_payload(request, prepared)

        job = GenerationJob(
            user_id=user_id,
            service=request.service,
            prompt=request.prompt or prepared.prompt,
            parameters=request.to_parameters(),
            metadata={
                "submitted_payload": payload,
                "content_source": prepared.source.value,
            },
        )
        async with self._session_scope() as session:
            await GenerationJobRepository(session).add(job)

        try:
            submitted = await provider.submit(payload)
        except Exception as e:
            logger.error(
                "Submitting job %s to %s failed: %s", job.id, request.service.value, e
            )
            await self.mark_failed(job.id, getattr(e, "message", str(e)))
            raise

        async with self._session_scope() as session:
            repo = GenerationJobRepository(session)
            job.mark_processing(submitted.task_id, submitted.raw)
            await repo.update(job)

        await self._enqueue(JobType.AWAIT_GENERATION, job.id)
        logger.info(
            "Submitted generation job %s to %s as task %s",
            job.id,
            request.service.value,
            submitted.task_id,
        )
        return job

    # -- observe --------------------------------------------------------------

    @staticmethod
    def snapshot_from_job(job: GenerationJob) -> TaskSnapshot | None:
        """Answer status queries for finished jobs without calling the provider."""
        if job.status == JobStatus.COMPLETED:
            return TaskSnapshot(
                task_id=job.external_id or job.id,
                status=TaskStatus.SUCCEEDED,
                raw_status=job.metadata.get("provider_status"),
                progress=100.0,
                results=job.result_candidates,
            )
        if job.status == JobStatus.FAILED:
            return TaskSnapshot(
                task_id=job.external_id or job.id,
                status=TaskStatus.FAILED,
                raw_status=job.metadata.get("provider_status"),
                error_reason=job.error_message,
            )
        return None

    async def apply_snapshot(
        self, job_id: str, snapshot: TaskSnapshot, schedule_finalize: bool = True
    ) -> GenerationJob:
        """Record what the provider reported and react to terminal states."""
        async with self._session_scope() as session:
            repo = GenerationJobRepository(session)
            job = await repo.get_by_id(job_id)
            if job is None:
                raise DataIntegrityError("GenerationJob", job_id)
            if job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
                return job

            if snapshot.status == TaskStatus.SUCCEEDED:
                job.record_results(snapshot.results, snapshot.raw_status)
            elif snapshot.status == TaskStatus.FAILED:
                job.mark_failed(snapshot.error_reason or REASON_PROVIDER_FAILED)
                job.merge_metadata(provider_status=snapshot.raw_status)
            else:
                job.merge_metadata(
                    provider_status=snapshot.raw_status,
                    provider_progress=snapshot.progress,
                )
            await repo.update(job)

        if snapshot.status == TaskStatus.SUCCEEDED and schedule_finalize:
            await self._enqueue(JobType.FINALIZE_GENERATION, job.id)
        elif snapshot.status == TaskStatus.FAILED:
            logger.warning(
                "%s task %s failed: %s",
                job.service.value,
                snapshot.task_id,
                job.error_message,
            )
        return job

    async def poll_once(self, task_id: str, user_id: str | None = None) -> TaskSnapshot:
        """Query the provider once and record the result on the job.

        Raises:
            DataIntegrityError: Unknown task (or not the caller's)
        """
        job = await self.get_job(task_id)
        if user_id is not None and job.user_id != user_id:
            raise DataIntegrityError("GenerationJob", task_id)

        cached = self.snapshot_from_job(job)
        if cached is not None:
            return cached
        if not job.external_id:
            return TaskSnapshot(task_id=task_id, status=TaskStatus.QUEUED, progress=0.0)

        snapshot = await self.provider_for(job.service).query(job.external_id)
        await self.apply_snapshot(job.id, snapshot)
        return snapshot

    async def apply_callback(self, service: ServiceName, snapshot: TaskSnapshot) -> bool:
        """Record a provider push notification. False if the task is unknown."""
        async with self._session_scope() as session:
            job = await GenerationJobRepository(session).get_by_external_id(
                snapshot.task_id, service
            )
        if job is None:
            logger.warning(
                "Callback for unknown %s task %s ignored", service.value, snapshot.task_id
            )
            return False
        if not snapshot.status.is_terminal:
            logger.debug(
                "Callback for task %s is %s, waiting", snapshot.task_id, snapshot.raw_status
            )
        await self.apply_snapshot(job.id, snapshot)
        return True

    async def await_completion(self, job_id: str) -> GenerationJob:
        """Poll until the provider finishes, then finalize (background handler).

        A poll timeout leaves the job ``processing`` for the stale job sweeper.
        """
        job = await self.get_job(job_id)
        if job.status != JobStatus.PROCESSING or not job.external_id:
            logger.debug("Job %s is %s, nothing to await", job.id, job.status.value)
            return job
        provider = self.provider_for(job.service)

        async def record_progress(snapshot: TaskSnapshot) -> None:
            await self.apply_snapshot(job.id, snapshot, schedule_finalize=False)

        try:
            snapshot = await self._poller.await_terminal(
                provider, job.external_id, on_update=record_progress
            )
        except PollingTimeout as e:
            logger.warning("Job %s left for the sweeper: %s", job.id, e.message)
            return await self.get_job(job.id)
        except ProviderRejected as e:
            logger.warning("Provider rejected status query for job %s: %s", job.id, e.message)
            return await self.mark_failed(job.id, REASON_PROVIDER_REJECTED)

        job = await self.apply_snapshot(job.id, snapshot, schedule_finalize=False)
        if snapshot.status == TaskStatus.SUCCEEDED:
            await self.finalize(job.id)
            job = await self.get_job(job.id)
        return job

    # -- finalize -------------------------------------------------------------

    async def finalize(self, job_id: str) -> IngestionResult | None:
        """Ingest the primary result, then create the remaining variant tracks."""
        job = await self.get_job(job_id)
        result_url = job.primary_result_url
        if result_url is None:
            logger.warning("Job %s has no result to finalize", job.id)
            return None

        result = await self._ingestion.ingest(job.id, result_url)
        await self._reconciler.reconcile(await self.get_job(job.id))
        return result
