"""Generation endpoints: submit, poll status, reconcile variants."""

import logging

from fastapi import APIRouter, Depends, Query, status

from trackforge.api.dependencies import (
    get_current_user,
    get_generation_service,
    get_variant_reconciler,
)
from trackforge.api.schemas.generation import (
    GenerationAccepted,
    GenerationCreateRequest,
    GenerationStatusResponse,
    ReconcileResponse,
)
from trackforge.application.services.generation_service import GenerationService
from trackforge.application.services.variant_reconciler import VariantReconciler
from trackforge.domain.exceptions import EntityNotFoundException

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=GenerationAccepted,
    responses={429: {"description": "Rate limited, see retryAfterSeconds"}},
)
async def create_generation(
    body: GenerationCreateRequest,
    user_id: str = Depends(get_current_user),
    generation_service: GenerationService = Depends(get_generation_service),
) -> GenerationAccepted:
    """Submit a generation request.

    The provider task is created right away; polling, download and variant
    tracks follow in the background.
    """
    job = await generation_service.submit(user_id, body.to_domain())
    return GenerationAccepted(job_id=job.id, task_id=job.external_id or "")


@router.get("/status", response_model=GenerationStatusResponse)
async def get_generation_status(
    task_id: str = Query(..., alias="taskId", min_length=1),
    user_id: str = Depends(get_current_user),
    generation_service: GenerationService = Depends(get_generation_service),
) -> GenerationStatusResponse:
    """Query the provider once and return the normalized status."""
    snapshot = await generation_service.poll_once(task_id, user_id=user_id)
    return GenerationStatusResponse.from_snapshot(snapshot)


@router.post("/{job_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_generation(
    job_id: str,
    user_id: str = Depends(get_current_user),
    generation_service: GenerationService = Depends(get_generation_service),
    reconciler: VariantReconciler = Depends(get_variant_reconciler),
) -> ReconcileResponse:
    """Create the missing variant tracks of a job."""
    job = await generation_service.get_job(job_id)
    if job.user_id != user_id:
        raise EntityNotFoundException("GenerationJob", job_id)
    result = await reconciler.reconcile(job)
    return ReconcileResponse(
        created_count=result.created_count,
        created_track_ids=result.created_track_ids,
    )
