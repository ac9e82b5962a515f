"""Ingestion trigger endpoint."""

from fastapi import APIRouter, Depends

from trackforge.api.dependencies import (
    get_current_user,
    get_generation_service,
    get_ingestion_service,
)
from trackforge.api.schemas.generation import IngestionCreateRequest, IngestionResponse
from trackforge.application.services.generation_service import GenerationService
from trackforge.application.services.ingestion_service import IngestionService
from trackforge.domain.exceptions import EntityNotFoundException

router = APIRouter()


# Hey future me - two clients hitting this at once for the same job is NORMAL (the UI
# and the background worker both try). Both get 200 with the same track; the loser
# just sees alreadyDownloaded=true (or inProgress=true if the winner is slow).
@router.post("", response_model=IngestionResponse)
async def create_ingestion(
    body: IngestionCreateRequest,
    user_id: str = Depends(get_current_user),
    generation_service: GenerationService = Depends(get_generation_service),
    ingestion_service: IngestionService = Depends(get_ingestion_service),
) -> IngestionResponse:
    """Download a job's result into durable storage and link it to a track."""
    job = await generation_service.get_job(body.job_ref)
    if job.user_id != user_id:
        raise EntityNotFoundException("GenerationJob", body.job_ref)
    result = await ingestion_service.ingest(job.id, body.result_url, body.track_id)
    return IngestionResponse.from_result(result)
