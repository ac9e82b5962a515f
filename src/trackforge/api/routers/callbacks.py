"""Provider callback endpoints.

Hey future me - these ALWAYS answer 200. A non-2xx makes the provider re-deliver
the same callback over and over; anything we couldn't process is logged and the
sweeper picks the job up later.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request

from trackforge.api.dependencies import get_generation_service
from trackforge.api.schemas.generation import CallbackAck
from trackforge.application.services.generation_service import GenerationService
from trackforge.domain.exceptions import DomainException
from trackforge.domain.value_objects import ServiceName
from trackforge.infrastructure.integrations.suno_client import SunoClient

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/suno", response_model=CallbackAck)
async def suno_callback(
    request: Request,
    generation_service: GenerationService = Depends(get_generation_service),
) -> CallbackAck:
    """Record a Suno completion push and schedule ingestion + reconciliation."""
    try:
        payload: Any = await request.json()
    except ValueError:
        logger.warning("Suno callback with a non-JSON body ignored")
        return CallbackAck(status="ignored")
    if not isinstance(payload, dict):
        logger.warning("Suno callback with a non-object body ignored")
        return CallbackAck(status="ignored")

    provider = generation_service.provider_for(ServiceName.SUNO)
    if not isinstance(provider, SunoClient):
        logger.error("Suno provider does not accept callbacks")
        return CallbackAck(status="ignored")

    try:
        snapshot = provider.snapshot_from_callback(payload)
        known = await generation_service.apply_callback(ServiceName.SUNO, snapshot)
    except DomainException as e:
        logger.warning("Suno callback not processed (%s): %s", e.code, e.message)
        return CallbackAck(status="ignored")
    except Exception:
        logger.exception("Suno callback processing failed")
        return CallbackAck(status="error")
    return CallbackAck(status="received" if known else "unknown_task")
