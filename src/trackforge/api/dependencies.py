"""Dependency injection for API endpoints.

Hey future me - every service here is a singleton built in lifecycle.lifespan() and
hung on app.state. If an attribute is missing, startup failed or hasn't run, so we
answer 503 instead of crashing with AttributeError.
"""

from typing import Any, cast

from fastapi import Depends, Header, HTTPException, Request

from trackforge.application.services.generation_service import GenerationService
from trackforge.application.services.ingestion_service import IngestionService
from trackforge.application.services.variant_reconciler import VariantReconciler
from trackforge.application.workers.stale_job_sweeper import StaleJobSweeper
from trackforge.domain.ports import IIdentityProvider


def _from_state(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=503,
            detail=f"Service not initialized: {name}",
        )
    return value


def get_generation_service(request: Request) -> GenerationService:
    return cast(GenerationService, _from_state(request, "generation_service"))


def get_ingestion_service(request: Request) -> IngestionService:
    return cast(IngestionService, _from_state(request, "ingestion_service"))


def get_variant_reconciler(request: Request) -> VariantReconciler:
    return cast(VariantReconciler, _from_state(request, "variant_reconciler"))


def get_stale_job_sweeper(request: Request) -> StaleJobSweeper:
    return cast(StaleJobSweeper, _from_state(request, "stale_job_sweeper"))


def get_identity_provider(request: Request) -> IIdentityProvider:
    return cast(IIdentityProvider, _from_state(request, "identity_provider"))


# Raises AuthenticationError (401) through the exception handlers
def get_current_user(
    authorization: str | None = Header(default=None),
    identity: IIdentityProvider = Depends(get_identity_provider),
) -> str:
    """Resolve the caller's user id from the Authorization header."""
    return identity.identify(authorization)
