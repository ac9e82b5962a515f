"""Application services - generation orchestration and media ingestion."""

from trackforge.application.services.generation_service import (
    GenerationService,
    validate_request,
)
from trackforge.application.services.ingestion_service import IngestionService, lock_key
from trackforge.application.services.status_poller import StatusPoller
from trackforge.application.services.variant_reconciler import VariantReconciler

__all__ = [
    "GenerationService",
    "IngestionService",
    "StatusPoller",
    "VariantReconciler",
    "lock_key",
    "validate_request",
]
