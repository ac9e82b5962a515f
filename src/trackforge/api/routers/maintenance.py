"""Maintenance endpoints: one-off sweeps and batch reconciliation."""

from fastapi import APIRouter, Depends

from trackforge.api.dependencies import (
    get_current_user,
    get_stale_job_sweeper,
    get_variant_reconciler,
)
from trackforge.api.schemas.generation import ReconcileResponse, SweepResponse
from trackforge.application.services.variant_reconciler import VariantReconciler
from trackforge.application.workers.stale_job_sweeper import StaleJobSweeper

router = APIRouter()


@router.post("/sweep", response_model=SweepResponse)
async def run_sweep(
    _user_id: str = Depends(get_current_user),
    sweeper: StaleJobSweeper = Depends(get_stale_job_sweeper),
) -> SweepResponse:
    """Run one stale job sweep now."""
    result = await sweeper.sweep()
    return SweepResponse(reexamined=result.reexamined, resolved=result.resolved)


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_pending(
    user_id: str = Depends(get_current_user),
    reconciler: VariantReconciler = Depends(get_variant_reconciler),
) -> ReconcileResponse:
    """Create missing variant tracks for all of the caller's completed jobs."""
    results = await reconciler.reconcile_pending(user_id)
    return ReconcileResponse(
        created_count=sum(result.created_count for result in results),
        created_track_ids=[
            track_id for result in results for track_id in result.created_track_ids
        ],
    )
