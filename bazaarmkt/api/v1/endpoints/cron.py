"""
Batch triggers for an external scheduler.

GET /cron/payouts runs one payout sweep, GET /cron/jobs lists scheduled jobs.
Both are guarded by ``Authorization: Bearer <CRON_SECRET>``.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from bazaarmkt.api.deps import DB, Cache, verify_cron_secret
from bazaarmkt.jobs.scheduler import get_job_status
from bazaarmkt.schemas.payout import PayoutRunSummary
from bazaarmkt.services.payout_service import PayoutScheduler, PayoutRunInProgressError

logger = logging.getLogger(__name__)


router = APIRouter(tags=["Cron"], dependencies=[Depends(verify_cron_secret)])


@router.get(
    "/payouts",
    response_model=PayoutRunSummary,
    summary="Run the payout sweep",
    description="Pay out every wallet whose payout date has arrived."
)
async def run_payouts(db: DB, cache: Cache):
    """
    Run payouts now.

    Returns 409 when another run (cron call or in-process job) holds the
    payout lock.
    """
    scheduler = PayoutScheduler(db, cache=cache)
    try:
        summary = await scheduler.run()
    except PayoutRunInProgressError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=e.message
        )

    logger.info(
        f"Cron payout run: {summary['processed']} processed, "
        f"{summary['errors']} errors of {summary['total']}"
    )
    return summary


@router.get(
    "/jobs",
    summary="List scheduled jobs",
    description="Jobs registered with the in-process scheduler and their next run time."
)
async def list_scheduled_jobs():
    return {"jobs": get_job_status()}
