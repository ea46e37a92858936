"""Scheduled job trigger.

Implements:
- POST /cron/renewal-reminders - Expire lapsed subscriptions and send renewal reminders
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool

from office_lifecycle.api.deps import error_detail, renewal_scheduler, verify_cron_secret
from office_lifecycle.errors import PersistenceError
from office_lifecycle.logging_config import get_logger
from office_lifecycle.models.api_request import RenewalSweepRequest, RenewalSweepResponse
from office_lifecycle.services.renewal_scheduler import RenewalScheduler, SweepReport

logger = get_logger(__name__)
router = APIRouter(tags=["Cron"], prefix="/cron", dependencies=[Depends(verify_cron_secret)])


@router.post("/renewal-reminders", response_model=RenewalSweepResponse)
async def run_renewal_reminders(
    request: Optional[RenewalSweepRequest] = Body(None),
    scheduler: RenewalScheduler = Depends(renewal_scheduler),
) -> RenewalSweepResponse:
    """Run one renewal sweep.

    Raises:
        401: Missing or wrong X-Cron-Secret
        500: Ledger unavailable
    """
    as_of = request.asOfMillis if request is not None else None
    logger.info("renewal_sweep_requested", as_of_millis=as_of)

    try:
        report = await run_in_threadpool(scheduler.sweep, as_of)
    except PersistenceError as e:
        logger.error("renewal_sweep_failed", error=str(e))
        raise HTTPException(status_code=500, detail=error_detail("sweep_failed", str(e)))

    return sweep_response(report)


def sweep_response(report: SweepReport) -> RenewalSweepResponse:
    return RenewalSweepResponse(
        success=True,
        asOfMillis=report.as_of_millis,
        examined=report.examined,
        remindersSent=report.reminders_sent,
        subscriptionsExpired=report.expired,
        skipped=report.skipped,
        failed=report.failed,
    )
