"""Client account API and service clock control.

Implements:
- POST /accounts - Register a client account with its DRAFT subscription
- GET /accounts/{account_id}/notifications - In-app notifications
- POST /accounts/{account_id}/notifications/{notification_id}/read - Mark a notification read
- GET /control/time - Current service time
- POST /control/time/advance - Fast-forward the clock and run a renewal sweep
"""

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi.concurrency import run_in_threadpool

from office_lifecycle.api.cron import sweep_response
from office_lifecycle.api.deps import (
    account_directory,
    current_actor,
    error_detail,
    ledger_store,
    time_controller,
    verify_cron_secret,
)
from office_lifecycle.errors import PersistenceError
from office_lifecycle.logging_config import get_logger
from office_lifecycle.models import AccountRecord
from office_lifecycle.models.api_request import (
    AdvanceTimeRequest,
    AdvanceTimeResponse,
    MarkReadResponse,
    NotificationListResponse,
    RegisterAccountRequest,
    RegisterAccountResponse,
    TimeResponse,
)
from office_lifecycle.repositories.account_directory import AccountDirectory
from office_lifecycle.repositories.ledger_store import DuplicateSubscriptionError, LedgerStore
from office_lifecycle.services.admin_actions import Actor
from office_lifecycle.services.time_controller import TimeController

logger = get_logger(__name__)
router = APIRouter(tags=["Accounts"], prefix="/accounts")
clock_router = APIRouter(tags=["Control API"], prefix="/control", dependencies=[Depends(verify_cron_secret)])


def _unavailable(error: PersistenceError) -> HTTPException:
    return HTTPException(status_code=503, detail=error_detail("unavailable", str(error)))


def _require_owner_or_staff(actor: Actor, account_id: str) -> None:
    if actor.id != account_id and not actor.is_elevated:
        logger.warning("account_access_forbidden", actor_id=actor.id, account_id=account_id)
        raise HTTPException(
            status_code=403,
            detail=error_detail("forbidden", "Accounts can only be read by their owner or staff"),
        )


@router.post(
    "",
    response_model=RegisterAccountResponse,
    status_code=201,
    summary="Register client account",
)
async def register_account(
    request: RegisterAccountRequest,
    actor: Actor = Depends(current_actor),
    ledger: LedgerStore = Depends(ledger_store),
    accounts: AccountDirectory = Depends(account_directory),
    clock: TimeController = Depends(time_controller),
) -> RegisterAccountResponse:
    """Create the client account and its subscription in DRAFT.

    Payment and approval move the subscription on from there.

    Raises:
        401: Actor headers missing
        403: Registering on behalf of someone else without a staff role
        409: Account or subscription already exists
        503: Ledger unavailable
    """
    _require_owner_or_staff(actor, request.accountId)
    logger.info("register_account_request", account_id=request.accountId, actor_id=actor.id)

    if request.accountId in accounts:
        raise HTTPException(
            status_code=409,
            detail=error_detail("account_exists", f"Account '{request.accountId}' already exists"),
        )

    try:
        subscription = await run_in_threadpool(
            ledger.create_subscription,
            request.accountId,
            clock.get_current_time_millis(),
        )
    except DuplicateSubscriptionError as e:
        raise HTTPException(status_code=409, detail=error_detail("subscription_exists", str(e)))
    except PersistenceError as e:
        raise _unavailable(e)

    accounts.add(
        AccountRecord(
            id=request.accountId,
            email=request.email,
            company_name=request.companyName,
        )
    )
    logger.info("account_registered", account_id=request.accountId, subscription_id=subscription.id)
    return RegisterAccountResponse(accountId=request.accountId, subscription=subscription)


@router.get(
    "/{account_id}/notifications",
    response_model=NotificationListResponse,
    summary="List notifications",
)
async def list_notifications(
    account_id: str = Path(...),
    unread_only: bool = Query(False, alias="unreadOnly"),
    actor: Actor = Depends(current_actor),
    ledger: LedgerStore = Depends(ledger_store),
) -> NotificationListResponse:
    """Notifications addressed to the account, oldest first."""
    _require_owner_or_staff(actor, account_id)
    try:
        notifications = ledger.get_notifications(account_id, unread_only=unread_only)
    except PersistenceError as e:
        raise _unavailable(e)

    return NotificationListResponse(
        accountId=account_id,
        notifications=notifications,
        unreadCount=sum(1 for n in notifications if not n.is_read),
    )


@router.post(
    "/{account_id}/notifications/{notification_id}/read",
    response_model=MarkReadResponse,
    summary="Mark notification read",
)
async def mark_notification_read(
    account_id: str = Path(...),
    notification_id: str = Path(...),
    actor: Actor = Depends(current_actor),
    ledger: LedgerStore = Depends(ledger_store),
) -> MarkReadResponse:
    """Mark one of the account's notifications read. Idempotent.

    Raises:
        403: Not the owner and not staff
        404: No such notification for this account
    """
    _require_owner_or_staff(actor, account_id)
    try:
        owned = {n.id for n in ledger.get_notifications(account_id)}
        if notification_id not in owned or not ledger.mark_notification_read(notification_id):
            raise HTTPException(
                status_code=404,
                detail=error_detail("not_found", f"Notification not found: {notification_id}"),
            )
    except PersistenceError as e:
        raise _unavailable(e)

    return MarkReadResponse(notificationId=notification_id)


@clock_router.get("/time", response_model=TimeResponse, summary="Current service time")
async def get_time(clock: TimeController = Depends(time_controller)) -> TimeResponse:
    return TimeResponse(
        currentTimeMillis=clock.get_current_time_millis(),
        offsetMillis=clock.time_offset_millis,
    )


@clock_router.post(
    "/time/advance",
    response_model=AdvanceTimeResponse,
    summary="Advance service time",
)
async def advance_time(
    request: AdvanceTimeRequest,
    clock: TimeController = Depends(time_controller),
) -> AdvanceTimeResponse:
    """Move the service clock forward and sweep at the new time.

    Reminders and expiries that fall due inside the jump are issued by the
    sweep, exactly as the daily cron trigger would.

    Raises:
        401: Missing or wrong X-Cron-Secret
        422: Negative values
        500: Ledger unavailable during the sweep
    """
    logger.info("advance_time_request", days=request.days, hours=request.hours, minutes=request.minutes)

    try:
        result = await run_in_threadpool(clock.advance_time, request.days, request.hours, request.minutes)
    except PersistenceError as e:
        logger.error("renewal_sweep_failed", error=str(e))
        raise HTTPException(status_code=500, detail=error_detail("sweep_failed", str(e)))

    report = result["sweep"]
    return AdvanceTimeResponse(
        previousTimeMillis=result["old_time_millis"],
        currentTimeMillis=result["new_time_millis"],
        advancedByMillis=result["time_advanced_millis"],
        sweep=sweep_response(report) if report is not None else None,
    )
