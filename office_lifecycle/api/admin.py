"""Admin console API.

Implements:
- POST /admin/subscriptions/{subscription_id}/actions - Apply a lifecycle command
- GET /admin/subscriptions/{subscription_id}/actions - Audit trail
- GET /admin/subscriptions/{subscription_id} - Current subscription record
"""

from fastapi import APIRouter, Depends, HTTPException, Path
from fastapi.concurrency import run_in_threadpool

from office_lifecycle.api.deps import admin_action_processor, current_actor, error_detail
from office_lifecycle.errors import ActionError, ActionErrorKind
from office_lifecycle.logging_config import get_logger
from office_lifecycle.models.api_request import (
    AdminActionListResponse,
    AdminActionRequest,
    AdminActionResponse,
)
from office_lifecycle.models.subscription import SubscriptionRecord
from office_lifecycle.services.admin_actions import Actor, AdminActionProcessor

logger = get_logger(__name__)
router = APIRouter(tags=["Admin API"], prefix="/admin")

_STATUS_BY_KIND = {
    ActionErrorKind.FORBIDDEN: 403,
    ActionErrorKind.NOT_FOUND: 404,
    ActionErrorKind.INVALID_FOR_STATE: 409,
    ActionErrorKind.CONFLICT: 409,
    ActionErrorKind.UNAVAILABLE: 503,
}


def _to_http(error: ActionError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_KIND[error.kind],
        detail=error_detail(error.kind.value, error.message),
    )


@router.post(
    "/subscriptions/{subscription_id}/actions",
    response_model=AdminActionResponse,
    summary="Apply admin command",
)
async def apply_admin_action(
    request: AdminActionRequest,
    subscription_id: str = Path(...),
    actor: Actor = Depends(current_actor),
    processor: AdminActionProcessor = Depends(admin_action_processor),
) -> AdminActionResponse:
    """Approve, reject, suspend, reactivate, withdraw or cancel a subscription.

    Args:
        request: Command kind with optional reason and notes
        subscription_id: Target subscription

    Returns:
        AdminActionResponse with the new status

    Raises:
        401: Actor headers missing
        403: Actor is not staff
        404: Subscription not found
        409: Command not valid for the current status, or row busy
        422: Unknown action type
        503: Ledger unavailable
    """
    logger.info(
        "admin_action_request",
        subscription_id=subscription_id,
        action_type=request.actionType.value,
        actor_id=actor.id,
    )

    try:
        new_status = await run_in_threadpool(
            processor.apply,
            actor,
            subscription_id,
            request.actionType,
            request.reason,
            request.notes,
        )
    except ActionError as e:
        raise _to_http(e)

    return AdminActionResponse(
        success=True,
        newStatus=new_status,
        message=f"Action {request.actionType.value} completed successfully",
    )


@router.get(
    "/subscriptions/{subscription_id}/actions",
    response_model=AdminActionListResponse,
    summary="List admin actions",
)
async def list_admin_actions(
    subscription_id: str = Path(...),
    actor: Actor = Depends(current_actor),
    processor: AdminActionProcessor = Depends(admin_action_processor),
) -> AdminActionListResponse:
    """Audit trail for a subscription, oldest first."""
    if not actor.is_elevated:
        raise HTTPException(status_code=403, detail=error_detail("forbidden", "Admin role required"))
    try:
        actions = processor.list_actions(subscription_id)
    except ActionError as e:
        raise _to_http(e)
    return AdminActionListResponse(subscriptionId=subscription_id, actions=actions)


@router.get(
    "/subscriptions/{subscription_id}",
    response_model=SubscriptionRecord,
    summary="Get subscription",
)
async def get_subscription(
    subscription_id: str = Path(...),
    actor: Actor = Depends(current_actor),
    processor: AdminActionProcessor = Depends(admin_action_processor),
) -> SubscriptionRecord:
    if not actor.is_elevated:
        raise HTTPException(status_code=403, detail=error_detail("forbidden", "Admin role required"))
    try:
        return processor.get_subscription(subscription_id)
    except ActionError as e:
        raise _to_http(e)
