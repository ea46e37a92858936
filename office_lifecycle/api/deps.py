"""Request dependencies shared by the routers.

Services are resolved per request through their global getters so tests
can swap them with ``app.dependency_overrides``.
"""

import hmac
from typing import Optional

from fastapi import Header, HTTPException
from pydantic import ValidationError

from office_lifecycle.logging_config import bind_context, get_logger
from office_lifecycle.repositories.account_directory import AccountDirectory, get_account_directory
from office_lifecycle.repositories.ledger_store import LedgerStore, get_ledger_store
from office_lifecycle.services.admin_actions import (
    Actor,
    AdminActionProcessor,
    get_admin_action_processor,
)
from office_lifecycle.services.payment_events import (
    PaymentEventProcessor,
    get_payment_event_processor,
)
from office_lifecycle.services.renewal_scheduler import RenewalScheduler, get_renewal_scheduler
from office_lifecycle.services.time_controller import TimeController, get_time_controller

logger = get_logger(__name__)


def error_detail(error: str, message: str) -> dict:
    return {"error": error, "message": message}


def payment_event_processor() -> PaymentEventProcessor:
    return get_payment_event_processor()


def admin_action_processor() -> AdminActionProcessor:
    return get_admin_action_processor()


def renewal_scheduler() -> RenewalScheduler:
    return get_renewal_scheduler()


def ledger_store() -> LedgerStore:
    return get_ledger_store()


def account_directory() -> AccountDirectory:
    return get_account_directory()


def time_controller() -> TimeController:
    return get_time_controller()


def current_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    """Caller identity forwarded by the authenticating gateway.

    Raises:
        HTTPException: 401 when either header is missing, 403 for an unknown role
    """
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=401,
            detail=error_detail("unauthorized", "Missing X-Actor-Id or X-Actor-Role header"),
        )
    try:
        actor = Actor(id=x_actor_id, role=x_actor_role.upper())
    except ValidationError:
        logger.warning("actor_role_unknown", actor_id=x_actor_id, actor_role=x_actor_role)
        raise HTTPException(
            status_code=403,
            detail=error_detail("forbidden", f"Unknown role: {x_actor_role}"),
        )

    bind_context(actor_id=actor.id)
    return actor


def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)) -> None:
    """Check the scheduler's shared secret.

    Raises:
        HTTPException: 401 when the secret is missing, wrong or not configured
    """
    from office_lifecycle.config import get_config

    expected = get_config().cron_secret
    if not expected or not x_cron_secret or not hmac.compare_digest(x_cron_secret, expected):
        logger.warning("cron_secret_rejected", header_present=x_cron_secret is not None)
        raise HTTPException(
            status_code=401,
            detail=error_detail("unauthorized", "Invalid cron secret"),
        )
