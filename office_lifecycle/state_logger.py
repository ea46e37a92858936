"""Simple state change logging for subscriptions and payments.

Tracks state transitions with before/after values for debugging and auditing.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from office_lifecycle.logging_config import get_logger
from office_lifecycle.utils.identifiers import shorten

logger = get_logger(__name__)


def log_subscription_state_change(
    subscription_id: str,
    owner_id: str,
    old_status: Any,
    new_status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log subscription status change.

    Args:
        subscription_id: Subscription identifier
        owner_id: Owning account id
        old_status: Previous status value
        new_status: New status value
        reason: Event that caused the change
        **extra_context: Additional context (event_id, actor_id, etc.)
    """
    logger.info(
        "subscription_state_changed",
        subscription_id=shorten(subscription_id),
        owner_id=owner_id,
        old_status=_value(old_status),
        new_status=_value(new_status),
        reason=reason,
        **extra_context,
    )


def log_retry_count_change(
    subscription_id: str,
    old_count: int,
    new_count: int,
    threshold: int,
    **extra_context: Any,
) -> None:
    """Log a change of the consecutive payment failure counter."""
    logger.info(
        "retry_count_changed",
        subscription_id=shorten(subscription_id),
        old_count=old_count,
        new_count=new_count,
        threshold=threshold,
        **extra_context,
    )


def log_payment_status_change(
    payment_id: str,
    subscription_id: str,
    old_status: Any,
    new_status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log payment row status change.

    Args:
        payment_id: Payment identifier
        subscription_id: Subscription charged
        old_status: Previous payment status (None for a new row)
        new_status: New payment status
        reason: Gateway event type that caused the change
        **extra_context: Additional context
    """
    logger.info(
        "payment_status_changed",
        payment_id=shorten(payment_id),
        subscription_id=shorten(subscription_id),
        old_status=_value(old_status),
        new_status=_value(new_status),
        reason=reason,
        **extra_context,
    )


def log_term_change(
    subscription_id: str,
    old_end_millis: Optional[int],
    new_end_millis: int,
    reason: str,
    **extra_context: Any,
) -> None:
    """Log service term end change (first payment, renewal payment)."""
    extension_days = None
    if old_end_millis is not None:
        extension_days = (new_end_millis - old_end_millis) / (1000 * 86400)

    logger.info(
        "term_changed",
        subscription_id=shorten(subscription_id),
        old_end=_iso(old_end_millis),
        new_end=_iso(new_end_millis),
        extension_days=extension_days,
        reason=reason,
        **extra_context,
    )


def log_admin_action(
    action_id: str,
    actor_id: str,
    subscription_id: str,
    action_type: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log an audited admin command."""
    logger.info(
        "admin_action_recorded",
        action_id=shorten(action_id),
        actor_id=actor_id,
        subscription_id=shorten(subscription_id),
        action_type=_value(action_type),
        reason=reason,
        **extra_context,
    )


def _value(state: Any) -> Optional[str]:
    if state is None:
        return None
    return getattr(state, "value", str(state))


def _iso(timestamp_millis: Optional[int]) -> Optional[str]:
    if timestamp_millis is None:
        return None
    return datetime.fromtimestamp(timestamp_millis / 1000, tz=timezone.utc).isoformat()
