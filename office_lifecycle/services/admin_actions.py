"""Admin action processor - staff commands against a subscription.

Each accepted command commits the subscription update, its notifications
and exactly one audit row together. Rejected commands write nothing.
"""

import threading
from typing import List, Optional

from pydantic import BaseModel, Field

from office_lifecycle.errors import (
    ActionError,
    ActionErrorKind,
    ConcurrencyConflict,
    IllegalTransition,
    PersistenceError,
)
from office_lifecycle.logging_config import get_logger
from office_lifecycle import state_logger
from office_lifecycle.models.account import ELEVATED_ROLES, AccountRole
from office_lifecycle.models.events import AdminCommand
from office_lifecycle.models.ledger import AdminActionRecord, AdminActionType
from office_lifecycle.models.subscription import SubscriptionRecord, SubscriptionStatus
from office_lifecycle.repositories.account_directory import AccountNotFoundError
from office_lifecycle.repositories.ledger_store import SubscriptionNotFoundError
from office_lifecycle.services.lifecycle_engine import LifecycleEngine, get_lifecycle_engine
from office_lifecycle.services.retry import run_with_conflict_retry
from office_lifecycle.services.state_machine import TransitionResult
from office_lifecycle.utils.identifiers import ADMIN_ACTION_PREFIX, generate_record_id, shorten

logger = get_logger(__name__)

# Owner account active flag after each command
ACCOUNT_ACTIVE_AFTER = {
    AdminActionType.APPROVE: True,
    AdminActionType.REACTIVATE: True,
    AdminActionType.REJECT: False,
    AdminActionType.SUSPEND: False,
    AdminActionType.WITHDRAW: False,
    AdminActionType.CANCEL: False,
}


class Actor(BaseModel):
    """Authenticated caller issuing a command."""

    id: str = Field(..., min_length=1, description="Account id of the caller")
    role: AccountRole = Field(..., description="Caller role")

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


class AdminActionProcessor:
    """Applies staff commands and keeps the audit trail."""

    def __init__(self, engine: Optional[LifecycleEngine] = None, billing=None):
        """Initialize admin action processor.

        Args:
            engine: Lifecycle engine (defaults to global instance)
            billing: BillingConfig with retry settings (defaults to global config)
        """
        self.engine = engine if engine is not None else get_lifecycle_engine()
        self._billing = billing

    def apply(
        self,
        actor: Actor,
        subscription_id: str,
        action_type: AdminActionType,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SubscriptionStatus:
        """Apply an admin command.

        Args:
            actor: Caller, resolved by the authenticating gateway
            subscription_id: Target subscription
            action_type: Command kind
            reason: Reason shown to the client (REJECT, SUSPEND, WITHDRAW)
            notes: Internal notes kept on the audit row

        Returns:
            Subscription status after the command

        Raises:
            ActionError: FORBIDDEN, NOT_FOUND, INVALID_FOR_STATE, CONFLICT or UNAVAILABLE
        """
        if not actor.is_elevated:
            logger.warning(
                "admin_action_forbidden",
                actor_id=actor.id,
                actor_role=actor.role.value,
                subscription_id=shorten(subscription_id),
                action_type=action_type.value,
            )
            raise ActionError(ActionErrorKind.FORBIDDEN, "Admin role required")

        command = AdminCommand(
            subscription_id=subscription_id, type=action_type, reason=reason, notes=notes
        )

        try:
            result, action = run_with_conflict_retry(
                self._commit, actor, command, billing=self._billing
            )
        except SubscriptionNotFoundError as e:
            raise ActionError(ActionErrorKind.NOT_FOUND, f"Subscription not found: {subscription_id}") from e
        except IllegalTransition as e:
            logger.warning(
                "admin_action_invalid_for_state",
                actor_id=actor.id,
                subscription_id=shorten(subscription_id),
                action_type=action_type.value,
                current_status=e.current_status,
            )
            raise ActionError(ActionErrorKind.INVALID_FOR_STATE, str(e)) from e
        except ConcurrencyConflict as e:
            logger.warning(
                "admin_action_conflict",
                actor_id=actor.id,
                subscription_id=shorten(subscription_id),
                error=str(e),
            )
            raise ActionError(
                ActionErrorKind.CONFLICT, "Subscription is busy, please try again"
            ) from e
        except PersistenceError as e:
            logger.error("admin_action_unavailable", subscription_id=shorten(subscription_id), error=str(e))
            raise ActionError(ActionErrorKind.UNAVAILABLE, "Ledger unavailable") from e

        state_logger.log_admin_action(
            action_id=action.id,
            actor_id=actor.id,
            subscription_id=subscription_id,
            action_type=action_type,
            reason=reason,
            new_status=result.new_status.value,
        )
        self.engine.after_commit(result, reason=f"admin_{action_type.value.lower()}", actor_id=actor.id)
        self._toggle_owner_account(result.subscription, action_type)

        return result.new_status

    def _commit(self, actor: Actor, command: AdminCommand):
        now = self.engine.now_millis()
        with self.engine.ledger.transaction(command.subscription_id) as txn:
            result: TransitionResult = self.engine.run(txn, command, now)
            action = AdminActionRecord(
                id=generate_record_id(ADMIN_ACTION_PREFIX, now),
                actor_id=actor.id,
                target_subscription_id=command.subscription_id,
                action_type=command.type,
                reason=command.reason,
                notes=command.notes,
                created_time_millis=now,
            )
            txn.add_admin_action(action)
            return result, action

    def _toggle_owner_account(self, subscription: SubscriptionRecord, action_type: AdminActionType) -> None:
        is_active = ACCOUNT_ACTIVE_AFTER[action_type]
        try:
            self.engine.accounts.set_active(subscription.owner_id, is_active)
        except AccountNotFoundError:
            logger.warning(
                "owner_account_missing",
                owner_id=subscription.owner_id,
                subscription_id=shorten(subscription.id),
            )

    def list_actions(self, subscription_id: str) -> List[AdminActionRecord]:
        """Audit trail for a subscription, oldest first.

        Raises:
            ActionError: NOT_FOUND for an unknown subscription
        """
        subscription = self.get_subscription(subscription_id)
        return self.engine.ledger.get_admin_actions(subscription.id)

    def get_subscription(self, subscription_id: str) -> SubscriptionRecord:
        """Current subscription row.

        Raises:
            ActionError: NOT_FOUND or UNAVAILABLE
        """
        try:
            return self.engine.ledger.get_subscription(subscription_id)
        except SubscriptionNotFoundError as e:
            raise ActionError(ActionErrorKind.NOT_FOUND, f"Subscription not found: {subscription_id}") from e
        except PersistenceError as e:
            raise ActionError(ActionErrorKind.UNAVAILABLE, "Ledger unavailable") from e


_processor_instance: Optional[AdminActionProcessor] = None
_processor_lock = threading.Lock()


def get_admin_action_processor() -> AdminActionProcessor:
    """Get global admin action processor (singleton)."""
    global _processor_instance
    if _processor_instance is None:
        with _processor_lock:
            if _processor_instance is None:
                _processor_instance = AdminActionProcessor()
    return _processor_instance


def reset_admin_action_processor() -> None:
    """Drop the global processor so the next call rebuilds it."""
    global _processor_instance
    with _processor_lock:
        _processor_instance = None
