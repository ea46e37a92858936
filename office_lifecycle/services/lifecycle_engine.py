"""Lifecycle engine - executes state machine transitions against the ledger.

Responsibilities:
- Feed lifecycle events through the state machine inside an open ledger transaction
- Materialize side effects as staged ledger writes (payments, notifications, reminders)
- After commit: log state changes and dispatch emails, never raising
"""

import threading
from typing import Any, Optional

from office_lifecycle import state_logger
from office_lifecycle.logging_config import get_logger
from office_lifecycle.models.effects import (
    EmailMessage,
    NotifyAdmins,
    NotifyOwner,
    RecordPayment,
    RecordReminder,
    SendEmail,
)
from office_lifecycle.models.events import LifecycleEvent, RenewalCheckTick, event_name
from office_lifecycle.models.ledger import NotificationRecord, RenewalReminderRecord
from office_lifecycle.models.payment import PaymentRecord
from office_lifecycle.repositories.account_directory import AccountDirectory, get_account_directory
from office_lifecycle.repositories.ledger_store import LedgerStore, LedgerTransaction, get_ledger_store
from office_lifecycle.services.email_dispatcher import EmailDispatcher, get_email_dispatcher
from office_lifecycle.services.state_machine import SubscriptionStateMachine, TransitionResult
from office_lifecycle.utils.identifiers import (
    NOTIFICATION_PREFIX,
    PAYMENT_PREFIX,
    generate_record_id,
    shorten,
)

logger = get_logger(__name__)


class LifecycleEngine:
    """Runs state machine transitions and applies their side effects.

    Processors open the ledger transaction, call ``run()`` inside it and
    call ``after_commit()`` once the transaction has committed.
    """

    def __init__(
        self,
        ledger: Optional[LedgerStore] = None,
        accounts: Optional[AccountDirectory] = None,
        email_dispatcher: Optional[EmailDispatcher] = None,
        state_machine: Optional[SubscriptionStateMachine] = None,
        time_controller=None,
    ):
        """Initialize lifecycle engine.

        Args:
            ledger: Ledger store (defaults to global instance)
            accounts: Account directory (defaults to global instance)
            email_dispatcher: Email publisher (defaults to global instance)
            state_machine: Transition function (defaults to one built from config)
            time_controller: Clock (defaults to global instance)
        """
        self.ledger = ledger if ledger is not None else get_ledger_store()
        self.accounts = accounts if accounts is not None else get_account_directory()
        self.state_machine = state_machine if state_machine is not None else SubscriptionStateMachine.from_config()
        self._email_dispatcher = email_dispatcher
        self._time_controller = time_controller

        logger.info("lifecycle_engine_initialized")

    def _get_email_dispatcher(self) -> EmailDispatcher:
        """lazy load email dispatcher"""
        if self._email_dispatcher is None:
            self._email_dispatcher = get_email_dispatcher()
        return self._email_dispatcher

    def _get_time_controller(self):
        """lazy load time controller to avoid circular import"""
        if self._time_controller is None:
            from office_lifecycle.services.time_controller import get_time_controller

            self._time_controller = get_time_controller()
        return self._time_controller

    def now_millis(self) -> int:
        """Current time according to the service clock."""
        return self._get_time_controller().get_current_time_millis()

    def run(self, txn: LedgerTransaction, event: LifecycleEvent, now_millis: int) -> TransitionResult:
        """Apply an event to the transaction's subscription and stage its writes.

        Args:
            txn: Open transaction on the event's subscription
            event: Lifecycle event
            now_millis: Transition time

        Returns:
            TransitionResult from the state machine

        Raises:
            IllegalTransition: Propagated from the state machine; nothing is staged
        """
        subscription = txn.subscription

        sent_buckets = frozenset()
        if isinstance(event, RenewalCheckTick) and subscription.end_time_millis is not None:
            sent_buckets = txn.sent_reminder_buckets(subscription.end_time_millis)

        result = self.state_machine.apply(
            subscription,
            event,
            now_millis,
            sent_reminder_buckets=sent_buckets,
            owner_label=self.accounts.label_for(subscription.owner_id),
        )

        if result.subscription != subscription:
            txn.save_subscription(result.subscription)

        for effect in result.side_effects:
            if isinstance(effect, RecordPayment):
                self._stage_payment(txn, effect, now_millis)
            elif isinstance(effect, NotifyOwner):
                self._stage_notification(txn, effect.owner_id, effect, now_millis)
            elif isinstance(effect, NotifyAdmins):
                for admin in self.accounts.list_admins():
                    self._stage_notification(txn, admin.id, effect, now_millis)
            elif isinstance(effect, RecordReminder):
                txn.add_reminder(
                    RenewalReminderRecord(
                        subscription_id=subscription.id,
                        bucket_days=effect.bucket_days,
                        end_time_millis=effect.end_time_millis,
                        sent_time_millis=now_millis,
                    )
                )
            # SendEmail is dispatched by after_commit()

        logger.debug(
            "transition_staged",
            subscription_id=shorten(subscription.id),
            lifecycle_event=event_name(event),
            previous_status=result.previous_status.value,
            new_status=result.new_status.value,
            side_effects=len(result.side_effects),
        )
        return result

    def _stage_payment(self, txn: LedgerTransaction, effect: RecordPayment, now_millis: int) -> None:
        """Settle the existing row for the intent, or create one."""
        existing = None
        if effect.external_intent_ref:
            existing = txn.find_payment_by_intent(effect.external_intent_ref)

        if existing is not None:
            if existing.status != effect.status:
                txn.set_payment_status(existing.id, effect.status, effect.paid_time_millis)
            return

        txn.add_payment(
            PaymentRecord(
                id=generate_record_id(PAYMENT_PREFIX, now_millis),
                subscription_id=txn.subscription_id,
                owner_id=txn.subscription.owner_id,
                amount_minor_units=effect.amount_minor_units,
                currency=effect.currency,
                status=effect.status,
                payment_method=effect.method,
                external_intent_ref=effect.external_intent_ref,
                paid_time_millis=effect.paid_time_millis,
                created_time_millis=now_millis,
            )
        )

    @staticmethod
    def _stage_notification(
        txn: LedgerTransaction, recipient_id: str, effect, now_millis: int
    ) -> None:
        txn.add_notification(
            NotificationRecord(
                id=generate_record_id(NOTIFICATION_PREFIX, now_millis),
                owner_id=recipient_id,
                type=effect.type,
                title=effect.title,
                message=effect.message,
                created_time_millis=now_millis,
            )
        )

    def after_commit(self, result: TransitionResult, reason: str, **context: Any) -> int:
        """Log a committed transition and send its emails.

        Failures are logged and swallowed: the transition is already durable.

        Args:
            result: Committed transition
            reason: What caused it (gateway event type, admin command, sweep)
            **context: Extra log fields (event_id, actor_id, ...)

        Returns:
            Number of emails handed to the dispatcher
        """
        subscription = result.subscription

        if result.status_changed:
            state_logger.log_subscription_state_change(
                subscription_id=subscription.id,
                owner_id=subscription.owner_id,
                old_status=result.previous_status,
                new_status=result.new_status,
                reason=reason,
                **context,
            )

        if result.previous_retry_count != subscription.retry_count:
            state_logger.log_retry_count_change(
                subscription_id=subscription.id,
                old_count=result.previous_retry_count,
                new_count=subscription.retry_count,
                threshold=self.state_machine.retry_threshold,
                reason=reason,
            )

        if (
            subscription.end_time_millis is not None
            and result.previous_end_time_millis != subscription.end_time_millis
        ):
            state_logger.log_term_change(
                subscription_id=subscription.id,
                old_end_millis=result.previous_end_time_millis,
                new_end_millis=subscription.end_time_millis,
                reason=reason,
            )

        for payment in result.effects_of(RecordPayment):
            state_logger.log_payment_status_change(
                payment_id=payment.external_intent_ref or "-",
                subscription_id=subscription.id,
                old_status=None,
                new_status=payment.status,
                reason=reason,
                amount_minor_units=payment.amount_minor_units,
                currency=payment.currency,
            )

        emails_sent = 0
        for email in result.effects_of(SendEmail):
            if self._send_email(email, subscription.id, subscription.updated_time_millis):
                emails_sent += 1
        return emails_sent

    def _send_email(self, effect: SendEmail, subscription_id: str, now_millis: int) -> bool:
        account = self.accounts.find(effect.owner_id)
        if account is None:
            logger.warning(
                "email_recipient_unknown",
                owner_id=effect.owner_id,
                template=effect.template,
                subscription_id=shorten(subscription_id),
            )
            return False

        message = EmailMessage(
            to=account.email,
            owner_id=effect.owner_id,
            template=effect.template,
            subject=effect.subject,
            body=effect.body,
            subscription_id=subscription_id,
            created_time_millis=now_millis,
        )
        try:
            return self._get_email_dispatcher().publish_email(message)
        except Exception as e:
            logger.error(
                "email_dispatch_failed",
                owner_id=effect.owner_id,
                template=effect.template,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return False


_engine_instance: Optional[LifecycleEngine] = None
_engine_lock = threading.Lock()


def get_lifecycle_engine() -> LifecycleEngine:
    """Get global lifecycle engine instance (singleton)."""
    global _engine_instance
    if _engine_instance is None:
        with _engine_lock:
            if _engine_instance is None:
                _engine_instance = LifecycleEngine()
    return _engine_instance


def reset_lifecycle_engine() -> None:
    """Drop the global engine so the next call rebuilds it from config."""
    global _engine_instance
    with _engine_lock:
        _engine_instance = None
