"""Subscription state machine.

The only code allowed to change a subscription's status. ``apply()`` is a
pure function of (subscription, event, now): it performs no I/O, returns
the new subscription copy plus the side effects the transition requires,
and raises ``IllegalTransition`` for any (status, event) pair without a
transition.

States:
    DRAFT -> PENDING_APPROVAL -> ACTIVE <-> SUSPENDED
    PENDING_APPROVAL -> REJECTED
    PENDING_APPROVAL | ACTIVE | SUSPENDED -> WITHDRAWN
    ACTIVE -> EXPIRED

REJECTED, WITHDRAWN and EXPIRED are terminal.
"""

from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from pydantic import BaseModel, Field

from office_lifecycle.errors import IllegalTransition
from office_lifecycle.models.effects import (
    NotifyAdmins,
    NotifyOwner,
    RecordPayment,
    RecordReminder,
    SendEmail,
    SideEffect,
)
from office_lifecycle.models.events import (
    AdminCommand,
    LifecycleEvent,
    PaymentFailed,
    PaymentSucceeded,
    RenewalCheckTick,
    event_name,
)
from office_lifecycle.models.ledger import AdminActionType, NotificationType
from office_lifecycle.models.payment import PaymentStatus
from office_lifecycle.models.subscription import SubscriptionRecord, SubscriptionStatus
from office_lifecycle.utils.billing_period import MILLIS_PER_YEAR, whole_days_between
from office_lifecycle.utils.formatting import format_amount, format_date

DEFAULT_RETRY_THRESHOLD = 3
DEFAULT_REMINDER_BUCKETS = (60, 30, 7)

# Statuses each admin command may be issued from
ADMIN_COMMAND_SOURCES: Dict[AdminActionType, FrozenSet[SubscriptionStatus]] = {
    AdminActionType.APPROVE: frozenset({SubscriptionStatus.PENDING_APPROVAL}),
    AdminActionType.REJECT: frozenset({SubscriptionStatus.PENDING_APPROVAL}),
    AdminActionType.SUSPEND: frozenset({SubscriptionStatus.ACTIVE}),
    AdminActionType.REACTIVATE: frozenset({SubscriptionStatus.SUSPENDED}),
    AdminActionType.WITHDRAW: frozenset(
        {SubscriptionStatus.PENDING_APPROVAL, SubscriptionStatus.ACTIVE, SubscriptionStatus.SUSPENDED}
    ),
    AdminActionType.CANCEL: frozenset(
        {SubscriptionStatus.PENDING_APPROVAL, SubscriptionStatus.ACTIVE, SubscriptionStatus.SUSPENDED}
    ),
}


class TransitionResult(BaseModel):
    """Outcome of one accepted event."""

    previous_status: SubscriptionStatus
    previous_retry_count: int = 0
    previous_end_time_millis: Optional[int] = None
    subscription: SubscriptionRecord
    side_effects: List[SideEffect] = Field(default_factory=list)

    @property
    def new_status(self) -> SubscriptionStatus:
        return self.subscription.status

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.subscription.status

    def effects_of(self, kind: type) -> list:
        """Side effects of one type, in emission order."""
        return [e for e in self.side_effects if isinstance(e, kind)]


class SubscriptionStateMachine:
    """Transition function for registered office subscriptions."""

    def __init__(
        self,
        retry_threshold: int = DEFAULT_RETRY_THRESHOLD,
        reminder_buckets: Iterable[int] = DEFAULT_REMINDER_BUCKETS,
        term_millis: int = MILLIS_PER_YEAR,
        plan_name: str = "Registered Office Address",
    ):
        """Initialize state machine.

        Args:
            retry_threshold: Failed payments that trigger suspension; the
                failure whose incremented count reaches it suspends
            reminder_buckets: Days-before-end at which renewal reminders fire
            term_millis: Length of one service term
            plan_name: Service name used in notification text
        """
        if retry_threshold < 1:
            raise ValueError("retry_threshold must be at least 1")
        self.retry_threshold = retry_threshold
        self.reminder_buckets = tuple(sorted(set(reminder_buckets), reverse=True))
        self.term_millis = term_millis
        self.plan_name = plan_name

        self._admin_handlers: Dict[AdminActionType, Callable] = {
            AdminActionType.APPROVE: self._approve,
            AdminActionType.REJECT: self._reject,
            AdminActionType.SUSPEND: self._suspend,
            AdminActionType.REACTIVATE: self._reactivate,
            AdminActionType.WITHDRAW: self._withdraw,
            AdminActionType.CANCEL: self._withdraw,
        }

    @classmethod
    def from_config(cls, config=None) -> "SubscriptionStateMachine":
        """Build a state machine from the service configuration."""
        if config is None:
            from office_lifecycle.config import get_config

            config = get_config()
        return cls(
            retry_threshold=config.billing.retry_threshold,
            reminder_buckets=config.reminder_buckets,
            term_millis=config.term_millis,
            plan_name=config.plan.name,
        )

    def apply(
        self,
        subscription: SubscriptionRecord,
        event: LifecycleEvent,
        now_millis: int,
        *,
        sent_reminder_buckets: FrozenSet[int] = frozenset(),
        owner_label: Optional[str] = None,
    ) -> TransitionResult:
        """Apply an event to a subscription.

        Args:
            subscription: Current subscription row (not modified)
            event: Lifecycle event targeting this subscription
            now_millis: Current time
            sent_reminder_buckets: Reminder buckets already sent for the
                subscription's current end date
            owner_label: Company name or email used in notification text

        Returns:
            TransitionResult with the new subscription copy and side effects

        Raises:
            IllegalTransition: If the event does not apply to the current status
            ValueError: If the event targets a different subscription
        """
        if event.subscription_id != subscription.id:
            raise ValueError(
                f"Event for {event.subscription_id} applied to subscription {subscription.id}"
            )

        label = owner_label or subscription.owner_id

        if isinstance(event, PaymentSucceeded):
            return self._on_payment_succeeded(subscription, event, now_millis, label)
        if isinstance(event, PaymentFailed):
            return self._on_payment_failed(subscription, event, now_millis)
        if isinstance(event, AdminCommand):
            return self._on_admin_command(subscription, event, now_millis)
        if isinstance(event, RenewalCheckTick):
            return self._on_renewal_tick(subscription, event, now_millis, sent_reminder_buckets, label)

        raise TypeError(f"Unsupported lifecycle event: {type(event).__name__}")

    def due_reminder_bucket(
        self,
        end_time_millis: int,
        as_of_millis: int,
        sent_buckets: FrozenSet[int] = frozenset(),
    ) -> Optional[int]:
        """Reminder bucket that should fire now, if any.

        The due bucket is the smallest bucket not below the whole days
        left; it fires only if it was not already sent for this end date.
        A sweep that missed a day still sends the bucket it has entered.
        """
        days_left = whole_days_between(end_time_millis, as_of_millis)
        candidates = [b for b in self.reminder_buckets if days_left <= b]
        if not candidates:
            return None
        bucket = min(candidates)
        return None if bucket in sent_buckets else bucket

    # Payment events

    def _on_payment_succeeded(
        self,
        subscription: SubscriptionRecord,
        event: PaymentSucceeded,
        now: int,
        label: str,
    ) -> TransitionResult:
        status = subscription.status
        amount = format_amount(event.amount_minor_units, event.currency)
        payment = RecordPayment(
            amount_minor_units=event.amount_minor_units,
            currency=event.currency,
            status=PaymentStatus.SUCCEEDED,
            method=event.method,
            external_intent_ref=event.external_intent_ref,
            paid_time_millis=now,
        )

        if status == SubscriptionStatus.DRAFT:
            end = now + self.term_millis
            updated = self._copy(
                subscription,
                now,
                status=SubscriptionStatus.PENDING_APPROVAL,
                start_time_millis=now,
                end_time_millis=end,
                next_payment_time_millis=end,
                payment_method=event.method,
                external_customer_ref=event.external_customer_ref or subscription.external_customer_ref,
                retry_count=0,
            )
            effects = [
                payment,
                NotifyOwner(
                    owner_id=subscription.owner_id,
                    type=NotificationType.PAYMENT_RECEIVED,
                    title="Payment Confirmed",
                    message=(
                        f"Your payment of {amount} has been received. "
                        "Your application is now under review by our admin team."
                    ),
                ),
                NotifyAdmins(
                    type=NotificationType.NEW_APPLICATION,
                    title="New Application - Payment Received",
                    message=(
                        f"{label} has paid {amount} and submitted their application. "
                        "Please review and approve or reject."
                    ),
                ),
                SendEmail(
                    owner_id=subscription.owner_id,
                    template="payment_received",
                    subject=f"Payment Received: {self.plan_name}",
                    body=(
                        f"Thank you, {label}. We have received your payment of {amount}. "
                        f"Your service period runs from {format_date(now)} to {format_date(end)}."
                    ),
                ),
            ]
            return self._result(subscription, updated, effects)

        if status == SubscriptionStatus.ACTIVE:
            base = max(subscription.end_time_millis or now, now)
            end = base + self.term_millis
            updated = self._copy(
                subscription,
                now,
                end_time_millis=end,
                next_payment_time_millis=end,
                payment_method=event.method,
                external_customer_ref=event.external_customer_ref or subscription.external_customer_ref,
                retry_count=0,
            )
            effects = [
                payment,
                NotifyOwner(
                    owner_id=subscription.owner_id,
                    type=NotificationType.PAYMENT_RECEIVED,
                    title="Payment Confirmed",
                    message=(
                        f"Your payment of {amount} has been received. "
                        f"Your {self.plan_name} service now runs until {format_date(end)}."
                    ),
                ),
                SendEmail(
                    owner_id=subscription.owner_id,
                    template="payment_received",
                    subject=f"Payment Received: {self.plan_name}",
                    body=(
                        f"Thank you, {label}. We have received your renewal payment of {amount}. "
                        f"Your service now runs until {format_date(end)}."
                    ),
                ),
            ]
            return self._result(subscription, updated, effects)

        raise IllegalTransition(status.value, event_name(event))

    def _on_payment_failed(
        self, subscription: SubscriptionRecord, event: PaymentFailed, now: int
    ) -> TransitionResult:
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise IllegalTransition(subscription.status.value, event_name(event))

        retry_count = subscription.retry_count + 1

        if retry_count >= self.retry_threshold:
            updated = self._copy(
                subscription, now, status=SubscriptionStatus.SUSPENDED, retry_count=retry_count
            )
            effects = [
                NotifyOwner(
                    owner_id=subscription.owner_id,
                    type=NotificationType.ACCOUNT_SUSPENDED,
                    title="Account Suspended",
                    message=(
                        "Your subscription has been suspended due to repeated payment failures. "
                        "Please update your payment method to reactivate."
                    ),
                ),
                SendEmail(
                    owner_id=subscription.owner_id,
                    template="account_suspended",
                    subject=f"Account Suspended: {self.plan_name}",
                    body=(
                        f"We were unable to collect payment after {retry_count} attempts, "
                        "so your service has been suspended. Please update your payment method."
                    ),
                ),
            ]
            return self._result(subscription, updated, effects)

        updated = self._copy(subscription, now, retry_count=retry_count)
        effects = [
            NotifyOwner(
                owner_id=subscription.owner_id,
                type=NotificationType.PAYMENT_FAILED,
                title="Payment Failed",
                message=(
                    "Your payment attempt failed. We will retry automatically. "
                    f"Attempt {retry_count} of {self.retry_threshold}."
                ),
            ),
            SendEmail(
                owner_id=subscription.owner_id,
                template="payment_failed",
                subject=f"Payment Failed: {self.plan_name}",
                body=(
                    "Your latest payment attempt failed. We will retry automatically "
                    f"(attempt {retry_count} of {self.retry_threshold})."
                ),
            ),
        ]
        return self._result(subscription, updated, effects)

    # Admin commands

    def _on_admin_command(
        self, subscription: SubscriptionRecord, event: AdminCommand, now: int
    ) -> TransitionResult:
        allowed = ADMIN_COMMAND_SOURCES[event.type]
        if subscription.status not in allowed:
            raise IllegalTransition(subscription.status.value, event_name(event))
        return self._admin_handlers[event.type](subscription, event, now)

    def _approve(self, subscription: SubscriptionRecord, event: AdminCommand, now: int):
        start = subscription.start_time_millis if subscription.start_time_millis is not None else now
        end = subscription.end_time_millis
        if end is None:
            end = start + self.term_millis
        next_payment = subscription.next_payment_time_millis
        if next_payment is None:
            next_payment = end

        updated = self._copy(
            subscription,
            now,
            status=SubscriptionStatus.ACTIVE,
            start_time_millis=start,
            end_time_millis=end,
            next_payment_time_millis=next_payment,
        )
        return self._result(
            subscription,
            updated,
            self._owner_effects(
                subscription,
                NotificationType.APPLICATION_APPROVED,
                "Application Approved",
                (
                    f"Your {self.plan_name} application has been approved. "
                    f"Your service is active until {format_date(end)}."
                ),
                template="application_approved",
            ),
        )

    def _reject(self, subscription: SubscriptionRecord, event: AdminCommand, now: int):
        updated = self._copy(subscription, now, status=SubscriptionStatus.REJECTED)
        return self._result(
            subscription,
            updated,
            self._owner_effects(
                subscription,
                NotificationType.APPLICATION_REJECTED,
                "Application Rejected",
                "Your application has been rejected. "
                + self._reason_text(event.reason, "Please contact us for more details."),
                template="application_rejected",
            ),
        )

    def _suspend(self, subscription: SubscriptionRecord, event: AdminCommand, now: int):
        updated = self._copy(subscription, now, status=SubscriptionStatus.SUSPENDED)
        return self._result(
            subscription,
            updated,
            self._owner_effects(
                subscription,
                NotificationType.ACCOUNT_SUSPENDED,
                "Account Suspended",
                "Your account has been suspended. "
                + self._reason_text(event.reason, "Please contact us for assistance."),
                template="account_suspended",
            ),
        )

    def _reactivate(self, subscription: SubscriptionRecord, event: AdminCommand, now: int):
        updated = self._copy(subscription, now, status=SubscriptionStatus.ACTIVE, retry_count=0)
        return self._result(
            subscription,
            updated,
            self._owner_effects(
                subscription,
                NotificationType.ACCOUNT_REACTIVATED,
                "Account Reactivated",
                f"Your account has been reactivated. Your {self.plan_name} service is now active again.",
                template="account_reactivated",
            ),
        )

    def _withdraw(self, subscription: SubscriptionRecord, event: AdminCommand, now: int):
        updated = self._copy(subscription, now, status=SubscriptionStatus.WITHDRAWN)
        if event.type == AdminActionType.CANCEL:
            effects = self._owner_effects(
                subscription,
                NotificationType.SERVICE_CANCELLED,
                "Service Cancelled",
                f"Your {self.plan_name} service has been cancelled.",
                template="service_cancelled",
            )
        else:
            effects = self._owner_effects(
                subscription,
                NotificationType.SERVICE_WITHDRAWN,
                "Service Withdrawn",
                f"Your {self.plan_name} service has been withdrawn. "
                "Please contact us if you have any questions.",
                template="service_withdrawn",
            )
        return self._result(subscription, updated, effects)

    # Renewal checks

    def _on_renewal_tick(
        self,
        subscription: SubscriptionRecord,
        event: RenewalCheckTick,
        now: int,
        sent_buckets: FrozenSet[int],
        label: str,
    ) -> TransitionResult:
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise IllegalTransition(subscription.status.value, event_name(event))

        end = subscription.end_time_millis
        if end is None:
            return self._result(subscription, subscription, [])

        if end <= event.as_of_millis:
            updated = self._copy(subscription, now, status=SubscriptionStatus.EXPIRED)
            return self._result(
                subscription,
                updated,
                self._owner_effects(
                    subscription,
                    NotificationType.SUBSCRIPTION_EXPIRED,
                    "Subscription Expired",
                    f"Your {self.plan_name} service for {label} expired on {format_date(end)}. "
                    "Please renew to restore your service.",
                    template="subscription_expired",
                ),
            )

        bucket = self.due_reminder_bucket(end, event.as_of_millis, sent_buckets)
        if bucket is None:
            return self._result(subscription, subscription, [])

        days_left = whole_days_between(end, event.as_of_millis)
        effects: List[SideEffect] = [RecordReminder(bucket_days=bucket, end_time_millis=end)]
        effects.extend(
            self._owner_effects(
                subscription,
                NotificationType.RENEWAL_REMINDER,
                "Subscription Renewal Reminder",
                f"Your {self.plan_name} service for {label} expires on {format_date(end)} "
                f"({days_left} days). Please renew to maintain your service.",
                template="renewal_reminder",
            )
        )
        return self._result(subscription, subscription, effects)

    # Helpers

    def _owner_effects(
        self,
        subscription: SubscriptionRecord,
        notification_type: NotificationType,
        title: str,
        message: str,
        template: str,
    ) -> List[SideEffect]:
        return [
            NotifyOwner(
                owner_id=subscription.owner_id,
                type=notification_type,
                title=title,
                message=message,
            ),
            SendEmail(
                owner_id=subscription.owner_id,
                template=template,
                subject=f"{title}: {self.plan_name}",
                body=message,
            ),
        ]

    @staticmethod
    def _reason_text(reason: Optional[str], fallback: str) -> str:
        return f"Reason: {reason}" if reason else fallback

    @staticmethod
    def _copy(subscription: SubscriptionRecord, now: int, **changes) -> SubscriptionRecord:
        changes["updated_time_millis"] = now
        return subscription.model_copy(update=changes)

    @staticmethod
    def _result(
        previous: SubscriptionRecord,
        updated: SubscriptionRecord,
        effects: List[SideEffect],
    ) -> TransitionResult:
        return TransitionResult(
            previous_status=previous.status,
            previous_retry_count=previous.retry_count,
            previous_end_time_millis=previous.end_time_millis,
            subscription=updated,
            side_effects=effects,
        )
