"""Ledger store - in-memory storage for subscriptions, payments and audit rows.

Every lifecycle transition runs inside ``LedgerStore.transaction()``: the
subscription row lock is held for the whole read-modify-write, writes are
staged on a ``LedgerTransaction`` and applied together on commit, or not
at all.
"""

import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import ValidationError

from office_lifecycle.errors import (
    AlreadyProcessed,
    ConcurrencyConflict,
    LifecycleError,
    PersistenceError,
)
from office_lifecycle.logging_config import get_logger
from office_lifecycle.models.ledger import (
    AdminActionRecord,
    NotificationRecord,
    ProcessedEventRecord,
    RenewalReminderRecord,
)
from office_lifecycle.models.payment import PaymentRecord, PaymentStatus
from office_lifecycle.models.subscription import SubscriptionRecord, SubscriptionStatus
from office_lifecycle.utils.identifiers import SUBSCRIPTION_PREFIX, generate_record_id, shorten

logger = get_logger(__name__)


class SubscriptionNotFoundError(LifecycleError):
    """Raised when a subscription is not found in the store."""

    pass


class DuplicateSubscriptionError(LifecycleError):
    """Raised when an owner already has a subscription."""

    pass


class EventAlreadyProcessed(AlreadyProcessed):
    """Raised on commit when another transaction recorded the same event id first."""

    pass


class IntegrityError(LifecycleError):
    """Raised when a staged write violates a ledger constraint."""

    pass


ReminderKey = Tuple[str, int, int]


class LedgerTransaction:
    """Unit of work for one subscription.

    Holds a private copy of the subscription and every staged write. Reads
    through the transaction see staged rows first, then committed rows.
    Nothing is visible to other callers until the store commits it.
    """

    def __init__(self, store: "LedgerStore", subscription: SubscriptionRecord):
        self._store = store
        self._base_version = subscription.version
        self.subscription = subscription
        self._subscription_dirty = False

        self._new_payments: Dict[str, PaymentRecord] = {}
        self._payment_updates: Dict[str, PaymentRecord] = {}
        self._payment_expected: Dict[str, PaymentStatus] = {}
        self._events: Dict[str, ProcessedEventRecord] = {}
        self._admin_actions: List[AdminActionRecord] = []
        self._notifications: List[NotificationRecord] = []
        self._reminders: Dict[ReminderKey, RenewalReminderRecord] = {}

    @property
    def subscription_id(self) -> str:
        return self.subscription.id

    @property
    def has_changes(self) -> bool:
        return bool(
            self._subscription_dirty
            or self._new_payments
            or self._payment_updates
            or self._events
            or self._admin_actions
            or self._notifications
            or self._reminders
        )

    # Subscription

    def save_subscription(self, subscription: SubscriptionRecord) -> None:
        """Stage the new subscription row."""
        if subscription.id != self.subscription.id:
            raise IntegrityError(
                f"Transaction for {self.subscription.id} cannot save {subscription.id}"
            )
        self.subscription = subscription
        self._subscription_dirty = True

    # Payments

    def add_payment(self, payment: PaymentRecord) -> PaymentRecord:
        """Stage a new payment row.

        Raises:
            IntegrityError: If the row targets another subscription or its
                intent ref is already in use
        """
        if payment.subscription_id != self.subscription.id:
            raise IntegrityError(
                f"Payment {payment.id} belongs to {payment.subscription_id}, "
                f"not {self.subscription.id}"
            )
        if payment.external_intent_ref and self.find_payment_by_intent(payment.external_intent_ref):
            raise IntegrityError(f"Duplicate payment intent ref: {payment.external_intent_ref}")

        self._new_payments[payment.id] = payment
        return payment

    def find_payment_by_intent(self, intent_ref: str) -> Optional[PaymentRecord]:
        """Find a payment by gateway intent ref, staged rows first."""
        for payment in list(self._new_payments.values()) + list(self._payment_updates.values()):
            if payment.external_intent_ref == intent_ref:
                return payment
        return self._store.find_payment_by_intent(intent_ref)

    def get_payments(self) -> List[PaymentRecord]:
        """Payments for this subscription including staged ones."""
        committed = {
            p.id: p for p in self._store.get_payments(self.subscription.id)
        }
        committed.update(self._payment_updates)
        committed.update(self._new_payments)
        return sorted(committed.values(), key=lambda p: p.created_time_millis)

    def set_payment_status(
        self,
        payment_id: str,
        status: PaymentStatus,
        paid_time_millis: Optional[int] = None,
    ) -> PaymentRecord:
        """Stage an in-place payment status change.

        Raises:
            IntegrityError: If the payment is unknown, belongs to another
                subscription, or the status change is not allowed
        """
        if payment_id in self._new_payments:
            payment = self._new_payments[payment_id]
        elif payment_id in self._payment_updates:
            payment = self._payment_updates[payment_id]
        else:
            payment = self._store.find_payment(payment_id)
            if payment is None:
                raise IntegrityError(f"Payment not found: {payment_id}")
            self._payment_expected[payment_id] = payment.status

        if payment.subscription_id != self.subscription.id:
            raise IntegrityError(f"Payment {payment_id} belongs to {payment.subscription_id}")
        if not payment.can_transition_to(status):
            raise IntegrityError(
                f"Payment {payment_id} cannot move from {payment.status.value} to {status.value}"
            )

        update = {"status": status}
        if paid_time_millis is not None:
            update["paid_time_millis"] = paid_time_millis
        updated = payment.model_copy(update=update)

        if payment_id in self._new_payments:
            self._new_payments[payment_id] = updated
        else:
            self._payment_updates[payment_id] = updated
        return updated

    # Processed events

    def is_event_processed(self, external_event_id: str) -> bool:
        return external_event_id in self._events or self._store.is_event_processed(
            external_event_id
        )

    def mark_event_processed(
        self, external_event_id: str, event_type: str, now_millis: int
    ) -> ProcessedEventRecord:
        """Stage the dedup row for a gateway event.

        Raises:
            EventAlreadyProcessed: If the id is already recorded
        """
        if self.is_event_processed(external_event_id):
            raise EventAlreadyProcessed(external_event_id)
        record = ProcessedEventRecord(
            external_event_id=external_event_id,
            event_type=event_type,
            processed_time_millis=now_millis,
        )
        self._events[external_event_id] = record
        return record

    # Audit and notifications

    def add_admin_action(self, action: AdminActionRecord) -> None:
        if action.target_subscription_id != self.subscription.id:
            raise IntegrityError(
                f"Admin action targets {action.target_subscription_id}, not {self.subscription.id}"
            )
        self._admin_actions.append(action)

    def add_notification(self, notification: NotificationRecord) -> None:
        self._notifications.append(notification)

    @property
    def staged_notifications(self) -> List[NotificationRecord]:
        return list(self._notifications)

    # Renewal reminders

    def add_reminder(self, reminder: RenewalReminderRecord) -> None:
        """Stage a reminder dedup row.

        Raises:
            IntegrityError: If the reminder for this bucket and term was already sent
        """
        if reminder.subscription_id != self.subscription.id:
            raise IntegrityError(
                f"Reminder targets {reminder.subscription_id}, not {self.subscription.id}"
            )
        if self.has_reminder(reminder.bucket_days, reminder.end_time_millis):
            raise IntegrityError(
                f"Reminder already sent for {reminder.bucket_days} days before {reminder.end_time_millis}"
            )
        self._reminders[reminder.key] = reminder

    def has_reminder(self, bucket_days: int, end_time_millis: int) -> bool:
        key = (self.subscription.id, bucket_days, end_time_millis)
        return key in self._reminders or self._store.has_reminder(*key)

    def sent_reminder_buckets(self, end_time_millis: int) -> frozenset:
        """Buckets already reminded for the given term end."""
        staged = {
            key[1] for key in self._reminders if key[2] == end_time_millis
        }
        return frozenset(staged) | self._store.sent_reminder_buckets(
            self.subscription.id, end_time_millis
        )


class LedgerStore:
    """In-memory ledger for subscriptions, payments, dedup and audit rows.

    Thread-safe. A global re-entrant lock guards the dictionaries; a
    per-subscription lock serializes transitions on the same subscription
    while transitions on different subscriptions run independently.
    """

    def __init__(self, lock_timeout_seconds: float = 5.0):
        """Initialize ledger with empty storage.

        Args:
            lock_timeout_seconds: How long transaction() waits for a
                subscription row lock before raising ConcurrencyConflict
        """
        self._subscriptions: Dict[str, SubscriptionRecord] = {}
        self._owner_index: Dict[str, str] = {}
        self._payments: Dict[str, PaymentRecord] = {}
        self._intent_index: Dict[str, str] = {}
        self._processed_events: Dict[str, ProcessedEventRecord] = {}
        self._admin_actions: List[AdminActionRecord] = []
        self._notifications: Dict[str, NotificationRecord] = {}
        self._reminders: Dict[ReminderKey, RenewalReminderRecord] = {}

        self._lock = threading.RLock()
        self._row_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._lock_timeout_seconds = lock_timeout_seconds
        self._unavailable = False

    # Availability

    def simulate_outage(self, unavailable: bool = True) -> None:
        """Make every ledger call fail with PersistenceError (or restore it)."""
        self._unavailable = unavailable
        logger.warning("ledger_availability_changed", unavailable=unavailable)

    def _check_available(self) -> None:
        if self._unavailable:
            raise PersistenceError("Ledger store is unavailable")

    # Subscriptions

    def create_subscription(self, owner_id: str, now_millis: int) -> SubscriptionRecord:
        """Create the owner's subscription in DRAFT.

        Raises:
            DuplicateSubscriptionError: If the owner already has one
        """
        self._check_available()
        with self._lock:
            if owner_id in self._owner_index:
                raise DuplicateSubscriptionError(
                    f"Owner {owner_id} already has subscription {self._owner_index[owner_id]}"
                )
            subscription = SubscriptionRecord(
                id=generate_record_id(SUBSCRIPTION_PREFIX, now_millis),
                owner_id=owner_id,
                status=SubscriptionStatus.DRAFT,
                created_time_millis=now_millis,
                updated_time_millis=now_millis,
            )
            self._subscriptions[subscription.id] = subscription
            self._owner_index[owner_id] = subscription.id

        logger.info(
            "subscription_created",
            subscription_id=shorten(subscription.id),
            owner_id=owner_id,
        )
        return subscription.model_copy()

    def get_subscription(self, subscription_id: str) -> SubscriptionRecord:
        """Get subscription by id.

        Raises:
            SubscriptionNotFoundError: If the id is unknown
        """
        subscription = self.find_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(f"Subscription not found: {subscription_id}")
        return subscription

    def find_subscription(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        """Find subscription by id (returns None if not found)."""
        self._check_available()
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            return subscription.model_copy() if subscription else None

    def find_subscription_by_owner(self, owner_id: str) -> Optional[SubscriptionRecord]:
        """Find the owner's subscription (returns None if the owner has none)."""
        self._check_available()
        with self._lock:
            subscription_id = self._owner_index.get(owner_id)
            if subscription_id is None:
                return None
            return self._subscriptions[subscription_id].model_copy()

    def list_by_status(self, status: SubscriptionStatus) -> List[SubscriptionRecord]:
        """Snapshot of every subscription in ``status``."""
        self._check_available()
        with self._lock:
            return [s.model_copy() for s in self._subscriptions.values() if s.status == status]

    # Payments

    def find_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        self._check_available()
        with self._lock:
            payment = self._payments.get(payment_id)
            return payment.model_copy() if payment else None

    def find_payment_by_intent(self, intent_ref: str) -> Optional[PaymentRecord]:
        """Find the payment for a gateway intent ref."""
        self._check_available()
        with self._lock:
            payment_id = self._intent_index.get(intent_ref)
            if payment_id is None:
                return None
            return self._payments[payment_id].model_copy()

    def get_payments(self, subscription_id: str) -> List[PaymentRecord]:
        """Payments for a subscription, oldest first."""
        self._check_available()
        with self._lock:
            return sorted(
                (p.model_copy() for p in self._payments.values() if p.subscription_id == subscription_id),
                key=lambda p: p.created_time_millis,
            )

    # Processed events

    def is_event_processed(self, external_event_id: str) -> bool:
        self._check_available()
        with self._lock:
            return external_event_id in self._processed_events

    # Audit trail and notifications

    def get_admin_actions(self, subscription_id: str) -> List[AdminActionRecord]:
        """Audit rows for a subscription, oldest first."""
        self._check_available()
        with self._lock:
            return [
                a.model_copy()
                for a in self._admin_actions
                if a.target_subscription_id == subscription_id
            ]

    def get_notifications(self, owner_id: str, unread_only: bool = False) -> List[NotificationRecord]:
        """Notifications addressed to an account, oldest first."""
        self._check_available()
        with self._lock:
            return [
                n.model_copy()
                for n in self._notifications.values()
                if n.owner_id == owner_id and not (unread_only and n.is_read)
            ]

    def mark_notification_read(self, notification_id: str) -> bool:
        """Mark a notification read. Returns False if the id is unknown."""
        self._check_available()
        with self._lock:
            notification = self._notifications.get(notification_id)
            if notification is None:
                return False
            self._notifications[notification_id] = notification.model_copy(update={"is_read": True})
            return True

    # Renewal reminders

    def has_reminder(self, subscription_id: str, bucket_days: int, end_time_millis: int) -> bool:
        self._check_available()
        with self._lock:
            return (subscription_id, bucket_days, end_time_millis) in self._reminders

    def sent_reminder_buckets(self, subscription_id: str, end_time_millis: int) -> frozenset:
        self._check_available()
        with self._lock:
            return frozenset(
                bucket
                for (sub_id, bucket, end) in self._reminders
                if sub_id == subscription_id and end == end_time_millis
            )

    # Transactions

    @contextmanager
    def transaction(
        self, subscription_id: str, timeout: Optional[float] = None
    ) -> Iterator[LedgerTransaction]:
        """Open a unit of work on one subscription.

        The subscription row lock is held until the block exits. Staged
        writes are committed when the block exits cleanly and discarded
        when it raises.

        Args:
            subscription_id: Subscription to lock
            timeout: Seconds to wait for the row lock (defaults to the store setting)

        Raises:
            SubscriptionNotFoundError: If the id is unknown
            ConcurrencyConflict: If the row lock is not acquired in time or
                the row changed underneath the transaction
            PersistenceError: If the ledger is unavailable
        """
        self._check_available()
        with self._lock:
            if subscription_id not in self._subscriptions:
                raise SubscriptionNotFoundError(f"Subscription not found: {subscription_id}")
            row_lock = self._row_locks[subscription_id]

        wait = self._lock_timeout_seconds if timeout is None else timeout
        if not row_lock.acquire(timeout=wait):
            logger.warning(
                "subscription_lock_timeout",
                subscription_id=shorten(subscription_id),
                timeout_seconds=wait,
            )
            raise ConcurrencyConflict(f"Subscription {subscription_id} is locked by another transition")

        try:
            txn = LedgerTransaction(self, self.get_subscription(subscription_id))
            yield txn
            self._commit(txn)
        finally:
            row_lock.release()

    def _commit(self, txn: LedgerTransaction) -> None:
        """Validate every staged write, then apply them together."""
        if not txn.has_changes:
            return

        with self._lock:
            self._check_available()

            stored = self._subscriptions.get(txn.subscription_id)
            if stored is None:
                raise SubscriptionNotFoundError(f"Subscription not found: {txn.subscription_id}")
            if stored.version != txn._base_version:
                raise ConcurrencyConflict(
                    f"Subscription {txn.subscription_id} changed during the transaction"
                )

            for event_id in txn._events:
                if event_id in self._processed_events:
                    raise EventAlreadyProcessed(event_id)

            for payment in txn._new_payments.values():
                if payment.id in self._payments:
                    raise IntegrityError(f"Duplicate payment id: {payment.id}")
                ref = payment.external_intent_ref
                if ref and ref in self._intent_index:
                    raise IntegrityError(f"Duplicate payment intent ref: {ref}")

            for payment_id, expected in txn._payment_expected.items():
                if self._payments[payment_id].status != expected:
                    raise ConcurrencyConflict(f"Payment {payment_id} changed during the transaction")

            for key in txn._reminders:
                if key in self._reminders:
                    raise IntegrityError(f"Reminder already recorded: {key}")

            new_subscription = None
            if txn._subscription_dirty:
                try:
                    new_subscription = SubscriptionRecord.model_validate(
                        {**txn.subscription.model_dump(), "version": stored.version + 1}
                    )
                except ValidationError as e:
                    raise IntegrityError(f"Invalid subscription row: {e}") from e

            # Apply
            if new_subscription is not None:
                self._subscriptions[new_subscription.id] = new_subscription
            for payment in txn._new_payments.values():
                self._payments[payment.id] = payment
                if payment.external_intent_ref:
                    self._intent_index[payment.external_intent_ref] = payment.id
            for payment in txn._payment_updates.values():
                self._payments[payment.id] = payment
            self._processed_events.update(txn._events)
            self._admin_actions.extend(txn._admin_actions)
            for notification in txn._notifications:
                self._notifications[notification.id] = notification
            self._reminders.update(txn._reminders)

        logger.debug(
            "ledger_transaction_committed",
            subscription_id=shorten(txn.subscription_id),
            payments=len(txn._new_payments) + len(txn._payment_updates),
            events=len(txn._events),
            notifications=len(txn._notifications),
            admin_actions=len(txn._admin_actions),
            reminders=len(txn._reminders),
        )

    # Housekeeping

    def clear(self) -> None:
        """Clear all ledger data.

        Warning: This removes all data. Use with caution.
        """
        with self._lock:
            self._subscriptions.clear()
            self._owner_index.clear()
            self._payments.clear()
            self._intent_index.clear()
            self._processed_events.clear()
            self._admin_actions.clear()
            self._notifications.clear()
            self._reminders.clear()
            self._unavailable = False

    def get_statistics(self) -> Dict[str, int]:
        """Get ledger statistics.

        Returns:
            Dictionary with row counts and a per-status subscription count
        """
        with self._lock:
            stats = {
                "total_subscriptions": len(self._subscriptions),
                "total_payments": len(self._payments),
                "processed_events": len(self._processed_events),
                "admin_actions": len(self._admin_actions),
                "notifications": len(self._notifications),
                "reminders_sent": len(self._reminders),
            }
            for status in SubscriptionStatus:
                stats[status.value.lower()] = sum(
                    1 for s in self._subscriptions.values() if s.status == status
                )
            return stats

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def __repr__(self) -> str:
        return f"LedgerStore(subscriptions={len(self)})"


# Global store instance
_store_instance: Optional[LedgerStore] = None
_store_lock = threading.Lock()


def get_ledger_store() -> LedgerStore:
    """Get global ledger store instance (singleton).

    Returns:
        LedgerStore instance
    """
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                from office_lifecycle.config import get_config

                _store_instance = LedgerStore(
                    lock_timeout_seconds=get_config().billing.lock_timeout_seconds
                )
    return _store_instance


def reset_ledger_store() -> None:
    """Reset global ledger store (clears all data).

    Warning: This removes all ledger data. Use with caution.
    """
    get_ledger_store().clear()
