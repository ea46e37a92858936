"""Payment gateway webhook processing.

Responsibilities:
- Verify the gateway signature before anything else
- Deduplicate on the gateway event id
- Map checkout / payment intent / refund events onto lifecycle events
- Apply the transition, the payment row write and the dedup row in one transaction
- Decide which failures the gateway should redeliver

Delivery outcomes:
- PROCESSED: applied and committed
- ALREADY_PROCESSED: event id seen before, nothing written
- IGNORED: event type or target not handled, nothing written
- REJECTED: event does not apply to the subscription's status, nothing written

ConcurrencyConflict (after retries) and PersistenceError propagate so the
HTTP layer answers 5xx and the gateway redelivers.
"""

import json
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import stripe
from pydantic import BaseModel, Field, ValidationError

from office_lifecycle.errors import AuthenticationError, IllegalTransition
from office_lifecycle.logging_config import get_logger, log_context
from office_lifecycle import state_logger
from office_lifecycle.models.events import PaymentFailed, PaymentSucceeded
from office_lifecycle.models.payment import PaymentStatus
from office_lifecycle.models.settings import PlanConfig
from office_lifecycle.models.subscription import (
    PaymentMethodKind,
    SubscriptionRecord,
    SubscriptionStatus,
)
from office_lifecycle.repositories.ledger_store import EventAlreadyProcessed, LedgerTransaction
from office_lifecycle.services.lifecycle_engine import LifecycleEngine, get_lifecycle_engine
from office_lifecycle.services.retry import run_with_conflict_retry
from office_lifecycle.services.state_machine import TransitionResult
from office_lifecycle.utils.identifiers import shorten

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
CHARGE_REFUNDED = "charge.refunded"

# Gateway payment method types billed by bank debit
BANK_DEBIT_METHOD_TYPES = frozenset({"bacs_debit", "sepa_debit", "us_bank_account"})

SETTLED_PAYMENT_STATUSES = frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED})


class WebhookStatus(str, Enum):
    """How a delivery was handled."""

    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"
    REJECTED = "rejected"


class WebhookOutcome(BaseModel):
    """Result returned to the webhook route."""

    status: WebhookStatus
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    subscription_id: Optional[str] = None
    subscription_status: Optional[SubscriptionStatus] = None
    detail: Optional[str] = None


class _Unit(BaseModel):
    """What one webhook transaction produced."""

    applied: bool = True
    result: Optional[TransitionResult] = None
    subscription: Optional[SubscriptionRecord] = None
    # (payment_id, old_status, new_status) changed outside the state machine
    payment_changes: List[Tuple[str, PaymentStatus, PaymentStatus]] = Field(default_factory=list)


class PaymentEventProcessor:
    """Turns verified gateway events into lifecycle transitions."""

    def __init__(
        self,
        engine: Optional[LifecycleEngine] = None,
        webhook_secret: Optional[str] = None,
        signature_tolerance_seconds: Optional[int] = None,
        plan: Optional[PlanConfig] = None,
        billing=None,
    ):
        """Initialize payment event processor.

        Args:
            engine: Lifecycle engine (defaults to global instance)
            webhook_secret: Gateway signing secret (defaults to config / STRIPE_WEBHOOK_SECRET)
            signature_tolerance_seconds: Maximum signature age (defaults to config)
            plan: Plan used for default amount and currency (defaults to config)
            billing: BillingConfig with retry settings (defaults to config)
        """
        if webhook_secret is None or signature_tolerance_seconds is None or plan is None or billing is None:
            from office_lifecycle.config import get_config

            config = get_config()
            webhook_secret = webhook_secret if webhook_secret is not None else config.webhook_secret
            if signature_tolerance_seconds is None:
                signature_tolerance_seconds = config.signature_tolerance_seconds
            plan = plan or config.plan
            billing = billing or config.billing

        self.engine = engine if engine is not None else get_lifecycle_engine()
        self._webhook_secret = webhook_secret
        self._tolerance = signature_tolerance_seconds
        self._plan = plan
        self._billing = billing

        self._handlers: Dict[str, Callable[[str, str, Dict[str, Any]], WebhookOutcome]] = {
            CHECKOUT_COMPLETED: self._on_checkout_completed,
            PAYMENT_INTENT_SUCCEEDED: self._on_payment_intent_succeeded,
            PAYMENT_INTENT_FAILED: self._on_payment_intent_failed,
            CHARGE_REFUNDED: self._on_charge_refunded,
        }

    @property
    def ledger(self):
        return self.engine.ledger

    def handle(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """Verify and process one webhook delivery.

        Args:
            payload: Raw request body, exactly as received
            signature: Value of the Stripe-Signature header

        Returns:
            WebhookOutcome

        Raises:
            AuthenticationError: Signature missing or invalid, or payload unreadable
            ConcurrencyConflict: Row contention outlasted the retries
            PersistenceError: Ledger unavailable
        """
        event = self.verify(payload, signature)
        return self.process_event(event)

    def verify(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Check the signature and parse the event.

        Raises:
            AuthenticationError: If the payload cannot be trusted or read
        """
        if not self._webhook_secret:
            raise AuthenticationError("Webhook signing secret is not configured")
        if not signature:
            raise AuthenticationError("Missing Stripe-Signature header")

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise AuthenticationError("Webhook payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(text, signature, self._webhook_secret, self._tolerance)
        except stripe.SignatureVerificationError as e:
            logger.warning("webhook_signature_invalid", error=str(e))
            raise AuthenticationError(f"Invalid webhook signature: {e}") from e

        try:
            event = json.loads(text)
        except ValueError as e:
            raise AuthenticationError("Webhook payload is not valid JSON") from e

        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise AuthenticationError("Webhook payload is not a gateway event")
        return event

    def process_event(self, event: Dict[str, Any]) -> WebhookOutcome:
        """Process an already verified event."""
        event_id = event["id"]
        event_type = event["type"]
        data_object = (event.get("data") or {}).get("object") or {}

        with log_context(event_id=event_id, event_type=event_type):
            handler = self._handlers.get(event_type)
            if handler is None:
                logger.info("webhook_event_ignored", reason="unhandled_type")
                return WebhookOutcome(
                    status=WebhookStatus.IGNORED, event_id=event_id, event_type=event_type
                )

            if self.ledger.is_event_processed(event_id):
                logger.info("webhook_event_already_processed")
                return WebhookOutcome(
                    status=WebhookStatus.ALREADY_PROCESSED, event_id=event_id, event_type=event_type
                )

            return handler(event_id, event_type, data_object)

    # Event handlers

    def _on_checkout_completed(self, event_id: str, event_type: str, session: Dict[str, Any]) -> WebhookOutcome:
        intent_ref = _object_id(session.get("payment_intent"))
        subscription = self._resolve_subscription(session, intent_ref)
        if subscription is None:
            return self._unresolved(event_id, event_type, session)

        amount = session.get("amount_total")
        if amount is None:
            amount = self._plan.price_minor_units
        method_types = session.get("payment_method_types") or []
        method = _method_kind(method_types[0] if method_types else None)

        try:
            lifecycle_event = PaymentSucceeded(
                subscription_id=subscription.id,
                amount_minor_units=amount,
                currency=session.get("currency") or self._plan.currency,
                external_intent_ref=intent_ref,
                method=method,
                external_customer_ref=_object_id(session.get("customer")),
            )
        except ValidationError as e:
            return self._malformed(event_id, event_type, subscription, e)

        def build(txn: LedgerTransaction, now: int) -> _Unit:
            existing = txn.find_payment_by_intent(intent_ref) if intent_ref else None
            if existing is not None and existing.status in SETTLED_PAYMENT_STATUSES:
                # The intent already paid for a term
                return _Unit(applied=False)
            return _Unit(result=self.engine.run(txn, lifecycle_event, now))

        return self._apply(event_id, event_type, subscription.id, build)

    def _on_payment_intent_succeeded(
        self, event_id: str, event_type: str, intent: Dict[str, Any]
    ) -> WebhookOutcome:
        intent_ref = intent.get("id")
        payment = self.ledger.find_payment_by_intent(intent_ref) if intent_ref else None
        if payment is None or payment.status != PaymentStatus.PENDING:
            logger.info(
                "webhook_event_ignored",
                reason="no_pending_payment",
                intent_ref=intent_ref,
                payment_status=payment.status.value if payment else None,
            )
            return WebhookOutcome(
                status=WebhookStatus.IGNORED,
                event_id=event_id,
                event_type=event_type,
                subscription_id=payment.subscription_id if payment else None,
                detail="No pending payment for intent",
            )

        lifecycle_event = PaymentSucceeded(
            subscription_id=payment.subscription_id,
            amount_minor_units=payment.amount_minor_units,
            currency=payment.currency,
            external_intent_ref=intent_ref,
            method=payment.payment_method or PaymentMethodKind.CARD,
            external_customer_ref=_object_id(intent.get("customer")),
        )

        def build(txn: LedgerTransaction, now: int) -> _Unit:
            current = txn.find_payment_by_intent(intent_ref)
            if current is None or current.status != PaymentStatus.PENDING:
                # Settled by a concurrent delivery
                return _Unit(applied=False)
            return _Unit(result=self.engine.run(txn, lifecycle_event, now))

        return self._apply(event_id, event_type, payment.subscription_id, build)

    def _on_payment_intent_failed(
        self, event_id: str, event_type: str, intent: Dict[str, Any]
    ) -> WebhookOutcome:
        intent_ref = intent.get("id")
        subscription = self._resolve_subscription(intent, intent_ref)
        if subscription is None:
            return self._unresolved(event_id, event_type, intent)

        lifecycle_event = PaymentFailed(subscription_id=subscription.id, external_intent_ref=intent_ref)

        def build(txn: LedgerTransaction, now: int) -> _Unit:
            unit = _Unit(result=self.engine.run(txn, lifecycle_event, now))
            payment = txn.find_payment_by_intent(intent_ref) if intent_ref else None
            if payment is not None and payment.status == PaymentStatus.PENDING:
                txn.set_payment_status(payment.id, PaymentStatus.FAILED)
                unit.payment_changes.append((payment.id, payment.status, PaymentStatus.FAILED))
            return unit

        return self._apply(event_id, event_type, subscription.id, build)

    def _on_charge_refunded(self, event_id: str, event_type: str, charge: Dict[str, Any]) -> WebhookOutcome:
        intent_ref = _object_id(charge.get("payment_intent"))
        payment = self.ledger.find_payment_by_intent(intent_ref) if intent_ref else None
        if payment is None:
            logger.warning("webhook_event_ignored", reason="unknown_payment", intent_ref=intent_ref)
            return WebhookOutcome(
                status=WebhookStatus.IGNORED,
                event_id=event_id,
                event_type=event_type,
                detail="No payment for intent",
            )

        def build(txn: LedgerTransaction, now: int) -> _Unit:
            unit = _Unit()
            current = txn.find_payment_by_intent(intent_ref)
            if current.status == PaymentStatus.SUCCEEDED:
                txn.set_payment_status(current.id, PaymentStatus.REFUNDED)
                unit.payment_changes.append((current.id, current.status, PaymentStatus.REFUNDED))
            else:
                logger.warning(
                    "refund_not_applicable",
                    payment_id=shorten(current.id),
                    payment_status=current.status.value,
                )
            return unit

        return self._apply(event_id, event_type, payment.subscription_id, build)

    # Transaction plumbing

    def _apply(
        self,
        event_id: str,
        event_type: str,
        subscription_id: str,
        build: Callable[[LedgerTransaction, int], _Unit],
    ) -> WebhookOutcome:
        """Run ``build`` and the dedup insert in one transaction, with conflict retry."""

        def attempt() -> Optional[_Unit]:
            now = self.engine.now_millis()
            with self.ledger.transaction(subscription_id) as txn:
                if txn.is_event_processed(event_id):
                    return None
                unit = build(txn, now)
                if unit.applied:
                    txn.mark_event_processed(event_id, event_type, now)
                if unit.subscription is None:
                    unit.subscription = txn.subscription
                return unit

        try:
            unit = run_with_conflict_retry(attempt, billing=self._billing)
        except IllegalTransition as e:
            logger.warning(
                "webhook_transition_rejected",
                subscription_id=shorten(subscription_id),
                current_status=e.current_status,
                lifecycle_event=e.event_name,
            )
            return WebhookOutcome(
                status=WebhookStatus.REJECTED,
                event_id=event_id,
                event_type=event_type,
                subscription_id=subscription_id,
                subscription_status=e.current_status,
                detail=str(e),
            )
        except EventAlreadyProcessed:
            unit = None

        if unit is None:
            logger.info("webhook_event_already_processed", subscription_id=shorten(subscription_id))
            return WebhookOutcome(
                status=WebhookStatus.ALREADY_PROCESSED,
                event_id=event_id,
                event_type=event_type,
                subscription_id=subscription_id,
            )

        if not unit.applied:
            logger.info("webhook_event_ignored", reason="payment_already_settled")
            return WebhookOutcome(
                status=WebhookStatus.IGNORED,
                event_id=event_id,
                event_type=event_type,
                subscription_id=subscription_id,
                subscription_status=unit.subscription.status,
                detail="Payment already settled",
            )

        for payment_id, old_status, new_status in unit.payment_changes:
            state_logger.log_payment_status_change(
                payment_id=payment_id,
                subscription_id=subscription_id,
                old_status=old_status,
                new_status=new_status,
                reason=event_type,
                event_id=event_id,
            )
        if unit.result is not None:
            self.engine.after_commit(unit.result, reason=event_type, event_id=event_id)

        logger.info(
            "webhook_event_processed",
            subscription_id=shorten(subscription_id),
            subscription_status=unit.subscription.status.value,
        )
        return WebhookOutcome(
            status=WebhookStatus.PROCESSED,
            event_id=event_id,
            event_type=event_type,
            subscription_id=subscription_id,
            subscription_status=unit.subscription.status,
        )

    def _resolve_subscription(
        self, data_object: Dict[str, Any], intent_ref: Optional[str]
    ) -> Optional[SubscriptionRecord]:
        """Find the target subscription: metadata.subscriptionId, metadata.userId, then the payment row."""
        metadata = data_object.get("metadata") or {}

        subscription_id = metadata.get("subscriptionId")
        if subscription_id:
            subscription = self.ledger.find_subscription(subscription_id)
            if subscription is not None:
                return subscription

        owner_id = metadata.get("userId")
        if owner_id:
            subscription = self.ledger.find_subscription_by_owner(owner_id)
            if subscription is not None:
                return subscription

        if intent_ref:
            payment = self.ledger.find_payment_by_intent(intent_ref)
            if payment is not None:
                return self.ledger.find_subscription(payment.subscription_id)

        return None

    @staticmethod
    def _unresolved(event_id: str, event_type: str, data_object: Dict[str, Any]) -> WebhookOutcome:
        logger.warning(
            "webhook_subscription_unresolved",
            metadata=data_object.get("metadata") or {},
            object_id=data_object.get("id"),
        )
        return WebhookOutcome(
            status=WebhookStatus.IGNORED,
            event_id=event_id,
            event_type=event_type,
            detail="No subscription matches the event",
        )

    @staticmethod
    def _malformed(
        event_id: str, event_type: str, subscription: SubscriptionRecord, error: ValidationError
    ) -> WebhookOutcome:
        logger.warning(
            "webhook_payload_malformed",
            subscription_id=shorten(subscription.id),
            error=str(error),
        )
        return WebhookOutcome(
            status=WebhookStatus.REJECTED,
            event_id=event_id,
            event_type=event_type,
            subscription_id=subscription.id,
            subscription_status=subscription.status,
            detail="Event payload failed validation",
        )


def _object_id(value: Any) -> Optional[str]:
    """Gateway references arrive as an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _method_kind(method_type: Optional[str]) -> PaymentMethodKind:
    if method_type in BANK_DEBIT_METHOD_TYPES:
        return PaymentMethodKind.BANK_DEBIT
    return PaymentMethodKind.CARD


_processor_instance: Optional[PaymentEventProcessor] = None
_processor_lock = threading.Lock()


def get_payment_event_processor() -> PaymentEventProcessor:
    """Get global payment event processor (singleton)."""
    global _processor_instance
    if _processor_instance is None:
        with _processor_lock:
            if _processor_instance is None:
                _processor_instance = PaymentEventProcessor()
    return _processor_instance


def reset_payment_event_processor() -> None:
    """Drop the global processor so the next call rebuilds it from config."""
    global _processor_instance
    with _processor_lock:
        _processor_instance = None
