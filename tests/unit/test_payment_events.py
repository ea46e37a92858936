"""Unit tests for PaymentEventProcessor (gateway webhooks)."""

import json
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from office_lifecycle.errors import AuthenticationError, PersistenceError
from office_lifecycle.models import (
    NotificationType,
    PaymentMethodKind,
    PaymentRecord,
    PaymentStatus,
    SubscriptionStatus,
)
from office_lifecycle.models.settings import PlanConfig
from office_lifecycle.services.payment_events import PaymentEventProcessor, WebhookStatus
from office_lifecycle.utils.billing_period import MILLIS_PER_YEAR


def failed_intent(subscription_id: str, intent_ref: str) -> dict:
    return {
        "id": intent_ref,
        "object": "payment_intent",
        "status": "requires_payment_method",
        "metadata": {"subscriptionId": subscription_id},
    }


class TestSignatureVerification:
    """Only authentic payloads are processed."""

    def test_valid_signature_accepted(self, payment_processor, sign, gateway_event, checkout_session, draft_subscription):
        payload = json.dumps(
            gateway_event("evt_1", "checkout.session.completed", checkout_session(draft_subscription.id))
        ).encode("utf-8")

        outcome = payment_processor.handle(payload, sign(payload))

        assert outcome.status == WebhookStatus.PROCESSED

    def test_wrong_secret_rejected(self, payment_processor, sign, ledger, gateway_event, checkout_session, draft_subscription):
        payload = json.dumps(
            gateway_event("evt_1", "checkout.session.completed", checkout_session(draft_subscription.id))
        ).encode("utf-8")

        with pytest.raises(AuthenticationError):
            payment_processor.handle(payload, sign(payload, secret="whsec_other"))

        assert ledger.get_subscription(draft_subscription.id).status == SubscriptionStatus.DRAFT
        assert not ledger.is_event_processed("evt_1")

    def test_missing_signature_rejected(self, payment_processor):
        with pytest.raises(AuthenticationError):
            payment_processor.handle(b"{}", None)

    def test_stale_timestamp_rejected(self, payment_processor, sign):
        payload = b'{"id": "evt_1", "type": "checkout.session.completed"}'

        with pytest.raises(AuthenticationError):
            payment_processor.handle(payload, sign(payload, timestamp=int(time.time()) - 3600))

    def test_tampered_payload_rejected(self, payment_processor, sign):
        payload = b'{"id": "evt_1", "type": "checkout.session.completed"}'
        header = sign(payload)

        with pytest.raises(AuthenticationError):
            payment_processor.handle(payload.replace(b"evt_1", b"evt_2"), header)

    def test_signed_garbage_rejected(self, payment_processor, sign):
        payload = b"not json"

        with pytest.raises(AuthenticationError):
            payment_processor.handle(payload, sign(payload))

    def test_non_utf8_rejected(self, payment_processor):
        with pytest.raises(AuthenticationError):
            payment_processor.handle(b"\xff\xfe", "t=1,v1=abc")

    def test_unconfigured_secret_rejects_everything(self, engine, billing, sign):
        processor = PaymentEventProcessor(
            engine=engine, webhook_secret="", signature_tolerance_seconds=300, plan=PlanConfig(), billing=billing
        )
        payload = b'{"id": "evt_1", "type": "checkout.session.completed"}'

        with pytest.raises(AuthenticationError):
            processor.handle(payload, sign(payload))


class TestCheckoutCompleted:
    """Initial payment: DRAFT -> PENDING_APPROVAL."""

    def test_initial_payment_recorded(
        self, deliver, ledger, dispatcher, gateway_event, checkout_session, draft_subscription, clock
    ):
        now = clock.get_current_time_millis()

        outcome = deliver(
            gateway_event("evt_1", "checkout.session.completed", checkout_session(draft_subscription.id))
        )

        assert outcome.status == WebhookStatus.PROCESSED
        assert outcome.subscription_status == SubscriptionStatus.PENDING_APPROVAL

        subscription = ledger.get_subscription(draft_subscription.id)
        assert subscription.status == SubscriptionStatus.PENDING_APPROVAL
        assert subscription.start_time_millis == now
        assert subscription.end_time_millis == now + MILLIS_PER_YEAR
        assert subscription.external_customer_ref == "cus_1"
        assert subscription.payment_method == PaymentMethodKind.CARD

        payments = ledger.get_payments(draft_subscription.id)
        assert len(payments) == 1
        assert payments[0].amount_minor_units == 7500
        assert payments[0].currency == "gbp"
        assert payments[0].status == PaymentStatus.SUCCEEDED
        assert payments[0].external_intent_ref == "pi_1"

        assert ledger.is_event_processed("evt_1")

    def test_owner_and_admins_notified(
        self, deliver, ledger, dispatcher, gateway_event, checkout_session, draft_subscription
    ):
        deliver(gateway_event("evt_1", "checkout.session.completed", checkout_session(draft_subscription.id)))

        owner_notes = ledger.get_notifications("user-1")
        assert [n.type for n in owner_notes] == [NotificationType.PAYMENT_RECEIVED]
        for admin_id in ("admin-1", "admin-2"):
            assert [n.type for n in ledger.get_notifications(admin_id)] == [NotificationType.NEW_APPLICATION]

        dispatcher.publish_email.assert_called_once()
        email = dispatcher.publish_email.call_args[0][0]
        assert email.to == "director@acme.test"
        assert email.template == "payment_received"
        assert email.subscription_id == draft_subscription.id

    def test_duplicate_delivery_applied_once(
        self, deliver, ledger, dispatcher, gateway_event, checkout_session, draft_subscription
    ):
        event = gateway_event("evt_1", "checkout.session.completed", checkout_session(draft_subscription.id))

        first = deliver(event)
        second = deliver(event)

        assert first.status == WebhookStatus.PROCESSED
        assert second.status == WebhookStatus.ALREADY_PROCESSED
        assert len(ledger.get_payments(draft_subscription.id)) == 1
        assert ledger.get_subscription(draft_subscription.id).version == 1
        assert dispatcher.publish_email.call_count == 1

    def test_concurrent_duplicates_applied_once(
        self, deliver, ledger, dispatcher, gateway_event, checkout_session, draft_subscription
    ):
        event = gateway_event("evt_1", "checkout.session.completed", checkout_session(draft_subscription.id))

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = list(pool.map(deliver, [event, event]))

        statuses = sorted(o.status.value for o in outcomes)
        assert statuses == ["already_processed", "processed"]
        assert len(ledger.get_payments(draft_subscription.id)) == 1
        assert dispatcher.publish_email.call_count == 1

    def test_resolves_by_owner_metadata(self, deliver, ledger, gateway_event, checkout_session, draft_subscription):
        session = checkout_session(draft_subscription.id, metadata={"userId": "user-1"})

        outcome = deliver(gateway_event("evt_1", "checkout.session.completed", session))

        assert outcome.status == WebhookStatus.PROCESSED
        assert outcome.subscription_id == draft_subscription.id

    def test_bank_debit_and_expanded_references(
        self, deliver, ledger, gateway_event, checkout_session, draft_subscription
    ):
        session = checkout_session(
            draft_subscription.id,
            payment_method_types=["bacs_debit"],
            payment_intent={"id": "pi_expanded", "object": "payment_intent"},
            customer={"id": "cus_expanded", "object": "customer"},
        )

        deliver(gateway_event("evt_1", "checkout.session.completed", session))

        subscription = ledger.get_subscription(draft_subscription.id)
        assert subscription.payment_method == PaymentMethodKind.BANK_DEBIT
        assert subscription.external_customer_ref == "cus_expanded"
        assert ledger.find_payment_by_intent("pi_expanded") is not None

    def test_missing_amount_uses_plan_price(self, deliver, ledger, gateway_event, checkout_session, draft_subscription):
        session = checkout_session(draft_subscription.id, amount_total=None, currency=None)

        deliver(gateway_event("evt_1", "checkout.session.completed", session))

        payment = ledger.get_payments(draft_subscription.id)[0]
        assert payment.amount_minor_units == 7500
        assert payment.currency == "gbp"

    def test_negative_amount_rejected(self, deliver, ledger, gateway_event, checkout_session, draft_subscription):
        session = checkout_session(draft_subscription.id, amount_total=-100)

        outcome = deliver(gateway_event("evt_1", "checkout.session.completed", session))

        assert outcome.status == WebhookStatus.REJECTED
        assert ledger.get_payments(draft_subscription.id) == []
        assert not ledger.is_event_processed("evt_1")

    def test_second_checkout_for_pending_rejected(
        self, deliver, ledger, gateway_event, checkout_session, pending_subscription
    ):
        session = checkout_session(pending_subscription, intent_ref="pi_2")

        outcome = deliver(gateway_event("evt_2", "checkout.session.completed", session))

        assert outcome.status == WebhookStatus.REJECTED
        assert outcome.subscription_status == SubscriptionStatus.PENDING_APPROVAL
        assert ledger.find_payment_by_intent("pi_2") is None
        assert not ledger.is_event_processed("evt_2")

    def test_renewal_payment_extends_term(self, deliver, ledger, gateway_event, checkout_session, active_subscription):
        session = checkout_session(active_subscription.id, intent_ref="pi_renew")

        outcome = deliver(gateway_event("evt_renew", "checkout.session.completed", session))

        assert outcome.status == WebhookStatus.PROCESSED
        renewed = ledger.get_subscription(active_subscription.id)
        assert renewed.status == SubscriptionStatus.ACTIVE
        assert renewed.end_time_millis == active_subscription.end_time_millis + MILLIS_PER_YEAR

    def test_settled_intent_does_not_renew_twice(
        self, deliver, ledger, dispatcher, gateway_event, checkout_session, active_subscription
    ):
        session = checkout_session(active_subscription.id, intent_ref="pi_renew")
        deliver(gateway_event("evt_a", "checkout.session.completed", session))
        renewed = ledger.get_subscription(active_subscription.id)
        notifications = len(ledger.get_notifications("user-1"))
        emails = dispatcher.publish_email.call_count

        outcome = deliver(gateway_event("evt_b", "checkout.session.completed", session))

        assert outcome.status == WebhookStatus.IGNORED
        assert ledger.get_subscription(active_subscription.id) == renewed
        assert len(ledger.get_payments(active_subscription.id)) == 2
        assert len(ledger.get_notifications("user-1")) == notifications
        assert dispatcher.publish_email.call_count == emails
        assert not ledger.is_event_processed("evt_b")

    def test_initial_intent_replayed_after_approval_ignored(
        self, deliver, ledger, gateway_event, checkout_session, active_subscription
    ):
        session = checkout_session(active_subscription.id, intent_ref="pi_initial")

        outcome = deliver(gateway_event("evt_late", "checkout.session.completed", session))

        assert outcome.status == WebhookStatus.IGNORED
        assert ledger.get_subscription(active_subscription.id).end_time_millis == active_subscription.end_time_millis


class TestPaymentIntentEvents:
    """payment_intent.succeeded and payment_intent.payment_failed."""

    def add_pending_payment(self, ledger, subscription, intent_ref, now):
        with ledger.transaction(subscription.id) as txn:
            txn.add_payment(
                PaymentRecord(
                    id="pay_pending",
                    subscription_id=subscription.id,
                    owner_id=subscription.owner_id,
                    amount_minor_units=7500,
                    currency="gbp",
                    status=PaymentStatus.PENDING,
                    payment_method=PaymentMethodKind.BANK_DEBIT,
                    external_intent_ref=intent_ref,
                    created_time_millis=now,
                )
            )

    def test_pending_payment_settles_and_transitions(
        self, deliver, ledger, gateway_event, draft_subscription, clock
    ):
        self.add_pending_payment(ledger, draft_subscription, "pi_bacs", clock.get_current_time_millis())
        intent = {"id": "pi_bacs", "object": "payment_intent", "customer": "cus_bacs"}

        outcome = deliver(gateway_event("evt_1", "payment_intent.succeeded", intent))

        assert outcome.status == WebhookStatus.PROCESSED
        payment = ledger.find_payment("pay_pending")
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.paid_time_millis == clock.get_current_time_millis()
        subscription = ledger.get_subscription(draft_subscription.id)
        assert subscription.status == SubscriptionStatus.PENDING_APPROVAL
        assert subscription.payment_method == PaymentMethodKind.BANK_DEBIT
        assert len(ledger.get_payments(draft_subscription.id)) == 1

    def test_intent_without_pending_payment_ignored(self, deliver, ledger, gateway_event, draft_subscription):
        intent = {"id": "pi_unknown", "object": "payment_intent"}

        outcome = deliver(gateway_event("evt_1", "payment_intent.succeeded", intent))

        assert outcome.status == WebhookStatus.IGNORED
        assert ledger.get_subscription(draft_subscription.id).status == SubscriptionStatus.DRAFT
        assert not ledger.is_event_processed("evt_1")

    def test_intent_already_settled_by_checkout_ignored(
        self, deliver, ledger, gateway_event, checkout_session, draft_subscription
    ):
        deliver(gateway_event("evt_1", "checkout.session.completed", checkout_session(draft_subscription.id)))

        outcome = deliver(gateway_event("evt_2", "payment_intent.succeeded", {"id": "pi_1"}))

        assert outcome.status == WebhookStatus.IGNORED
        assert ledger.get_subscription(draft_subscription.id).version == 1

    def test_failures_suspend_at_threshold(self, deliver, ledger, gateway_event, active_subscription):
        statuses = []
        for attempt in range(1, 4):
            outcome = deliver(
                gateway_event(
                    f"evt_fail_{attempt}",
                    "payment_intent.payment_failed",
                    failed_intent(active_subscription.id, f"pi_fail_{attempt}"),
                )
            )
            statuses.append(outcome.subscription_status)

        assert statuses == [SubscriptionStatus.ACTIVE, SubscriptionStatus.ACTIVE, SubscriptionStatus.SUSPENDED]
        subscription = ledger.get_subscription(active_subscription.id)
        assert subscription.retry_count == 3
        types = [n.type for n in ledger.get_notifications("user-1")]
        assert types.count(NotificationType.PAYMENT_FAILED) == 2
        assert types.count(NotificationType.ACCOUNT_SUSPENDED) == 1

    def test_failure_marks_pending_payment_failed(self, deliver, ledger, gateway_event, active_subscription, clock):
        self.add_pending_payment(ledger, active_subscription, "pi_renewal", clock.get_current_time_millis())

        deliver(
            gateway_event(
                "evt_fail", "payment_intent.payment_failed", failed_intent(active_subscription.id, "pi_renewal")
            )
        )

        assert ledger.find_payment("pay_pending").status == PaymentStatus.FAILED
        assert ledger.get_subscription(active_subscription.id).retry_count == 1

    def test_failure_on_draft_rejected_without_writes(
        self, deliver, ledger, gateway_event, draft_subscription, clock
    ):
        self.add_pending_payment(ledger, draft_subscription, "pi_draft", clock.get_current_time_millis())

        outcome = deliver(
            gateway_event("evt_fail", "payment_intent.payment_failed", failed_intent(draft_subscription.id, "pi_draft"))
        )

        assert outcome.status == WebhookStatus.REJECTED
        assert ledger.find_payment("pay_pending").status == PaymentStatus.PENDING
        assert not ledger.is_event_processed("evt_fail")

    def test_failure_for_unknown_subscription_ignored(self, deliver, gateway_event):
        outcome = deliver(
            gateway_event("evt_fail", "payment_intent.payment_failed", failed_intent("sub_missing", "pi_x"))
        )

        assert outcome.status == WebhookStatus.IGNORED


class TestOtherEvents:
    """Refunds, unhandled types and outages."""

    def test_refund_marks_payment_only(self, deliver, ledger, gateway_event, checkout_session, draft_subscription):
        deliver(gateway_event("evt_1", "checkout.session.completed", checkout_session(draft_subscription.id)))

        outcome = deliver(
            gateway_event("evt_refund", "charge.refunded", {"id": "ch_1", "object": "charge", "payment_intent": "pi_1"})
        )

        assert outcome.status == WebhookStatus.PROCESSED
        assert ledger.find_payment_by_intent("pi_1").status == PaymentStatus.REFUNDED
        subscription = ledger.get_subscription(draft_subscription.id)
        assert subscription.status == SubscriptionStatus.PENDING_APPROVAL
        assert subscription.version == 1
        assert ledger.is_event_processed("evt_refund")

    def test_refund_for_unknown_payment_ignored(self, deliver, gateway_event):
        outcome = deliver(
            gateway_event("evt_refund", "charge.refunded", {"id": "ch_1", "payment_intent": "pi_missing"})
        )

        assert outcome.status == WebhookStatus.IGNORED

    def test_unhandled_type_ignored(self, deliver, ledger, gateway_event):
        outcome = deliver(gateway_event("evt_1", "customer.created", {"id": "cus_1"}))

        assert outcome.status == WebhookStatus.IGNORED
        assert not ledger.is_event_processed("evt_1")

    def test_unresolvable_subscription_ignored(self, deliver, gateway_event, checkout_session):
        outcome = deliver(
            gateway_event("evt_1", "checkout.session.completed", checkout_session("sub_missing", intent_ref="pi_9"))
        )

        assert outcome.status == WebhookStatus.IGNORED

    def test_outage_propagates(self, deliver, ledger, gateway_event, checkout_session, draft_subscription):
        ledger.simulate_outage(True)

        with pytest.raises(PersistenceError):
            deliver(gateway_event("evt_1", "checkout.session.completed", checkout_session(draft_subscription.id)))

        ledger.simulate_outage(False)
        assert not ledger.is_event_processed("evt_1")
