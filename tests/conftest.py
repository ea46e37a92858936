"""Shared fixtures: isolated config, in-memory ledger, frozen clock and signed webhooks."""

import hashlib
import hmac
import json
import time
from unittest.mock import Mock

import pytest
import yaml

from office_lifecycle.config import reset_config
from office_lifecycle.models import AccountRecord, AccountRole, BillingConfig, PlanConfig
from office_lifecycle.models.events import AdminCommand, PaymentSucceeded
from office_lifecycle.models.ledger import AdminActionType
from office_lifecycle.repositories.account_directory import AccountDirectory, reset_account_directory
from office_lifecycle.repositories.ledger_store import LedgerStore, reset_ledger_store
from office_lifecycle.services.admin_actions import AdminActionProcessor, reset_admin_action_processor
from office_lifecycle.services.email_dispatcher import EmailDispatcher, reset_email_dispatcher
from office_lifecycle.services.lifecycle_engine import LifecycleEngine, reset_lifecycle_engine
from office_lifecycle.services.payment_events import (
    PaymentEventProcessor,
    reset_payment_event_processor,
)
from office_lifecycle.services.renewal_scheduler import RenewalScheduler, reset_renewal_scheduler
from office_lifecycle.services.state_machine import SubscriptionStateMachine
from office_lifecycle.services.time_controller import TimeController, reset_time_controller

WEBHOOK_SECRET = "whsec_test_secret"
CRON_SECRET = "cron-test-secret"

# 1 January 2026 00:00 UTC
T0 = 1_767_225_600_000

CLIENT_ID = "user-1"
CLIENT_EMAIL = "director@acme.test"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point every global at a throwaway lifecycle.yaml with known secrets."""
    config_file = tmp_path / "lifecycle.yaml"
    config_file.write_text(
        yaml.safe_dump(
            {
                "plan": {"name": "Registered Office Address", "price_minor_units": 7500, "currency": "gbp", "term": "P1Y"},
                "billing": {
                    "retry_threshold": 3,
                    "conflict_retry_attempts": 3,
                    "conflict_retry_min_seconds": 0,
                    "conflict_retry_max_seconds": 0,
                    "lock_timeout_seconds": 1.0,
                },
                "reminders": {"bucket_days": [60, 30, 7]},
                "notifications": {"admins": [{"id": "admin-1", "email": "admin@example.com", "role": "SUPER_ADMIN"}]},
                "pubsub": {"enabled": False},
                "security": {"webhook_secret": WEBHOOK_SECRET, "cron_secret": CRON_SECRET},
            }
        )
    )
    monkeypatch.setenv("CONFIG_PATH", str(config_file))
    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("CRON_SECRET", raising=False)

    _reset_globals()
    yield config_file
    _reset_globals()


def _reset_globals():
    reset_payment_event_processor()
    reset_admin_action_processor()
    reset_renewal_scheduler()
    reset_lifecycle_engine()
    reset_email_dispatcher()
    reset_account_directory()
    reset_config()
    reset_ledger_store()
    reset_time_controller()


@pytest.fixture
def billing():
    """Retry settings without backoff sleeps."""
    return BillingConfig(
        retry_threshold=3,
        conflict_retry_attempts=3,
        conflict_retry_min_seconds=0,
        conflict_retry_max_seconds=0,
        lock_timeout_seconds=0.2,
    )


@pytest.fixture
def ledger(billing):
    return LedgerStore(lock_timeout_seconds=billing.lock_timeout_seconds)


@pytest.fixture
def accounts():
    return AccountDirectory(
        [
            AccountRecord(id="admin-1", email="admin@example.com", role=AccountRole.SUPER_ADMIN),
            AccountRecord(id="admin-2", email="ops@example.com", role=AccountRole.ADMIN),
            AccountRecord(id=CLIENT_ID, email=CLIENT_EMAIL, company_name="Acme Ltd"),
            AccountRecord(id="user-2", email="owner@widgets.test", company_name="Widgets Ltd"),
        ]
    )


@pytest.fixture
def dispatcher():
    mock_dispatcher = Mock(spec=EmailDispatcher)
    mock_dispatcher.publish_email.return_value = True
    mock_dispatcher.is_enabled.return_value = True
    return mock_dispatcher


@pytest.fixture
def clock():
    return TimeController(start_time_millis=T0)


@pytest.fixture
def engine(ledger, accounts, dispatcher, clock):
    return LifecycleEngine(
        ledger=ledger,
        accounts=accounts,
        email_dispatcher=dispatcher,
        state_machine=SubscriptionStateMachine(),
        time_controller=clock,
    )


@pytest.fixture
def scheduler(engine, billing, clock):
    renewal_scheduler = RenewalScheduler(engine=engine, billing=billing)
    clock._renewal_scheduler = renewal_scheduler
    return renewal_scheduler


@pytest.fixture
def payment_processor(engine, billing):
    return PaymentEventProcessor(
        engine=engine,
        webhook_secret=WEBHOOK_SECRET,
        signature_tolerance_seconds=300,
        plan=PlanConfig(),
        billing=billing,
    )


@pytest.fixture
def admin_processor(engine, billing):
    return AdminActionProcessor(engine=engine, billing=billing)


@pytest.fixture
def sign():
    """Build a Stripe-Signature header for a payload."""

    def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
        timestamp = int(time.time()) if timestamp is None else timestamp
        signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"

    return _sign


@pytest.fixture
def deliver(payment_processor, sign):
    """Sign and hand a gateway event to the payment processor."""

    def _deliver(event: dict):
        payload = json.dumps(event).encode("utf-8")
        return payment_processor.handle(payload, sign(payload))

    return _deliver


def _gateway_event(event_id: str, event_type: str, data_object: dict) -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": data_object},
    }


def _checkout_session(subscription_id: str, intent_ref: str = "pi_1", **overrides) -> dict:
    session = {
        "id": "cs_test_1",
        "object": "checkout.session",
        "amount_total": 7500,
        "currency": "gbp",
        "customer": "cus_1",
        "payment_intent": intent_ref,
        "payment_method_types": ["card"],
        "metadata": {"subscriptionId": subscription_id},
    }
    session.update(overrides)
    return session


@pytest.fixture
def gateway_event():
    """Build a gateway event envelope: gateway_event(event_id, event_type, data_object)."""
    return _gateway_event


@pytest.fixture
def checkout_session():
    """Build a completed checkout session for a subscription."""
    return _checkout_session


@pytest.fixture
def drive(engine, ledger):
    """Apply a lifecycle event directly through the engine and commit it."""

    def _drive(subscription_id: str, event):
        with ledger.transaction(subscription_id) as txn:
            result = engine.run(txn, event, engine.now_millis())
        engine.after_commit(result, reason="test")
        return result

    return _drive


@pytest.fixture
def draft_subscription(ledger, clock):
    return ledger.create_subscription(CLIENT_ID, clock.get_current_time_millis())


@pytest.fixture
def pending_subscription(draft_subscription, drive):
    drive(
        draft_subscription.id,
        PaymentSucceeded(
            subscription_id=draft_subscription.id,
            amount_minor_units=7500,
            currency="gbp",
            external_intent_ref="pi_initial",
        ),
    )
    return draft_subscription.id


@pytest.fixture
def active_subscription(pending_subscription, drive, ledger):
    drive(
        pending_subscription,
        AdminCommand(subscription_id=pending_subscription, type=AdminActionType.APPROVE),
    )
    return ledger.get_subscription(pending_subscription)
