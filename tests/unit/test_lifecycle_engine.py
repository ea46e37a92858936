"""Unit tests for LifecycleEngine."""

import pytest

from office_lifecycle.errors import IllegalTransition
from office_lifecycle.logging_config import configure_logging
from office_lifecycle.models import (
    AccountRecord,
    AdminActionType,
    AdminCommand,
    NotificationType,
    PaymentStatus,
    PaymentSucceeded,
    SubscriptionStatus,
)
from office_lifecycle.repositories.account_directory import AccountDirectory, get_account_directory
from office_lifecycle.repositories.ledger_store import LedgerStore, get_ledger_store
from office_lifecycle.services.lifecycle_engine import LifecycleEngine


def initial_payment(subscription_id, intent_ref="pi_initial"):
    return PaymentSucceeded(
        subscription_id=subscription_id,
        amount_minor_units=7500,
        currency="gbp",
        external_intent_ref=intent_ref,
    )


class TestEngineWiring:
    """Injected collaborators are used as given."""

    def test_empty_stores_are_kept(self, dispatcher, clock):
        ledger = LedgerStore()
        accounts = AccountDirectory()

        engine = LifecycleEngine(ledger=ledger, accounts=accounts, email_dispatcher=dispatcher, time_controller=clock)

        assert engine.ledger is ledger
        assert engine.accounts is accounts

    def test_defaults_to_global_instances(self):
        engine = LifecycleEngine()

        assert engine.ledger is get_ledger_store()
        assert engine.accounts is get_account_directory()

    def test_now_follows_service_clock(self, engine, clock):
        clock.advance_time(hours=2)

        assert engine.now_millis() == clock.get_current_time_millis()


class TestRun:
    """Staging transitions inside a transaction."""

    @pytest.fixture
    def debug_logging(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        configure_logging(log_level="DEBUG", json_format=True)
        yield
        configure_logging(log_level="INFO", json_format=False)

    def test_transition_with_debug_logging(self, debug_logging, engine, ledger, draft_subscription):
        with ledger.transaction(draft_subscription.id) as txn:
            result = engine.run(txn, initial_payment(draft_subscription.id), engine.now_millis())

        assert result.new_status == SubscriptionStatus.PENDING_APPROVAL
        assert ledger.get_subscription(draft_subscription.id).status == SubscriptionStatus.PENDING_APPROVAL
        assert engine.after_commit(result, reason="checkout.session.completed", event_id="evt_1") == 1

    def test_payment_and_notifications_staged(self, engine, ledger, draft_subscription):
        with ledger.transaction(draft_subscription.id) as txn:
            engine.run(txn, initial_payment(draft_subscription.id), engine.now_millis())

        payment = ledger.find_payment_by_intent("pi_initial")
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.owner_id == "user-1"
        assert [n.type for n in ledger.get_notifications("user-1")] == [NotificationType.PAYMENT_RECEIVED]
        # one notification per active staff account
        assert [n.type for n in ledger.get_notifications("admin-1")] == [NotificationType.NEW_APPLICATION]
        assert [n.type for n in ledger.get_notifications("admin-2")] == [NotificationType.NEW_APPLICATION]

    def test_nothing_staged_when_transition_raises(self, engine, ledger, draft_subscription):
        command = AdminCommand(subscription_id=draft_subscription.id, type=AdminActionType.SUSPEND)

        with pytest.raises(IllegalTransition):
            with ledger.transaction(draft_subscription.id) as txn:
                engine.run(txn, command, engine.now_millis())

        assert ledger.get_subscription(draft_subscription.id) == draft_subscription
        assert ledger.get_notifications("user-1") == []


class TestAfterCommit:
    """Email dispatch after the transaction."""

    def test_unknown_recipient_skipped(self, engine, ledger, dispatcher, clock):
        subscription = ledger.create_subscription("user-ghost", clock.get_current_time_millis())
        with ledger.transaction(subscription.id) as txn:
            result = engine.run(txn, initial_payment(subscription.id), engine.now_millis())

        assert engine.after_commit(result, reason="test") == 0
        dispatcher.publish_email.assert_not_called()

    def test_dispatch_failure_swallowed(self, engine, ledger, dispatcher, draft_subscription):
        dispatcher.publish_email.side_effect = RuntimeError("pubsub down")
        with ledger.transaction(draft_subscription.id) as txn:
            result = engine.run(txn, initial_payment(draft_subscription.id), engine.now_millis())

        assert engine.after_commit(result, reason="test") == 0
        assert ledger.get_subscription(draft_subscription.id).status == SubscriptionStatus.PENDING_APPROVAL

    def test_email_addressed_to_owner(self, engine, ledger, accounts, dispatcher, clock):
        accounts.add(AccountRecord(id="user-3", email="sole@trader.test"))
        subscription = ledger.create_subscription("user-3", clock.get_current_time_millis())
        with ledger.transaction(subscription.id) as txn:
            result = engine.run(txn, initial_payment(subscription.id, "pi_3"), engine.now_millis())

        engine.after_commit(result, reason="test")

        message = dispatcher.publish_email.call_args[0][0]
        assert message.to == "sole@trader.test"
        assert message.subscription_id == subscription.id
