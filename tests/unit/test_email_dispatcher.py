"""Unit tests for EmailDispatcher service."""

import json
from unittest.mock import Mock, patch

from office_lifecycle.models import EmailMessage, PubSubConfig
from office_lifecycle.services.email_dispatcher import (
    EmailDispatcher,
    get_email_dispatcher,
    reset_email_dispatcher,
)

ENABLED = PubSubConfig(enabled=True, project_id="office-lifecycle", topic="outbound-email")
TOPIC_PATH = "projects/office-lifecycle/topics/outbound-email"


def make_message(**overrides):
    fields = {
        "to": "director@acme.test",
        "owner_id": "user-1",
        "template": "payment_received",
        "subject": "Payment Received: Registered Office Address",
        "body": "Thank you, Acme Ltd.",
        "subscription_id": "sub_a1b2c3d4e5f6a7b8_1767225600000",
        "created_time_millis": 1_767_225_600_000,
    }
    fields.update(overrides)
    return EmailMessage(**fields)


def mock_publisher_for(mock_publisher_class):
    mock_publisher = Mock()
    mock_publisher.topic_path.return_value = TOPIC_PATH
    mock_publisher.publish.return_value = Mock()
    mock_publisher_class.return_value = mock_publisher
    return mock_publisher


class TestEmailDispatcherInitialization:
    """Test EmailDispatcher initialization and configuration."""

    def setup_method(self):
        """Reset singleton before each test."""
        reset_email_dispatcher()

    @patch("office_lifecycle.services.email_dispatcher.pubsub_v1.PublisherClient")
    def test_dispatcher_initializes_when_enabled(self, mock_publisher_class):
        mock_publisher = mock_publisher_for(mock_publisher_class)

        dispatcher = EmailDispatcher(ENABLED)

        assert dispatcher.is_enabled()
        mock_publisher.topic_path.assert_called_once_with("office-lifecycle", "outbound-email")
        mock_publisher.get_topic.assert_not_called()

    @patch("office_lifecycle.services.email_dispatcher.pubsub_v1.PublisherClient")
    def test_disabled_in_config(self, mock_publisher_class):
        """The test lifecycle.yaml disables Pub/Sub."""
        dispatcher = EmailDispatcher()

        assert not dispatcher.is_enabled()
        mock_publisher_class.assert_not_called()

    @patch("office_lifecycle.services.email_dispatcher.pubsub_v1.PublisherClient")
    def test_client_failure_disables_dispatcher(self, mock_publisher_class):
        mock_publisher_class.side_effect = RuntimeError("no credentials")

        dispatcher = EmailDispatcher(ENABLED)

        assert not dispatcher.is_enabled()

    @patch("office_lifecycle.services.email_dispatcher.pubsub_v1.PublisherClient")
    def test_missing_topic_created(self, mock_publisher_class):
        mock_publisher = mock_publisher_for(mock_publisher_class)
        mock_publisher.get_topic.side_effect = Exception("404 topic not found")
        mock_publisher.create_topic.return_value.name = TOPIC_PATH

        dispatcher = EmailDispatcher(ENABLED.model_copy(update={"create_topic": True}))

        assert dispatcher.is_enabled()
        mock_publisher.create_topic.assert_called_once_with(request={"name": TOPIC_PATH})

    def test_singleton_pattern(self):
        assert get_email_dispatcher() is get_email_dispatcher()

    @patch("office_lifecycle.services.email_dispatcher.pubsub_v1.PublisherClient")
    def test_shutdown_disables_publishing(self, mock_publisher_class):
        mock_publisher_for(mock_publisher_class)
        dispatcher = EmailDispatcher(ENABLED)

        dispatcher.shutdown()

        assert not dispatcher.is_enabled()
        assert dispatcher.publish_email(make_message()) is False

    @patch("office_lifecycle.services.email_dispatcher.pubsub_v1.PublisherClient")
    def test_shutdown_flushes_queued_messages(self, mock_publisher_class):
        mock_publisher = mock_publisher_for(mock_publisher_class)
        dispatcher = EmailDispatcher(ENABLED)
        dispatcher.publish_email(make_message())

        dispatcher.shutdown()
        dispatcher.shutdown()

        mock_publisher.stop.assert_called_once_with()

    @patch("office_lifecycle.services.email_dispatcher.pubsub_v1.PublisherClient")
    def test_flush_failure_still_shuts_down(self, mock_publisher_class):
        mock_publisher = mock_publisher_for(mock_publisher_class)
        mock_publisher.stop.side_effect = RuntimeError("deadline exceeded")
        dispatcher = EmailDispatcher(ENABLED)

        dispatcher.shutdown()

        assert not dispatcher.is_enabled()


class TestEmailPublishing:
    """Test email publishing functionality."""

    def setup_method(self):
        reset_email_dispatcher()

    @patch("office_lifecycle.services.email_dispatcher.pubsub_v1.PublisherClient")
    def test_publish_email_success(self, mock_publisher_class):
        mock_publisher = mock_publisher_for(mock_publisher_class)
        dispatcher = EmailDispatcher(ENABLED)

        result = dispatcher.publish_email(make_message())

        assert result is True
        mock_publisher.publish.assert_called_once()
        args, kwargs = mock_publisher.publish.call_args
        assert args[0] == TOPIC_PATH
        payload = json.loads(args[1].decode("utf-8"))
        assert payload["to"] == "director@acme.test"
        assert payload["template"] == "payment_received"
        assert kwargs == {"template": "payment_received", "owner_id": "user-1"}

    @patch("office_lifecycle.services.email_dispatcher.pubsub_v1.PublisherClient")
    def test_publish_does_not_wait_for_delivery(self, mock_publisher_class):
        mock_publisher = mock_publisher_for(mock_publisher_class)
        future = mock_publisher.publish.return_value
        dispatcher = EmailDispatcher(ENABLED)

        dispatcher.publish_email(make_message())

        future.result.assert_not_called()
        future.add_done_callback.assert_called_once()

    @patch("office_lifecycle.services.email_dispatcher.pubsub_v1.PublisherClient")
    def test_publish_error_returns_false(self, mock_publisher_class):
        mock_publisher = mock_publisher_for(mock_publisher_class)
        mock_publisher.publish.side_effect = RuntimeError("quota exceeded")
        dispatcher = EmailDispatcher(ENABLED)

        assert dispatcher.publish_email(make_message()) is False

    def test_disabled_dispatcher_skips_publish(self):
        dispatcher = EmailDispatcher(PubSubConfig(enabled=False))

        assert dispatcher.publish_email(make_message()) is False

    @patch("office_lifecycle.services.email_dispatcher.pubsub_v1.PublisherClient")
    def test_delivery_callback_handles_failure(self, mock_publisher_class):
        mock_publisher = mock_publisher_for(mock_publisher_class)
        future = mock_publisher.publish.return_value
        dispatcher = EmailDispatcher(ENABLED)
        dispatcher.publish_email(make_message())
        on_done = future.add_done_callback.call_args[0][0]

        failed = Mock()
        failed.exception.return_value = RuntimeError("delivery failed")
        on_done(failed)
        failed.result.assert_not_called()

        delivered = Mock()
        delivered.exception.return_value = None
        delivered.result.return_value = "message-id-1"
        on_done(delivered)
        delivered.result.assert_called_once()
