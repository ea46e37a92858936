"""Outbound email publishing to Google Cloud Pub/Sub.

Responsibilities:
- Serialize EmailMessage payloads for the mail sender
- Publish to the outbound email topic without waiting on delivery
- Log delivery failures from the publish future callback
- Manage Pub/Sub client lifecycle
"""

from threading import RLock
from typing import Optional

from google.cloud import pubsub_v1

from office_lifecycle.logging_config import get_logger
from office_lifecycle.models.effects import EmailMessage
from office_lifecycle.models.settings import PubSubConfig
from office_lifecycle.utils.identifiers import shorten

logger = get_logger(__name__)


class EmailDispatcher:
    """Publishes outbound emails to Pub/Sub, fire-and-forget.

    A transition never waits for, or fails because of, email delivery:
    ``publish_email`` hands the message to the publisher's background
    batching and returns immediately.

    Thread-safe singleton pattern.
    """

    def __init__(self, pubsub_config: Optional[PubSubConfig] = None):
        """Initialize email dispatcher.

        Args:
            pubsub_config: Pub/Sub settings (defaults to the global configuration)
        """
        self._lock = RLock()
        self._publisher: Optional[pubsub_v1.PublisherClient] = None
        self._topic_path: Optional[str] = None
        self._enabled = False

        if pubsub_config is None:
            from office_lifecycle.config import get_config

            pubsub_config = get_config().lifecycle.pubsub
        self._settings = pubsub_config

        self._initialize()

    def _initialize(self) -> None:
        """Init pub/sub publisher from config"""
        self._enabled = self._settings.enabled
        if not self._enabled:
            logger.info("email_dispatcher_disabled", message="Outbound email publishing is disabled in config")
            return

        try:
            self._publisher = pubsub_v1.PublisherClient()
            self._topic_path = self._publisher.topic_path(self._settings.project_id, self._settings.topic)

            if self._settings.create_topic:
                self._ensure_topic_exists()

            logger.info(
                "email_dispatcher_initialized",
                project_id=self._settings.project_id,
                topic=self._settings.topic,
                topic_path=self._topic_path,
            )

        except Exception as e:
            logger.error(
                "email_dispatcher_init_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            # Disable dispatcher if initialization fails
            self._enabled = False

    def _ensure_topic_exists(self) -> None:
        """Ensure the Pub/Sub topic exists, create it if it doesn't."""
        if not self._publisher:
            return

        try:
            self._publisher.get_topic(request={"topic": self._topic_path})
            logger.info("pubsub_topic_exists", topic_path=self._topic_path)
        except Exception:
            topic = self._publisher.create_topic(request={"name": self._topic_path})
            logger.info("pubsub_topic_created", topic_path=topic.name)

    def is_enabled(self) -> bool:
        """Check if email dispatcher is enabled.

        Returns:
            True if publishing is enabled and the client is initialized
        """
        return self._enabled and self._publisher is not None

    def publish_email(self, message: EmailMessage) -> bool:
        """Queue an email for the mail sender.

        Args:
            message: Email to publish

        Returns:
            True if the message was handed to the publisher, False if the
            dispatcher is disabled or the publish call failed
        """
        if not self.is_enabled():
            logger.debug(
                "email_dispatcher_disabled",
                message="Skipping email publication",
                template=message.template,
                owner_id=message.owner_id,
            )
            return False

        with self._lock:
            try:
                future = self._publisher.publish(
                    self._topic_path,
                    message.model_dump_json().encode("utf-8"),
                    template=message.template,
                    owner_id=message.owner_id,
                )
            except Exception as e:
                logger.error(
                    "email_publish_failed",
                    template=message.template,
                    owner_id=message.owner_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                return False

        future.add_done_callback(self._delivery_callback(message))
        logger.info(
            "email_queued",
            template=message.template,
            owner_id=message.owner_id,
            subscription_id=shorten(message.subscription_id),
        )
        return True

    @staticmethod
    def _delivery_callback(message: EmailMessage):
        """Build the done-callback that logs the publish outcome."""

        def _on_done(future) -> None:
            exc = future.exception()
            if exc is not None:
                logger.error(
                    "email_delivery_failed",
                    template=message.template,
                    owner_id=message.owner_id,
                    subscription_id=shorten(message.subscription_id),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return
            logger.debug("email_published", message_id=future.result(), template=message.template)

        return _on_done

    def shutdown(self) -> None:
        """Flush batched messages and close the publisher."""
        with self._lock:
            if self._publisher:
                logger.info("email_dispatcher_shutting_down")
                try:
                    self._publisher.stop()
                except Exception as e:
                    logger.error("email_dispatcher_flush_failed", error=str(e), error_type=type(e).__name__)
                self._publisher = None
                self._topic_path = None
                logger.info("email_dispatcher_shutdown_complete")


_email_dispatcher: Optional[EmailDispatcher] = None
_dispatcher_lock = RLock()


def get_email_dispatcher() -> EmailDispatcher:
    """Get or create the singleton EmailDispatcher instance."""
    global _email_dispatcher
    if _email_dispatcher is None:
        with _dispatcher_lock:
            if _email_dispatcher is None:
                _email_dispatcher = EmailDispatcher()
    return _email_dispatcher


def reset_email_dispatcher() -> None:
    """Reset the singleton EmailDispatcher instance (for testing)."""
    global _email_dispatcher

    with _dispatcher_lock:
        if _email_dispatcher is not None:
            _email_dispatcher.shutdown()
            _email_dispatcher = None
