"""structlog setup for the lifecycle service.

Application events and the uvicorn/stdlib loggers go through one
``ProcessorFormatter`` so every line on stdout has the same shape. Context
bound per request or per webhook (``request_id``, ``event_id``,
``subscription_id``, ``actor_id``) is merged into every event.
"""

import logging
import os
import sys
from contextlib import contextmanager
from typing import Any, Iterator, List

import structlog
from structlog.typing import EventDict, Processor

from office_lifecycle.utils.identifiers import shorten

SERVICE_NAME = "registered-office-lifecycle"

# Fields that must never reach the log sink in clear
REDACTED_FIELDS = frozenset({"signature", "stripe_signature", "webhook_secret", "cron_secret", "authorization"})

# Record ids are long; the prefix is enough to correlate
SHORTENED_FIELDS = ("subscription_id", "payment_id", "action_id", "notification_id")

# Third-party loggers routed through the structlog formatter
FOREIGN_LOGGERS = ("uvicorn", "uvicorn.error", "google.cloud.pubsub_v1", "stripe")

_HANDLER_MARKER = "_office_lifecycle_handler"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = SERVICE_NAME
    return event_dict


def add_log_level(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add log level to event dict if not present."""
    if "level" not in event_dict:
        event_dict["level"] = method_name.upper()
    return event_dict


def redact_sensitive_fields(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask secrets and signature headers."""
    for key in REDACTED_FIELDS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "[redacted]"
    return event_dict


def shorten_record_ids(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Trim record ids bound as context (subscription ids from the URL path, ...)."""
    for key in SHORTENED_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str):
            event_dict[key] = shorten(value)
    return event_dict


def drop_debug_in_production(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    if method_name == "debug" and not is_debug_mode():
        raise structlog.DropEvent
    return event_dict


def is_debug_mode() -> bool:
    """Check if debug mode is enabled via LOG_LEVEL environment variable."""
    return os.getenv("LOG_LEVEL", "INFO").upper() == "DEBUG"


def _shared_processors(include_timestamp: bool) -> List[Processor]:
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        add_log_level,
        structlog.stdlib.add_logger_name,
        redact_sensitive_fields,
        shorten_record_ids,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    return processors


def _renderer(json_format: bool) -> Processor:
    if json_format:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True, exception_formatter=structlog.dev.plain_traceback)


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    include_timestamp: bool = True,
) -> None:
    """Configure structlog and the stdlib root handler.

    Safe to call more than once; the handler installed by a previous call
    is replaced.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines if True, colored console output otherwise
        include_timestamp: Include ISO8601 UTC timestamps
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    shared = _shared_processors(include_timestamp)

    processors = list(shared)
    if numeric_level > logging.DEBUG:
        processors.append(drop_debug_in_production)
    processors.append(structlog.stdlib.ProcessorFormatter.wrap_for_formatter)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_format),
            ],
        )
    )
    setattr(handler, _HANDLER_MARKER, True)

    root = logging.getLogger()
    for existing in [h for h in root.handlers if getattr(h, _HANDLER_MARKER, False)]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in FOREIGN_LOGGERS:
        foreign = logging.getLogger(name)
        foreign.handlers.clear()
        foreign.propagate = True


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind fields to every later event in this request or task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind fields for the duration of a block, restoring earlier values after.

    Example:
        with log_context(event_id=event["id"], event_type=event["type"]):
            ...
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
