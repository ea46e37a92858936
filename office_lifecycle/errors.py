"""Error taxonomy shared by the ledger, the state machine and the processors."""

from enum import Enum
from typing import Optional


class LifecycleError(Exception):
    """Base exception for lifecycle errors."""

    pass


class AuthenticationError(LifecycleError):
    """Raised when an inbound webhook payload cannot be verified."""

    pass


class IllegalTransition(LifecycleError):
    """Raised when an event does not apply to the subscription's current status.

    Never retried automatically: it points at a logic or ordering problem,
    not a transient fault.
    """

    def __init__(self, current_status: str, event_name: str, detail: Optional[str] = None):
        self.current_status = current_status
        self.event_name = event_name
        self.detail = detail
        message = f"Cannot apply {event_name} to subscription in {current_status} status"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ConcurrencyConflict(LifecycleError):
    """Raised when the subscription row lock or version check cannot be satisfied.

    Safe to retry the whole operation.
    """

    pass


class PersistenceError(LifecycleError):
    """Raised when the ledger store is unavailable."""

    pass


class AlreadyProcessed(LifecycleError):
    """Raised when a gateway event id has already been applied.

    Callers treat this as success.
    """

    def __init__(self, external_event_id: str):
        self.external_event_id = external_event_id
        super().__init__(f"Event already processed: {external_event_id}")


class ActionErrorKind(str, Enum):
    """Machine-readable reasons an admin command can fail."""

    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INVALID_FOR_STATE = "invalid_for_state"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"


class ActionError(LifecycleError):
    """Raised by the admin action processor with a machine-readable kind."""

    def __init__(self, kind: ActionErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)
