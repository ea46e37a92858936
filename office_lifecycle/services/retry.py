"""Bounded retry for ledger lock contention.

Only ``ConcurrencyConflict`` is retried. Everything else, including
``IllegalTransition`` and ``PersistenceError``, propagates on the first
attempt.
"""

from typing import Any, Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from office_lifecycle.errors import ConcurrencyConflict
from office_lifecycle.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "concurrency_conflict_retry",
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
        error=str(exc) if exc else None,
    )


def conflict_retrying(
    attempts: int = 3,
    min_wait_seconds: float = 0.05,
    max_wait_seconds: float = 1.0,
) -> Retrying:
    """Retrying policy for ConcurrencyConflict with exponential backoff.

    The last ConcurrencyConflict is re-raised once attempts run out.
    """
    return Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=min_wait_seconds, min=min_wait_seconds, max=max_wait_seconds),
        retry=retry_if_exception_type(ConcurrencyConflict),
        before_sleep=_log_retry,
        reraise=True,
    )


def run_with_conflict_retry(
    operation: Callable[..., T],
    *args: Any,
    billing=None,
    **kwargs: Any,
) -> T:
    """Call ``operation`` and retry it while it raises ConcurrencyConflict.

    Args:
        operation: Callable running one whole transaction
        billing: BillingConfig with the retry settings (defaults to global config)
    """
    if billing is None:
        from office_lifecycle.config import get_config

        billing = get_config().billing

    retrying = conflict_retrying(
        attempts=billing.conflict_retry_attempts,
        min_wait_seconds=billing.conflict_retry_min_seconds,
        max_wait_seconds=billing.conflict_retry_max_seconds,
    )
    return retrying(operation, *args, **kwargs)
