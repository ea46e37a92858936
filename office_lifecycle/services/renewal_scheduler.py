"""Renewal scheduler - periodic expiry and reminder sweep.

Every ACTIVE subscription gets a RenewalCheckTick in its own transaction.
Reminder dedup rows and the one-way expiry make the sweep safe to rerun
and to overlap with itself or with webhook traffic.
"""

import threading
from typing import Optional

from pydantic import BaseModel, Field

from office_lifecycle.errors import IllegalTransition, LifecycleError, PersistenceError
from office_lifecycle.logging_config import get_logger
from office_lifecycle.models.effects import RecordReminder
from office_lifecycle.models.events import RenewalCheckTick
from office_lifecycle.models.subscription import SubscriptionStatus
from office_lifecycle.repositories.ledger_store import SubscriptionNotFoundError
from office_lifecycle.services.lifecycle_engine import LifecycleEngine, get_lifecycle_engine
from office_lifecycle.services.retry import run_with_conflict_retry
from office_lifecycle.services.state_machine import TransitionResult
from office_lifecycle.utils.identifiers import shorten

logger = get_logger(__name__)


class SweepReport(BaseModel):
    """Counts from one sweep."""

    as_of_millis: int = Field(..., description="Evaluation time")
    examined: int = Field(default=0, description="ACTIVE subscriptions at the start of the sweep")
    reminders_sent: int = Field(default=0, description="Renewal reminders issued")
    expired: int = Field(default=0, description="Subscriptions moved to EXPIRED")
    skipped: int = Field(default=0, description="No longer ACTIVE when locked")
    failed: int = Field(default=0, description="Lock contention outlasted the retries or the commit was refused")


class RenewalScheduler:
    """Feeds RenewalCheckTick events for every ACTIVE subscription."""

    def __init__(self, engine: Optional[LifecycleEngine] = None, billing=None):
        """Initialize renewal scheduler.

        Args:
            engine: Lifecycle engine (defaults to global instance)
            billing: BillingConfig with retry settings (defaults to global config)
        """
        self.engine = engine if engine is not None else get_lifecycle_engine()
        self._billing = billing

    def sweep(self, as_of_millis: Optional[int] = None) -> SweepReport:
        """Run one sweep.

        Args:
            as_of_millis: Evaluation time (defaults to the service clock)

        Returns:
            SweepReport with per-outcome counts

        Raises:
            PersistenceError: If the ledger is unavailable
        """
        as_of = as_of_millis if as_of_millis is not None else self.engine.now_millis()
        report = SweepReport(as_of_millis=as_of)

        candidates = self.engine.ledger.list_by_status(SubscriptionStatus.ACTIVE)
        logger.info("renewal_sweep_started", as_of_millis=as_of, candidates=len(candidates))

        for subscription in candidates:
            report.examined += 1
            try:
                result = run_with_conflict_retry(
                    self._check_subscription, subscription.id, as_of, billing=self._billing
                )
            except (IllegalTransition, SubscriptionNotFoundError) as e:
                # Changed status since the candidate list was taken
                report.skipped += 1
                logger.debug(
                    "renewal_check_skipped",
                    subscription_id=shorten(subscription.id),
                    reason=str(e),
                )
                continue
            except PersistenceError:
                raise
            except LifecycleError as e:
                report.failed += 1
                logger.warning(
                    "renewal_check_failed",
                    subscription_id=shorten(subscription.id),
                    error=str(e),
                )
                continue

            if result.new_status == SubscriptionStatus.EXPIRED:
                report.expired += 1
            elif result.effects_of(RecordReminder):
                report.reminders_sent += 1

            if result.side_effects:
                self.engine.after_commit(result, reason="renewal_check", as_of_millis=as_of)

        logger.info(
            "renewal_sweep_completed",
            as_of_millis=as_of,
            examined=report.examined,
            reminders_sent=report.reminders_sent,
            expired=report.expired,
            skipped=report.skipped,
            failed=report.failed,
        )
        return report

    def _check_subscription(self, subscription_id: str, as_of_millis: int) -> TransitionResult:
        now = self.engine.now_millis()
        with self.engine.ledger.transaction(subscription_id) as txn:
            return self.engine.run(
                txn,
                RenewalCheckTick(subscription_id=subscription_id, as_of_millis=as_of_millis),
                now,
            )


_scheduler_instance: Optional[RenewalScheduler] = None
_scheduler_lock = threading.Lock()


def get_renewal_scheduler() -> RenewalScheduler:
    """Get global renewal scheduler instance (singleton)."""
    global _scheduler_instance
    if _scheduler_instance is None:
        with _scheduler_lock:
            if _scheduler_instance is None:
                _scheduler_instance = RenewalScheduler()
    return _scheduler_instance


def reset_renewal_scheduler() -> None:
    """Drop the global scheduler so the next call rebuilds it."""
    global _scheduler_instance
    with _scheduler_lock:
        _scheduler_instance = None
