"""Service clock with virtual time support.

Responsibilities:
- Provide "now" to every processor
- Advance or set virtual time for end-to-end checks
- Run a renewal sweep after each time jump
"""

import threading
import time
from typing import Optional

from office_lifecycle.logging_config import get_logger
from office_lifecycle.utils.billing_period import MILLIS_PER_DAY, MILLIS_PER_HOUR, MILLIS_PER_MINUTE

logger = get_logger(__name__)


class TimeController:
    """Service clock.

    Tracks wall-clock time plus an offset by default. When created with
    ``start_time_millis`` the clock is frozen at that instant and only
    moves through ``advance_time``/``set_time``.

    Args:
        start_time_millis: Freeze the clock at this instant
        renewal_scheduler: Scheduler swept after time jumps (defaults to the global one)
    """

    def __init__(self, start_time_millis: Optional[int] = None, renewal_scheduler=None) -> None:
        self._lock = threading.RLock()
        self._frozen_time_millis = start_time_millis
        self._time_offset_millis = 0
        self._renewal_scheduler = renewal_scheduler

        logger.info(
            "time_controller_initialized",
            frozen=start_time_millis is not None,
            current_time_millis=self.get_current_time_millis(),
        )

    def _get_renewal_scheduler(self):
        """lazy load renewal scheduler to avoid circular import"""
        if self._renewal_scheduler is None:
            from office_lifecycle.services.renewal_scheduler import get_renewal_scheduler

            self._renewal_scheduler = get_renewal_scheduler()
        return self._renewal_scheduler

    def get_current_time_millis(self) -> int:
        """Get the current service time in milliseconds."""
        with self._lock:
            if self._frozen_time_millis is not None:
                return self._frozen_time_millis
            return int(time.time() * 1000) + self._time_offset_millis

    @property
    def time_offset_millis(self) -> int:
        with self._lock:
            return self._time_offset_millis

    def advance_time(self, days: int = 0, hours: int = 0, minutes: int = 0) -> dict:
        """Advance time and run a renewal sweep at the new time.

        Args:
            days: number of days to advance
            hours: number of hours to advance
            minutes: number of minutes to advance

        Returns:
            Dictionary with:
                - old_time_millis: time before advancement
                - new_time_millis: time after advancement
                - time_advanced_millis: amount of time advanced
                - sweep: SweepReport for the new time, or None if time did not move

        Raises:
            ValueError: if any value is negative
        """
        if days < 0 or hours < 0 or minutes < 0:
            raise ValueError("Cannot advance time backwards, negative values are not allowed")

        millis = days * MILLIS_PER_DAY + hours * MILLIS_PER_HOUR + minutes * MILLIS_PER_MINUTE

        with self._lock:
            old_time = self.get_current_time_millis()
            if millis == 0:
                return {
                    "old_time_millis": old_time,
                    "new_time_millis": old_time,
                    "time_advanced_millis": 0,
                    "sweep": None,
                }
            self._shift(millis)
            new_time = self.get_current_time_millis()

        logger.info(
            "time_advanced",
            old_time_millis=old_time,
            new_time_millis=new_time,
            days=days,
            hours=hours,
            minutes=minutes,
        )

        report = self._get_renewal_scheduler().sweep(new_time)
        return {
            "old_time_millis": old_time,
            "new_time_millis": new_time,
            "time_advanced_millis": millis,
            "sweep": report,
        }

    def set_time(self, timestamp_millis: int) -> dict:
        """Jump to a specific instant and run a renewal sweep there.

        Raises:
            ValueError: If the instant is before the current time
        """
        with self._lock:
            old_time = self.get_current_time_millis()
            if timestamp_millis < old_time:
                raise ValueError(
                    f"Cannot set time backwards, current: {old_time}, requested: {timestamp_millis}"
                )
            self._shift(timestamp_millis - old_time)

        logger.info("time_set", old_time_millis=old_time, new_time_millis=timestamp_millis)

        report = self._get_renewal_scheduler().sweep(timestamp_millis)
        return {
            "old_time_millis": old_time,
            "new_time_millis": timestamp_millis,
            "sweep": report,
        }

    def reset_time(self) -> dict:
        """Return to real wall-clock time."""
        with self._lock:
            old_time = self.get_current_time_millis()
            self._frozen_time_millis = None
            self._time_offset_millis = 0
            real_time = self.get_current_time_millis()

        logger.info("time_reset", old_time_millis=old_time, new_time_millis=real_time)
        return {"old_time_millis": old_time, "new_time_millis": real_time}

    def _shift(self, millis: int) -> None:
        if self._frozen_time_millis is not None:
            self._frozen_time_millis += millis
        else:
            self._time_offset_millis += millis


_time_controller_instance: Optional[TimeController] = None
_controller_lock = threading.Lock()


def get_time_controller() -> TimeController:
    """Get global time controller (singleton), tracking wall-clock time."""
    global _time_controller_instance
    if _time_controller_instance is None:
        with _controller_lock:
            if _time_controller_instance is None:
                _time_controller_instance = TimeController()
    return _time_controller_instance


def reset_time_controller() -> None:
    """Replace the global time controller with a fresh wall-clock one."""
    global _time_controller_instance
    with _controller_lock:
        _time_controller_instance = TimeController()
