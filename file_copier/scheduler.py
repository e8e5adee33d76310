"""Daily restart timer for File Copier.

The service restarts itself once a day at a configured hour.  The timer is
a single daemon thread that fires after an initial delay and then every
``interval`` thereafter.  Fire times are counted from the first one on the
monotonic clock, so a late callback does not push later restarts back.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

logger = logging.getLogger(__name__)

RESTART_INTERVAL = timedelta(days=1)


def compute_initial_delay(now: datetime, restart_hour: int) -> timedelta:
    """Return the time from *now* until the next *restart_hour*:00.

    Today's restart time is used unless *now* is already past it, in which
    case the restart moves to the same hour tomorrow.
    """
    if not 0 <= restart_hour <= 23:
        raise ValueError(f"restart_hour must be between 0 and 23, got {restart_hour}")
    next_restart = now.replace(hour=restart_hour, minute=0, second=0, microsecond=0)
    if now > next_restart:
        next_restart += timedelta(days=1)
    return next_restart - now


@dataclass
class ScheduledRestart:
    """When the timer fires next."""
    next_fire_time: datetime
    interval_days: int = 1


class RestartScheduler:
    """Recurring timer that calls *on_fire* after a delay and then daily."""

    def __init__(self, interval: timedelta = RESTART_INTERVAL):
        self._interval = interval
        self._cancelled = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.scheduled: ScheduledRestart | None = None

    @property
    def is_armed(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def next_restart(self) -> datetime | None:
        """Return the wall-clock time of the next fire, if armed."""
        with self._lock:
            return self.scheduled.next_fire_time if self.scheduled else None

    def arm(self, delay: timedelta, on_fire: Callable[[], None]) -> ScheduledRestart:
        """Start the timer.  Raises ``RuntimeError`` if it is already armed."""
        if self.is_armed:
            raise RuntimeError("Restart scheduler is already armed")
        delay_s = max(0.0, delay.total_seconds())
        self._cancelled = threading.Event()
        with self._lock:
            self.scheduled = ScheduledRestart(
                next_fire_time=datetime.now() + timedelta(seconds=delay_s),
                interval_days=max(1, self._interval.days),
            )
        self._thread = threading.Thread(
            target=self._run,
            args=(delay_s, on_fire, self._cancelled),
            daemon=True,
            name="RestartScheduler",
        )
        self._thread.start()
        logger.info("Next restart scheduled for %s.", self.scheduled.next_fire_time.strftime("%Y-%m-%d %H:%M:%S"))
        return self.scheduled

    def cancel(self) -> None:
        """Stop the timer; safe to call when not armed."""
        self._cancelled.set()
        thread, self._thread = self._thread, None
        with self._lock:
            self.scheduled = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)

    def _run(self, delay_s: float, on_fire: Callable[[], None], cancelled: threading.Event) -> None:
        interval_s = self._interval.total_seconds()
        fire_at = time.monotonic() + delay_s
        while not cancelled.wait(max(0.0, fire_at - time.monotonic())):
            fire_at += interval_s
            with self._lock:
                if self.scheduled is not None:
                    self.scheduled.next_fire_time += self._interval
            try:
                on_fire()
            except Exception:
                logger.exception("Error in scheduled restart callback")
