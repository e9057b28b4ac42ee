"""
Process-local YouTube quota accounting.

Two budgets are tracked: the provider's daily unit budget, which resets at
midnight in the provider's quota timezone, and a sliding 60-second call-rate window.
The daily budget is only reported here; callers decide when to stop.
"""

import logging
import time
from collections import deque
from datetime import date, datetime
from typing import Callable, Deque, Dict, Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

QUOTA_COSTS: Dict[str, int] = {
    "search.list": 100,
    "channels.list": 1,
    "playlistItems.list": 1,
    "videos.list": 1,
}

WINDOW_SECONDS = 60.0


class QuotaState:
    """Daily unit counter plus the sliding per-minute call window."""

    def __init__(
        self,
        daily_limit: int,
        calls_per_minute: int,
        reset_timezone: str = "America/Los_Angeles",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        today: Optional[Callable[[], date]] = None,
    ):
        self.daily_limit = max(int(daily_limit), 0)
        self.calls_per_minute = max(int(calls_per_minute), 1)
        self._zone = ZoneInfo(reset_timezone)
        self._clock = clock
        self._sleep = sleep
        self._today = today or (lambda: datetime.now(self._zone).date())
        self.quota_day = self._today()
        self.units_used_today = 0
        self._window_calls: Deque[float] = deque()

    def _roll_day(self) -> None:
        current = self._today()
        if current != self.quota_day:
            logger.info(
                "Quota day rolled over (%s -> %s), resetting %s used units",
                self.quota_day,
                current,
                self.units_used_today,
            )
            self.quota_day = current
            self.units_used_today = 0

    def _expire_window(self, now: float) -> None:
        while self._window_calls and self._window_calls[0] <= now - WINDOW_SECONDS:
            self._window_calls.popleft()

    @property
    def window_call_count(self) -> int:
        return len(self._window_calls)

    @property
    def window_reset_at(self) -> float:
        """Monotonic time at which the oldest call in the window expires."""
        if not self._window_calls:
            return 0.0
        return self._window_calls[0] + WINDOW_SECONDS

    def acquire_call_slot(self) -> None:
        """Block until one more call fits in the sliding 60-second window."""
        now = self._clock()
        self._expire_window(now)
        if len(self._window_calls) >= self.calls_per_minute:
            wait_seconds = max(self.window_reset_at - now, 0.0)
            logger.info(
                "Call-rate ceiling of %s/min reached, sleeping %.1fs",
                self.calls_per_minute,
                wait_seconds,
            )
            self._sleep(wait_seconds)
            now = max(self._clock(), self.window_reset_at)
            self._expire_window(now)
        self._window_calls.append(now)

    def charge(self, units: int) -> None:
        self._roll_day()
        self.units_used_today += max(int(units), 0)
        logger.debug("YouTube quota used: %s/%s", self.units_used_today, self.daily_limit)

    def usage(self) -> Dict[str, int]:
        self._roll_day()
        return {
            "used": self.units_used_today,
            "remaining": max(self.daily_limit - self.units_used_today, 0),
            "limit": self.daily_limit,
        }
