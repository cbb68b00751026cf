"""
Process-wide usage ledger for the places provider.

The ledger is the only owner of rate and cost state. Other components read it
through ``snapshot()`` and mutate it through ``try_reserve()``,
``hold_cost()``, ``settle_cost()``, ``release_cost()``, ``record_cost()``,
``mark_quota_exhausted()`` and ``reset_daily()``. Cost held for in-flight
calls counts against the daily limit until it is settled or released.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable

from .config import DEFAULT_USAGE_CONFIG, UsageConfig
from .models import Reservation, UsageState

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UsageLedger:
    def __init__(self, config: UsageConfig = DEFAULT_USAGE_CONFIG, clock: Clock = utc_now) -> None:
        self._config = config
        self._clock = clock
        self._lock = threading.Lock()
        self._requests: deque[datetime] = deque()
        self._window = timedelta(seconds=config.window_seconds)
        self._cost = 0.0
        self._pending = 0.0
        self._quota_exhausted = False
        self._period_start = self._period_start_for(clock())

    @property
    def config(self) -> UsageConfig:
        return self._config

    def _period_start_for(self, now: datetime) -> datetime:
        start = now.replace(hour=self._config.reset_hour_utc, minute=0, second=0, microsecond=0)
        if now < start:
            start -= timedelta(days=1)
        return start

    def _roll(self, now: datetime) -> None:
        # Caller holds the lock.
        while self._requests and now - self._requests[0] >= self._window:
            self._requests.popleft()
        period_start = self._period_start_for(now)
        if period_start != self._period_start:
            logger.info(
                "Daily usage period rolled over (accrued %.4f of %.4f)",
                self._cost, self._config.daily_cost_limit,
            )
            self._period_start = period_start
            self._cost = 0.0
            self._quota_exhausted = False

    def try_reserve(self) -> Reservation:
        """Claim one live-request slot in the rolling window."""
        now = self._clock()
        with self._lock:
            self._roll(now)
            if len(self._requests) >= self._config.max_requests_per_minute:
                return Reservation.rate_limited
            self._requests.append(now)
            return Reservation.allowed

    def hold_cost(self, amount: float) -> bool:
        """Set *amount* aside for an in-flight call if the daily limit allows it.

        The check and the hold happen under one lock, so concurrent callers
        can never jointly exceed the limit.
        """
        if amount < 0:
            raise ValueError(f"cost must not be negative, got {amount}")
        now = self._clock()
        with self._lock:
            self._roll(now)
            if self._quota_exhausted:
                return False
            if self._cost + self._pending + amount > self._config.daily_cost_limit:
                return False
            self._pending += amount
            return True

    def settle_cost(self, amount: float) -> None:
        """Turn a held amount into accrued cost."""
        now = self._clock()
        with self._lock:
            self._roll(now)
            self._pending = max(0.0, self._pending - amount)
            self._cost += amount

    def release_cost(self, amount: float) -> None:
        with self._lock:
            self._pending = max(0.0, self._pending - amount)

    def record_cost(self, amount: float) -> None:
        if amount < 0:
            raise ValueError(f"cost must not be negative, got {amount}")
        now = self._clock()
        with self._lock:
            self._roll(now)
            self._cost += amount

    def mark_quota_exhausted(self) -> None:
        """Switch to cache-only until the next daily reset."""
        now = self._clock()
        with self._lock:
            self._roll(now)
            self._quota_exhausted = True

    def reset_daily(self) -> None:
        now = self._clock()
        with self._lock:
            self._period_start = self._period_start_for(now)
            self._cost = 0.0
            self._quota_exhausted = False

    def snapshot(self) -> UsageState:
        now = self._clock()
        with self._lock:
            self._roll(now)
            reset_at = self._requests[0] + self._window if self._requests else None
            return UsageState(
                requests_in_window=len(self._requests),
                max_requests_per_minute=self._config.max_requests_per_minute,
                daily_cost_accrued=round(self._cost, 6),
                daily_cost_pending=round(self._pending, 6),
                daily_cost_limit=self._config.daily_cost_limit,
                window_reset_at=reset_at,
                period_started_at=self._period_start,
                quota_exhausted=self._quota_exhausted,
            )
