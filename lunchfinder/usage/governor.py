from __future__ import annotations

import logging
import threading
from datetime import datetime

from ..analytics.store import COST_THRESHOLD, QUOTA_EXHAUSTED, RATE_LIMITED, EventStream
from .ledger import UsageLedger
from .models import Authorization, Decision, DenialReason, Reservation, UsageState

logger = logging.getLogger(__name__)


class Governor:
    """Gatekeeper for live provider calls.

    Policy, in order:
    1. accrued + pending + estimated cost above the daily limit (or a
       provider-reported quota exhaustion) means cache only until the daily reset;
    2. a full rate window means cache only for this request;
    3. otherwise the call may proceed and holds its cost and one window slot.
    """

    def __init__(self, ledger: UsageLedger, events: EventStream | None = None) -> None:
        self._ledger = ledger
        self._events = events
        self._lock = threading.Lock()
        self._advised_period: datetime | None = None

    @property
    def ledger(self) -> UsageLedger:
        return self._ledger

    def authorize(self, estimated_cost: float) -> Authorization:
        """Decide whether a live call may proceed.

        A proceeding call holds *estimated_cost* of the daily budget and one
        window slot. The caller must ``settle`` or ``release`` the cost.
        """
        if self._ledger.snapshot().quota_exhausted:
            logger.warning("Provider quota exhausted for this period, serving cache only")
            return Authorization(decision=Decision.use_cache_only, reason=DenialReason.quota_exhausted)
        if not self._ledger.hold_cost(estimated_cost):
            state = self._ledger.snapshot()
            if state.quota_exhausted:
                return Authorization(decision=Decision.use_cache_only, reason=DenialReason.quota_exhausted)
            logger.warning(
                "Daily cost limit reached (%.4f accrued + %.4f pending + %.4f > %.4f), serving cache only",
                state.daily_cost_accrued, state.daily_cost_pending, estimated_cost, state.daily_cost_limit,
            )
            return Authorization(decision=Decision.use_cache_only, reason=DenialReason.cost_limit)
        if self._ledger.try_reserve() is Reservation.rate_limited:
            self._ledger.release_cost(estimated_cost)
            logger.warning(
                "Rate window full (%d/min), serving cache only",
                self._ledger.config.max_requests_per_minute,
            )
            if self._events is not None:
                self._events.record(RATE_LIMITED, {"source": "governor"})
            return Authorization(decision=Decision.use_cache_only, reason=DenialReason.rate_limited)
        return Authorization(decision=Decision.proceed)

    def allow_retry(self) -> bool:
        """Claim a window slot for a retry attempt of an authorized fetch."""
        return self._ledger.try_reserve() is Reservation.allowed

    def settle(self, estimated_cost: float) -> None:
        """Accrue the cost held by a successful call."""
        self._ledger.settle_cost(estimated_cost)
        self._maybe_advise(self._ledger.snapshot())

    def release(self, estimated_cost: float) -> None:
        self._ledger.release_cost(estimated_cost)

    def record_cost(self, amount: float) -> None:
        self._ledger.record_cost(amount)
        self._maybe_advise(self._ledger.snapshot())

    def quota_exhausted(self) -> None:
        self._ledger.mark_quota_exhausted()
        if self._events is not None:
            self._events.record(QUOTA_EXHAUSTED, {"source": "provider"})

    def _maybe_advise(self, state: UsageState) -> None:
        threshold = self._ledger.config.advisory_threshold
        if state.daily_cost_limit <= 0 or state.cost_ratio < threshold:
            return
        with self._lock:
            if self._advised_period == state.period_started_at:
                return
            self._advised_period = state.period_started_at
        logger.warning(
            "Places cost at %.0f%% of the daily limit (%.4f / %.4f)",
            state.cost_ratio * 100, state.daily_cost_accrued, state.daily_cost_limit,
        )
        if self._events is not None:
            self._events.record(COST_THRESHOLD, {
                "daily_cost_accrued": state.daily_cost_accrued,
                "daily_cost_limit": state.daily_cost_limit,
                "ratio": round(state.cost_ratio, 4),
            })
