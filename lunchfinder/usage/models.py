from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class Reservation(str, Enum):
    allowed = "allowed"
    rate_limited = "rate_limited"


class Decision(str, Enum):
    proceed = "proceed"
    use_cache_only = "use_cache_only"


class DenialReason(str, Enum):
    cost_limit = "cost_limit"
    quota_exhausted = "quota_exhausted"
    rate_limited = "rate_limited"


class Authorization(BaseModel):
    model_config = ConfigDict(frozen=True)

    decision: Decision
    reason: DenialReason | None = None

    @property
    def proceed(self) -> bool:
        return self.decision is Decision.proceed


class UsageState(BaseModel):
    model_config = ConfigDict(frozen=True)

    requests_in_window: int
    max_requests_per_minute: int
    daily_cost_accrued: float
    daily_cost_limit: float
    window_reset_at: datetime | None
    period_started_at: datetime
    daily_cost_pending: float = 0.0
    quota_exhausted: bool = False

    @property
    def cost_ratio(self) -> float:
        if self.daily_cost_limit <= 0:
            return 1.0
        return self.daily_cost_accrued / self.daily_cost_limit


class UsageStatus(BaseModel):
    requests_in_window: int
    max_requests_per_minute: int
    daily_cost_accrued: float
    daily_cost_limit: float
    daily_cost_pending: float = 0.0
    window_reset_at: datetime | None = None
    quota_exhausted: bool = False
    cache_only: bool = False
    cache_hit_rate: float = 0.0
    cache_size: int = 0
