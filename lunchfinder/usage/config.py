from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class UsageConfig:
    max_requests_per_minute: int = int(os.getenv("GOOGLE_PLACES_MAX_REQUESTS_PER_MINUTE", "60"))
    daily_cost_limit: float = float(os.getenv("PLACES_DAILY_COST_LIMIT", "5.0"))
    window_seconds: float = 60.0
    reset_hour_utc: int = 0
    advisory_threshold: float = 0.8

    def __post_init__(self) -> None:
        if self.max_requests_per_minute < 1:
            raise ValueError("max_requests_per_minute must be at least 1")
        if self.daily_cost_limit < 0:
            raise ValueError("daily_cost_limit must not be negative")
        if not 0 <= self.reset_hour_utc <= 23:
            raise ValueError("reset_hour_utc must be between 0 and 23")


DEFAULT_USAGE_CONFIG = UsageConfig()
