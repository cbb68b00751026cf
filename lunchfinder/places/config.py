from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")

_SAMPLE_DATASET = Path(__file__).resolve().parent.parent / "data" / "restaurants.csv"


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"

    @classmethod
    def from_string(cls, value: str) -> Environment:
        aliases = {"dev": "development", "stage": "staging", "prod": "production"}
        value = aliases.get(value.strip().lower(), value.strip().lower())
        try:
            return cls(value)
        except ValueError:
            return cls.development


@dataclass(frozen=True)
class PlacesConfig:
    api_key: str = os.getenv("GOOGLE_PLACES_API_KEY", "")
    environment: Environment = Environment.from_string(os.getenv("APP_ENVIRONMENT", "development"))
    base_url: str = "https://places.googleapis.com/v1"
    timeout: float = float(os.getenv("PLACES_TIMEOUT_SECONDS", "10"))
    max_retries: int = 3
    backoff_base: float = 0.2
    backoff_cap: float = 2.0
    max_result_count: int = 20
    cost_per_call: float = float(os.getenv("PLACES_COST_PER_CALL", "0.035"))
    dataset_path: Path = Path(os.getenv("LUNCHFINDER_DATASET", str(_SAMPLE_DATASET)))

    @property
    def has_valid_key(self) -> bool:
        key = self.api_key.strip()
        return len(key) > 10 and not key.startswith("demo_")


DEFAULT_PLACES_CONFIG = PlacesConfig()
