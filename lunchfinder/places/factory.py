from __future__ import annotations

import logging

from .client import GooglePlacesClient, PlacesClient
from .config import DEFAULT_PLACES_CONFIG, Environment, PlacesConfig
from .errors import InvalidConfiguration
from .local import LocalPlacesClient

logger = logging.getLogger(__name__)


def validate_configuration(config: PlacesConfig = DEFAULT_PLACES_CONFIG) -> dict:
    """Summarise configuration problems without raising."""
    issues: list[str] = []
    warnings: list[str] = []
    if not config.has_valid_key:
        if config.environment is Environment.production:
            issues.append("Places API key is invalid or missing in production")
        else:
            warnings.append("Places API key missing; using the local dataset")
            if not config.dataset_path.exists():
                issues.append(f"Local dataset not found at {config.dataset_path}")
    if config.timeout <= 0:
        issues.append("Places timeout must be positive")
    if config.cost_per_call < 0:
        issues.append("Places cost per call must not be negative")
    return {
        "valid": not issues,
        "issues": issues,
        "warnings": warnings,
        "environment": config.environment.value,
    }


def build_client(config: PlacesConfig = DEFAULT_PLACES_CONFIG) -> PlacesClient:
    """Create the provider client, failing fast on unusable configuration."""
    report = validate_configuration(config)
    for warning in report["warnings"]:
        logger.warning(warning)
    if not report["valid"]:
        for issue in report["issues"]:
            logger.error(issue)
        raise InvalidConfiguration("; ".join(report["issues"]))

    if config.has_valid_key:
        return GooglePlacesClient(config)
    return LocalPlacesClient(config.dataset_path, max_result_count=config.max_result_count)
