from __future__ import annotations


class PlacesError(Exception):
    """Base class for upstream places failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitExceeded(PlacesError):
    """The provider (or our own window) refused the call for now."""


class QuotaExceeded(PlacesError):
    """The provider quota or billing budget for the period is used up."""


class NetworkError(PlacesError):
    """Transport failure, timeout or provider-side 5xx; safe to retry."""


class InvalidConfiguration(PlacesError):
    """Missing or rejected credentials; fatal at startup."""
