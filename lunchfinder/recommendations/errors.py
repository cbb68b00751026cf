from __future__ import annotations

from enum import Enum

from ..usage.models import DenialReason


class FailureReason(str, Enum):
    quota_exceeded_no_fallback = "quota_exceeded_no_fallback"
    rate_limited_no_fallback = "rate_limited_no_fallback"
    network_error_no_fallback = "network_error_no_fallback"
    upstream_error_no_fallback = "upstream_error_no_fallback"


class DiscoveryFailed(Exception):
    """No live data and nothing cached to fall back on."""

    def __init__(self, reason: FailureReason, detail: str = "") -> None:
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)
        self.reason = reason
        self.detail = detail


class RequestSuperseded(Exception):
    """A newer discover call for the same slot replaced this one."""

    def __init__(self, slot: str) -> None:
        super().__init__(f"request for slot {slot!r} was superseded")
        self.slot = slot


class LiveFetchDenied(Exception):
    """The governor kept this request in cache-only mode."""

    def __init__(self, reason: DenialReason) -> None:
        super().__init__(reason.value)
        self.reason = reason
