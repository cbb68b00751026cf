from __future__ import annotations

from collections import Counter
from typing import Any

from .store import (
    COST_THRESHOLD,
    DEGRADED_RESULT,
    DISCOVERY_FAILED,
    QUOTA_EXHAUSTED,
    RATE_LIMITED,
    SEARCH,
    UPSTREAM_ERROR,
)


def _rate(count: int, total: int) -> float:
    return round(count / total * 100, 1) if total else 0.0


def compute_analytics(events: list[dict[str, Any]]) -> dict[str, Any]:
    searches = [e for e in events if e["type"] == SEARCH]
    total = len(searches)

    # Average response time
    times = [s["response_time_ms"] for s in searches if "response_time_ms" in s]
    avg_time = round(sum(times) / len(times), 1) if times else 0.0

    # Top cuisines
    cuisine_counter: Counter[str] = Counter()
    for s in searches:
        for c in s.get("cuisines", []) or []:
            cuisine_counter[c] += 1
    top_cuisines = [{"name": n, "count": c} for n, c in cuisine_counter.most_common(10)]

    # Price filter usage
    price_counter: Counter[str] = Counter()
    for s in searches:
        if s.get("max_price"):
            price_counter[s["max_price"]] += 1

    # Relaxations
    relaxation_counter: Counter[str] = Counter()
    for s in searches:
        for r in s.get("relaxations", []) or []:
            relaxation_counter[r] += 1

    # Data sources
    source_counter: Counter[str] = Counter(s.get("data_source", "unknown") for s in searches)

    cache_hits = sum(1 for s in searches if s.get("cache_hit"))
    degraded = sum(1 for s in searches if s.get("degraded"))
    excluded = sum(s.get("excluded", 0) for s in searches)

    # Failures
    failed = [e for e in events if e["type"] == DISCOVERY_FAILED]
    failure_reasons: Counter[str] = Counter(e.get("reason", "unknown") for e in failed)
    error_counts: Counter[str] = Counter(
        e.get("error", "unknown") for e in events if e["type"] == UPSTREAM_ERROR
    )
    rate_limit_hits: Counter[str] = Counter(
        e.get("source", "unknown") for e in events if e["type"] == RATE_LIMITED
    )

    return {
        "total_searches": total,
        "avg_response_time_ms": avg_time,
        "top_cuisines": top_cuisines,
        "max_price_usage": dict(price_counter),
        "relaxation_usage": dict(relaxation_counter),
        "data_sources": dict(source_counter),
        "degraded_rate": _rate(degraded, total),
        "excluded_for_safety": excluded,
        "cache_stats": {
            "hits": cache_hits,
            "misses": total - cache_hits,
            "hit_rate": _rate(cache_hits, total),
        },
        "failures": {
            "failed_requests": len(failed),
            "failure_rate": _rate(len(failed), total + len(failed)),
            "reasons": dict(failure_reasons),
            "error_counts": dict(error_counts),
            "rate_limit_hits": sum(rate_limit_hits.values()),
            "rate_limit_sources": dict(rate_limit_hits),
        },
        "advisories": {
            "cost_threshold": sum(1 for e in events if e["type"] == COST_THRESHOLD),
            "degraded_result": sum(1 for e in events if e["type"] == DEGRADED_RESULT),
            "quota_exhausted": sum(1 for e in events if e["type"] == QUOTA_EXHAUSTED),
        },
    }
