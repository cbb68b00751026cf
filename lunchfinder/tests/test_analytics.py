from __future__ import annotations

from lunchfinder.analytics.aggregator import compute_analytics
from lunchfinder.analytics.store import (
    COST_THRESHOLD,
    DEGRADED_RESULT,
    DISCOVERY_FAILED,
    RATE_LIMITED,
    SEARCH,
    UPSTREAM_ERROR,
    EventStream,
)


def test_analytics_empty():
    body = compute_analytics([])
    assert body["total_searches"] == 0
    assert body["avg_response_time_ms"] == 0.0
    assert body["degraded_rate"] == 0.0
    assert body["cache_stats"]["hit_rate"] == 0.0
    assert body["failures"]["failed_requests"] == 0
    assert body["failures"]["failure_rate"] == 0.0


def test_analytics_summarises_searches():
    stream = EventStream()
    stream.record(SEARCH, {
        "cuisines": ["thai"], "max_price": "$", "data_source": "live", "cache_hit": False,
        "degraded": True, "relaxations": ["cuisine", "price"], "excluded": 2, "response_time_ms": 30.0,
    })
    stream.record(SEARCH, {
        "cuisines": ["thai", "italian"], "data_source": "cache", "cache_hit": True,
        "degraded": False, "relaxations": [], "excluded": 0, "response_time_ms": 10.0,
    })
    stream.record(DEGRADED_RESULT, {"cache_key": "k"})

    body = compute_analytics(stream.events())

    assert body["total_searches"] == 2
    assert body["avg_response_time_ms"] == 20.0
    assert body["top_cuisines"][0] == {"name": "thai", "count": 2}
    assert body["max_price_usage"] == {"$": 1}
    assert body["relaxation_usage"] == {"cuisine": 1, "price": 1}
    assert body["data_sources"] == {"live": 1, "cache": 1}
    assert body["degraded_rate"] == 50.0
    assert body["excluded_for_safety"] == 2
    assert body["cache_stats"] == {"hits": 1, "misses": 1, "hit_rate": 50.0}
    assert body["advisories"]["degraded_result"] == 1


def test_analytics_counts_failures_and_rate_limits():
    stream = EventStream()
    stream.record(SEARCH, {"data_source": "live", "cache_hit": False})
    stream.record(DISCOVERY_FAILED, {"reason": "network_error_no_fallback", "error": "NetworkError"})
    stream.record(UPSTREAM_ERROR, {"error": "NetworkError"})
    stream.record(UPSTREAM_ERROR, {"error": "RateLimitExceeded", "status_code": 429})
    stream.record(RATE_LIMITED, {"source": "provider"})
    stream.record(RATE_LIMITED, {"source": "governor"})

    failures = compute_analytics(stream.events())["failures"]

    assert failures == {
        "failed_requests": 1,
        "failure_rate": 50.0,
        "reasons": {"network_error_no_fallback": 1},
        "error_counts": {"NetworkError": 1, "RateLimitExceeded": 1},
        "rate_limit_hits": 2,
        "rate_limit_sources": {"provider": 1, "governor": 1},
    }


def test_subscribers_receive_events():
    stream = EventStream()
    received = []
    stream.subscribe(received.append)
    stream.record(COST_THRESHOLD, {"ratio": 0.8})
    assert received[0]["type"] == COST_THRESHOLD
    assert received[0]["ratio"] == 0.8

    stream.unsubscribe(received.append)
    stream.record(COST_THRESHOLD, {"ratio": 0.9})
    assert len(received) == 1


def test_failing_subscriber_does_not_propagate():
    stream = EventStream()
    seen = []

    def broken(event):
        raise RuntimeError("monitoring down")

    stream.subscribe(broken)
    stream.subscribe(seen.append)
    event = stream.record(DEGRADED_RESULT, {"cache_key": "k"})

    assert seen == [event]
    assert stream.advisories() == [event]


def test_event_log_is_bounded():
    stream = EventStream(max_events=3)
    for i in range(5):
        stream.record(SEARCH, {"n": i})
    assert [e["n"] for e in stream.events()] == [2, 3, 4]

    stream.clear()
    assert stream.events() == []
