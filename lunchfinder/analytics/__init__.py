"""
Advisory events and usage analytics.

Responsibilities:
- Record search, cost-threshold and degraded-result events.
- Fan advisory events out to monitoring subscribers.
- Summarise recorded events for the monitoring endpoint.
"""
