"""
Lunch discovery engine.

Responsibilities:
- Cache nearby-search candidates per geocell, radius bucket and filters.
- Gate every candidate through dietary safety before scoring it.
- Score and rank candidates, relaxing filters when too few survive.
- Fall back to stale cache whenever live data is unavailable.
"""
