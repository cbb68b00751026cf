"""
Usage accounting for the upstream places provider.

Responsibilities:
- Track live requests over a rolling 60-second window.
- Accumulate the day's provider cost and reset it at the daily boundary.
- Decide whether a live fetch may proceed or the system must serve cache only.
"""
