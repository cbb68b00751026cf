"""
Read-only collaborators consumed by discovery.

Responsibilities:
- Look up a user's dietary profile.
- Report the remaining spend for a budget period.
- Supply community-verified allergen and dietary annotations for places.
"""
