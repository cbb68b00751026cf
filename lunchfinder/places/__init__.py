"""
Places search integration.

Responsibilities:
- Manage provider configuration and credentials.
- Call the upstream nearby-search API with a minimal field mask.
- Retry transient failures with exponential backoff.
- Map raw provider records into scoring candidates.
"""
