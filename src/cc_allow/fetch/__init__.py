"""URL reputation checks for fetch actions."""
from __future__ import annotations

from cc_allow.fetch.safe_browsing import (
    SAFE_BROWSING_ENDPOINT,
    THREAT_TYPES,
    SafeBrowsingClient,
)

__all__ = [
    "SAFE_BROWSING_ENDPOINT",
    "THREAT_TYPES",
    "SafeBrowsingClient",
]
