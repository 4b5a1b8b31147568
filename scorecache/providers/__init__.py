"""
Upstream provider clients.
"""
from .espn import DEFAULT_GROUPS, SPORTS, ESPNClient, normalize_event

__all__ = [
    "DEFAULT_GROUPS",
    "SPORTS",
    "ESPNClient",
    "normalize_event",
]
