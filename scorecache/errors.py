"""
Error taxonomy for upstream providers and the snapshot store.

A cache miss is not an error: stores return None for absent keys.
"""
from typing import Optional


# ============================================================================
# Base
# ============================================================================

class ScoreCacheError(Exception):
    """Base class for every error raised by scorecache."""
    pass


# ============================================================================
# Upstream provider errors
# ============================================================================

class UpstreamError(ScoreCacheError):
    """
    Raised when an upstream provider call fails.

    Subclasses set `kind` so callers and response metadata can tell
    transient failures apart from a definitive not-found.
    """

    kind = "transport_error"

    def __init__(self, message: str = "", source: Optional[str] = None):
        super().__init__(message or self.kind)
        self.source = source


class UpstreamTimeout(UpstreamError):
    """Upstream call exceeded its time ceiling."""
    kind = "timeout"


class UpstreamRateLimited(UpstreamError):
    """Upstream refused the call because of rate limiting (HTTP 429)."""
    kind = "rate_limited"


class UpstreamNotFound(UpstreamError):
    """The requested entity does not exist upstream."""
    kind = "not_found"


class UpstreamTransportError(UpstreamError):
    """Connection errors, 5xx responses, malformed bodies."""
    kind = "transport_error"


# ============================================================================
# Store errors
# ============================================================================

class StoreUnavailable(ScoreCacheError):
    """The snapshot store could not be read or written."""
    pass


def is_transient(error: BaseException) -> bool:
    """True for failures that may recover by themselves (everything but not-found)."""
    return not isinstance(error, UpstreamNotFound)
