"""
Core types shared across modules.

Kept free of imports from the rest of the package so that errors, retry and
collector modules can all depend on it without cycles.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed next time
                   (e.g., network timeouts, 5xx, collector hiccups)
        AUTH: Credential problems requiring re-acquisition
              (e.g., 401/403 from upstream, no credential observed yet)
        PERMANENT: Failures that will not fix themselves on retry
                   (e.g., malformed upstream body, other 4xx)
        UNKNOWN: Unclassified errors, treated as transient
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = ["ErrorCategory"]
