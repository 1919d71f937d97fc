"""
Resilience patterns module.

Components:
    - RetryPolicy: attempt budget with fixed or growing delay
    - retry_async: bounded retry loop for coroutines
    - DELIVERY_POLICY: base policy for the collector endpoint (every failure retried)
"""

from .retry import (
    DEFAULT_POLICY,
    DELIVERY_POLICY,
    RetryPolicy,
    retry_async,
)

__all__ = [
    "RetryPolicy",
    "retry_async",
    "DEFAULT_POLICY",
    "DELIVERY_POLICY",
]
