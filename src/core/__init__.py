"""
Core library: reusable, domain-agnostic components.

Modules:
    errors      - Exception hierarchy and HTTP status classification
    logging     - Structured JSON/console logging with cycle IDs
    resilience  - Bounded retry loop with fixed or exponential delay
    utils       - JSON serializer, agent ID generation

Design Principles:
    - No knowledge of the upstream schedule API or collector
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
