"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- CollectorError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    AuthError,
    # Base classes
    CollectorError,
    CredentialUnavailable,
    DeliveryError,
    HttpError,
    MalformedResponse,
    NetworkError,
    # Classification utilities
    classify_exception,
    classify_http_status,
    wrap_exception,
)
from core.types import ErrorCategory

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "CollectorError",
    # Concrete errors
    "AuthError",
    "CredentialUnavailable",
    "NetworkError",
    "HttpError",
    "MalformedResponse",
    "DeliveryError",
    # Classification utilities
    "classify_http_status",
    "classify_exception",
    "wrap_exception",
]
