"""
Exceptions raised by the collection pipeline.

Each failure a cycle can hit is a CollectorError subclass carrying an
ErrorCategory. The scheduler reads the category (or the concrete type) to
choose between dropping the credential, waiting for the next tick, and
keeping state so the same snapshot is offered again.

    CollectorError
    ├── AuthError              upstream said 401/403
    ├── CredentialUnavailable  nothing observed within the wait budget
    ├── NetworkError           connection/DNS/timeout
    ├── HttpError              any other non-200 (category from status)
    ├── MalformedResponse      body is not the expected JSON array
    └── DeliveryError          collector refused every attempt
"""

from core.types import ErrorCategory


class CollectorError(Exception):
    """
    Root of the hierarchy.

    Attributes:
        message: What went wrong
        cause: Underlying exception, when this one wraps another
        context: Extra diagnostic fields (url, day_offset, ...)
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, cause: Exception | None = None, context: dict | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.context = dict(context or {})

    @property
    def is_retryable(self) -> bool:
        return self.category is not ErrorCategory.PERMANENT

    @property
    def should_refresh_auth(self) -> bool:
        return self.category is ErrorCategory.AUTH

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message} | Caused by: {self.cause}"


class AuthError(CollectorError):
    """Upstream rejected the credential."""

    category = ErrorCategory.AUTH

    def __init__(
        self,
        message: str,
        status: int | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.status = status


class CredentialUnavailable(CollectorError):
    category = ErrorCategory.AUTH


class NetworkError(CollectorError):
    category = ErrorCategory.TRANSIENT


class HttpError(CollectorError):
    """Non-200 answer; its category follows the status code."""

    def __init__(self, status: int, url: str, cause: Exception | None = None, context: dict | None = None):
        super().__init__(f"HTTP {status}: {url}", cause, context)
        self.status = status
        self.url = url

    @property
    def category(self) -> ErrorCategory:  # type: ignore[override]
        return classify_http_status(self.status)


class MalformedResponse(CollectorError):
    category = ErrorCategory.PERMANENT


class DeliveryError(CollectorError):
    """The collector did not return 200 within the attempt budget."""

    category = ErrorCategory.TRANSIENT

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_error: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, last_error, context)
        self.attempts = attempts
        self.last_error = last_error


# Statuses whose category differs from their class (4xx permanent, 5xx transient)
_STATUS_OVERRIDES = {
    401: ErrorCategory.AUTH,
    403: ErrorCategory.AUTH,
    408: ErrorCategory.TRANSIENT,
    429: ErrorCategory.TRANSIENT,
}

# Exception type names from third-party clients that mean "try again later"
_TRANSIENT_NAME_HINTS = ("timeout", "connection")


def classify_http_status(status_code: int) -> ErrorCategory:
    """Map an HTTP status to an error category (2xx/3xx -> UNKNOWN)."""
    if status_code in _STATUS_OVERRIDES:
        return _STATUS_OVERRIDES[status_code]
    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT
    if status_code >= 500:
        return ErrorCategory.TRANSIENT
    return ErrorCategory.UNKNOWN


def classify_exception(exc: Exception) -> ErrorCategory:
    """Category of any exception, typed or not."""
    if isinstance(exc, CollectorError):
        return exc.category
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorCategory.TRANSIENT
    type_name = type(exc).__name__.lower()
    if any(hint in type_name for hint in _TRANSIENT_NAME_HINTS):
        return ErrorCategory.TRANSIENT
    return ErrorCategory.UNKNOWN


def wrap_exception(exc: Exception, context: dict | None = None) -> CollectorError:
    """Return exc as a CollectorError, wrapping untyped exceptions."""
    if isinstance(exc, CollectorError):
        if context:
            exc.context.update(context)
        return exc

    message = str(exc) or type(exc).__name__
    if classify_exception(exc) is ErrorCategory.TRANSIENT:
        return NetworkError(message, cause=exc, context=context)
    return CollectorError(message, cause=exc, context=context)
