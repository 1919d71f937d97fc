"""Structured logging of exceptions."""

import logging
from typing import Any

# LogRecord attributes; passing one of these in extra= raises KeyError
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

MAX_ERROR_MESSAGE = 500


def _safe_extra(fields: dict[str, Any]) -> dict[str, Any]:
    return {name: value for name, value in fields.items() if name not in _RECORD_ATTRS}


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = False,
    **kwargs: Any,
) -> None:
    """
    Log an exception as error_type / error_category / error_message fields.

    Cycle failures are expected, so no traceback unless include_traceback.
    """
    category = getattr(exc, "category", None)
    if category is not None:
        kwargs.setdefault("error_category", getattr(category, "value", str(category)))

    text = str(exc)
    if len(text) > MAX_ERROR_MESSAGE:
        text = text[:MAX_ERROR_MESSAGE] + "..."
    kwargs["error_message"] = text
    kwargs.setdefault("error_type", type(exc).__name__)

    logger.log(level, msg, exc_info=exc if include_traceback else None, extra=_safe_extra(kwargs))
