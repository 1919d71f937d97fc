"""JSON lines and console formatters for collector logs."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any, Callable

from core.logging.context import get_log_context
from core.utils.json_serializers import json_serializer

# Query parameters whose values never reach a log line
_SECRET_QUERY = re.compile(r"([?&])(access_token|token|key|secret|password|auth)=[^&#]*", re.IGNORECASE)

CONTEXT_FIELDS = ("worker_id", "domain", "stage", "cycle_id")


def redact_url(url: str) -> str:
    """Replace secret query values in url with [REDACTED]."""
    return _SECRET_QUERY.sub(r"\1\2=[REDACTED]", url)


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_url(value: Any) -> Any:
    return redact_url(value) if isinstance(value, str) else value


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Only the extras listed in FIELDS are emitted; each is passed through its
    converter (None keeps the value as-is). URLs are redacted so a captured
    access token cannot leak into a log sink.
    """

    FIELDS: dict[str, Callable[[Any], Any] | None] = {
        # HTTP
        "url": _as_url,
        "http_status": _as_int,
        "duration_ms": _as_float,
        # Errors
        "error_type": None,
        "error_category": None,
        "error_message": None,
        # Retry
        "operation": None,
        "attempt": _as_int,
        "max_attempts": _as_int,
        "total_attempts": _as_int,
        "delay_seconds": _as_float,
        "callback_error": None,
        # Cycle
        "cycle_state": None,
        "cycle_outcome": None,
        "decision": None,
        "event_count": _as_int,
        "day_offset": _as_int,
        "consecutive_misses": _as_int,
        "interval_seconds": _as_float,
        # Credentials
        "credential_source": None,
        "header_count": _as_int,
        "expires_at": _as_float,
        "reason": None,
        # Store
        "key": None,
        "entries": _as_int,
        "path": None,
    }

    # Levels that also get file:line
    LOCATED_LEVELS = frozenset({logging.DEBUG, logging.ERROR, logging.CRITICAL})

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, UTC)
        entry: dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = get_log_context()
        entry.update({name: context[name] for name in CONTEXT_FIELDS if context[name]})

        if record.levelno in self.LOCATED_LEVELS:
            entry["file"] = f"{record.filename}:{record.lineno}"

        for name, convert in self.FIELDS.items():
            if not hasattr(record, name):
                continue
            value = getattr(record, name)
            if value is None:
                continue
            entry[name] = convert(value) if convert else value

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "stacktrace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Single-line human output: ``time - LEVEL - [domain] - [stage] - [cycle] message``.

    Level names are colored only when stdout is a terminal.
    """

    LEVEL_COLORS = {
        logging.DEBUG: "36",
        logging.INFO: "32",
        logging.WARNING: "33",
        logging.ERROR: "31",
        logging.CRITICAL: "35",
    }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        code = self.LEVEL_COLORS.get(record.levelno)
        if self._use_colors and code:
            return f"\033[{code}m{record.levelname}\033[0m"
        return record.levelname

    def format(self, record: logging.LogRecord) -> str:
        context = get_log_context()

        parts = [datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S"), self._level(record)]
        parts.extend(f"[{context[name]}]" for name in ("domain", "stage") if context[name])

        message = record.getMessage()
        if context["cycle_id"]:
            message = f"[{context['cycle_id']}] {message}"
        parts.append(message)

        output = " - ".join(parts)
        if record.exc_info:
            output += "\n" + self.formatException(record.exc_info)
        return output
