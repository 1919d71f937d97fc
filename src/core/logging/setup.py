"""Root logger configuration for the collector process."""

import logging
import secrets
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

# Third-party loggers held at WARNING unless suppress_noisy=False
QUIET_LOGGERS = ("aiohttp.access", "aiohttp.client", "asyncio")


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def _rotating_json_handler(path: Path, when: str, backups: int, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(path, when=when, backupCount=backups, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    log_file: Path | str | None = None,
    file_level: int = logging.DEBUG,
    rotation_when: str = "midnight",
    backup_count: int = 7,
    suppress_noisy: bool = True,
    worker_id: str | None = None,
    domain: str | None = None,
) -> logging.Logger:
    """
    Replace the root logger's handlers with a stdout handler and, when
    log_file is given, a time-rotated JSON lines file.

    worker_id and domain go into the log context so every record carries
    them. Returns the root logger.
    """
    console_level = _resolve_level(level)

    context = {name: value for name, value in (("worker_id", worker_id), ("domain", domain)) if value}
    if context:
        set_log_context(**context)

    root = logging.getLogger()
    root.handlers.clear()
    # Handlers do the filtering
    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    console.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())
    root.addHandler(console)

    if log_file:
        root.addHandler(_rotating_json_handler(Path(log_file), rotation_when, backup_count, file_level))

    if suppress_noisy:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return root


def generate_cycle_id() -> str:
    """Cycle identifier: c-YYYYMMDD-HHMMSS-xxxx (xxxx random hex)."""
    return f"c-{datetime.now():%Y%m%d-%H%M%S}-{secrets.token_hex(2)}"
