"""Logging configuration for the Levered agent proxy."""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Extra attributes callers attach with ``logger.info(..., extra={...})``.
EXTRA_FIELDS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "client_ip",
    "client_id",
    "job_id",
    "exit_code",
)

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Third-party loggers capped at WARNING.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers and the detached log file."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, getattr(record, name)) for name in EXTRA_FIELDS if hasattr(record, name)
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


# Console rendering of the extra attributes, in display order.
CONSOLE_EXTRAS = (
    ("status_code", "status={}"),
    ("duration_ms", "{:.1f}ms"),
    ("client_id", "client={:.8}"),
    ("job_id", "job={}"),
    ("exit_code", "exit={}"),
)


class ConsoleFormatter(logging.Formatter):
    """Human-readable single-line format, colored by level when attached to a terminal."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True) -> None:
        super().__init__()
        self.use_color = use_color

    def _level(self, levelname: str) -> str:
        if not self.use_color:
            return f"{levelname:8}"
        return f"{self.LEVEL_COLORS.get(levelname, '')}{levelname:8}{self.RESET}"

    @staticmethod
    def _context(record: logging.LogRecord) -> str:
        parts = []
        if hasattr(record, "method") and hasattr(record, "path"):
            parts.append(f"{record.method} {record.path}")
        for name, template in CONSOLE_EXTRAS:
            if hasattr(record, name):
                parts.append(template.format(getattr(record, name)))
        return f" [{', '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"{datetime.now():%H:%M:%S} {self._level(record.levelname)} "
            f"{record.name}: {record.getMessage()}{self._context(record)}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "info",
    json_logs: bool = False,
    log_file: Path | None = None,
    console: bool = True,
) -> None:
    """Configure application logging.

    Args:
        level: Log level name (debug, info, warning, error)
        json_logs: Use JSON format on the console
        log_file: Also write to this rotating log file
        console: Write to stdout; detached servers log to the file only
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Replace whatever was configured before (uvicorn, a previous call)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    if console:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter() if json_logs else ConsoleFormatter(use_color=sys.stdout.isatty()))
        root_logger.addHandler(handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter() if json_logs else ConsoleFormatter(use_color=False))
        root_logger.addHandler(file_handler)

    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(
        f"Logging configured: level={logging.getLevelName(log_level)}, json={json_logs}, "
        f"file={log_file}"
    )
