"""
Structured logging utilities for consistent log formatting across the application
"""
import logging
import json
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional
from datetime import datetime

# Context fields routed through ``extra=`` by request handlers and import jobs
CONTEXT_FIELDS = (
    "request_id",
    "error_code",
    "status_code",
    "is_transient",
    "path",
    "method",
    "details",
    "error_type",
    "organization_id",
    "job_id",
)

_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info", "taskName",
}


class SafeFormatter(logging.Formatter):
    """
    Human-readable formatter that renders the optional job/tenant context
    only when a record carries it
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record, appending a ``[key=value ...]`` suffix for context fields

        Args:
            record: LogRecord to format

        Returns:
            Formatted log string
        """
        context = [
            f"{field}={getattr(record, field)}"
            for field in ("request_id", "organization_id", "job_id", "error_code")
            if getattr(record, field, None) not in (None, "")
        ]
        record.context = f" [{' '.join(context)}]" if context else ""
        return super().format(record)


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs structured JSON logs for log shippers
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as structured JSON

        Args:
            record: LogRecord to format

        Returns:
            JSON string with structured log data
        """
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        # Any other extra fields
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_") or key == "context":
                continue
            if key not in log_data:
                log_data[key] = value

        try:
            return json.dumps(log_data, default=str)
        except (TypeError, ValueError):
            return json.dumps({
                "timestamp": log_data["timestamp"],
                "level": log_data["level"],
                "logger": log_data["logger"],
                "message": str(log_data["message"]),
                "error": "Failed to serialize log data"
            })


def setup_structured_logging(
    level: str = "INFO",
    use_json: bool = False,
    include_console: bool = True,
    log_dir: Optional[str] = None,
    log_to_file: bool = True,
    max_bytes: int = 10485760,  # 10MB default
    backup_count: int = 5
) -> None:
    """
    Set up structured logging for the application

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: If True, use JSON formatting. If False, use human-readable format
        include_console: If True, output to console
        log_dir: Directory for log files (default: ./logs)
        log_to_file: If True, enable file logging with rotation
        max_bytes: Maximum size of log file before rotation (default: 10MB)
        backup_count: Number of backup log files to keep (default: 5)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if use_json:
        formatter = StructuredFormatter()
    else:
        formatter = SafeFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - '
            '[%(filename)s:%(lineno)d] - %(message)s%(context)s'
        )

    if include_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_to_file:
        if log_dir is None:
            log_dir = "./logs"
        os.makedirs(log_dir, exist_ok=True)

        log_filename = "voterpulse.json.log" if use_json else "voterpulse.log"
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, log_filename),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Quiet noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
