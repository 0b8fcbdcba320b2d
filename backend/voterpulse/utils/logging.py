"""
Unified logging utility for the application

Example:
    ```python
    from voterpulse.utils.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Import started")
    ```
"""
import logging
from voterpulse.config import config
from voterpulse.utils.structured_logging import setup_structured_logging


# Track if logging has been initialized
_logging_initialized = False


def init_logging(force: bool = False) -> None:
    """
    Configure root logging from the application config (once per process).

    Args:
        force: Reconfigure even if logging was already initialised
    """
    global _logging_initialized

    if _logging_initialized and not force:
        return

    setup_structured_logging(
        level=config.LOG_LEVEL,
        use_json=config.LOG_JSON,
        include_console=True,
        log_dir=config.LOG_DIR,
        log_to_file=config.LOG_TO_FILE,
        max_bytes=config.LOG_FILE_MAX_BYTES,
        backup_count=config.LOG_FILE_BACKUP_COUNT
    )
    _logging_initialized = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance, initialising structured logging on first use.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance configured for structured logging
    """
    init_logging()
    return logging.getLogger(name)
