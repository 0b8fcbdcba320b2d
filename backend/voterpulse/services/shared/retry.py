"""
Retry utility for handling database locks on short writes
"""
import asyncio
import logging
from functools import wraps
from typing import Callable, Optional
from .exceptions import DatabaseLockError

logger = logging.getLogger(__name__)


def _is_db_lock(error: Exception) -> bool:
    error_str = str(error).lower()
    return "database is locked" in error_str or isinstance(error, DatabaseLockError)


def retry_on_db_lock(
    max_retries: int = 3,
    base_delay: float = 0.1,
    exponential_backoff: bool = True,
    on_retry: Optional[Callable[[int, Exception], None]] = None
):
    """
    Decorator to retry async functions on database lock errors

    Only meant for idempotent single-statement writes (job checkpoints,
    interaction inserts). Batch writes in the import pipeline are never retried.

    Args:
        max_retries: Maximum number of attempts
        base_delay: Base delay in seconds before first retry
        exponential_backoff: If True, delay doubles with each retry
        on_retry: Optional callback function(attempt, exception) called before each retry
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not _is_db_lock(e):
                        raise

                    if attempt >= max_retries - 1:
                        logger.warning(
                            f"Failed {func.__name__} after {max_retries} attempts due to database lock"
                        )
                        raise DatabaseLockError(
                            f"Database lock error after {max_retries} retries: {str(e)}"
                        ) from e

                    wait_time = base_delay * (2 ** attempt) if exponential_backoff else base_delay
                    if on_retry:
                        on_retry(attempt + 1, e)

                    logger.debug(
                        f"Database locked in {func.__name__}, retrying in {wait_time}s "
                        f"(attempt {attempt + 1}/{max_retries})"
                    )
                    await asyncio.sleep(wait_time)

        return wrapper
    return decorator
