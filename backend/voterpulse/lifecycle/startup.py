"""
Application startup tasks
"""
import asyncio
import logging
from typing import Optional

from voterpulse.config import config
from voterpulse.services.container import get_service_container
from voterpulse.services.import_pipeline.job_tracker import purge_progress_cache_periodically

logger = logging.getLogger(__name__)

# Background purge of expired live-progress entries
_purge_task: Optional[asyncio.Task] = None


def get_purge_task() -> Optional[asyncio.Task]:
    return _purge_task


async def fail_interrupted_jobs():
    """Jobs left pending/processing by a previous process can never finish; mark them failed"""
    try:
        logger.info("Checking for interrupted import jobs...")
        tracker = get_service_container().get_import_tracker()
        count = await tracker.fail_incomplete_jobs()
        if count == 0:
            logger.info("No interrupted import jobs found")
    except Exception as e:
        logger.warning(f"Could not check for interrupted import jobs on startup: {e}")


def start_progress_cache_purge():
    """Start the periodic progress cache purge"""
    global _purge_task
    cache = get_service_container().get_progress_cache()
    _purge_task = asyncio.create_task(
        purge_progress_cache_periodically(cache, config.PROGRESS_CACHE_PURGE_INTERVAL_SECONDS)
    )
    logger.info(
        f"Progress cache purge started (every {config.PROGRESS_CACHE_PURGE_INTERVAL_SECONDS}s, "
        f"ttl {config.PROGRESS_CACHE_TTL_SECONDS}s)"
    )
    return _purge_task


async def setup_startup_tasks():
    """Set up all startup tasks"""
    await fail_interrupted_jobs()
    start_progress_cache_purge()
