"""
Application shutdown handlers
"""
import asyncio
import logging

from voterpulse.db.database import engine
from voterpulse.lifecycle.startup import get_purge_task
from voterpulse.services.import_pipeline.runner import _running_tasks

logger = logging.getLogger(__name__)


async def cancel_import_tasks():
    """Cancel running imports; each one marks its own job failed as it unwinds"""
    tasks_to_wait = [task for task in list(_running_tasks) if not task.done()]
    for task in tasks_to_wait:
        task.cancel()

    if tasks_to_wait:
        logger.info(f"Waiting for {len(tasks_to_wait)} import tasks to cancel...")
        done, pending = await asyncio.wait(tasks_to_wait, timeout=5.0)
        if pending:
            logger.warning(f"{len(pending)} import tasks still pending after timeout, continuing shutdown")

    return len(tasks_to_wait)


async def stop_progress_cache_purge():
    task = get_purge_task()
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        logger.debug("Progress cache purge stopped")


async def close_database_connections():
    """Close database connections gracefully"""
    try:
        logger.info("Closing database connections...")
        await engine.dispose()
        logger.info("Database connections closed")
    except Exception as e:
        logger.warning(f"Error closing database connections: {e}")


async def setup_shutdown_handlers():
    """Run all shutdown steps"""
    logger.info("Application shutting down, initiating graceful shutdown...")

    cancelled_count = await cancel_import_tasks()
    await stop_progress_cache_purge()
    await close_database_connections()

    logger.info(f"Shutdown complete. Cancelled {cancelled_count} import tasks.")
