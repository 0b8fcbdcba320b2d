"""
Thread pool utility for offloading blocking file I/O from the event loop.

Uploads are spooled to disk by the request handler and then streamed back in
chunks by the background import task; both sides run their blocking reads and
writes here.
"""
import asyncio
import functools
import logging
import os
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from typing import Any, BinaryIO, Callable, Optional

from voterpulse.config import config

logger = logging.getLogger(__name__)

# Global thread pool executor
_thread_pool: Optional[ThreadPoolExecutor] = None


def get_thread_pool() -> ThreadPoolExecutor:
    """Get or create the global thread pool executor"""
    global _thread_pool
    if _thread_pool is None:
        max_workers = config.THREAD_POOL_WORKERS
        _thread_pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="io-worker")
        logger.info(f"Initialized thread pool with {max_workers} workers")
    return _thread_pool


def shutdown_thread_pool():
    """Shutdown the global thread pool executor"""
    global _thread_pool
    if _thread_pool is not None:
        _thread_pool.shutdown(wait=True)
        _thread_pool = None
        logger.info("Thread pool shutdown complete")


async def run_in_thread_pool(func: Callable, *args, **kwargs) -> Any:
    """
    Run a synchronous function in the thread pool executor.

    Args:
        func: The synchronous function to execute
        *args: Positional arguments for the function
        **kwargs: Keyword arguments for the function

    Returns:
        The result of the function execution
    """
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(get_thread_pool(), functools.partial(func, *args, **kwargs))
    except Exception as e:
        logger.error(f"Error executing function in thread pool: {e}", exc_info=True)
        raise


def _copy_to_temp(source: BinaryIO, directory: Optional[str]) -> str:
    if directory:
        os.makedirs(directory, exist_ok=True)
    source.seek(0)
    with tempfile.NamedTemporaryFile(prefix="import_", suffix=".upload", dir=directory, delete=False) as target:
        shutil.copyfileobj(source, target, length=config.IMPORT_CHUNK_SIZE)
        return target.name


async def spool_to_temp_file(source: BinaryIO, directory: Optional[str] = None) -> str:
    """
    Copy an uploaded file object to a temporary file that outlives the request.

    Returns:
        Path of the temporary file (the caller owns and removes it)
    """
    return await run_in_thread_pool(_copy_to_temp, source, directory or config.IMPORT_SPOOL_DIR)


def remove_spooled_file(path: str) -> None:
    """Delete a spooled upload; a file that is already gone is fine"""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove spooled upload {path}: {e}")


class AsyncFileChunks:
    """
    Async iterator reading a file in fixed-size chunks.

    The next chunk is read only when the consumer asks for it. ``aclose()``
    releases the file whether or not iteration ever started.

    Args:
        path: File to read
        chunk_size: Bytes per chunk
        remove_when_done: Delete the file once iteration finishes or is abandoned
    """

    def __init__(self, path: str, chunk_size: Optional[int] = None, remove_when_done: bool = False):
        self.path = path
        self.chunk_size = chunk_size or config.IMPORT_CHUNK_SIZE
        self.remove_when_done = remove_when_done
        self._handle: Optional[BinaryIO] = None
        self._closed = False

    def __aiter__(self) -> "AsyncFileChunks":
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        if self._handle is None:
            self._handle = await run_in_thread_pool(open, self.path, "rb")
        chunk = await run_in_thread_pool(self._handle.read, self.chunk_size)
        if not chunk:
            await self.aclose()
            raise StopAsyncIteration
        return chunk

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        if self.remove_when_done:
            remove_spooled_file(self.path)


def async_read_chunks(
    path: str,
    chunk_size: Optional[int] = None,
    remove_when_done: bool = False,
) -> AsyncFileChunks:
    """Chunked async reader over ``path`` (see ``AsyncFileChunks``)"""
    return AsyncFileChunks(path, chunk_size=chunk_size, remove_when_done=remove_when_done)
