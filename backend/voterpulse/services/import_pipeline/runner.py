"""
Import runner: the read loop tying parser, mapper, upsert engine and tracker together
"""
import asyncio
import logging
from typing import AsyncIterator, Dict, Optional, Set, Union

from sqlalchemy.ext.asyncio import async_sessionmaker

from voterpulse.config import config
from voterpulse.services.import_pipeline.column_mapper import (
    IMPORT_TYPE_VOTERS,
    extract_election_history,
    map_row,
)
from voterpulse.services.import_pipeline.job_tracker import ImportCounters, ImportJobTracker
from voterpulse.services.import_pipeline.parser import DelimitedRecordParser, iter_rows, rows_to_record
from voterpulse.services.import_pipeline.upsert_engine import BatchUpsertEngine
from voterpulse.services.shared.exceptions import ImportCancelledError

logger = logging.getLogger(__name__)

# Background import tasks, tracked for graceful shutdown
_running_tasks: Set[asyncio.Task] = set()
# Import slots held by uploads being spooled and by running imports
_reserved_slots = 0


class ImportRunner:
    """
    Runs one import job from an async chunk source to a terminal state.

    Chunks are pulled lazily, and a full batch is written (and checkpointed)
    before the next chunk is requested, so a slow store holds back reading.
    """

    def __init__(
        self,
        tracker: ImportJobTracker,
        session_factory: Optional[async_sessionmaker] = None,
        batch_size: Optional[int] = None,
        progress_interval: Optional[int] = None,
        max_errors: Optional[int] = None,
    ):
        self.tracker = tracker
        self._session_factory = session_factory
        self.batch_size = batch_size or config.IMPORT_BATCH_SIZE
        self.progress_interval = progress_interval or config.IMPORT_PROGRESS_INTERVAL
        self.max_errors = max_errors if max_errors is not None else config.IMPORT_MAX_STORED_ERRORS

    async def run(
        self,
        job_id: str,
        organization_id: int,
        import_type: str,
        column_mapping: Dict[str, str],
        chunks: AsyncIterator[Union[bytes, str]],
        encoding: Optional[str] = None,
    ) -> ImportCounters:
        """
        Process the stream and finalize the job.

        Row- and batch-level errors are recorded and the loop continues. Any
        other exception (stream I/O, lost connection, cancellation) fails the
        job with a single row-0 descriptor.

        Args:
            job_id: Job created by the tracker, still pending
            organization_id: Tenant all rows are written to
            import_type: "voters" or "election_history"
            column_mapping: Validated sourceColumn -> canonical field mapping
            chunks: Async iterator of raw file chunks
            encoding: Character encoding of the file (default IMPORT_ENCODING)

        Returns:
            Final counters
        """
        counters = ImportCounters(max_errors=self.max_errors)
        engine = BatchUpsertEngine(
            organization_id=organization_id,
            import_type=import_type,
            counters=counters,
            session_factory=self._session_factory,
            batch_size=self.batch_size,
        )
        encoding = encoding or config.IMPORT_ENCODING
        parser = DelimitedRecordParser(encoding=encoding)

        try:
            await self.tracker.start(job_id)
            logger.info(
                f"Starting {import_type} import {job_id}",
                extra={"job_id": job_id, "organization_id": organization_id}
            )

            async for parsed in iter_rows(chunks, parser):
                if self.tracker.is_cancel_requested(job_id):
                    raise ImportCancelledError(job_id=job_id)

                counters.total += 1

                if parsed.error is not None:
                    counters.errored += 1
                    counters.add_error(parsed.line_number, str(parsed.error), parsed.error.field)
                    continue

                if parsed.replaced_characters:
                    counters.add_warning(parsed.line_number, f"Undecodable {encoding} bytes replaced")

                record = rows_to_record(parser.headers, parsed.values)
                mapped = map_row(record, column_mapping)
                if mapped is None:
                    counters.skipped += 1
                    continue

                elections = extract_election_history(record) if import_type == IMPORT_TYPE_VOTERS else None
                if engine.add(parsed.line_number, mapped, elections):
                    await engine.flush()
                    await self.tracker.checkpoint(job_id, counters)
                elif counters.total % self.progress_interval == 0:
                    self.tracker.report_progress(job_id, counters)

            if self.tracker.is_cancel_requested(job_id):
                raise ImportCancelledError(job_id=job_id)

            await engine.flush()
            await self.tracker.complete(job_id, counters)

        except ImportCancelledError as e:
            logger.info(f"Import {job_id} cancelled after {counters.total} rows", extra={"job_id": job_id})
            await self._fail(job_id, str(e), counters)
        except asyncio.CancelledError:
            # Task cancelled (shutdown): finalize, then let cancellation propagate
            await self._fail(job_id, "Import cancelled", counters)
            raise
        except Exception as e:
            logger.error(f"Import {job_id} failed: {e}", exc_info=True, extra={"job_id": job_id})
            await self._fail(job_id, f"Import failed: {e}", counters)
        finally:
            # Release the source (and any spooled file) even when the loop stopped early
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

        return counters

    async def _fail(self, job_id: str, message: str, counters: ImportCounters) -> None:
        try:
            await self.tracker.fail(job_id, message, counters)
        except Exception as e:
            logger.error(f"Could not mark import {job_id} as failed: {e}", exc_info=True)


def reserve_import_slot(limit: int) -> bool:
    """
    Claim one of ``limit`` import slots.

    Must be called before the caller's first await so that concurrent uploads
    cannot all pass the check. The slot is handed to ``start_import_task`` or
    given back with ``release_import_slot``.
    """
    global _reserved_slots
    if _reserved_slots >= limit:
        return False
    _reserved_slots += 1
    return True


def release_import_slot(_task: Optional[asyncio.Task] = None) -> None:
    global _reserved_slots
    _reserved_slots = max(_reserved_slots - 1, 0)


def reserved_import_slots() -> int:
    return _reserved_slots


def start_import_task(runner: ImportRunner, **run_kwargs) -> asyncio.Task:
    """
    Schedule ``runner.run`` in the background and track the task.

    The caller must hold a slot from ``reserve_import_slot``; it is released
    when the task finishes.
    """
    task = asyncio.create_task(runner.run(**run_kwargs))
    _running_tasks.add(task)
    task.add_done_callback(_running_tasks.discard)
    task.add_done_callback(release_import_slot)
    return task
