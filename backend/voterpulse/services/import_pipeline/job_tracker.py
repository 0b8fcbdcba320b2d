"""
Import job tracking

Owns the import job state machine (pending -> processing -> completed | failed),
the persisted checkpoint in ``import_jobs`` and a process-local progress cache
that serves polling between checkpoints.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voterpulse.config import config
from voterpulse.db.database import AsyncSessionLocal, ImportJob
from voterpulse.services.shared.exceptions import ImportPipelineError, InvalidJobTransitionError
from voterpulse.services.shared.retry import retry_on_db_lock

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})

ALLOWED_TRANSITIONS: Dict[str, frozenset] = {
    STATUS_PENDING: frozenset({STATUS_PROCESSING, STATUS_FAILED}),
    STATUS_PROCESSING: frozenset({STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED}),
    STATUS_COMPLETED: frozenset(),
    STATUS_FAILED: frozenset(),
}


def check_transition(from_status: str, to_status: str, job_id: Optional[str] = None) -> None:
    """Raise InvalidJobTransitionError unless the move is allowed"""
    if to_status not in ALLOWED_TRANSITIONS.get(from_status, frozenset()):
        raise InvalidJobTransitionError(from_status, to_status, job_id=job_id)


@dataclass
class ImportCounters:
    """
    Running totals for one import.

    ``imported + updated + skipped + errored == total`` at all times; the
    derived ``processed`` count is everything that was not skipped.
    """
    max_errors: int = 100
    total: int = 0
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    election_records: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> int:
        return self.imported + self.updated

    @property
    def processed(self) -> int:
        return self.success + self.errored

    def add_error(self, row: int, message: str, field_name: Optional[str] = None) -> None:
        """Record a descriptor, dropping it once the cap is reached"""
        if len(self.errors) >= self.max_errors:
            return
        descriptor: Dict[str, Any] = {"row": row, "message": message}
        if field_name:
            descriptor["field"] = field_name
        self.errors.append(descriptor)

    def add_warning(self, row: int, message: str) -> None:
        """Record a descriptor for a row that was still written; no counter changes"""
        if len(self.errors) >= self.max_errors:
            return
        self.errors.append({"row": row, "message": message, "level": "warning"})

    def to_checkpoint(self) -> Dict[str, Any]:
        """Column values persisted on the import job row"""
        return {
            "total_rows": self.total,
            "processed_rows": self.processed,
            "success_rows": self.success,
            "error_rows": self.errored,
            "skipped_rows": self.skipped,
            "imported_rows": self.imported,
            "updated_rows": self.updated,
            "election_records": self.election_records,
            "errors": list(self.errors),
        }


@dataclass
class ProgressSnapshot:
    """Live progress kept in memory while a job is processing"""
    job_id: str
    organization_id: int
    status: str
    processed: int = 0
    total: int = 0
    updated_at: float = field(default_factory=time.monotonic)


class ProgressCache:
    """
    Keyed in-memory cache of live import progress with TTL expiry.

    Entries are evicted explicitly when a job reaches a terminal state and
    expire after ``ttl_seconds`` without an update (covers jobs orphaned by a
    crashed task). The cache is never the system of record.
    """

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.PROGRESS_CACHE_TTL_SECONDS
        self._clock = clock
        self._entries: Dict[str, ProgressSnapshot] = {}

        # Cache metrics
        self._hits = 0
        self._misses = 0

    def set(self, snapshot: ProgressSnapshot) -> None:
        snapshot.updated_at = self._clock()
        self._entries[snapshot.job_id] = snapshot

    def get(self, job_id: str) -> Optional[ProgressSnapshot]:
        snapshot = self._entries.get(job_id)
        if snapshot is None:
            self._misses += 1
            return None
        if self._is_expired(snapshot):
            del self._entries[job_id]
            self._misses += 1
            return None
        self._hits += 1
        return snapshot

    def evict(self, job_id: str) -> bool:
        return self._entries.pop(job_id, None) is not None

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed"""
        expired = [job_id for job_id, snap in self._entries.items() if self._is_expired(snap)]
        for job_id in expired:
            del self._entries[job_id]
        if expired:
            logger.debug(f"Purged {len(expired)} expired progress entries")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, job_id: str) -> bool:
        return self.get(job_id) is not None

    def get_metrics(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": (self._hits / total) if total else 0.0,
        }

    def _is_expired(self, snapshot: ProgressSnapshot) -> bool:
        return self._clock() - snapshot.updated_at > self.ttl_seconds


def serialize_job(job: ImportJob) -> Dict[str, Any]:
    """API representation of an import job row"""
    return {
        "id": job.id,
        "organizationId": job.organization_id,
        "createdBy": job.created_by,
        "type": job.type,
        "status": job.status,
        "fileName": job.file_name,
        "totalRows": job.total_rows or 0,
        "processedRows": job.processed_rows or 0,
        "successRows": job.success_rows or 0,
        "errorRows": job.error_rows or 0,
        "skippedRows": job.skipped_rows or 0,
        "importedRows": job.imported_rows or 0,
        "updatedRows": job.updated_rows or 0,
        "electionRecords": job.election_records or 0,
        "columnMapping": job.column_mapping or {},
        "errors": job.errors or [],
        "startedAt": job.started_at.isoformat() if job.started_at else None,
        "completedAt": job.completed_at.isoformat() if job.completed_at else None,
        "createdAt": job.created_at.isoformat() if job.created_at else None,
    }


class ImportJobTracker:
    """Manages import job lifecycle, checkpoints and live progress"""

    def __init__(
        self,
        progress_cache: Optional[ProgressCache] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.progress_cache = progress_cache if progress_cache is not None else ProgressCache()
        self._session_factory = session_factory or AsyncSessionLocal
        self._cancel_requested: Set[str] = set()

    async def create_job(
        self,
        organization_id: int,
        import_type: str,
        file_name: Optional[str] = None,
        column_mapping: Optional[Dict[str, str]] = None,
        created_by: Optional[int] = None,
    ) -> ImportJob:
        """Create a job in ``pending``"""
        async with self._session_factory() as session:
            job = ImportJob(
                id=str(uuid.uuid4()),
                organization_id=organization_id,
                created_by=created_by,
                type=import_type,
                status=STATUS_PENDING,
                file_name=file_name,
                column_mapping=column_mapping or {},
                errors=[],
            )
            session.add(job)
            await session.commit()
            await session.refresh(job)
            logger.info(
                f"Created {import_type} import job {job.id} for file {file_name}",
                extra={"job_id": job.id, "organization_id": organization_id}
            )
            return job

    async def start(self, job_id: str) -> None:
        """Move a job to ``processing`` and seed its live progress entry"""
        job = await self._transition(job_id, STATUS_PROCESSING, started_at=datetime.utcnow())
        self.progress_cache.set(ProgressSnapshot(
            job_id=job_id,
            organization_id=job.organization_id,
            status=STATUS_PROCESSING,
        ))

    def report_progress(self, job_id: str, counters: ImportCounters) -> None:
        """Refresh the in-memory snapshot only (cheap, called between checkpoints)"""
        snapshot = self.progress_cache.get(job_id)
        if snapshot is None:
            return
        snapshot.processed = counters.processed
        snapshot.total = counters.total
        self.progress_cache.set(snapshot)

    async def checkpoint(self, job_id: str, counters: ImportCounters) -> None:
        """Persist counters at a batch boundary and refresh live progress"""
        await self._transition(job_id, STATUS_PROCESSING, **counters.to_checkpoint())
        self.report_progress(job_id, counters)

    async def complete(self, job_id: str, counters: ImportCounters) -> None:
        """Finalize a job whose stream was exhausted"""
        try:
            await self._transition(
                job_id,
                STATUS_COMPLETED,
                completed_at=datetime.utcnow(),
                **counters.to_checkpoint()
            )
        finally:
            self.progress_cache.evict(job_id)
            self._cancel_requested.discard(job_id)
        logger.info(
            f"Import job {job_id} completed: total={counters.total} imported={counters.imported} "
            f"updated={counters.updated} skipped={counters.skipped} errors={counters.errored}",
            extra={"job_id": job_id}
        )

    async def fail(self, job_id: str, message: str, counters: Optional[ImportCounters] = None) -> None:
        """
        Finalize a job after a stream-level failure.

        The error list is replaced by a single row-0 descriptor; counters
        reached so far are kept so callers can see how far the import got.
        """
        values: Dict[str, Any] = counters.to_checkpoint() if counters else {}
        values["errors"] = [{"row": 0, "message": message}]
        try:
            await self._transition(job_id, STATUS_FAILED, completed_at=datetime.utcnow(), **values)
        finally:
            self.progress_cache.evict(job_id)
            self._cancel_requested.discard(job_id)
        logger.error(f"Import job {job_id} failed: {message}", extra={"job_id": job_id})

    async def get_job(self, job_id: str, organization_id: int) -> Optional[ImportJob]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ImportJob).where(
                    ImportJob.id == job_id,
                    ImportJob.organization_id == organization_id
                )
            )
            return result.scalar_one_or_none()

    async def get_status(self, job_id: str, organization_id: int) -> Optional[Dict[str, Any]]:
        """
        Job status, preferring live progress while the job is processing.

        Returns:
            Serialized job, or None if the job does not exist for the tenant
        """
        job = await self.get_job(job_id, organization_id)
        if not job:
            return None

        data = serialize_job(job)
        if job.status == STATUS_PROCESSING:
            snapshot = self.progress_cache.get(job_id)
            if snapshot is not None and snapshot.organization_id == organization_id:
                data["processedRows"] = max(snapshot.processed, data["processedRows"])
                data["status"] = snapshot.status
                data["live"] = True
        return data

    async def list_jobs(self, organization_id: int, limit: int = 50) -> List[ImportJob]:
        """Most recent jobs for a tenant"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ImportJob)
                .where(ImportJob.organization_id == organization_id)
                .order_by(desc(ImportJob.created_at))
                .limit(limit)
            )
            return list(result.scalars().all())

    async def request_cancel(self, job_id: str, organization_id: int) -> bool:
        """Signal a running import to stop; returns False for unknown or finished jobs"""
        job = await self.get_job(job_id, organization_id)
        if not job or job.status in TERMINAL_STATUSES:
            return False
        self._cancel_requested.add(job_id)
        logger.info(f"Cancellation requested for import job {job_id}", extra={"job_id": job_id})
        return True

    def is_cancel_requested(self, job_id: str) -> bool:
        return job_id in self._cancel_requested

    async def fail_incomplete_jobs(self, message: str = "Interrupted by restart") -> int:
        """Mark jobs left pending/processing by a previous process as failed"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ImportJob).where(ImportJob.status.in_([STATUS_PENDING, STATUS_PROCESSING]))
            )
            jobs = list(result.scalars().all())
            for job in jobs:
                job.status = STATUS_FAILED
                job.errors = [{"row": 0, "message": message}]
                job.completed_at = datetime.utcnow()
                self.progress_cache.evict(job.id)
            await session.commit()
        if jobs:
            logger.warning(f"Marked {len(jobs)} interrupted import job(s) as failed")
        return len(jobs)

    @retry_on_db_lock(max_retries=config.DEFAULT_MAX_RETRIES, base_delay=config.DEFAULT_RETRY_DELAY)
    async def _transition(self, job_id: str, to_status: str, **values: Any) -> ImportJob:
        async with self._session_factory() as session:
            job = await self._load_for_update(session, job_id)
            check_transition(job.status, to_status, job_id=job_id)
            job.status = to_status
            for key, value in values.items():
                setattr(job, key, value)
            await session.commit()
            return job

    @staticmethod
    async def _load_for_update(session: AsyncSession, job_id: str) -> ImportJob:
        result = await session.execute(select(ImportJob).where(ImportJob.id == job_id))
        job = result.scalar_one_or_none()
        if job is None:
            raise ImportPipelineError(f"Import job {job_id} not found", job_id=job_id)
        return job


async def purge_progress_cache_periodically(cache: ProgressCache, interval_seconds: float) -> None:
    """Background loop dropping expired progress entries"""
    while True:
        await asyncio.sleep(interval_seconds)
        cache.purge_expired()
