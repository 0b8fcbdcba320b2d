"""
Batch upsert engine for voter and election-history imports

Rows are buffered into fixed-size batches. Each batch is written in its own
transaction: voter rows are upserted on (organization_id, state_voter_id) and
dependent election-history rows are inserted with ON CONFLICT DO NOTHING after
resolving voter ids. A batch that fails is rolled back, counted as errored and
never retried; the next batch proceeds.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import func, select, tuple_
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voterpulse.config import config
from voterpulse.db.database import AsyncSessionLocal, ElectionHistory, Voter
from voterpulse.services.import_pipeline.column_mapper import (
    IMPORT_TYPE_ELECTION_HISTORY,
    IMPORT_TYPE_VOTERS,
)
from voterpulse.services.import_pipeline.job_tracker import ImportCounters

logger = logging.getLogger(__name__)

VOTER_CONFLICT_KEYS = ("organization_id", "state_voter_id")
ELECTION_CONFLICT_KEYS = ("voter_id", "election_date")
ELECTION_FIELDS = ("election_date", "election_description", "election_type", "voting_method")


@dataclass
class PendingRow:
    row_number: int
    record: Dict[str, Any]
    elections: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class BatchResult:
    batch_number: int
    row_count: int
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    election_records: int = 0
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def dialect_insert(session: AsyncSession, table):
    """Dialect-specific INSERT supporting ON CONFLICT"""
    if session.bind is not None and session.bind.dialect.name == "postgresql":
        return postgresql_insert(table)
    return sqlite_insert(table)


def chunked(items: List[Any], size: int) -> Iterable[List[Any]]:
    size = max(1, size)
    for i in range(0, len(items), size):
        yield items[i:i + size]


def is_fatal_store_error(error: SQLAlchemyError) -> bool:
    """Connection loss is a stream-level failure, not a batch failure"""
    return isinstance(error, DBAPIError) and bool(error.connection_invalidated)


class BatchUpsertEngine:
    """
    Buffers mapped rows and writes them batch by batch for one tenant.

    Args:
        organization_id: Tenant every write is scoped to
        import_type: "voters" or "election_history"
        counters: Shared counters also read by the job tracker
        session_factory: Session factory (defaults to the application's)
        batch_size: Rows per batch
        max_variables: Bound-parameter ceiling per statement
    """

    def __init__(
        self,
        organization_id: int,
        import_type: str,
        counters: ImportCounters,
        session_factory: Optional[async_sessionmaker] = None,
        batch_size: Optional[int] = None,
        max_variables: Optional[int] = None,
    ):
        if import_type not in (IMPORT_TYPE_VOTERS, IMPORT_TYPE_ELECTION_HISTORY):
            raise ValueError(f"Unknown import type: {import_type}")
        self.organization_id = organization_id
        self.import_type = import_type
        self.counters = counters
        self.batch_size = batch_size or config.IMPORT_BATCH_SIZE
        self.max_variables = max_variables or config.SQLITE_MAX_VARIABLES
        self._session_factory = session_factory or AsyncSessionLocal
        self._pending: List[PendingRow] = []
        self._batch_number = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def batch_full(self) -> bool:
        return len(self._pending) >= self.batch_size

    def add(self, row_number: int, record: Dict[str, Any], elections: Optional[List[Dict[str, Any]]] = None) -> bool:
        """
        Buffer one mapped row.

        Rows without an external id (or election rows without a date) are
        counted as skipped and never written.

        Returns:
            True when the buffer has reached the batch size
        """
        if not record.get("state_voter_id"):
            self.counters.skipped += 1
            return self.batch_full
        if self.import_type == IMPORT_TYPE_ELECTION_HISTORY and not record.get("election_date"):
            self.counters.skipped += 1
            return self.batch_full

        self._pending.append(PendingRow(row_number=row_number, record=record, elections=elections or []))
        return self.batch_full

    async def flush(self) -> Optional[BatchResult]:
        """Write the buffered rows as one batch (no-op when empty)"""
        if not self._pending:
            return None

        rows, self._pending = self._pending, []
        self._batch_number += 1
        result = BatchResult(batch_number=self._batch_number, row_count=len(rows))

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    if self.import_type == IMPORT_TYPE_VOTERS:
                        await self._write_voter_batch(session, rows, result)
                    else:
                        await self._write_election_batch(session, rows, result)
        except SQLAlchemyError as e:
            if is_fatal_store_error(e):
                raise
            result = BatchResult(batch_number=self._batch_number, row_count=len(rows), error=str(e))
            self.counters.errored += len(rows)
            self.counters.add_error(rows[-1].row_number, f"Batch insert failed: {e}")
            logger.warning(
                f"Batch {self._batch_number} ({len(rows)} rows) failed for organization "
                f"{self.organization_id}: {e}. Continuing with next batch."
            )
            return result

        self.counters.imported += result.imported
        self.counters.updated += result.updated
        self.counters.skipped += result.skipped
        self.counters.election_records += result.election_records
        logger.debug(
            f"Batch {result.batch_number}: {result.imported} imported, {result.updated} updated, "
            f"{result.skipped} skipped, {result.election_records} election records"
        )
        return result

    # Voter rows

    async def _write_voter_batch(self, session: AsyncSession, rows: List[PendingRow], result: BatchResult) -> None:
        merged: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        occurrences: Dict[str, int] = {}
        elections: Dict[str, Dict[str, Dict[str, Any]]] = {}

        # Same external id twice in one batch: later values win field by field
        for row in rows:
            state_voter_id = row.record["state_voter_id"]
            merged.setdefault(state_voter_id, {}).update(row.record)
            occurrences[state_voter_id] = occurrences.get(state_voter_id, 0) + 1
            for election in row.elections:
                elections.setdefault(state_voter_id, {})[election["election_date"]] = election

        existing = await self._existing_state_voter_ids(session, list(merged))
        for state_voter_id, count in occurrences.items():
            if state_voter_id in existing:
                result.updated += count
            else:
                result.imported += 1
                result.updated += count - 1

        await self._upsert_voters(session, list(merged.values()))

        if elections:
            voter_ids = await self._resolve_voter_ids(session, list(elections))
            election_rows = [
                {
                    "voter_id": voter_ids[state_voter_id],
                    "organization_id": self.organization_id,
                    **{key: election.get(key) for key in ELECTION_FIELDS},
                }
                for state_voter_id, by_date in elections.items()
                if state_voter_id in voter_ids
                for election in by_date.values()
            ]
            result.election_records = await self._insert_elections(session, election_rows)

    async def _upsert_voters(self, session: AsyncSession, records: List[Dict[str, Any]]) -> None:
        columns: List[str] = []
        for record in records:
            for key in record:
                if key not in columns:
                    columns.append(key)
        if "organization_id" not in columns:
            columns.append("organization_id")

        now = datetime.utcnow()
        values = [
            {**{column: record.get(column) for column in columns}, "organization_id": self.organization_id}
            for record in records
        ]
        update_columns = [c for c in columns if c not in VOTER_CONFLICT_KEYS]
        table = Voter.__table__

        # created_at/updated_at are added per row, so leave room for them
        rows_per_statement = self.max_variables // (len(columns) + 2)
        for part in chunked(values, rows_per_statement):
            insert_stmt = dialect_insert(session, table).values(
                [{**row, "created_at": now, "updated_at": now} for row in part]
            )
            # A blank cell in a re-import must not erase a stored value
            set_ = {
                column: func.coalesce(insert_stmt.excluded[column], table.c[column])
                for column in update_columns
            }
            set_["updated_at"] = now
            upsert_stmt = insert_stmt.on_conflict_do_update(
                index_elements=list(VOTER_CONFLICT_KEYS),
                set_=set_,
            )
            await session.execute(upsert_stmt)

    # Election history rows

    async def _write_election_batch(self, session: AsyncSession, rows: List[PendingRow], result: BatchResult) -> None:
        voter_ids = await self._resolve_voter_ids(session, list({row.record["state_voter_id"] for row in rows}))

        election_rows: List[Dict[str, Any]] = []
        for row in rows:
            voter_id = voter_ids.get(row.record["state_voter_id"])
            if voter_id is None:
                result.skipped += 1
                continue
            election_rows.append({
                "voter_id": voter_id,
                "organization_id": self.organization_id,
                **{key: row.record.get(key) for key in ELECTION_FIELDS},
            })

        inserted = await self._insert_elections(session, election_rows)
        result.imported += inserted
        result.skipped += len(election_rows) - inserted
        result.election_records = inserted

    async def _insert_elections(self, session: AsyncSession, election_rows: List[Dict[str, Any]]) -> int:
        """Insert history rows not already recorded; returns the number written"""
        if not election_rows:
            return 0

        keys = list({(row["voter_id"], row["election_date"]) for row in election_rows})
        existing: Set[Tuple[int, str]] = set()
        for part in chunked(keys, self.max_variables // 2):
            found = await session.execute(
                select(ElectionHistory.voter_id, ElectionHistory.election_date).where(
                    ElectionHistory.organization_id == self.organization_id,
                    tuple_(ElectionHistory.voter_id, ElectionHistory.election_date).in_(part),
                )
            )
            existing.update((voter_id, election_date) for voter_id, election_date in found)

        to_insert: List[Dict[str, Any]] = []
        seen: Set[Tuple[int, str]] = set(existing)
        for row in election_rows:
            key = (row["voter_id"], row["election_date"])
            if key in seen:
                continue
            seen.add(key)
            to_insert.append(row)

        if not to_insert:
            return 0

        now = datetime.utcnow()
        columns_per_row = len(to_insert[0]) + 1
        for part in chunked(to_insert, self.max_variables // columns_per_row):
            insert_stmt = dialect_insert(session, ElectionHistory.__table__).values(
                [{**row, "created_at": now} for row in part]
            )
            # Concurrent imports may still race on the same election
            await session.execute(insert_stmt.on_conflict_do_nothing(index_elements=list(ELECTION_CONFLICT_KEYS)))
        return len(to_insert)

    # Lookups (always tenant-scoped)

    async def _existing_state_voter_ids(self, session: AsyncSession, state_voter_ids: List[str]) -> Set[str]:
        existing: Set[str] = set()
        for part in chunked(state_voter_ids, self.max_variables - 1):
            found = await session.execute(
                select(Voter.state_voter_id).where(
                    Voter.organization_id == self.organization_id,
                    Voter.state_voter_id.in_(part),
                )
            )
            existing.update(found.scalars().all())
        return existing

    async def _resolve_voter_ids(self, session: AsyncSession, state_voter_ids: List[str]) -> Dict[str, int]:
        voter_ids: Dict[str, int] = {}
        for part in chunked(state_voter_ids, self.max_variables - 1):
            found = await session.execute(
                select(Voter.state_voter_id, Voter.id).where(
                    Voter.organization_id == self.organization_id,
                    Voter.state_voter_id.in_(part),
                )
            )
            voter_ids.update({state_voter_id: voter_id for state_voter_id, voter_id in found})
        return voter_ids
