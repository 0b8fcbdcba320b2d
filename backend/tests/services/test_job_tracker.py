"""
Tests for the import job state machine and live status
"""
import pytest

from voterpulse.services.import_pipeline.job_tracker import (
    ImportCounters,
    ImportJobTracker,
    ProgressCache,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    check_transition,
)
from voterpulse.services.shared.exceptions import InvalidJobTransitionError
from tests.helpers.db_helpers import get_import_job, job_counts


@pytest.fixture
def tracker() -> ImportJobTracker:
    return ImportJobTracker(progress_cache=ProgressCache(ttl_seconds=60))


def _counters(**values) -> ImportCounters:
    counters = ImportCounters()
    for key, value in values.items():
        setattr(counters, key, value)
    return counters


def test_allowed_transitions():
    check_transition(STATUS_PENDING, STATUS_PROCESSING)
    check_transition(STATUS_PENDING, STATUS_FAILED)
    check_transition(STATUS_PROCESSING, STATUS_PROCESSING)
    check_transition(STATUS_PROCESSING, STATUS_COMPLETED)
    for terminal in (STATUS_COMPLETED, STATUS_FAILED):
        with pytest.raises(InvalidJobTransitionError):
            check_transition(terminal, STATUS_PROCESSING)
    with pytest.raises(InvalidJobTransitionError):
        check_transition(STATUS_PENDING, STATUS_COMPLETED)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_job_lifecycle_with_live_progress(tracker: ImportJobTracker, tenant):
    """pending -> processing (live) -> completed (cache evicted)"""
    job = await tracker.create_job(tenant.organization_id, "voters", "voters.csv", {"VoterId": "state_voter_id"}, tenant.user_id)
    assert job.status == STATUS_PENDING

    await tracker.start(job.id)
    counters = _counters(total=8, imported=6, skipped=1, errored=1)
    tracker.report_progress(job.id, counters)

    status = await tracker.get_status(job.id, tenant.organization_id)
    assert status["status"] == STATUS_PROCESSING
    assert status["live"] is True
    assert status["processedRows"] == 7

    await tracker.checkpoint(job.id, counters)
    stored = await get_import_job(job.id)
    assert job_counts(stored)["processed"] == 7

    counters.total = 10
    counters.updated = 2
    await tracker.complete(job.id, counters)
    assert job.id not in tracker.progress_cache

    status = await tracker.get_status(job.id, tenant.organization_id)
    assert status["status"] == STATUS_COMPLETED
    assert "live" not in status
    assert status["totalRows"] == 10
    assert status["importedRows"] + status["updatedRows"] + status["skippedRows"] + status["errorRows"] == 10
    assert status["completedAt"] is not None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_terminal_jobs_cannot_restart(tracker: ImportJobTracker, tenant):
    job = await tracker.create_job(tenant.organization_id, "voters", "voters.csv")
    await tracker.start(job.id)
    await tracker.complete(job.id, ImportCounters())

    with pytest.raises(InvalidJobTransitionError):
        await tracker.start(job.id)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_fail_replaces_errors_and_keeps_counters(tracker: ImportJobTracker, tenant):
    job = await tracker.create_job(tenant.organization_id, "voters", "voters.csv")
    await tracker.start(job.id)
    counters = _counters(total=4, imported=3, errored=1)
    counters.add_error(2, "Unterminated quoted field")

    await tracker.fail(job.id, "Connection lost", counters)

    stored = await get_import_job(job.id)
    assert stored.status == STATUS_FAILED
    assert stored.errors == [{"row": 0, "message": "Connection lost"}]
    assert job_counts(stored)["imported"] == 3
    assert job.id not in tracker.progress_cache


@pytest.mark.integration
@pytest.mark.asyncio
async def test_status_is_tenant_scoped(tracker: ImportJobTracker, tenant, other_tenant):
    job = await tracker.create_job(tenant.organization_id, "voters", "voters.csv")
    assert await tracker.get_status(job.id, other_tenant.organization_id) is None
    assert await tracker.request_cancel(job.id, other_tenant.organization_id) is False
    assert await tracker.get_status("no-such-job", tenant.organization_id) is None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_cancel_request_only_for_unfinished_jobs(tracker: ImportJobTracker, tenant):
    running = await tracker.create_job(tenant.organization_id, "voters", "a.csv")
    finished = await tracker.create_job(tenant.organization_id, "voters", "b.csv")
    await tracker.start(finished.id)
    await tracker.complete(finished.id, ImportCounters())

    assert await tracker.request_cancel(running.id, tenant.organization_id) is True
    assert tracker.is_cancel_requested(running.id)
    assert await tracker.request_cancel(finished.id, tenant.organization_id) is False


@pytest.mark.integration
@pytest.mark.asyncio
async def test_list_jobs_and_fail_incomplete(tracker: ImportJobTracker, tenant):
    pending = await tracker.create_job(tenant.organization_id, "voters", "a.csv")
    processing = await tracker.create_job(tenant.organization_id, "election_history", "b.csv")
    await tracker.start(processing.id)
    done = await tracker.create_job(tenant.organization_id, "voters", "c.csv")
    await tracker.start(done.id)
    await tracker.complete(done.id, ImportCounters())

    jobs = await tracker.list_jobs(tenant.organization_id)
    assert {job.id for job in jobs} == {pending.id, processing.id, done.id}

    assert await tracker.fail_incomplete_jobs() == 2
    for job_id in (pending.id, processing.id):
        stored = await get_import_job(job_id)
        assert stored.status == STATUS_FAILED
        assert stored.errors[0]["row"] == 0
    assert (await get_import_job(done.id)).status == STATUS_COMPLETED
    assert len(tracker.progress_cache) == 0
