"""
Tests for the streaming import runner
"""
from typing import AsyncIterator, Dict

import pytest

from voterpulse.services.import_pipeline.column_mapper import validate_column_mapping
from voterpulse.services.import_pipeline.job_tracker import (
    ImportJobTracker,
    ProgressCache,
    STATUS_COMPLETED,
    STATUS_FAILED,
)
from voterpulse.services.import_pipeline.runner import ImportRunner
from voterpulse.utils.thread_pool import async_read_chunks
from tests.helpers.db_helpers import (
    count_voters,
    get_election_history,
    get_import_job,
    get_voter_by_state_id,
    job_counts,
)

VOTER_MAPPING = {"VoterId": "stateVoterId", "FirstName": "firstName", "LastName": "lastName"}


async def _chunks(data: str, size: int = 7) -> AsyncIterator[bytes]:
    raw = data.encode("utf-8")
    for start in range(0, len(raw), size):
        yield raw[start:start + size]


async def _run(tenant, data: str, mapping: Dict[str, str], import_type: str = "voters", **runner_kwargs):
    tracker = ImportJobTracker(progress_cache=ProgressCache(ttl_seconds=60))
    job = await tracker.create_job(tenant.organization_id, import_type, "upload.csv", mapping, tenant.user_id)
    runner = ImportRunner(tracker, **runner_kwargs)
    counters = await runner.run(
        job_id=job.id,
        organization_id=tenant.organization_id,
        import_type=import_type,
        column_mapping=validate_column_mapping(mapping, import_type),
        chunks=_chunks(data),
    )
    return tracker, job, counters


def _assert_balanced(counts: Dict[str, int]) -> None:
    assert counts["imported"] + counts["updated"] + counts["skipped"] + counts["errored"] == counts["total"]
    assert counts["processed"] == counts["success"] + counts["errored"]


@pytest.mark.integration
@pytest.mark.asyncio
@pytest.mark.parametrize("batch_size", [1, 2, 1000])
async def test_three_row_file_with_blank_and_repeated_id(tenant, batch_size):
    """Blank external id is skipped; a repeated id updates the first row"""
    data = "VoterId,FirstName,LastName\nV1,Ann,Lee\n,Bo,Ng\nV1,Ann,Lee2"
    _, job, counters = await _run(tenant, data, VOTER_MAPPING, batch_size=batch_size)

    stored = await get_import_job(job.id)
    counts = job_counts(stored)
    assert stored.status == STATUS_COMPLETED
    assert counts["total"] == 3
    assert counts["skipped"] == 1
    assert counts["imported"] == 1
    assert counts["updated"] == 1
    _assert_balanced(counts)

    assert await count_voters(tenant.organization_id) == 1
    voter = await get_voter_by_state_id(tenant.organization_id, "V1")
    assert voter.last_name == "Lee2"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_reimporting_the_same_file_is_idempotent(tenant):
    data = "VoterId,FirstName,LastName\nV1,Ann,Lee\nV2,Bo,Ng\n"
    await _run(tenant, data, VOTER_MAPPING)
    _, job, counters = await _run(tenant, data, VOTER_MAPPING)

    assert (counters.imported, counters.updated) == (0, 2)
    assert await count_voters(tenant.organization_id) == 2


@pytest.mark.integration
@pytest.mark.asyncio
async def test_malformed_rows_are_counted_but_only_first_hundred_recorded(tenant):
    lines = ["VoterId,FirstName,LastName", "V0,Ann,Lee"]
    lines += [f'V{i},"Broken,Row' for i in range(1, 151)]
    lines.append("V999,Bo,Ng")
    _, job, counters = await _run(tenant, "\n".join(lines) + "\n", VOTER_MAPPING, max_errors=100)

    stored = await get_import_job(job.id)
    counts = job_counts(stored)
    assert stored.status == STATUS_COMPLETED
    assert counts["total"] == 152
    assert counts["errored"] == 150
    assert counts["imported"] == 2
    assert len(stored.errors) == 100
    assert stored.errors[0] == {"row": 2, "message": "Unterminated quoted field"}
    _assert_balanced(counts)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_rows_with_nothing_mapped_are_skipped(tenant):
    data = "VoterId,FirstName,LastName,Notes\nV1,Ann,Lee,x\n,,,hello\n"
    _, job, counters = await _run(tenant, data, VOTER_MAPPING)
    assert counters.total == 2
    assert counters.skipped == 1
    assert counters.imported == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_voter_file_with_embedded_election_history(tenant):
    data = (
        "VoterId,LastName,ElectionDate_1,ElectionType_1,VotingMethod_1,ElectionDate_2\n"
        "V1,Lee,11/3/2020,General,Absentee,8/11/2020\n"
        "V2,Ng,,,,\n"
    )
    _, job, counters = await _run(tenant, data, {"VoterId": "state_voter_id", "LastName": "last_name"})

    assert counters.imported == 2
    assert counters.election_records == 2
    voter = await get_voter_by_state_id(tenant.organization_id, "V1")
    history = await get_election_history(voter.id)
    assert [(h.election_date, h.voting_method) for h in history] == [
        ("2020-08-11", None),
        ("2020-11-03", "Absentee"),
    ]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_election_history_import(tenant):
    await _run(tenant, "VoterId,LastName\nV1,Lee\nV2,Ng\n", {"VoterId": "state_voter_id", "LastName": "last_name"})

    data = (
        "VoterId,ElectionDate,ElectionDescription\n"
        "V1,11/3/2020,State General\n"
        "V1,11/3/2020,State General\n"
        "V9,11/3/2020,State General\n"
        "V2,8/11/2020,State Primary\n"
    )
    mapping = {"VoterId": "state_voter_id", "ElectionDate": "election_date", "ElectionDescription": "election_description"}
    _, job, counters = await _run(tenant, data, mapping, import_type="election_history")

    counts = job_counts(await get_import_job(job.id))
    assert counts["total"] == 4
    assert counts["imported"] == 2
    assert counts["skipped"] == 2
    assert counters.election_records == 2
    _assert_balanced(counts)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_cancel_request_fails_the_job(tenant):
    tracker = ImportJobTracker(progress_cache=ProgressCache(ttl_seconds=60))
    job = await tracker.create_job(tenant.organization_id, "voters", "upload.csv")
    assert await tracker.request_cancel(job.id, tenant.organization_id)

    counters = await ImportRunner(tracker).run(
        job_id=job.id,
        organization_id=tenant.organization_id,
        import_type="voters",
        column_mapping=validate_column_mapping(VOTER_MAPPING, "voters"),
        chunks=_chunks("VoterId,FirstName,LastName\nV1,Ann,Lee\n"),
    )

    stored = await get_import_job(job.id)
    assert stored.status == STATUS_FAILED
    assert stored.errors == [{"row": 0, "message": "Import cancelled"}]
    assert counters.imported == 0
    assert await count_voters(tenant.organization_id) == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_stream_error_fails_the_job_and_keeps_written_batches(tenant):
    async def broken_stream():
        yield b"VoterId,FirstName,LastName\nV1,Ann,Lee\nV2,Bo,Ng\n"
        raise ConnectionResetError("client disconnected")

    tracker = ImportJobTracker(progress_cache=ProgressCache(ttl_seconds=60))
    job = await tracker.create_job(tenant.organization_id, "voters", "upload.csv")
    await ImportRunner(tracker, batch_size=1).run(
        job_id=job.id,
        organization_id=tenant.organization_id,
        import_type="voters",
        column_mapping=validate_column_mapping(VOTER_MAPPING, "voters"),
        chunks=broken_stream(),
    )

    stored = await get_import_job(job.id)
    assert stored.status == STATUS_FAILED
    assert stored.errors[0]["row"] == 0
    assert "client disconnected" in stored.errors[0]["message"]
    assert stored.imported_rows == 2
    assert await count_voters(tenant.organization_id) == 2
    assert job.id not in tracker.progress_cache


@pytest.mark.integration
@pytest.mark.asyncio
async def test_spooled_upload_is_removed_when_the_job_cannot_start(tenant, tmp_path):
    spooled = tmp_path / "import_abc.upload"
    spooled.write_bytes(b"VoterId,FirstName\nV1,Ann\n")
    runner = ImportRunner(ImportJobTracker(progress_cache=ProgressCache(ttl_seconds=60)))

    counters = await runner.run(
        job_id="missing-job",
        organization_id=tenant.organization_id,
        import_type="voters",
        column_mapping=validate_column_mapping(VOTER_MAPPING, "voters"),
        chunks=async_read_chunks(str(spooled), remove_when_done=True),
    )

    assert counters.total == 0
    assert not spooled.exists()
    assert await count_voters(tenant.organization_id) == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_spooled_upload_is_removed_after_import(tenant, tmp_path):
    spooled = tmp_path / "import_def.upload"
    spooled.write_bytes(b"VoterId,FirstName,LastName\nV1,Ann,Lee\nV2,Bo,Ng\n")
    tracker = ImportJobTracker(progress_cache=ProgressCache(ttl_seconds=60))
    job = await tracker.create_job(tenant.organization_id, "voters", "upload.csv", VOTER_MAPPING, tenant.user_id)

    counters = await ImportRunner(tracker).run(
        job_id=job.id,
        organization_id=tenant.organization_id,
        import_type="voters",
        column_mapping=validate_column_mapping(VOTER_MAPPING, "voters"),
        chunks=async_read_chunks(str(spooled), chunk_size=8, remove_when_done=True),
    )

    assert counters.imported == 2
    assert (await get_import_job(job.id)).status == STATUS_COMPLETED
    assert not spooled.exists()


async def _byte_chunks(data: bytes) -> AsyncIterator[bytes]:
    yield data


@pytest.mark.integration
@pytest.mark.asyncio
async def test_undecodable_bytes_are_imported_with_a_warning(tenant):
    data = b"VoterId,FirstName,LastName\nV1,Jos\xe9,Lee\nV2,Bo,Ng\n"
    tracker = ImportJobTracker(progress_cache=ProgressCache(ttl_seconds=60))
    job = await tracker.create_job(tenant.organization_id, "voters", "upload.csv", VOTER_MAPPING, tenant.user_id)

    counters = await ImportRunner(tracker).run(
        job_id=job.id,
        organization_id=tenant.organization_id,
        import_type="voters",
        column_mapping=validate_column_mapping(VOTER_MAPPING, "voters"),
        chunks=_byte_chunks(data),
        encoding="utf-8",
    )

    stored = await get_import_job(job.id)
    counts = job_counts(stored)
    assert stored.status == STATUS_COMPLETED
    assert counters.imported == 2
    assert counts["errored"] == 0
    _assert_balanced(counts)
    assert stored.errors == [{"row": 1, "message": "Undecodable utf-8 bytes replaced", "level": "warning"}]
    assert (await get_voter_by_state_id(tenant.organization_id, "V1")).first_name == "Jos\ufffd"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_declared_encoding_decodes_without_warnings(tenant):
    data = b"VoterId,FirstName,LastName\nV1,Jos\xe9,Lee\n"
    tracker = ImportJobTracker(progress_cache=ProgressCache(ttl_seconds=60))
    job = await tracker.create_job(tenant.organization_id, "voters", "upload.csv", VOTER_MAPPING, tenant.user_id)

    await ImportRunner(tracker).run(
        job_id=job.id,
        organization_id=tenant.organization_id,
        import_type="voters",
        column_mapping=validate_column_mapping(VOTER_MAPPING, "voters"),
        chunks=_byte_chunks(data),
        encoding="cp1252",
    )

    stored = await get_import_job(job.id)
    assert stored.errors == []
    assert (await get_voter_by_state_id(tenant.organization_id, "V1")).first_name == "José"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_unparseable_dates_and_years_are_not_row_errors(tenant):
    """A bad date or year is dropped from the row; an update keeps the stored value"""
    mapping = dict(VOTER_MAPPING, RegistrationDate="registrationDate", DOBYear="dobYear")
    await _run(tenant, "VoterId,FirstName,LastName,RegistrationDate,DOBYear\nV1,Ann,Lee,1/15/2020,1980\n", mapping)

    data = (
        "VoterId,FirstName,LastName,RegistrationDate,DOBYear\n"
        "V1,Ann,Lee,someday,19x0\n"
        "V2,Bo,Ng,2020-02-30,unknown\n"
    )
    _, job, counters = await _run(tenant, data, mapping)

    stored = await get_import_job(job.id)
    counts = job_counts(stored)
    assert stored.status == STATUS_COMPLETED
    assert stored.errors == []
    assert (counters.imported, counters.updated, counts["errored"]) == (1, 1, 0)
    _assert_balanced(counts)

    kept = await get_voter_by_state_id(tenant.organization_id, "V1")
    assert (kept.registration_date, kept.dob_year) == ("2020-01-15", 1980)
    created = await get_voter_by_state_id(tenant.organization_id, "V2")
    assert (created.registration_date, created.dob_year) == (None, None)
