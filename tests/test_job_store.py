# mypy: ignore-errors

from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from wins_column.database import current_timestamp
from wins_column.exceptions import (
    JobDependencyError,
    JobNotFoundError,
    JobStateConflictError,
    JobStoreError,
    JobValidationError,
)
from wins_column.queues import store as store_module
from wins_column.queues.store import JobStore
from wins_column.schemas.jobs import CreateJobData, JobFilter, JobStatus

FETCH_DATA = {"commit_sha": "b" * 40, "repository_owner": "acme", "repository_name": "web"}


def fetch_job(**overrides):
    return {"type": "fetch_diff", "data": dict(FETCH_DATA), **overrides}


@pytest.mark.asyncio
async def test_create_job_applies_defaults(store: JobStore):
    """New jobs are pending with no attempts and the default attempt budget."""
    result = await store.create_job(fetch_job(priority=70))

    assert result.ok
    job = result.data
    assert job.id is not None
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 0
    assert job.max_attempts == 3
    assert job.priority == 70
    assert job.scheduled_for <= current_timestamp()
    assert job.retry_after is None


@pytest.mark.asyncio
async def test_create_job_accepts_model_and_dates(store: JobStore):
    """Typed input and datetime / ISO string dates are normalised to epoch seconds."""
    when = datetime(2030, 1, 1, tzinfo=timezone.utc)
    result = await store.create_job(
        CreateJobData(type="fetch_diff", data=FETCH_DATA, scheduled_for=when, expires_at="2030-01-02T00:00:00Z")
    )

    assert result.ok
    assert result.data.scheduled_for == int(when.timestamp())
    assert result.data.expires_at == int(when.timestamp()) + 86_400


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "job_data",
    [
        {"type": "compile_kernel", "data": FETCH_DATA},
        {"type": "fetch_diff"},
        {"type": "fetch_diff", "data": {"commit_sha": "abc"}},
        fetch_job(priority=101),
        fetch_job(priority=-1),
        fetch_job(max_attempts=0),
        fetch_job(max_attempts=11),
        fetch_job(scheduled_for="next tuesday"),
    ],
)
async def test_create_job_rejects_invalid_input(store: JobStore, job_data):
    """Invalid types, payloads, ranges and dates are validation errors, never inserted."""
    result = await store.create_job(job_data)

    assert not result.ok
    assert isinstance(result.error, JobValidationError)
    listed = await store.get_jobs_by_filter({})
    assert listed.data == []


@pytest.mark.asyncio
async def test_get_missing_job(store: JobStore):
    """Looking up an unknown id reports not-found."""
    result = await store.get_job(999)

    assert not result.ok
    assert isinstance(result.error, JobNotFoundError)


@pytest.mark.asyncio
async def test_update_job_partial(store: JobStore):
    """Only the supplied fields change."""
    job = (await store.create_job(fetch_job(priority=10))).data

    result = await store.update_job(job.id, {"priority": 90, "error_message": "manual note"})

    assert result.ok
    assert result.data.priority == 90
    assert result.data.error_message == "manual note"
    assert result.data.status == JobStatus.PENDING.value
    assert result.data.data == FETCH_DATA


@pytest.mark.asyncio
async def test_update_job_status_stamps_lifecycle_times(store: JobStore):
    """Status edits keep started_at and completed_at in step with the new status."""
    job = (await store.create_job(fetch_job())).data

    running = await store.update_job(job.id, {"status": "running"})
    assert running.data.started_at is not None
    assert running.data.completed_at is None

    pending = await store.update_job(job.id, {"status": "pending"})
    assert pending.data.started_at is None
    assert pending.data.completed_at is None

    cancelled = await store.update_job(job.id, {"status": "cancelled"})
    assert cancelled.data.completed_at is not None


@pytest.mark.asyncio
async def test_filter_rejects_malformed_values(store: JobStore):
    """A filter that fails validation comes back as a JobValidationError result."""
    result = await store.get_jobs_by_filter({"priority_min": "high"})

    assert not result.ok
    assert isinstance(result.error, JobValidationError)
    assert result.error.details["errors"]


@pytest.mark.asyncio
async def test_update_job_rejects_attempts_over_max(store: JobStore):
    """attempts can never exceed max_attempts."""
    job = (await store.create_job(fetch_job(max_attempts=2))).data

    result = await store.update_job(job.id, {"attempts": 3})

    assert not result.ok
    assert (await store.get_job(job.id)).data.attempts == 0


@pytest.mark.asyncio
async def test_delete_job_removes_edges(store: JobStore):
    """Deleting a job also drops the dependency edges touching it."""
    first = (await store.create_job(fetch_job())).data
    second = (await store.create_job(fetch_job())).data
    assert (await store.add_job_dependency(second.id, first.id)).ok

    assert (await store.delete_job(first.id)).ok

    assert (await store.get_job_dependencies(second.id)).data == []
    assert isinstance((await store.get_job(first.id)).error, JobNotFoundError)


@pytest.mark.asyncio
async def test_dependency_rules(store: JobStore):
    """Self edges, duplicates, two-job cycles and dangling endpoints are rejected."""
    a = (await store.create_job(fetch_job())).data
    b = (await store.create_job(fetch_job())).data

    assert isinstance((await store.add_job_dependency(a.id, a.id)).error, JobDependencyError)
    assert (await store.add_job_dependency(b.id, a.id)).ok
    assert isinstance((await store.add_job_dependency(b.id, a.id)).error, JobDependencyError)
    assert isinstance((await store.add_job_dependency(a.id, b.id)).error, JobDependencyError)
    assert isinstance((await store.add_job_dependency(b.id, 12345)).error, JobDependencyError)

    edges = await store.get_job_dependencies(b.id)
    assert [e.depends_on_job_id for e in edges.data] == [a.id]

    assert (await store.remove_job_dependency(b.id, a.id)).ok
    assert (await store.get_job_dependencies(b.id)).data == []
    assert isinstance((await store.remove_job_dependency(b.id, a.id)).error, JobDependencyError)


@pytest.mark.asyncio
async def test_claim_only_from_pending(store: JobStore):
    """A job can be claimed once; a second claim is a state conflict."""
    job = (await store.create_job(fetch_job())).data

    first = await store.mark_job_as_running(job.id)
    second = await store.mark_job_as_running(job.id)

    assert first.ok
    assert first.data.status == JobStatus.RUNNING.value
    assert first.data.started_at is not None
    assert isinstance(second.error, JobStateConflictError)


@pytest.mark.asyncio
async def test_complete_stores_result(store: JobStore):
    """Completion records the handler result in the job context."""
    job = (await store.create_job(fetch_job(context={"workflow_id": "wf"}))).data
    await store.mark_job_as_running(job.id)

    result = await store.mark_job_as_completed(job.id, {"diff_content": "diff"})

    assert result.ok
    assert result.data.status == JobStatus.COMPLETED.value
    assert result.data.completed_at is not None
    assert result.data.context == {"workflow_id": "wf", "result": {"diff_content": "diff"}}


@pytest.mark.asyncio
async def test_complete_requires_running(store: JobStore):
    """Completing a job that is not running is refused."""
    job = (await store.create_job(fetch_job())).data

    result = await store.mark_job_as_completed(job.id, {})

    assert isinstance(result.error, JobStateConflictError)
    assert (await store.get_job(job.id)).data.status == JobStatus.PENDING.value


@pytest.mark.asyncio
async def test_mark_failed_retries_until_exhausted(store: JobStore):
    """Failures return the job to pending until the last attempt, then fail it."""
    job = (await store.create_job(fetch_job(max_attempts=2))).data

    await store.mark_job_as_running(job.id)
    first = await store.mark_job_as_failed(job.id, "boom", {"reason": "test"})
    assert first.data.status == JobStatus.PENDING.value
    assert first.data.attempts == 1
    assert first.data.retry_after is not None
    assert first.data.started_at is None

    await store.mark_job_as_running(job.id)
    second = await store.mark_job_as_failed(job.id, "boom again")
    assert second.data.status == JobStatus.FAILED.value
    assert second.data.attempts == 2
    assert second.data.error_message == "boom again"


@pytest.mark.asyncio
async def test_mark_failed_permanent(store: JobStore):
    """A permanent failure ends the job even with attempts remaining."""
    job = (await store.create_job(fetch_job(max_attempts=5))).data
    await store.mark_job_as_running(job.id)

    result = await store.mark_job_as_failed(job.id, "bad job", permanent=True)

    assert result.data.status == JobStatus.FAILED.value
    assert result.data.attempts == 1


@pytest.mark.asyncio
async def test_schedule_retry(store: JobStore):
    """A scheduled retry counts the attempt and stores the error for visibility."""
    job = (await store.create_job(fetch_job())).data
    await store.mark_job_as_running(job.id)
    retry_at = current_timestamp() + 60

    result = await store.schedule_retry(job.id, retry_at, "ECONNRESET", {"reason": "network"})

    assert result.ok
    assert result.data.status == JobStatus.PENDING.value
    assert result.data.attempts == 1
    assert result.data.retry_after == retry_at
    assert result.data.error_message == "ECONNRESET"
    assert result.data.error_details == {"reason": "network"}


@pytest.mark.asyncio
async def test_schedule_retry_without_attempts_left(store: JobStore):
    """The last attempt cannot be turned into a retry."""
    job = (await store.create_job(fetch_job(max_attempts=1))).data
    await store.mark_job_as_running(job.id)

    result = await store.schedule_retry(job.id, current_timestamp(), "boom")

    assert isinstance(result.error, JobStateConflictError)
    assert (await store.get_job(job.id)).data.status == JobStatus.RUNNING.value


@pytest.mark.asyncio
async def test_cancel_job(store: JobStore):
    """Pending jobs can be cancelled; finished ones cannot."""
    job = (await store.create_job(fetch_job())).data

    cancelled = await store.cancel_job(job.id)
    again = await store.cancel_job(job.id)

    assert cancelled.data.status == JobStatus.CANCELLED.value
    assert cancelled.data.completed_at is not None
    assert isinstance(again.error, JobStateConflictError)


@pytest.mark.asyncio
async def test_filter_and_stats(store: JobStore):
    """Filters combine; stats count every status."""
    a = (await store.create_job(fetch_job(priority=10, project_id=1))).data
    b = (await store.create_job(fetch_job(priority=50, project_id=2))).data
    c = (await store.create_job(fetch_job(priority=90, project_id=2))).data
    await store.mark_job_as_running(a.id)
    await store.mark_job_as_completed(a.id, {})
    await store.cancel_job(b.id)

    by_project = await store.get_jobs_by_filter(JobFilter(project_id=2))
    assert {j.id for j in by_project.data} == {b.id, c.id}
    by_status = await store.get_jobs_by_filter({"status": ["pending", "cancelled"], "priority_min": 60})
    assert [j.id for j in by_status.data] == [c.id]

    stats = (await store.get_queue_stats()).data
    assert stats.total_jobs == 3
    assert stats.pending_jobs == 1
    assert stats.completed_jobs == 1
    assert stats.cancelled_jobs == 1
    assert stats.running_jobs == 0
    assert stats.avg_processing_time_ms is not None
    assert stats.oldest_pending_job == c.scheduled_for


@pytest.mark.asyncio
async def test_stale_running_jobs(store: JobStore):
    """A zero window returns every running job; a long window returns none of the fresh ones."""
    job = (await store.create_job(fetch_job())).data
    await store.mark_job_as_running(job.id)

    assert [j.id for j in (await store.get_stale_running_jobs(0)).data] == [job.id]
    assert (await store.get_stale_running_jobs(3_600_000)).data == []


@pytest.mark.asyncio
async def test_cleanup(store: JobStore):
    """Old completed and failed jobs are purged; expired pending jobs too, running ones never."""
    old = current_timestamp() - 10 * 86_400
    done = (await store.create_job(fetch_job())).data
    await store.mark_job_as_running(done.id)
    await store.mark_job_as_completed(done.id, {})
    await store.update_job(done.id, {"completed_at": old})

    failed = (await store.create_job(fetch_job(max_attempts=1))).data
    await store.mark_job_as_running(failed.id)
    await store.mark_job_as_failed(failed.id, "boom")
    await store.update_job(failed.id, {"completed_at": old - 30 * 86_400})

    expired = (await store.create_job(fetch_job(expires_at=current_timestamp() - 5))).data
    running = (await store.create_job(fetch_job())).data
    await store.mark_job_as_running(running.id)
    await store.update_job(running.id, {"expires_at": current_timestamp() - 5})
    fresh = (await store.create_job(fetch_job())).data

    assert (await store.cleanup_completed_jobs(7)).data == 1
    assert (await store.cleanup_failed_jobs(30)).data == 1
    assert (await store.cleanup_expired_jobs()).data == 1

    remaining = {j.id for j in (await store.get_jobs_by_filter({})).data}
    assert remaining == {running.id, fresh.id}
    assert expired.id not in remaining


def flaky_sessions(monkeypatch, failures: int):
    """Make the first ``failures`` session opens in the store raise a transient database error."""
    real = store_module.get_session
    calls = []

    def get_session(*args, **kwargs):
        calls.append(1)
        if len(calls) <= failures:
            raise OperationalError("UPDATE jobs", {}, Exception("database is locked"))
        return real(*args, **kwargs)

    monkeypatch.setattr(store_module, "get_session", get_session)
    return calls


@pytest.mark.asyncio
async def test_transient_write_error_is_retried(store: JobStore, monkeypatch):
    """A locked database on the first try does not lose the claim."""
    job = (await store.create_job(fetch_job())).data
    calls = flaky_sessions(monkeypatch, failures=1)

    result = await store.mark_job_as_running(job.id)

    assert result.ok, result.error
    assert result.data.status == JobStatus.RUNNING.value
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_write_gives_up_after_retries(store: JobStore, monkeypatch):
    """Persistent write errors become a JobStoreError after a fixed pause between each try."""
    job = (await store.create_job(fetch_job())).data
    patient = JobStore(store.session_maker, write_retries=3, write_retry_delay_ms=250)
    pauses = []

    async def fake_sleep(seconds):
        pauses.append(seconds)

    monkeypatch.setattr(store_module.asyncio, "sleep", fake_sleep)
    calls = flaky_sessions(monkeypatch, failures=10)

    result = await patient.mark_job_as_running(job.id)

    assert not result.ok
    assert isinstance(result.error, JobStoreError)
    assert "after 3 attempts" in str(result.error)
    assert len(calls) == 3
    assert pauses == [0.25, 0.25]

    monkeypatch.undo()
    assert (await store.get_job(job.id)).data.status == JobStatus.PENDING.value


async def failed_summary_job(store: JobStore, reason: str, project_id: int = 1):
    job = (
        await store.create_job(
            {"type": "generate_summary", "data": {"commit_id": 1}, "project_id": project_id, "max_attempts": 2}
        )
    ).data
    await store.mark_job_as_running(job.id)
    await store.mark_job_as_failed(job.id, "Insufficient credits", {"reason": reason}, permanent=True)
    return job


@pytest.mark.asyncio
async def test_requeue_failed_jobs_by_reason(store: JobStore):
    """Only failures with the matching reason go back to pending, with a fresh attempt budget."""
    broke = await failed_summary_job(store, "insufficient_credits")
    other = await failed_summary_job(store, "summarization_failed")

    result = await store.requeue_failed_jobs("generate_summary", "insufficient_credits")

    assert result.ok, result.error
    assert [j.id for j in result.data] == [broke.id]
    assert result.count == 1
    requeued = (await store.get_job(broke.id)).data
    assert requeued.status == JobStatus.PENDING.value
    assert requeued.attempts == 0
    assert requeued.started_at is None
    assert requeued.completed_at is None
    assert requeued.retry_after is None
    assert (await store.get_job(other.id)).data.status == JobStatus.FAILED.value
    assert (await store.mark_job_as_running(broke.id)).ok


@pytest.mark.asyncio
async def test_requeue_failed_jobs_scoped_to_project(store: JobStore):
    mine = await failed_summary_job(store, "insufficient_credits", project_id=1)
    theirs = await failed_summary_job(store, "insufficient_credits", project_id=2)

    result = await store.requeue_failed_jobs("generate_summary", "insufficient_credits", project_id=2)

    assert [j.id for j in result.data] == [theirs.id]
    assert (await store.get_job(mine.id)).data.status == JobStatus.FAILED.value
    assert not (await store.requeue_failed_jobs("nope", "insufficient_credits")).ok
