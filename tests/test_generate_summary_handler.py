# mypy: ignore-errors

import pytest

from wins_column.exceptions import SummarizationError
from wins_column.jobs.handlers.generate_summary import (
    GenerateSummaryHandler,
    extract_diff_content,
    extract_issue_references,
)
from wins_column.queues.store import JobStore
from wins_column.schemas.jobs import GenerateSummaryPayload, JobFilter, JobType


@pytest.fixture
def handler(store, commits, projects, billing, summarizer) -> GenerateSummaryHandler:
    return GenerateSummaryHandler(store, commits, projects, billing, summarizer)


async def summary_job(store: JobStore, commit, **data):
    result = await store.create_job(
        {
            "type": "generate_summary",
            "data": {"commit_id": commit.id, **data},
            "commit_id": commit.id,
            "project_id": commit.project_id,
        }
    )
    assert result.ok, result.error
    return result.data


@pytest.mark.asyncio
async def test_summary_saved_charged_and_email_queued(
    handler, store, commits, billing, summarizer, commit, sample_diff
):
    """A summary is saved, one credit is charged and a send_email job follows."""
    job = await summary_job(store, commit, diff_content=sample_diff)

    result = await handler.handle(job, GenerateSummaryPayload.model_validate(job.data))

    assert result.success, result.error
    saved = (await commits.get_commit(commit.id)).data
    assert saved.summary == summarizer.summary
    assert saved.change_type == "bugfix"
    assert saved.summary_confidence == 0.8
    assert await billing.get_balance("user_1") == 4
    assert result.metadata["credits_charged"] == 1

    call = summarizer.calls[0]
    assert call["diff"] == sample_diff
    assert call["metadata"]["issues"] == "ACME-12, #7"
    assert call["metadata"]["repository"] == "acme/web"
    assert call["custom_context"].startswith("Commit by Dana")

    emails = (await store.get_jobs_by_filter(JobFilter(type=JobType.SEND_EMAIL.value))).data
    assert len(emails) == 1
    assert emails[0].id == result.data["email_job_id"]
    assert emails[0].priority == 50
    assert emails[0].data["commit_ids"] == [commit.id]
    assert emails[0].data["recipients"] == ["team@acme.dev"]
    assert emails[0].data["template_type"] == "single_commit"


@pytest.mark.asyncio
async def test_rerun_does_not_duplicate_email_job(handler, store, commit, sample_diff):
    """A second success for the same commit reuses the queued email job."""
    job = await summary_job(store, commit, diff_content=sample_diff)
    payload = GenerateSummaryPayload.model_validate(job.data)

    first = await handler.handle(job, payload)
    second = await handler.handle(job, payload)

    assert first.data["email_job_id"] == second.data["email_job_id"]
    assert len((await store.get_jobs_by_filter({"type": "send_email"})).data) == 1


@pytest.mark.asyncio
async def test_diff_read_from_dependency_result(handler, store, summarizer, commit, sample_diff):
    """Without a payload diff the upstream fetch_diff result is used, nested shape included."""
    fetch = (
        await store.create_job(
            {
                "type": "fetch_diff",
                "data": {"commit_sha": commit.sha, "repository_owner": "acme", "repository_name": "web"},
            }
        )
    ).data
    await store.mark_job_as_running(fetch.id)
    await store.mark_job_as_completed(fetch.id, {"data": {"diff_content": sample_diff}})
    job = await summary_job(store, commit)
    await store.add_job_dependency(job.id, fetch.id)

    result = await handler.handle(job, GenerateSummaryPayload.model_validate(job.data))

    assert result.success, result.error
    assert summarizer.calls[0]["diff"] == sample_diff


@pytest.mark.asyncio
async def test_insufficient_credits_leaves_commit_untouched(
    store, commits, projects, billing, summarizer, sample_diff
):
    """Without credits the provider is never called and nothing is written."""
    broke = (await projects.create_project(name="Broke", repo_name="broke/app", user_id="user_broke")).data
    commit = (await commits.create_commit(project_id=broke.id, sha="e" * 40, message="feat: thing")).data
    handler = GenerateSummaryHandler(store, commits, projects, billing, summarizer)
    job = await summary_job(store, commit, diff_content=sample_diff)

    result = await handler.handle(job, GenerateSummaryPayload.model_validate(job.data))

    assert not result.success
    assert result.error.startswith("Insufficient credits")
    assert result.metadata["reason"] == "insufficient_credits"
    assert result.metadata["non_retryable"] is True
    assert summarizer.calls == []
    unchanged = (await commits.get_commit(commit.id)).data
    assert unchanged.summary is None
    assert unchanged.change_type is None


@pytest.mark.asyncio
async def test_terminal_summarization_error(handler, store, commits, billing, summarizer, commit, sample_diff):
    """A truncated generation is reported as non-retryable and costs nothing."""
    summarizer.error = SummarizationError(
        "Summary generation truncated: finish_reason=length", error_code="output_token_limit", retryable=False
    )
    job = await summary_job(store, commit, diff_content=sample_diff)

    result = await handler.handle(job, GenerateSummaryPayload.model_validate(job.data))

    assert not result.success
    assert result.metadata["reason"] == "summarization_failed"
    assert result.metadata["error_code"] == "output_token_limit"
    assert result.metadata["non_retryable"] is True
    assert (await commits.get_commit(commit.id)).data.summary is None
    assert await billing.get_balance("user_1") == 5


@pytest.mark.asyncio
async def test_missing_inputs(handler, store, commit):
    """Unknown commits and missing diffs fail with their own reasons."""
    job = await summary_job(store, commit)

    no_diff = await handler.handle(job, GenerateSummaryPayload(commit_id=commit.id))
    no_commit = await handler.handle(job, GenerateSummaryPayload(commit_id=9999, diff_content="diff"))

    assert no_diff.metadata["reason"] == "missing_diff_content"
    assert no_commit.metadata["reason"] == "commit_not_found"


def test_extract_issue_references():
    """Ticket keys and GitHub refs are collected once each, in order."""
    refs = extract_issue_references("Fix ACME-12 and #7", "Follow-up to ACME-12 (#8), see foo/bar#9")

    assert refs == ["ACME-12", "#7", "#8"]


def test_extract_diff_content_shapes():
    """Both stored result shapes yield the diff."""
    assert extract_diff_content({"diff_content": "a"}) == "a"
    assert extract_diff_content({"data": {"diff_content": "b"}}) == "b"
    assert extract_diff_content({"data": "nope"}) is None
    assert extract_diff_content(None) is None
