# mypy: ignore-errors

import pytest

from wins_column.exceptions import MailerError
from wins_column.jobs.handlers.send_email import SendEmailHandler
from wins_column.schemas.jobs import SendEmailPayload


@pytest.fixture
def handler(commits, projects, mailer, email_tracking) -> SendEmailHandler:
    return SendEmailHandler(commits, projects, mailer, email_tracking, "wins@example.com")


async def email_job(store, commit):
    data = {"commit_ids": [commit.id], "recipients": ["team@acme.dev"], "template_type": "single_commit"}
    result = await store.create_job({"type": "send_email", "data": data, "commit_id": commit.id})
    assert result.ok, result.error
    return result.data, SendEmailPayload.model_validate(data)


async def summarized(commits, commit):
    result = await commits.update_commit(
        commit.id, {"summary": "Anonymous users can log in again.", "change_type": "bugfix"}
    )
    return result.data


@pytest.mark.asyncio
async def test_requires_summaries(handler, store, mailer, commit):
    """Nothing is sent while a commit still lacks its summary."""
    job, payload = await email_job(store, commit)

    result = await handler.handle(job, payload)

    assert not result.success
    assert result.metadata["reason"] == "missing_summaries"
    assert result.metadata["commits_without_summary"] == [commit.id]
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_sends_and_records(handler, store, commits, mailer, email_tracking, commit):
    """A successful send is tracked and the commit is flagged as emailed."""
    await summarized(commits, commit)
    job, payload = await email_job(store, commit)

    result = await handler.handle(job, payload)

    assert result.success, result.error
    assert result.data["subject"] == "There's a Bugfix in Acme Web"
    assert result.data["skipped_duplicate"] is False
    assert len(mailer.sent) == 1
    assert mailer.sent[0]["to"] == ["team@acme.dev"]
    assert mailer.sent[0]["from"] == "wins@example.com"
    assert "Anonymous users can log in again." in mailer.sent[0]["html"]

    record = (await email_tracking.find_sent_for_job(job.id)).data
    assert record.status == "sent"
    assert record.provider_message_id == "msg_1"
    assert record.attempt == 1
    assert (await commits.get_commit(commit.id)).data.email_sent is True


@pytest.mark.asyncio
async def test_previous_send_is_not_repeated(handler, store, commits, mailer, commit):
    """A retry after a recorded send only finishes the bookkeeping."""
    await summarized(commits, commit)
    job, payload = await email_job(store, commit)
    await handler.handle(job, payload)

    again = await handler.handle(job, payload)

    assert again.success
    assert again.data["skipped_duplicate"] is True
    assert len(mailer.sent) == 1


@pytest.mark.asyncio
async def test_mailer_failure_is_tracked(handler, store, commits, mailer, email_tracking, commit):
    """A provider error fails the attempt and leaves the commit unflagged."""
    await summarized(commits, commit)
    mailer.error = MailerError("Resend API error: 500")
    job, payload = await email_job(store, commit)

    result = await handler.handle(job, payload)

    assert not result.success
    assert result.metadata["reason"] == "email_send_failed"
    assert (await email_tracking.find_sent_for_job(job.id)).data is None
    assert (await commits.get_commit(commit.id)).data.email_sent is False


@pytest.mark.asyncio
async def test_unknown_commit(handler, store, commit):
    job, _ = await email_job(store, commit)

    result = await handler.handle(job, SendEmailPayload(commit_ids=[9999], recipients=["a@b.io"]))

    assert result.metadata["reason"] == "commit_not_found"


def test_validate_requires_recipients_and_commits(handler):
    """Payload validation rejects malformed addresses."""
    with pytest.raises(ValueError):
        SendEmailPayload(commit_ids=[1], recipients=["not an address"])
    assert handler.validate(SendEmailPayload(commit_ids=[1], recipients=["a@b.io"]))
