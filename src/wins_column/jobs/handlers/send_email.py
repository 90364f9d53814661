import logging
from typing import List

from wins_column.entities.commits import Commit
from wins_column.entities.jobs import Job
from wins_column.exceptions import MailerError
from wins_column.jobs.handlers.base import JobHandler, exception_result, failure
from wins_column.notifications.render import render_email
from wins_column.schemas.jobs import JobResult, JobType, SendEmailPayload
from wins_column.services.interfaces import CommitStore, EmailTracker, Mailer, ProjectStore

logger = logging.getLogger(__name__)


class SendEmailHandler(JobHandler[SendEmailPayload]):
    type = JobType.SEND_EMAIL
    payload_model = SendEmailPayload

    def __init__(
        self,
        commits: CommitStore,
        projects: ProjectStore,
        mailer: Mailer,
        tracker: EmailTracker,
        from_address: str,
    ):
        self.commits = commits
        self.projects = projects
        self.mailer = mailer
        self.tracker = tracker
        self.from_address = from_address

    def validate(self, data: SendEmailPayload) -> bool:
        return bool(data.commit_ids and data.recipients)

    def get_estimated_duration(self, data: SendEmailPayload) -> int:
        return 2000 + 500 * len(data.commit_ids) + 200 * len(data.recipients)

    async def handle(self, job: Job, data: SendEmailPayload) -> JobResult:
        try:
            return await self._handle(job, data)
        except Exception as e:
            logger.error(f"send_email job {job.id} failed: {e}")
            return exception_result(job, e, {"commit_ids": data.commit_ids})

    async def _handle(self, job: Job, data: SendEmailPayload) -> JobResult:
        commits: List[Commit] = []
        for commit_id in data.commit_ids:
            result = await self.commits.get_commit(commit_id)
            if not result.ok or result.data is None:
                return failure(
                    f"Failed to retrieve commit {commit_id} for email", "commit_not_found", commit_id=commit_id
                )
            commits.append(result.data)

        without_summary = [c.id for c in commits if not c.summary]
        if without_summary:
            return failure(
                "Some commits do not have summaries generated yet",
                "missing_summaries",
                commits_without_summary=without_summary,
            )

        project_name = "Unknown Project"
        project_result = await self.projects.get_project(commits[0].project_id)
        if project_result.ok and project_result.data is not None:
            project_name = project_result.data.name

        previous = await self.tracker.find_sent_for_job(job.id)
        if previous.ok and previous.data is not None:
            logger.info(f"Email for job {job.id} already sent on attempt {previous.data.attempt}, not resending")
            send_id = previous.data.id
            subject = previous.data.subject
            already_sent = True
        else:
            subject, html = render_email(data.template_type, commits, project_name, data.template_data)
            record = await self.tracker.record_email_send(
                job_id=job.id,
                attempt=job.attempts + 1,
                template_type=data.template_type,
                recipients=data.recipients,
                commit_ids=data.commit_ids,
                subject=subject,
            )
            if not record.ok or record.data is None:
                return failure("Failed to record email send", "email_tracking_failed", detail=str(record.error))
            send_id = record.data.id
            try:
                message_id = await self.mailer.send_email(data.recipients, self.from_address, subject, html)
            except MailerError as e:
                await self.tracker.mark_email_send_status(send_id, "failed", error=e.message)
                return failure(f"Failed to send email: {e.message}", "email_send_failed", email_send_id=send_id)
            status = await self.tracker.mark_email_send_status(send_id, "sent", provider_message_id=message_id)
            if not status.ok:
                logger.warning(f"Email {send_id} sent but its status could not be recorded: {status.error}")
            already_sent = False

        failed_marks = []
        for commit in commits:
            marked = await self.commits.mark_commit_as_email_sent(commit.id)
            if not marked.ok:
                failed_marks.append(commit.id)
        if failed_marks:
            return failure(
                "Failed to mark some commits as email sent", "database_update_failed", failed_commits=failed_marks
            )

        return JobResult.ok(
            {
                "recipients": data.recipients,
                "commit_count": len(commits),
                "template_type": data.template_type,
                "subject": subject,
                "email_send_id": send_id,
                "skipped_duplicate": already_sent,
            },
            project_name=project_name,
            commit_ids=data.commit_ids,
            recipient_count=len(data.recipients),
        )
