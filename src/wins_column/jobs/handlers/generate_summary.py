import logging
import re
from typing import Any, Dict, List, Optional

from wins_column.entities.commits import Commit
from wins_column.entities.jobs import Job
from wins_column.entities.projects import Project
from wins_column.exceptions import SummarizationError
from wins_column.jobs.handlers.base import JobHandler, exception_result, failure
from wins_column.queues.store import JobStore
from wins_column.schemas.jobs import GenerateSummaryPayload, JobFilter, JobResult, JobStatus, JobType
from wins_column.services.interfaces import BillingLedger, CommitStore, ProjectStore, Summarizer

logger = logging.getLogger(__name__)

SEND_EMAIL_PRIORITY = 50
TICKET_REF_RE = re.compile(r"\b[A-Z][A-Z0-9]+-\d+\b")
GITHUB_REF_RE = re.compile(r"(?<![\w/])#\d+\b")


def extract_issue_references(*texts: Optional[str]) -> List[str]:
    """Ticket keys (``ABC-123``) and GitHub refs (``#123``) in first-seen order."""
    refs: List[str] = []
    for text in texts:
        if not text:
            continue
        for match in TICKET_REF_RE.findall(text) + GITHUB_REF_RE.findall(text):
            if match not in refs:
                refs.append(match)
    return refs


def extract_diff_content(result: Any) -> Optional[str]:
    """Read diff text from a stored fetch_diff result.

    Older rows nest the payload under ``data``; both shapes are accepted here only.
    """
    if not isinstance(result, dict):
        return None
    if result.get("diff_content"):
        return result["diff_content"]
    nested = result.get("data")
    if isinstance(nested, dict) and nested.get("diff_content"):
        return nested["diff_content"]
    return None


class GenerateSummaryHandler(JobHandler[GenerateSummaryPayload]):
    type = JobType.GENERATE_SUMMARY
    payload_model = GenerateSummaryPayload

    def __init__(
        self,
        store: JobStore,
        commits: CommitStore,
        projects: ProjectStore,
        billing: BillingLedger,
        summarizer: Summarizer,
    ):
        self.store = store
        self.commits = commits
        self.projects = projects
        self.billing = billing
        self.summarizer = summarizer

    def validate(self, data: GenerateSummaryPayload) -> bool:
        return data.commit_id > 0

    def get_estimated_duration(self, data: GenerateSummaryPayload) -> int:
        return 8000 + min(len(data.diff_content or ""), 50_000)

    async def handle(self, job: Job, data: GenerateSummaryPayload) -> JobResult:
        try:
            return await self._handle(job, data)
        except SummarizationError as e:
            return JobResult(
                success=False,
                error=e.message,
                metadata={
                    "reason": "summarization_failed",
                    "commit_id": data.commit_id,
                    "error_code": e.error_code,
                    "non_retryable": not e.retryable,
                },
            )
        except Exception as e:
            logger.error(f"generate_summary job {job.id} failed: {e}")
            return exception_result(job, e, {"commit_id": data.commit_id})

    async def _handle(self, job: Job, data: GenerateSummaryPayload) -> JobResult:
        commit_result = await self.commits.get_commit(data.commit_id)
        if not commit_result.ok or commit_result.data is None:
            return failure("Failed to retrieve commit record", "commit_not_found", commit_id=data.commit_id)
        commit = commit_result.data

        diff_content = data.diff_content or await self._diff_from_dependencies(job)
        if not diff_content:
            return failure(
                "No diff content available for summarization", "missing_diff_content", commit_id=data.commit_id
            )

        project_result = await self.projects.get_project(commit.project_id)
        if not project_result.ok or project_result.data is None:
            return failure("Failed to retrieve project information", "project_not_found", project_id=commit.project_id)
        project = project_result.data
        if not project.user_id:
            return failure(
                "Project is not linked to a user (billing required)", "project_missing_user", project_id=project.id
            )

        cost = self.billing.estimate_summary_credits(diff_content)
        if not await self.billing.has_credits(project.user_id, cost):
            return failure(
                "Insufficient credits to generate summary",
                "insufficient_credits",
                user_id=project.user_id,
                required=cost,
                non_retryable=True,
            )

        author = data.author or commit.author or "unknown"
        message = data.commit_message or commit.message or ""
        metadata: Dict[str, Any] = {
            "author": author,
            "branch": data.branch or commit.branch or "",
            "repository": project.repo_name,
        }
        pr_number = data.pr_number or commit.pr_number
        if pr_number:
            metadata["pull_request"] = f"#{pr_number} {data.pr_title or commit.pr_title or ''}".strip()
        issues = extract_issue_references(message, data.pr_title or commit.pr_title)
        if issues:
            metadata["issues"] = ", ".join(issues)
        custom_context = f"Commit by {author}" + (f": {message}" if message else "")

        summary = await self.summarizer.process_diff(diff_content, custom_context=custom_context, metadata=metadata)
        if not summary.summary:
            return failure(
                "Failed to generate commit summary - no summary returned",
                "summarization_failed",
                commit_id=data.commit_id,
            )

        update_result = await self.commits.update_commit(
            data.commit_id,
            {
                "summary": summary.summary,
                "change_type": summary.change_type,
                "summary_confidence": summary.confidence,
            },
        )
        if not update_result.ok:
            return failure(
                "Failed to save summary to commit record",
                "database_update_failed",
                commit_id=data.commit_id,
                db_error=str(update_result.error),
            )

        deduction = await self.billing.deduct_credits(
            project.user_id, cost, f"Summary for commit {commit.sha[:12]} (job {job.id})"
        )
        if not deduction.ok:
            logger.error(
                f"Summary for commit {commit.id} saved but charging {cost} credits to {project.user_id} failed: "
                f"{deduction.error}"
            )

        email_job_id = await self._enqueue_email(job, commit, project)

        return JobResult.ok(
            {
                "summary": summary.summary,
                "commit_id": data.commit_id,
                "change_type": summary.change_type,
                "confidence": summary.confidence,
                "tokens_used": summary.metadata.tokens_used,
                "email_job_id": email_job_id,
            },
            commit_id=data.commit_id,
            repository=project.repo_name,
            summary_length=len(summary.summary),
            processing_time_ms=summary.metadata.processing_time_ms,
            template_used=summary.metadata.template_used,
            credits_charged=cost if deduction.ok else 0,
        )

    async def _diff_from_dependencies(self, job: Job) -> Optional[str]:
        context = job.context or {}
        for key in ("result", "previous_job_result"):
            diff = extract_diff_content(context.get(key))
            if diff:
                return diff

        edges = await self.store.get_job_dependencies(job.id)
        if not edges.ok:
            logger.warning(f"Could not load dependencies of job {job.id}: {edges.error}")
            return None
        for edge in edges.data or []:
            upstream = await self.store.get_job(edge.depends_on_job_id)
            if not upstream.ok or upstream.data is None:
                continue
            diff = extract_diff_content((upstream.data.context or {}).get("result"))
            if diff:
                return diff
        return None

    async def _enqueue_email(self, job: Job, commit: Commit, project: Project) -> Optional[int]:
        if not project.email_recipients or commit.email_sent:
            return None
        if project.email_distribution != "per_commit":
            return None

        existing = await self.store.get_jobs_by_filter(
            JobFilter(
                type=JobType.SEND_EMAIL.value,
                commit_id=commit.id,
                status=[JobStatus.PENDING.value, JobStatus.RUNNING.value, JobStatus.COMPLETED.value],
            )
        )
        if existing.ok and existing.data:
            logger.info(f"send_email job already exists for commit {commit.id}")
            return existing.data[0].id

        created = await self.store.create_job(
            {
                "type": JobType.SEND_EMAIL.value,
                "priority": SEND_EMAIL_PRIORITY,
                "data": {
                    "commit_ids": [commit.id],
                    "recipients": project.email_recipients,
                    "template_type": "single_commit",
                },
                "commit_id": commit.id,
                "project_id": project.id,
                "context": {"triggered_by": "generate_summary", "parent_job_id": job.id},
            }
        )
        if not created.ok:
            logger.error(f"Failed to enqueue send_email for commit {commit.id}: {created.error}")
            return None
        return created.data.id
