import logging
from typing import List, Optional

from pydantic import ValidationError

from wins_column.entities.commits import Commit
from wins_column.entities.jobs import Job
from wins_column.exceptions import CommitAlreadyExistsError
from wins_column.jobs.handlers.base import JobHandler, exception_result, failure
from wins_column.jobs.workflow import WorkflowComposer
from wins_column.schemas.github import PushEvent
from wins_column.schemas.jobs import EMPTY_SHA, JobFilter, JobResult, JobType, WebhookProcessingPayload
from wins_column.services.interfaces import CommitStore, ProjectStore

logger = logging.getLogger(__name__)


class WebhookProcessingHandler(JobHandler[WebhookProcessingPayload]):
    type = JobType.WEBHOOK_PROCESSING
    payload_model = WebhookProcessingPayload

    def __init__(self, composer: WorkflowComposer, commits: CommitStore, projects: ProjectStore):
        self.composer = composer
        self.commits = commits
        self.projects = projects

    def validate(self, data: WebhookProcessingPayload) -> bool:
        return bool(data.webhook_event.strip() and data.signature.strip() and data.delivery_id.strip())

    def get_estimated_duration(self, data: WebhookProcessingPayload) -> int:
        return 3000 + 2000 * len(data.payload.get("commits") or [])

    async def handle(self, job: Job, data: WebhookProcessingPayload) -> JobResult:
        try:
            return await self._handle(job, data)
        except Exception as e:
            logger.error(f"webhook_processing job {job.id} failed: {e}")
            return exception_result(job, e, {"delivery_id": data.delivery_id})

    async def _handle(self, job: Job, data: WebhookProcessingPayload) -> JobResult:
        if data.webhook_event != "push":
            return JobResult.ok(
                {"event": data.webhook_event, "action": "ignored", "reason": "not_a_push_event"},
                delivery_id=data.delivery_id,
            )

        try:
            push = PushEvent.model_validate(data.payload)
        except ValidationError as e:
            return failure(
                "Malformed push payload",
                "invalid_payload",
                delivery_id=data.delivery_id,
                non_retryable=True,
                detail=str(e),
            )

        repository = push.repository.full_name
        project_result = await self.projects.get_project_by_repository(repository)
        if not project_result.ok or project_result.data is None:
            return failure(
                f"No project found for repository: {repository}. Please configure the project first.",
                "project_not_found",
                repository=repository,
            )
        project = project_result.data

        created_commits: List[int] = []
        created_jobs: List[int] = []
        skipped: List[str] = []
        previous_sha: Optional[str] = push.before if push.before and push.before != EMPTY_SHA else None

        for pushed in push.commits:
            base_sha, previous_sha = previous_sha, pushed.id
            created = await self.commits.create_commit(
                project_id=project.id,
                sha=pushed.id,
                message=pushed.message,
                author=pushed.author.name or pushed.author.email,
                author_email=pushed.author.email,
                branch=push.branch,
                url=pushed.url,
                base_sha=base_sha,
                committed_at=pushed.timestamp,
            )
            if created.ok:
                commit = created.data
            elif isinstance(created.error, CommitAlreadyExistsError):
                commit = await self._orphaned_commit(project.id, pushed.id)
                if commit is None:
                    skipped.append(pushed.id)
                    continue
            else:
                return failure(
                    f"Failed to create commit record: {created.error}",
                    "commit_creation_failed",
                    commit_sha=pushed.id,
                    db_error=str(created.error),
                )
            created_commits.append(commit.id)

            workflow = await self.composer.create_commit_workflow(
                commit,
                repository_owner=push.repository.owner_login,
                repository_name=push.repository.repo_name,
                base_sha=base_sha,
                context={"webhook_delivery_id": data.delivery_id, "triggered_by": "webhook"},
            )
            if not workflow.ok:
                details = getattr(workflow.error, "details", {}) or {}
                return failure(
                    str(workflow.error),
                    details.get("reason", "job_creation_failed"),
                    commit_id=commit.id,
                    job_type=details.get("job_type"),
                )
            created_jobs.extend(workflow.data.jobs)

        logger.info(
            f"Push {data.delivery_id} to {repository}: {len(created_commits)} commits queued, {len(skipped)} skipped"
        )
        return JobResult.ok(
            {
                "event": data.webhook_event,
                "repository": repository,
                "commits_processed": len(created_commits),
                "jobs_created": len(created_jobs),
                "commit_ids": created_commits,
                "job_ids": created_jobs,
                "skipped_commits": skipped,
            },
            project_id=project.id,
            project_name=project.name,
            delivery_id=data.delivery_id,
            branch_ref=push.ref or "unknown",
        )

    async def _orphaned_commit(self, project_id: int, sha: str) -> Optional[Commit]:
        """An existing commit that never got its jobs, e.g. when an earlier attempt died midway."""
        found = await self.commits.get_commit_by_sha(project_id, sha)
        if not found.ok or found.data is None:
            return None
        jobs = await self.composer.store.get_jobs_by_filter(
            JobFilter(commit_id=found.data.id, type=JobType.FETCH_DIFF.value, limit=1)
        )
        if not jobs.ok or jobs.data:
            return None
        logger.info(f"Commit {sha} exists without jobs, queueing its workflow")
        return found.data
