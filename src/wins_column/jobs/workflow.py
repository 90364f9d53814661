"""Builds the fetch_diff -> generate_summary chain for a commit."""

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from wins_column.entities.commits import Commit
from wins_column.exceptions import WinsColumnError
from wins_column.queues.store import JobStore
from wins_column.results import Result
from wins_column.schemas.jobs import EMPTY_SHA, JobType

logger = logging.getLogger(__name__)

# Diffs outrank summaries.
FETCH_DIFF_PRIORITY = 70
GENERATE_SUMMARY_PRIORITY = 60


class CommitWorkflow(BaseModel):
    workflow_id: str
    commit_id: int
    jobs: List[int] = Field(default_factory=list)
    dependencies: List[Tuple[int, int]] = Field(default_factory=list)

    @property
    def fetch_diff_job_id(self) -> int:
        return self.jobs[0]

    @property
    def generate_summary_job_id(self) -> int:
        return self.jobs[1]


class WorkflowComposer:
    def __init__(self, store: JobStore):
        self.store = store

    async def create_commit_workflow(
        self,
        commit: Commit,
        repository_owner: str,
        repository_name: str,
        base_sha: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Result[CommitWorkflow]:
        """Enqueue both jobs and the edge between them.

        On a partial failure the jobs already created are deleted and the error
        carries a ``reason`` detail (``job_creation_failed`` or
        ``dependency_creation_failed``).
        """
        workflow = CommitWorkflow(workflow_id=uuid.uuid4().hex, commit_id=commit.id)
        shared_context = {**(context or {}), "workflow_id": workflow.workflow_id}
        if base_sha == EMPTY_SHA:
            base_sha = None

        fetch = await self.store.create_job(
            {
                "type": JobType.FETCH_DIFF.value,
                "priority": FETCH_DIFF_PRIORITY,
                "data": {
                    "commit_sha": commit.sha,
                    "repository_owner": repository_owner,
                    "repository_name": repository_name,
                    "branch": commit.branch,
                    "base_sha": base_sha,
                },
                "commit_id": commit.id,
                "project_id": commit.project_id,
                "context": shared_context,
            }
        )
        if not fetch.ok:
            return self._abort(workflow, "job_creation_failed", JobType.FETCH_DIFF, fetch.error)
        workflow.jobs.append(fetch.data.id)

        summary = await self.store.create_job(
            {
                "type": JobType.GENERATE_SUMMARY.value,
                "priority": GENERATE_SUMMARY_PRIORITY,
                "data": {
                    "commit_id": commit.id,
                    "commit_message": commit.message,
                    "author": commit.author,
                    "branch": commit.branch,
                    "pr_number": commit.pr_number,
                    "pr_title": commit.pr_title,
                    "pr_url": commit.pr_url,
                },
                "commit_id": commit.id,
                "project_id": commit.project_id,
                "context": shared_context,
            }
        )
        if not summary.ok:
            await self._cleanup(workflow)
            return self._abort(workflow, "job_creation_failed", JobType.GENERATE_SUMMARY, summary.error)
        workflow.jobs.append(summary.data.id)

        edge = await self.store.add_job_dependency(summary.data.id, fetch.data.id)
        if not edge.ok:
            await self._cleanup(workflow)
            return self._abort(workflow, "dependency_creation_failed", JobType.GENERATE_SUMMARY, edge.error)
        workflow.dependencies.append((summary.data.id, fetch.data.id))

        logger.info(f"Queued workflow {workflow.workflow_id} for commit {commit.id}: jobs {workflow.jobs}")
        return Result.success(workflow)

    async def _cleanup(self, workflow: CommitWorkflow) -> None:
        for job_id in workflow.jobs:
            deleted = await self.store.delete_job(job_id)
            if not deleted.ok:
                logger.error(f"Failed to remove job {job_id} of workflow {workflow.workflow_id}: {deleted.error}")

    @staticmethod
    def _abort(
        workflow: CommitWorkflow, reason: str, job_type: JobType, error: Optional[Exception]
    ) -> Result[CommitWorkflow]:
        logger.error(f"Workflow {workflow.workflow_id} for commit {workflow.commit_id} failed ({reason}): {error}")
        return Result.failure(
            WinsColumnError(
                f"Failed to create {job_type.value} job for commit {workflow.commit_id}: {error}",
                {"reason": reason, "job_type": job_type.value, "commit_id": workflow.commit_id},
            )
        )
