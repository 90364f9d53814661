import logging
from typing import Optional, Tuple, Union

from wins_column.entities.jobs import Job
from wins_column.exceptions import GitHubNotFoundError
from wins_column.jobs.handlers.base import JobHandler, exception_result, failure
from wins_column.schemas.github import CompareResult, DiffReference
from wins_column.schemas.jobs import EMPTY_SHA, FetchDiffPayload, JobResult, JobType
from wins_column.services.interfaces import (
    DiffProvider,
    DiffProviderFactory,
    InstallationTokenProvider,
    ProjectStore,
)

logger = logging.getLogger(__name__)

INVALID_REPO_NAMES = {"", "unknown"}


def synthesize_raw_diff(compare: CompareResult) -> str:
    """Build a minimal unified diff out of per-file patches."""
    parts = []
    for f in compare.files:
        parts.append(f"diff --git a/{f.filename} b/{f.filename}")
        parts.append(f"--- a/{f.filename}")
        parts.append(f"+++ b/{f.filename}")
        if f.patch:
            parts.append(f.patch)
    synthetic = "\n".join(parts)
    return synthetic if synthetic.strip() else ""


class FetchDiffHandler(JobHandler[FetchDiffPayload]):
    type = JobType.FETCH_DIFF
    payload_model = FetchDiffPayload

    def __init__(
        self,
        projects: ProjectStore,
        token_provider: InstallationTokenProvider,
        github_factory: DiffProviderFactory,
    ):
        self.projects = projects
        self.token_provider = token_provider
        self.github_factory = github_factory

    def validate(self, data: FetchDiffPayload) -> bool:
        return bool(data.commit_sha and data.repository_owner and data.repository_name)

    def get_estimated_duration(self, data: FetchDiffPayload) -> int:
        return 5000

    async def handle(self, job: Job, data: FetchDiffPayload) -> JobResult:
        try:
            return await self._handle(job, data)
        except Exception as e:
            logger.error(f"fetch_diff job {job.id} failed: {e}")
            return exception_result(job, e, {"commit_sha": data.commit_sha})

    async def _handle(self, job: Job, data: FetchDiffPayload) -> JobResult:
        if not job.project_id:
            return failure("Project ID is required for GitHub API access", "missing_project_id")

        project_result = await self.projects.get_project(job.project_id)
        if not project_result.ok or project_result.data is None:
            return failure("Failed to retrieve project information", "project_not_found", project_id=job.project_id)
        project = project_result.data

        if not project.user_id:
            return failure(
                "Project is not linked to a user (billing required)", "project_missing_user", project_id=project.id
            )
        if not project.installation_id:
            return failure(
                "Project does not have a GitHub App installation configured",
                "missing_installation_id",
                project_id=project.id,
            )

        try:
            token = await self.token_provider.get_installation_token(project.installation_id)
        except Exception as e:
            return failure(
                "Failed to create GitHub installation access token",
                "installation_token_failed",
                installation_id=project.installation_id,
                detail=str(e),
            )

        owner, repo = data.repository_owner, data.repository_name
        if owner.lower() in INVALID_REPO_NAMES or repo.lower() in INVALID_REPO_NAMES:
            return failure("Invalid repository information for diff fetching", "invalid_repo", owner=owner, repo=repo)
        if not data.commit_sha:
            return failure("Missing commit SHA for diff fetching", "missing_commit_sha")

        base = data.base_sha or (job.context or {}).get("base_sha")
        if base == EMPTY_SHA:
            base = None

        async with self.github_factory(token) as github:
            fetched: Optional[Tuple[str, CompareResult, str]] = None
            if base:
                try:
                    ref = DiffReference(owner=owner, repo=repo, base=base, head=data.commit_sha)
                    fetched = await self._fetch(github, ref)
                except GitHubNotFoundError:
                    logger.info(f"Base {base} not found for {owner}/{repo}@{data.commit_sha}, trying parents")
            if fetched is None:
                parents_result = await self._fetch_from_parents(github, owner, repo, data.commit_sha)
                if isinstance(parents_result, JobResult):
                    return parents_result
                fetched = parents_result

        effective_base, compare, raw = fetched
        if not raw:
            raw = synthesize_raw_diff(compare)
        if not raw:
            return failure(
                f"Failed to fetch diff data for {effective_base}..{data.commit_sha} - no data received",
                "empty_diff",
                commit_sha=data.commit_sha,
            )

        return JobResult.ok(
            {
                "diff_content": raw,
                "files_changed": compare.stats.total_files,
                "additions": compare.stats.additions,
                "deletions": compare.stats.deletions,
                "commit_sha": data.commit_sha,
                "base_sha": effective_base,
            },
            repository=f"{owner}/{repo}",
            commit_sha=data.commit_sha,
            files_processed=len(compare.files),
        )

    async def _fetch(self, github: DiffProvider, ref: DiffReference) -> Tuple[str, CompareResult, str]:
        compare = await github.get_diff(ref)
        raw = await github.get_diff_raw(ref)
        return ref.base, compare, raw

    async def _fetch_from_parents(
        self, github: DiffProvider, owner: str, repo: str, head: str
    ) -> Union[Tuple[str, CompareResult, str], JobResult]:
        commit = await github.get_commit(owner, repo, head)
        if not commit.parents:
            return failure(
                f"Commit {head} has no parents to diff against", "head_commit_has_no_parents", commit_sha=head
            )
        tried = []
        for parent in commit.parents:
            tried.append(parent.sha)
            try:
                return await self._fetch(github, DiffReference(owner=owner, repo=repo, base=parent.sha, head=head))
            except GitHubNotFoundError:
                logger.info(f"Parent {parent.sha} of {head} not reachable, trying next")
        return failure(
            f"No reachable base commit for {head}", "no_reachable_base_commit", commit_sha=head, parents_tried=tried
        )
