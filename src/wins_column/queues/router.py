import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from wins_column.database import to_timestamp
from wins_column.exceptions import JobNotFoundError, JobStateConflictError, JobValidationError
from wins_column.jobs.setup import JobSystem
from wins_column.schemas.jobs import DigestRequest, JobFilter, JobQueueStats, JobResponse, JobType

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1", tags=["jobs"])

DIGEST_HOUR = 9
DIGEST_COMMIT_LIMIT = 100
INSUFFICIENT_CREDITS = "insufficient_credits"


def next_digest_time(now: Optional[datetime] = None) -> int:
    """Epoch seconds of the next 09:00 UTC strictly after ``now``."""
    now = now or datetime.now(timezone.utc)
    target = now.replace(hour=DIGEST_HOUR, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return int(target.timestamp())


def _job_system(request: Request) -> JobSystem:
    return request.app.state.job_system


def _raise_for(error: Optional[Exception]) -> None:
    if isinstance(error, JobNotFoundError):
        raise HTTPException(status_code=404, detail="Job not found")
    if isinstance(error, JobStateConflictError):
        raise HTTPException(status_code=409, detail=str(error))
    if isinstance(error, JobValidationError):
        raise HTTPException(status_code=400, detail=str(error))
    raise HTTPException(status_code=500, detail=str(error))


@router.get("/jobs")
async def list_jobs(
    request: Request,
    status: Optional[str] = Query(None, description="Filter by job status"),
    type: Optional[str] = Query(None, description="Filter by job type"),
    project_id: Optional[int] = Query(None, description="Filter by project"),
    commit_id: Optional[int] = Query(None, description="Filter by commit"),
    limit: int = Query(20, ge=1, le=500, description="Max number of jobs to return"),
) -> Dict[str, Any]:
    """List jobs from the queue, newest first."""
    result = await _job_system(request).store.get_jobs_by_filter(
        JobFilter(status=status, type=type, project_id=project_id, commit_id=commit_id, limit=limit)
    )
    if not result.ok:
        _raise_for(result.error)
    jobs = result.data or []
    return {
        "object": "list",
        "data": [JobResponse.model_validate(job).model_dump() for job in jobs],
        "has_more": len(jobs) == limit,
    }


@router.get("/jobs/stats")
async def queue_stats(request: Request) -> Dict[str, Any]:
    """Queue counts plus the local processor state."""
    system = _job_system(request)
    result = await system.store.get_queue_stats()
    if not result.ok:
        _raise_for(result.error)
    stats: JobQueueStats = result.data
    return {"queue": stats.model_dump(), "processor": system.processor.get_stats().model_dump()}


@router.post("/jobs/retry-insufficient")
async def retry_insufficient_credit_jobs(
    request: Request,
    project_id: Optional[int] = Query(None, description="Only requeue jobs of this project"),
) -> Dict[str, Any]:
    """Requeue summaries that failed for lack of credits, typically after a top-up."""
    result = await _job_system(request).store.requeue_failed_jobs(
        JobType.GENERATE_SUMMARY, INSUFFICIENT_CREDITS, project_id=project_id
    )
    if not result.ok:
        _raise_for(result.error)
    jobs = result.data or []
    logger.info(f"Requeued {len(jobs)} insufficient-credit jobs via API")
    return {"retried": len(jobs), "job_ids": [job.id for job in jobs]}


@router.get("/jobs/{job_id}")
async def get_job(request: Request, job_id: int) -> JobResponse:
    result = await _job_system(request).store.get_job(job_id)
    if not result.ok:
        _raise_for(result.error)
    return JobResponse.model_validate(result.data)


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(request: Request, job_id: int) -> JobResponse:
    result = await _job_system(request).store.cancel_job(job_id)
    if not result.ok:
        _raise_for(result.error)
    logger.info(f"Job {job_id} cancelled via API")
    return JobResponse.model_validate(result.data)


@router.post("/commits/{commit_id}/workflow", status_code=201)
async def queue_commit_workflow(request: Request, commit_id: int) -> Dict[str, Any]:
    """Queue fetch_diff and generate_summary for an existing commit."""
    system = _job_system(request)
    commit_result = await system.commits.get_commit(commit_id)
    if not commit_result.ok or commit_result.data is None:
        raise HTTPException(status_code=404, detail="Commit not found")
    commit = commit_result.data

    project_result = await system.projects.get_project(commit.project_id)
    if not project_result.ok or project_result.data is None:
        raise HTTPException(status_code=404, detail="Project not found")
    owner, _, name = project_result.data.repo_name.partition("/")
    if not owner or not name:
        raise HTTPException(status_code=400, detail=f"Invalid repository name: {project_result.data.repo_name}")

    workflow = await system.composer.create_commit_workflow(
        commit,
        repository_owner=owner,
        repository_name=name,
        base_sha=commit.base_sha,
        context={"triggered_by": "api"},
    )
    if not workflow.ok:
        raise HTTPException(status_code=500, detail=str(workflow.error))
    return workflow.data.model_dump()


@router.post("/projects/{project_id}/digest")
async def queue_project_digest(request: Request, project_id: int, body: Optional[DigestRequest] = None) -> JSONResponse:
    """Schedule one digest email covering the project's summarized, not yet emailed commits."""
    system = _job_system(request)
    body = body or DigestRequest()
    project_result = await system.projects.get_project(project_id)
    if not project_result.ok or project_result.data is None:
        raise HTTPException(status_code=404, detail="Project not found")
    project = project_result.data

    recipients = body.recipients or list(project.email_recipients or [])
    if not recipients:
        raise HTTPException(status_code=400, detail="No recipients configured for digest")

    commits_result = await system.commits.get_commits_for_email(project_id, DIGEST_COMMIT_LIMIT)
    if not commits_result.ok:
        raise HTTPException(status_code=500, detail=str(commits_result.error))
    commits = commits_result.data or []
    if not commits:
        return JSONResponse(status_code=200, content={"message": "No commits eligible for digest"})

    try:
        scheduled_for = to_timestamp(body.when) if body.when is not None else next_digest_time()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    job_result = await system.store.create_job(
        {
            "type": JobType.SEND_EMAIL.value,
            "data": {
                "commit_ids": [commit.id for commit in commits],
                "recipients": recipients,
                "template_type": "digest",
                "template_data": {"commit_count": len(commits)},
            },
            "project_id": project_id,
            "priority": 10,
            "max_attempts": 1,
            "scheduled_for": scheduled_for,
        }
    )
    if not job_result.ok:
        _raise_for(job_result.error)
    logger.info(f"Digest job {job_result.data.id} for project {project_id} scheduled at {scheduled_for}")
    return JSONResponse(
        status_code=201,
        content={
            "message": "Digest email job created",
            "job_id": job_result.data.id,
            "scheduled_for": scheduled_for,
        },
    )
