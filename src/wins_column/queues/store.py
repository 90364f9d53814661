import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from pydantic import ValidationError
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from wins_column.database import current_timestamp, get_session, to_timestamp
from wins_column.entities.jobs import Job, JobDependency
from wins_column.exceptions import (
    JobDependencyError,
    JobNotFoundError,
    JobStateConflictError,
    JobStoreError,
    JobValidationError,
    WinsColumnError,
)
from wins_column.results import Result
from wins_column.schemas.jobs import (
    DEFAULT_MAX_ATTEMPTS,
    TERMINAL_STATUSES,
    CreateJobData,
    JobFilter,
    JobQueueStats,
    JobStatus,
    JobType,
    UpdateJobData,
    parse_job_payload,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DATE_FIELDS = ("started_at", "completed_at", "retry_after", "scheduled_for", "expires_at")
SECONDS_PER_DAY = 86_400


def _check_range(name: str, value: Any, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise JobValidationError(f"{name} must be an integer between {low} and {high}, got {value!r}")
    return value


def _parse_date(name: str, value: Any) -> Optional[int]:
    try:
        return to_timestamp(value)
    except ValueError as e:
        raise JobValidationError(f"Malformed date for {name}: {value!r}") from e


def _ms_to_seconds(delay_ms: int) -> int:
    return math.ceil(max(delay_ms, 0) / 1000)


class JobStore:
    """Durable job table plus dependency edges.

    Every public method returns a :class:`Result`; errors are wrapped, never raised.
    Writes that move a job through its lifecycle are retried on transient
    database errors before the failure is reported.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        default_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        write_retries: int = 3,
        write_retry_delay_ms: int = 200,
        retry_delay_ms: int = 1000,
        max_retry_delay_ms: int = 300_000,
    ) -> None:
        self.session_maker = session_maker
        self.default_max_attempts = default_max_attempts
        self.write_retries = write_retries
        self.write_retry_delay_ms = write_retry_delay_ms
        self.retry_delay_ms = retry_delay_ms
        self.max_retry_delay_ms = max_retry_delay_ms

    # Internal helpers

    async def _with_write_retries(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` up to ``write_retries`` times, sleeping ``write_retry_delay_ms`` between tries.

        Integrity errors are not transient and propagate on the first occurrence.
        """
        last_error: Optional[Exception] = None
        for attempt in range(self.write_retries):
            try:
                return await fn()
            except IntegrityError:
                raise
            except SQLAlchemyError as e:
                last_error = e
                logger.warning(f"{operation} failed (attempt {attempt + 1}/{self.write_retries}): {e}")
                if attempt < self.write_retries - 1:
                    await asyncio.sleep(self.write_retry_delay_ms / 1000)
        raise JobStoreError(f"{operation} failed after {self.write_retries} attempts: {last_error}") from last_error

    async def _run(self, operation: str, fn: Callable[[], Awaitable[Result[T]]]) -> Result[T]:
        try:
            return await fn()
        except WinsColumnError as e:
            return Result.failure(e)
        except IntegrityError as e:
            logger.error(f"{operation} violated a constraint: {e}")
            return Result.failure(JobValidationError(f"{operation} violated a constraint", {"error": str(e)}))
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed: {e}")
            return Result.failure(JobStoreError(f"{operation} failed: {e}"))

    async def _transition(
        self,
        job_id: int,
        expected: List[str],
        values_for: Callable[[Job, int], Dict[str, Any]],
        operation: str,
    ) -> Job:
        """Apply ``values_for(job, now)`` only if the job is still in one of ``expected``."""

        async def attempt() -> Job:
            async with get_session(self.session_maker) as session:
                job = await session.get(Job, job_id)
                if job is None:
                    raise JobNotFoundError(f"Job {job_id} not found")
                if job.status not in expected:
                    raise JobStateConflictError(
                        f"Cannot {operation} job {job_id} in status {job.status}",
                        {"status": job.status, "expected": expected},
                    )
                now = current_timestamp()
                values = values_for(job, now)
                values["updated_at"] = now
                stmt = (
                    update(Job)
                    .where(Job.id == job_id, Job.status == job.status, Job.attempts == job.attempts)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    raise JobStateConflictError(f"Job {job_id} changed while trying to {operation}")
                await session.refresh(job)
                return job

        return await self._with_write_retries(f"{operation} job {job_id}", attempt)

    def _retry_delay_ms(self, attempts: int) -> int:
        return min(self.retry_delay_ms * (2**attempts), self.max_retry_delay_ms)

    # CRUD

    async def create_job(self, job_data: Union[CreateJobData, Dict[str, Any]]) -> Result[Job]:
        async def run() -> Result[Job]:
            data = self._validate_create(job_data)
            now = current_timestamp()
            job = Job(
                type=data.type,
                status=JobStatus.PENDING.value,
                priority=data.priority,
                data=data.data or {},
                context=data.context or {},
                commit_id=data.commit_id,
                project_id=data.project_id,
                attempts=0,
                max_attempts=data.max_attempts,
                scheduled_for=_parse_date("scheduled_for", data.scheduled_for) or now,
                expires_at=_parse_date("expires_at", data.expires_at),
                created_at=now,
                updated_at=now,
            )

            async def insert() -> Job:
                async with get_session(self.session_maker) as session:
                    session.add(job)
                    await session.flush()
                    await session.refresh(job)
                    return job

            created = await self._with_write_retries("create job", insert)
            logger.info(f"Job {created.id} of type {created.type} queued (priority {created.priority})")
            return Result.success(created)

        return await self._run("create job", run)

    def _validate_create(self, job_data: Union[CreateJobData, Dict[str, Any]]) -> CreateJobData:
        if isinstance(job_data, dict):
            try:
                job_data = CreateJobData.model_validate(job_data)
            except ValidationError as e:
                raise JobValidationError("Invalid job data", {"errors": e.errors()}) from e
        try:
            job_type = JobType(job_data.type)
        except ValueError as e:
            raise JobValidationError(f"Invalid job type: {job_data.type}") from e
        if job_data.data is None:
            raise JobValidationError("Job data is required")
        parse_job_payload(job_type, job_data.data)
        max_attempts = job_data.max_attempts if job_data.max_attempts is not None else self.default_max_attempts
        return job_data.model_copy(
            update={
                "type": job_type.value,
                "priority": _check_range("priority", job_data.priority, 0, 100),
                "max_attempts": _check_range("max_attempts", max_attempts, 1, 10),
            }
        )

    async def get_job(self, job_id: int) -> Result[Job]:
        async def run() -> Result[Job]:
            async with get_session(self.session_maker, read_only=True) as session:
                job = await session.get(Job, job_id)
            if job is None:
                return Result.failure(JobNotFoundError(f"Job {job_id} not found"))
            return Result.success(job)

        return await self._run(f"get job {job_id}", run)

    async def update_job(self, job_id: int, updates: Union[UpdateJobData, Dict[str, Any]]) -> Result[Job]:
        async def run() -> Result[Job]:
            values = self._validate_update(updates)

            async def write() -> Job:
                async with get_session(self.session_maker) as session:
                    job = await session.get(Job, job_id)
                    if job is None:
                        raise JobNotFoundError(f"Job {job_id} not found")
                    now = current_timestamp()
                    for key, value in values.items():
                        setattr(job, key, value)
                    status = values.get("status")
                    if status == JobStatus.RUNNING.value and values.get("started_at") is None:
                        job.started_at = job.started_at or now
                    elif status == JobStatus.PENDING.value:
                        job.started_at = None
                        job.completed_at = None
                    elif status in TERMINAL_STATUSES and values.get("completed_at") is None:
                        job.completed_at = job.completed_at or now
                    job.updated_at = now
                    if job.attempts > job.max_attempts:
                        raise JobValidationError("attempts cannot exceed max_attempts")
                    await session.flush()
                    await session.refresh(job)
                    return job

            return Result.success(await self._with_write_retries(f"update job {job_id}", write))

        return await self._run(f"update job {job_id}", run)

    def _validate_update(self, updates: Union[UpdateJobData, Dict[str, Any]]) -> Dict[str, Any]:
        if isinstance(updates, dict):
            try:
                updates = UpdateJobData.model_validate(updates)
            except ValidationError as e:
                raise JobValidationError("Invalid job update", {"errors": e.errors()}) from e
        values = updates.model_dump(exclude_unset=True)
        if "status" in values:
            try:
                values["status"] = JobStatus(values["status"]).value
            except ValueError as e:
                raise JobValidationError(f"Invalid job status: {values['status']}") from e
        if values.get("priority") is not None:
            _check_range("priority", values["priority"], 0, 100)
        if values.get("max_attempts") is not None:
            _check_range("max_attempts", values["max_attempts"], 1, 10)
        if values.get("attempts") is not None:
            _check_range("attempts", values["attempts"], 0, 10)
        for name in DATE_FIELDS:
            if name in values:
                values[name] = _parse_date(name, values[name])
        return values

    async def delete_job(self, job_id: int) -> Result[Job]:
        async def run() -> Result[Job]:
            async def write() -> Job:
                async with get_session(self.session_maker) as session:
                    job = await session.get(Job, job_id)
                    if job is None:
                        raise JobNotFoundError(f"Job {job_id} not found")
                    await session.execute(
                        delete(JobDependency).where(
                            or_(JobDependency.job_id == job_id, JobDependency.depends_on_job_id == job_id)
                        )
                    )
                    await session.delete(job)
                    return job

            return Result.success(await self._with_write_retries(f"delete job {job_id}", write))

        return await self._run(f"delete job {job_id}", run)

    # Queue queries

    async def get_ready_jobs(self, limit: int = 10) -> Result[List[Job]]:
        """Pending, due, unexpired jobs whose dependencies have all completed.

        Computed in a single statement, highest priority first, then oldest schedule.
        """

        async def run() -> Result[List[Job]]:
            now = current_timestamp()
            dependency = aliased(Job)
            unmet = (
                select(JobDependency.id)
                .join(dependency, dependency.id == JobDependency.depends_on_job_id)
                .where(JobDependency.job_id == Job.id, dependency.status != JobStatus.COMPLETED.value)
            )
            query = (
                select(Job)
                .where(
                    Job.status == JobStatus.PENDING.value,
                    Job.scheduled_for <= now,
                    or_(Job.retry_after.is_(None), Job.retry_after <= now),
                    or_(Job.expires_at.is_(None), Job.expires_at > now),
                    ~unmet.exists(),
                )
                .order_by(Job.priority.desc(), Job.scheduled_for.asc(), Job.id.asc())
                .limit(limit)
            )
            async with get_session(self.session_maker, read_only=True) as session:
                result = await session.execute(query)
                jobs = list(result.scalars().all())
            return Result.success(jobs, count=len(jobs))

        return await self._run("get ready jobs", run)

    async def get_jobs_by_filter(self, job_filter: Union[JobFilter, Dict[str, Any]]) -> Result[List[Job]]:
        async def run() -> Result[List[Job]]:
            f = self._validate_filter(job_filter)
            query = select(Job)
            if f.status:
                statuses = f.status if isinstance(f.status, list) else [f.status]
                query = query.where(Job.status.in_(statuses))
            if f.type:
                types = f.type if isinstance(f.type, list) else [f.type]
                query = query.where(Job.type.in_(types))
            if f.project_id is not None:
                query = query.where(Job.project_id == f.project_id)
            if f.commit_id is not None:
                query = query.where(Job.commit_id == f.commit_id)
            if f.priority_min is not None:
                query = query.where(Job.priority >= f.priority_min)
            if f.priority_max is not None:
                query = query.where(Job.priority <= f.priority_max)
            if f.scheduled_after is not None:
                query = query.where(Job.scheduled_for >= _parse_date("scheduled_after", f.scheduled_after))
            if f.scheduled_before is not None:
                query = query.where(Job.scheduled_for <= _parse_date("scheduled_before", f.scheduled_before))
            if f.created_after is not None:
                query = query.where(Job.created_at >= _parse_date("created_after", f.created_after))
            if f.created_before is not None:
                query = query.where(Job.created_at <= _parse_date("created_before", f.created_before))
            query = query.order_by(Job.created_at.desc(), Job.id.desc())
            if f.limit:
                query = query.limit(f.limit)
            async with get_session(self.session_maker, read_only=True) as session:
                result = await session.execute(query)
                jobs = list(result.scalars().all())
            return Result.success(jobs, count=len(jobs))

        return await self._run("filter jobs", run)

    @staticmethod
    def _validate_filter(job_filter: Union[JobFilter, Dict[str, Any]]) -> JobFilter:
        if isinstance(job_filter, JobFilter):
            return job_filter
        try:
            return JobFilter.model_validate(job_filter)
        except ValidationError as e:
            raise JobValidationError("Invalid job filter", {"errors": e.errors()}) from e

    async def get_queue_stats(self) -> Result[JobQueueStats]:
        async def run() -> Result[JobQueueStats]:
            async with get_session(self.session_maker, read_only=True) as session:
                counts = await session.execute(select(Job.status, func.count()).group_by(Job.status))
                by_status = {status: count for status, count in counts.all()}
                avg_seconds = await session.scalar(
                    select(func.avg(Job.completed_at - Job.started_at)).where(
                        Job.status == JobStatus.COMPLETED.value,
                        Job.started_at.is_not(None),
                        Job.completed_at.is_not(None),
                    )
                )
                oldest_pending = await session.scalar(
                    select(func.min(Job.scheduled_for)).where(Job.status == JobStatus.PENDING.value)
                )
            stats = JobQueueStats(
                total_jobs=sum(by_status.values()),
                pending_jobs=by_status.get(JobStatus.PENDING.value, 0),
                running_jobs=by_status.get(JobStatus.RUNNING.value, 0),
                completed_jobs=by_status.get(JobStatus.COMPLETED.value, 0),
                failed_jobs=by_status.get(JobStatus.FAILED.value, 0),
                cancelled_jobs=by_status.get(JobStatus.CANCELLED.value, 0),
                avg_processing_time_ms=float(avg_seconds) * 1000 if avg_seconds is not None else None,
                oldest_pending_job=oldest_pending,
            )
            return Result.success(stats)

        return await self._run("get queue stats", run)

    # Dependencies

    async def add_job_dependency(self, job_id: int, depends_on_job_id: int) -> Result[JobDependency]:
        async def run() -> Result[JobDependency]:
            if job_id == depends_on_job_id:
                raise JobDependencyError(f"Job {job_id} cannot depend on itself")

            depends_on = depends_on_job_id

            async def write() -> JobDependency:
                async with get_session(self.session_maker) as session:
                    for endpoint in (job_id, depends_on_job_id):
                        if await session.get(Job, endpoint) is None:
                            raise JobDependencyError(f"Job {endpoint} does not exist")
                    existing = await session.execute(
                        select(JobDependency).where(
                            or_(
                                and_(JobDependency.job_id == job_id, JobDependency.depends_on_job_id == depends_on),
                                and_(JobDependency.job_id == depends_on, JobDependency.depends_on_job_id == job_id),
                            )
                        )
                    )
                    for edge in existing.scalars().all():
                        if edge.job_id == job_id:
                            raise JobDependencyError(f"Job {job_id} already depends on job {depends_on_job_id}")
                        raise JobDependencyError(f"Job {depends_on_job_id} already depends on job {job_id}")
                    edge = JobDependency(
                        job_id=job_id, depends_on_job_id=depends_on_job_id, created_at=current_timestamp()
                    )
                    session.add(edge)
                    await session.flush()
                    await session.refresh(edge)
                    return edge

            edge = await self._with_write_retries("add job dependency", write)
            logger.debug(f"Job {job_id} now depends on job {depends_on_job_id}")
            return Result.success(edge)

        return await self._run("add job dependency", run)

    async def remove_job_dependency(self, job_id: int, depends_on_job_id: int) -> Result[JobDependency]:
        async def run() -> Result[JobDependency]:
            async def write() -> JobDependency:
                async with get_session(self.session_maker) as session:
                    result = await session.execute(
                        select(JobDependency).where(
                            JobDependency.job_id == job_id, JobDependency.depends_on_job_id == depends_on_job_id
                        )
                    )
                    edge = result.scalars().first()
                    if edge is None:
                        raise JobDependencyError(f"Job {job_id} does not depend on job {depends_on_job_id}")
                    await session.delete(edge)
                    return edge

            return Result.success(await self._with_write_retries("remove job dependency", write))

        return await self._run("remove job dependency", run)

    async def get_job_dependencies(self, job_id: int) -> Result[List[JobDependency]]:
        async def run() -> Result[List[JobDependency]]:
            async with get_session(self.session_maker, read_only=True) as session:
                result = await session.execute(
                    select(JobDependency).where(JobDependency.job_id == job_id).order_by(JobDependency.id)
                )
                edges = list(result.scalars().all())
            return Result.success(edges, count=len(edges))

        return await self._run("get job dependencies", run)

    # Lifecycle

    async def mark_job_as_running(self, job_id: int) -> Result[Job]:
        """Claim a pending job. Fails with JobStateConflictError if someone else got it first."""

        def values(job: Job, now: int) -> Dict[str, Any]:
            return {"status": JobStatus.RUNNING.value, "started_at": now, "completed_at": None}

        async def run() -> Result[Job]:
            return Result.success(await self._transition(job_id, [JobStatus.PENDING.value], values, "start"))

        return await self._run(f"mark job {job_id} running", run)

    async def mark_job_as_completed(self, job_id: int, result: Optional[Any] = None) -> Result[Job]:
        def values(job: Job, now: int) -> Dict[str, Any]:
            context = dict(job.context or {})
            if result is not None:
                context["result"] = result
            return {
                "status": JobStatus.COMPLETED.value,
                "completed_at": now,
                "context": context,
                "retry_after": None,
                "error_message": None,
                "error_details": None,
            }

        async def run() -> Result[Job]:
            job = await self._transition(job_id, [JobStatus.RUNNING.value], values, "complete")
            logger.info(f"Job {job_id} completed")
            return Result.success(job)

        return await self._run(f"mark job {job_id} completed", run)

    async def mark_job_as_failed(
        self,
        job_id: int,
        error_message: str,
        error_details: Optional[Dict[str, Any]] = None,
        permanent: bool = False,
    ) -> Result[Job]:
        """Record a failed attempt.

        The job returns to ``pending`` with an exponential ``retry_after`` while
        attempts remain, otherwise (or when ``permanent``) it becomes ``failed``.
        """

        def values(job: Job, now: int) -> Dict[str, Any]:
            attempts = min(job.attempts + 1, job.max_attempts)
            base = {"attempts": attempts, "error_message": error_message, "error_details": error_details}
            if permanent or attempts >= job.max_attempts:
                return {**base, "status": JobStatus.FAILED.value, "completed_at": now, "retry_after": None}
            delay = _ms_to_seconds(self._retry_delay_ms(job.attempts))
            return {**base, "status": JobStatus.PENDING.value, "started_at": None, "retry_after": now + delay}

        async def run() -> Result[Job]:
            job = await self._transition(job_id, [JobStatus.RUNNING.value], values, "fail")
            if job.status == JobStatus.FAILED.value:
                logger.warning(f"Job {job_id} failed permanently after {job.attempts} attempts: {error_message}")
            else:
                logger.info(f"Job {job_id} will retry at {job.retry_after} (attempt {job.attempts}): {error_message}")
            return Result.success(job)

        return await self._run(f"mark job {job_id} failed", run)

    async def schedule_retry(
        self,
        job_id: int,
        retry_after: Any,
        error_message: Optional[str] = None,
        error_details: Optional[Dict[str, Any]] = None,
    ) -> Result[Job]:
        """Put a running job back to ``pending`` until ``retry_after``, counting the attempt."""

        async def run() -> Result[Job]:
            retry_at = _parse_date("retry_after", retry_after)

            def values(job: Job, now: int) -> Dict[str, Any]:
                if job.attempts + 1 >= job.max_attempts:
                    raise JobStateConflictError(f"Job {job_id} has no attempts left to retry")
                return {
                    "status": JobStatus.PENDING.value,
                    "attempts": job.attempts + 1,
                    "started_at": None,
                    "retry_after": retry_at,
                    "error_message": error_message,
                    "error_details": error_details,
                }

            job = await self._transition(job_id, [JobStatus.RUNNING.value], values, "retry")
            logger.info(f"Job {job_id} scheduled for retry at {retry_at} (attempt {job.attempts})")
            return Result.success(job)

        return await self._run(f"schedule retry for job {job_id}", run)

    async def cancel_job(self, job_id: int) -> Result[Job]:
        def values(job: Job, now: int) -> Dict[str, Any]:
            return {"status": JobStatus.CANCELLED.value, "completed_at": now, "retry_after": None}

        async def run() -> Result[Job]:
            job = await self._transition(
                job_id, [JobStatus.PENDING.value, JobStatus.RUNNING.value], values, "cancel"
            )
            logger.info(f"Job {job_id} cancelled")
            return Result.success(job)

        return await self._run(f"cancel job {job_id}", run)

    async def requeue_failed_jobs(
        self, job_type: Union[str, JobType], reason: str, project_id: Optional[int] = None
    ) -> Result[List[Job]]:
        """Move failed jobs whose ``error_details.reason`` matches back to ``pending``.

        Requeued jobs start over with a fresh attempt budget.
        """

        def values(job: Job, now: int) -> Dict[str, Any]:
            return {
                "status": JobStatus.PENDING.value,
                "attempts": 0,
                "started_at": None,
                "completed_at": None,
                "retry_after": None,
            }

        async def run() -> Result[List[Job]]:
            try:
                type_value = JobType(job_type).value
            except ValueError as e:
                raise JobValidationError(f"Invalid job type: {job_type}") from e
            query = select(Job).where(Job.type == type_value, Job.status == JobStatus.FAILED.value)
            if project_id is not None:
                query = query.where(Job.project_id == project_id)
            async with get_session(self.session_maker, read_only=True) as session:
                failed = list((await session.execute(query.order_by(Job.id))).scalars().all())

            requeued: List[Job] = []
            for job in failed:
                if (job.error_details or {}).get("reason") != reason:
                    continue
                try:
                    requeued.append(await self._transition(job.id, [JobStatus.FAILED.value], values, "requeue"))
                except JobStateConflictError as e:
                    logger.info(f"Skipping requeue of job {job.id}: {e}")
            if requeued:
                logger.info(f"Requeued {len(requeued)} failed {type_value} jobs ({reason})")
            return Result.success(requeued, count=len(requeued))

        return await self._run(f"requeue failed jobs ({reason})", run)

    # Maintenance

    async def get_stale_running_jobs(self, timeout_ms: int) -> Result[List[Job]]:
        """Jobs running for at least ``timeout_ms``; ``0`` returns every running job."""

        async def run() -> Result[List[Job]]:
            cutoff = current_timestamp() - timeout_ms // 1000
            query = (
                select(Job)
                .where(
                    Job.status == JobStatus.RUNNING.value,
                    or_(Job.started_at.is_(None), Job.started_at <= cutoff),
                )
                .order_by(Job.started_at.asc())
            )
            async with get_session(self.session_maker, read_only=True) as session:
                result = await session.execute(query)
                jobs = list(result.scalars().all())
            return Result.success(jobs, count=len(jobs))

        return await self._run("get stale running jobs", run)

    async def _delete_where(self, operation: str, *criteria: Any) -> int:
        async def write() -> int:
            async with get_session(self.session_maker) as session:
                ids = list((await session.execute(select(Job.id).where(*criteria))).scalars().all())
                if not ids:
                    return 0
                await session.execute(
                    delete(JobDependency).where(
                        or_(JobDependency.job_id.in_(ids), JobDependency.depends_on_job_id.in_(ids))
                    )
                )
                await session.execute(delete(Job).where(Job.id.in_(ids)))
                return len(ids)

        return await self._with_write_retries(operation, write)

    async def cleanup_completed_jobs(self, days_old: int = 7) -> Result[int]:
        async def run() -> Result[int]:
            cutoff = current_timestamp() - days_old * SECONDS_PER_DAY
            deleted = await self._delete_where(
                "cleanup completed jobs",
                Job.status.in_([JobStatus.COMPLETED.value, JobStatus.CANCELLED.value]),
                func.coalesce(Job.completed_at, Job.updated_at) < cutoff,
            )
            if deleted:
                logger.info(f"Deleted {deleted} completed jobs older than {days_old} days")
            return Result.success(deleted, count=deleted)

        return await self._run("cleanup completed jobs", run)

    async def cleanup_failed_jobs(self, days_old: int = 30) -> Result[int]:
        async def run() -> Result[int]:
            cutoff = current_timestamp() - days_old * SECONDS_PER_DAY
            deleted = await self._delete_where(
                "cleanup failed jobs",
                Job.status == JobStatus.FAILED.value,
                func.coalesce(Job.completed_at, Job.updated_at) < cutoff,
            )
            if deleted:
                logger.info(f"Deleted {deleted} failed jobs older than {days_old} days")
            return Result.success(deleted, count=deleted)

        return await self._run("cleanup failed jobs", run)

    async def cleanup_expired_jobs(self) -> Result[int]:
        """Purge jobs past ``expires_at`` that are not currently executing."""

        async def run() -> Result[int]:
            deleted = await self._delete_where(
                "cleanup expired jobs",
                Job.expires_at.is_not(None),
                Job.expires_at <= current_timestamp(),
                Job.status != JobStatus.RUNNING.value,
            )
            if deleted:
                logger.info(f"Deleted {deleted} expired jobs")
            return Result.success(deleted, count=deleted)

        return await self._run("cleanup expired jobs", run)
