"""Polls the job store and runs ready jobs through their registered handlers."""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from wins_column.database import current_timestamp
from wins_column.entities.jobs import Job
from wins_column.exceptions import (
    HandlerNotRegisteredError,
    JobStateConflictError,
    JobTimeoutError,
    JobValidationError,
)
from wins_column.jobs.failures import calculate_retry_delay, is_non_retryable, parse_rate_limit_reset
from wins_column.jobs.handlers.base import JobHandler
from wins_column.queues.store import JobStore
from wins_column.results import Result
from wins_column.schemas.jobs import (
    JobFilter,
    JobProcessingConfig,
    JobResult,
    JobStatus,
    JobType,
    ProcessorStats,
    parse_job_payload,
)

Logger = Union[logging.Logger, logging.LoggerAdapter]

POLL_JOB_ID = "poll"
MAINTENANCE_JOB_ID = "maintenance"


class JobProcessor:
    """Single-process job runner.

    Up to ``max_concurrent_jobs`` handlers run as interleaved asyncio tasks. The
    active set is owned by the instance; pass one in to share it deliberately.
    Retry and failure decisions are made here and nowhere else.
    """

    def __init__(
        self,
        store: JobStore,
        config: Optional[JobProcessingConfig] = None,
        logger: Optional[Logger] = None,
        active_jobs: Optional[Set[int]] = None,
    ):
        self.store = store
        self.config = config or JobProcessingConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.active_jobs: Set[int] = active_jobs if active_jobs is not None else set()
        self._handlers: Dict[str, JobHandler] = {}
        self._tasks: Dict[int, "asyncio.Task[None]"] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None

    # Handler registry

    def register_handler(self, handler: JobHandler) -> None:
        job_type = JobType(handler.type).value
        if job_type in self._handlers:
            self.logger.warning(f"Replacing handler for job type {job_type}")
        self._handlers[job_type] = handler
        self.logger.debug(f"Registered handler {type(handler).__name__} for {job_type}")

    def unregister_handler(self, job_type: Union[str, JobType]) -> bool:
        removed = self._handlers.pop(JobType(job_type).value, None)
        return removed is not None

    def get_handler(self, job_type: Union[str, JobType]) -> Optional[JobHandler]:
        try:
            return self._handlers.get(JobType(job_type).value)
        except ValueError:
            return None

    # Configuration and introspection

    def configure(self, updates: Optional[Dict[str, Any]] = None, **overrides: Any) -> JobProcessingConfig:
        """Merge a partial config; raises pydantic.ValidationError on bad values."""
        merged = {**self.config.model_dump(), **(updates or {}), **overrides}
        self.config = JobProcessingConfig.model_validate(merged)
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.reschedule_job(
                POLL_JOB_ID, trigger=IntervalTrigger(seconds=self.config.poll_interval_ms / 1000)
            )
            self._scheduler.reschedule_job(
                MAINTENANCE_JOB_ID, trigger=IntervalTrigger(seconds=self.config.maintenance_interval_ms / 1000)
            )
        self.logger.info(f"Processor configuration updated: {self.config.model_dump()}")
        return self.config

    def get_configuration(self) -> JobProcessingConfig:
        return self.config.model_copy()

    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def get_active_jobs(self) -> List[int]:
        return sorted(self.active_jobs)

    def get_stats(self) -> ProcessorStats:
        return ProcessorStats(
            is_running=self.is_running(),
            active_jobs=len(self.active_jobs),
            active_job_ids=self.get_active_jobs(),
            registered_handlers=sorted(self._handlers),
            config=self.get_configuration(),
        )

    # Lifecycle

    async def start(self) -> None:
        if self.is_running():
            self.logger.warning("Job processor already running")
            return

        await self.reconcile_job_state()

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.process_available_jobs,
            trigger=IntervalTrigger(seconds=self.config.poll_interval_ms / 1000),
            id=POLL_JOB_ID,
            name="Process ready jobs",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self._scheduler.add_job(
            self.perform_maintenance,
            trigger=IntervalTrigger(seconds=self.config.maintenance_interval_ms / 1000),
            id=MAINTENANCE_JOB_ID,
            name="Job queue maintenance",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self.logger.info(
            f"Job processor started - {len(self._handlers)} handlers, "
            f"max {self.config.max_concurrent_jobs} concurrent, polling every {self.config.poll_interval_ms}ms"
        )

    async def stop(self) -> None:
        """Stop polling, then wait up to ``shutdown_timeout_ms`` for in-flight jobs."""
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None

        in_flight = [task for task in self._tasks.values() if not task.done()]
        if in_flight:
            self.logger.info(f"Waiting for {len(in_flight)} in-flight jobs to finish")
            _, pending = await asyncio.wait(in_flight, timeout=self.config.shutdown_timeout_ms / 1000)
            if pending:
                self.logger.warning(
                    f"{len(pending)} jobs still running after {self.config.shutdown_timeout_ms}ms; "
                    "they will be reconciled on next start"
                )
        self.logger.info("Job processor stopped")

    # Polling

    async def process_available_jobs(self) -> int:
        """Run one poll tick; returns the number of jobs dispatched."""
        slots = self.config.max_concurrent_jobs - len(self.active_jobs)
        if slots <= 0:
            self.logger.debug("No free job slots, skipping poll")
            return 0

        ready = await self.store.get_ready_jobs(slots)
        if not ready.ok:
            self.logger.error(f"Failed to load ready jobs: {ready.error}")
            return 0

        dispatched: List["asyncio.Task[None]"] = []
        for candidate in ready.data or []:
            if candidate.id in self.active_jobs:
                continue
            fetched = await self.store.get_job(candidate.id)
            if not fetched.ok or fetched.data is None:
                self.logger.warning(f"Ready job {candidate.id} disappeared before dispatch: {fetched.error}")
                continue
            job = fetched.data
            if job.status != JobStatus.PENDING.value or job.id in self.active_jobs:
                continue
            self.active_jobs.add(job.id)
            task = asyncio.create_task(self._execute(job), name=f"job-{job.id}")
            self._tasks[job.id] = task
            dispatched.append(task)

        if not dispatched:
            return 0
        self.logger.debug(f"Dispatched {len(dispatched)} jobs")
        outcomes = await asyncio.gather(*dispatched, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, asyncio.CancelledError):
                self.logger.error(f"Job task crashed: {outcome!r}")
        return len(dispatched)

    async def process_job(self, job: Job) -> None:
        """Run a single job unless this processor is already running it."""
        if job.id in self.active_jobs:
            self.logger.debug(f"Job {job.id} is already active, skipping")
            return
        self.active_jobs.add(job.id)
        await self._execute(job)

    async def _execute(self, job: Job) -> None:
        try:
            claimed = await self.store.mark_job_as_running(job.id)
            if not claimed.ok:
                if isinstance(claimed.error, JobStateConflictError):
                    self.logger.debug(f"Job {job.id} was claimed elsewhere: {claimed.error}")
                else:
                    self.logger.error(f"Could not mark job {job.id} as running, skipping: {claimed.error}")
                return
            job = claimed.data

            handler = self._handlers.get(job.type)
            if handler is None:
                error = HandlerNotRegisteredError(job.type)
                self.logger.error(f"Job {job.id}: {error}")
                await self._fail_permanently(job, str(error), {"reason": "handler_not_registered"})
                return

            try:
                payload = parse_job_payload(job.type, job.data)
                valid = handler.validate(payload)
            except JobValidationError as e:
                await self._fail_permanently(job, str(e), {"reason": "invalid_job_data", **e.details})
                return
            if not valid:
                await self._fail_permanently(
                    job, f"Job data failed validation for {job.type}", {"reason": "validation_failed"}
                )
                return

            self.logger.info(
                f"Running job {job.id} ({job.type}), attempt {job.attempts + 1}/{job.max_attempts}, "
                f"estimated {handler.get_estimated_duration(payload)}ms"
            )
            try:
                result = await asyncio.wait_for(
                    handler.handle(job, payload), timeout=self.config.job_timeout_ms / 1000
                )
            except asyncio.TimeoutError:
                error = JobTimeoutError(job.id, self.config.job_timeout_ms)
                self.logger.warning(str(error))
                await self.handle_job_failure(job, str(error), {"reason": "timeout"})
                return
            except Exception as e:
                self.logger.exception(f"Handler for job {job.id} raised")
                await self.handle_job_failure(
                    job, str(e) or type(e).__name__, {"reason": "handler_exception", "error_type": type(e).__name__}
                )
                return

            await self._record_result(job, result)
        finally:
            self.active_jobs.discard(job.id)
            self._tasks.pop(job.id, None)

    async def _record_result(self, job: Job, result: JobResult) -> None:
        if result.success:
            completed = await self.store.mark_job_as_completed(job.id, result.data)
            if not completed.ok:
                self.logger.error(f"Job {job.id} succeeded but could not be marked completed: {completed.error}")
            return
        metadata = dict(result.metadata or {})
        await self.handle_job_failure(job, result.error or "Job failed without an error message", metadata, metadata)

    # Failure handling

    async def handle_job_failure(
        self,
        job: Job,
        error_message: str,
        error_details: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Result[Job]:
        """Retry the job with backoff, or fail it for good.

        Non-retryable errors and jobs on their last attempt fail permanently.
        A GitHub rate-limit message moves the retry to the reset time.
        """
        details = {**(error_details or {}), "attempt": job.attempts + 1}
        if is_non_retryable(error_message, metadata or error_details):
            self.logger.warning(f"Job {job.id} hit a non-retryable error: {error_message}")
            return await self._fail_permanently(job, error_message, details)
        if job.attempts + 1 >= job.max_attempts:
            return await self._fail_permanently(job, error_message, details)

        reset_at = parse_rate_limit_reset(error_message)
        if reset_at is not None:
            retry_at = reset_at + math.ceil(self.config.rate_limit_buffer_ms / 1000)
            details["rate_limit_reset"] = reset_at
        else:
            delay_ms = calculate_retry_delay(job.attempts, self.config)
            retry_at = current_timestamp() + math.ceil(delay_ms / 1000)

        retried = await self.store.schedule_retry(job.id, retry_at, error_message, details)
        if not retried.ok:
            self._log_transition_error(job, "schedule retry", retried.error)
        else:
            self.logger.info(
                f"Job {job.id} failed (attempt {job.attempts + 1}/{job.max_attempts}), retrying at {retry_at}: "
                f"{error_message}"
            )
        return retried

    async def _fail_permanently(self, job: Job, error_message: str, details: Dict[str, Any]) -> Result[Job]:
        failed = await self.store.mark_job_as_failed(job.id, error_message, details, permanent=True)
        if not failed.ok:
            self._log_transition_error(job, "mark failed", failed.error)
        return failed

    def _log_transition_error(self, job: Job, operation: str, error: Optional[Exception]) -> None:
        if isinstance(error, JobStateConflictError):
            self.logger.info(f"Job {job.id} left running before we could {operation}: {error}")
        else:
            self.logger.error(f"Failed to {operation} for job {job.id}: {error}")

    # Recovery

    async def reconcile_job_state(self) -> int:
        """Route jobs left ``running`` by a dead process through failure handling."""
        orphans = await self.store.get_stale_running_jobs(0)
        if not orphans.ok:
            self.logger.error(f"Could not load running jobs for reconciliation: {orphans.error}")
            return 0
        handled = 0
        for job in orphans.data or []:
            if job.id in self.active_jobs:
                continue
            result = await self.handle_job_failure(
                job, "Job orphaned on restart", {"reason": "orphaned_on_restart"}
            )
            if result.ok:
                handled += 1
        if handled:
            self.logger.warning(f"Reconciled {handled} orphaned jobs")
        return handled

    async def perform_maintenance(self) -> Dict[str, int]:
        counts = {
            "completed_deleted": 0,
            "failed_deleted": 0,
            "expired_deleted": 0,
            "stale_failed": 0,
            "active_dropped": 0,
            "untracked_running": 0,
        }

        completed = await self.store.cleanup_completed_jobs(self.config.cleanup_completed_after_days)
        if completed.ok:
            counts["completed_deleted"] = completed.data
        else:
            self.logger.error(f"Completed job cleanup failed: {completed.error}")

        failed = await self.store.cleanup_failed_jobs(self.config.cleanup_failed_after_days)
        if failed.ok:
            counts["failed_deleted"] = failed.data
        else:
            self.logger.error(f"Failed job cleanup failed: {failed.error}")

        expired = await self.store.cleanup_expired_jobs()
        if expired.ok:
            counts["expired_deleted"] = expired.data
        else:
            self.logger.error(f"Expired job cleanup failed: {expired.error}")

        stale = await self.store.get_stale_running_jobs(self.config.job_timeout_ms)
        if stale.ok:
            for job in stale.data or []:
                if job.id in self.active_jobs:
                    continue
                timed_out = JobTimeoutError(job.id, self.config.job_timeout_ms)
                result = await self.handle_job_failure(job, str(timed_out), {"reason": "stale_running_job"})
                if result.ok:
                    counts["stale_failed"] += 1
        else:
            self.logger.error(f"Stale job scan failed: {stale.error}")

        running = await self.store.get_jobs_by_filter(JobFilter(status=JobStatus.RUNNING.value))
        if running.ok:
            running_ids = {job.id for job in running.data or []}
            for job_id in list(self.active_jobs):
                task = self._tasks.get(job_id)
                if job_id not in running_ids and (task is None or task.done()):
                    self.active_jobs.discard(job_id)
                    counts["active_dropped"] += 1
            untracked = sorted(running_ids - self.active_jobs)
            counts["untracked_running"] = len(untracked)
            if untracked:
                self.logger.warning(f"Jobs running in the database but not in this process: {untracked}")
        else:
            self.logger.error(f"Active job reconciliation failed: {running.error}")

        self.logger.info(f"Maintenance finished: {counts}")
        return counts
