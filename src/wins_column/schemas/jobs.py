"""Job queue schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from wins_column.exceptions import JobValidationError

DateInput = Union[int, float, datetime, str]

DEFAULT_MAX_ATTEMPTS = 3
EMPTY_SHA = "0000000000000000000000000000000000000000"


class JobStatus(str, Enum):
    """Job status states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobType(str, Enum):
    """Job types."""

    FETCH_DIFF = "fetch_diff"
    GENERATE_SUMMARY = "generate_summary"
    SEND_EMAIL = "send_email"
    WEBHOOK_PROCESSING = "webhook_processing"


TERMINAL_STATUSES = {JobStatus.COMPLETED.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value}


class JobPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class FetchDiffPayload(JobPayload):
    commit_sha: str = Field(min_length=1)
    repository_owner: str = Field(min_length=1)
    repository_name: str = Field(min_length=1)
    branch: Optional[str] = None
    base_sha: Optional[str] = None


class GenerateSummaryPayload(JobPayload):
    commit_id: int
    diff_content: Optional[str] = None
    commit_message: Optional[str] = None
    author: Optional[str] = None
    branch: Optional[str] = None
    pr_number: Optional[int] = None
    pr_title: Optional[str] = None
    pr_url: Optional[str] = None


TemplateType = Literal["single_commit", "digest", "weekly_summary"]


class SendEmailPayload(JobPayload):
    commit_ids: List[int] = Field(min_length=1)
    recipients: List[str] = Field(min_length=1)
    template_type: TemplateType = "single_commit"
    template_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("recipients")
    @classmethod
    def check_recipients(cls, recipients: List[str]) -> List[str]:
        cleaned = [r.strip() for r in recipients]
        for address in cleaned:
            local, _, domain = address.partition("@")
            if not local or "." not in domain or " " in address:
                raise ValueError(f"Invalid email address: {address}")
        return cleaned


class WebhookProcessingPayload(JobPayload):
    webhook_event: str = Field(min_length=1)
    payload: Dict[str, Any]
    signature: str = Field(min_length=1)
    delivery_id: str = Field(min_length=1)


PAYLOAD_MODELS: Dict[JobType, Type[JobPayload]] = {
    JobType.FETCH_DIFF: FetchDiffPayload,
    JobType.GENERATE_SUMMARY: GenerateSummaryPayload,
    JobType.SEND_EMAIL: SendEmailPayload,
    JobType.WEBHOOK_PROCESSING: WebhookProcessingPayload,
}


def parse_job_payload(job_type: Union[str, JobType], data: Optional[Dict[str, Any]]) -> JobPayload:
    """Validate a raw ``data`` dict against the payload model of ``job_type``."""
    try:
        model = PAYLOAD_MODELS[JobType(job_type)]
    except ValueError as e:
        raise JobValidationError(f"Unknown job type: {job_type}") from e
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        raise JobValidationError(f"Invalid {JobType(job_type).value} payload", {"errors": e.errors()}) from e


class CreateJobData(BaseModel):
    """Fields accepted when enqueueing a job; the store applies defaults and range checks."""

    type: str
    data: Optional[Dict[str, Any]] = None
    priority: int = 0
    context: Dict[str, Any] = Field(default_factory=dict)
    commit_id: Optional[int] = None
    project_id: Optional[int] = None
    max_attempts: Optional[int] = None
    scheduled_for: Optional[DateInput] = None
    expires_at: Optional[DateInput] = None


class UpdateJobData(BaseModel):
    """Partial update; only explicitly set fields are written."""

    status: Optional[str] = None
    priority: Optional[int] = None
    data: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    attempts: Optional[int] = None
    max_attempts: Optional[int] = None
    started_at: Optional[DateInput] = None
    completed_at: Optional[DateInput] = None
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    retry_after: Optional[DateInput] = None
    scheduled_for: Optional[DateInput] = None
    expires_at: Optional[DateInput] = None


class JobFilter(BaseModel):
    status: Optional[Union[str, List[str]]] = None
    type: Optional[Union[str, List[str]]] = None
    project_id: Optional[int] = None
    commit_id: Optional[int] = None
    priority_min: Optional[int] = None
    priority_max: Optional[int] = None
    scheduled_after: Optional[DateInput] = None
    scheduled_before: Optional[DateInput] = None
    created_after: Optional[DateInput] = None
    created_before: Optional[DateInput] = None
    limit: Optional[int] = None


class JobQueueStats(BaseModel):
    total_jobs: int = 0
    pending_jobs: int = 0
    running_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    avg_processing_time_ms: Optional[float] = None
    oldest_pending_job: Optional[int] = None


class JobResult(BaseModel):
    """Outcome a handler reports back to the processor."""

    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, **metadata: Any) -> "JobResult":
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: str, reason: Optional[str] = None, **metadata: Any) -> "JobResult":
        if reason is not None:
            metadata["reason"] = reason
        return cls(success=False, error=error, metadata=metadata)


class JobProcessingConfig(BaseModel):
    """Processor tuning knobs, all in milliseconds unless named otherwise."""

    max_concurrent_jobs: int = Field(default=5, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)
    max_retry_delay_ms: int = Field(default=30000, ge=0)
    exponential_backoff: bool = True
    job_timeout_ms: int = Field(default=300000, ge=1)
    cleanup_completed_after_days: int = Field(default=7, ge=0)
    cleanup_failed_after_days: int = Field(default=30, ge=0)
    poll_interval_ms: int = Field(default=2000, ge=1)
    maintenance_interval_ms: int = Field(default=300000, ge=1)
    shutdown_timeout_ms: int = Field(default=30000, ge=0)
    rate_limit_buffer_ms: int = Field(default=5000, ge=0)


class ProcessorStats(BaseModel):
    is_running: bool
    active_jobs: int
    active_job_ids: List[int]
    registered_handlers: List[str]
    config: JobProcessingConfig


class JobResponse(BaseModel):
    """Job response model."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    status: str
    priority: int
    data: Dict[str, Any]
    context: Dict[str, Any]
    commit_id: Optional[int] = None
    project_id: Optional[int] = None
    attempts: int
    max_attempts: int
    retry_after: Optional[int] = None
    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    scheduled_for: int
    expires_at: Optional[int] = None
    created_at: int
    updated_at: int


class DigestRequest(BaseModel):
    """Body of a digest request; both fields fall back to project defaults."""

    recipients: Optional[List[str]] = None
    when: Optional[DateInput] = None
