from typing import Any, ClassVar, Dict, Generic, Optional, Type, TypeVar

from wins_column.entities.jobs import Job
from wins_column.schemas.jobs import JobPayload, JobResult, JobType

P = TypeVar("P", bound=JobPayload)


class JobHandler(Generic[P]):
    """Executes one job type.

    ``handle`` reports expected failures as ``JobResult(success=False)`` with a
    ``reason`` in its metadata instead of raising.
    """

    type: ClassVar[JobType]
    payload_model: ClassVar[Type[JobPayload]]

    async def handle(self, job: Job, data: P) -> JobResult:
        raise NotImplementedError

    def validate(self, data: P) -> bool:
        return True

    def get_estimated_duration(self, data: P) -> int:
        return 5000


def failure(error: str, reason: str, **metadata: Any) -> JobResult:
    return JobResult.fail(error, reason=reason, **metadata)


def exception_result(job: Job, error: Exception, extra: Optional[Dict[str, Any]] = None) -> JobResult:
    """Convert an unexpected exception into a retryable failure result."""
    metadata: Dict[str, Any] = {"reason": "handler_exception", "job_id": job.id, "error_type": type(error).__name__}
    metadata.update(extra or {})
    details = getattr(error, "details", None)
    if isinstance(details, dict):
        if details.get("error_code"):
            metadata["error_code"] = details["error_code"]
        if details.get("retryable") is False:
            metadata["non_retryable"] = True
    return JobResult(success=False, error=str(error) or type(error).__name__, metadata=metadata)
