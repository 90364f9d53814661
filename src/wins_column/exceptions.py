"""Exception hierarchy for wins_column."""

from typing import Any, Dict, Optional


class WinsColumnError(Exception):
    """Base class for all wins_column errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class JobStoreError(WinsColumnError):
    """Persistence failure inside the job store."""


class JobValidationError(JobStoreError):
    """A job field is missing, out of range or malformed."""


class JobNotFoundError(JobStoreError):
    pass


class JobDependencyError(JobStoreError):
    """Self-loops, duplicate edges, cycles or dangling endpoints."""


class JobStateConflictError(JobStoreError):
    """A conditional transition found the job in an unexpected state."""


class JobTimeoutError(WinsColumnError):
    def __init__(self, job_id: int, timeout_ms: int) -> None:
        super().__init__(f"Job {job_id} timed out after {timeout_ms}ms", {"timeout_ms": timeout_ms})
        self.job_id = job_id
        self.timeout_ms = timeout_ms


class HandlerNotRegisteredError(WinsColumnError):
    def __init__(self, job_type: str) -> None:
        super().__init__(f"No handler registered for job type: {job_type}", {"job_type": job_type})
        self.job_type = job_type


class GitHubAPIError(WinsColumnError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message, {"status_code": status_code})
        self.status_code = status_code


class GitHubNotFoundError(GitHubAPIError):
    pass


class GitHubRateLimitError(GitHubAPIError):
    def __init__(self, message: str, reset_at: Optional[int] = None) -> None:
        super().__init__(message, status_code=403)
        self.reset_at = reset_at


class SummarizationError(WinsColumnError):
    """The LLM did not produce a usable summary.

    ``error_code`` carries a machine readable cause; ``retryable`` is False
    for outcomes a retry cannot fix (token limit, empty response).
    """

    def __init__(self, message: str, error_code: Optional[str] = None, retryable: bool = True) -> None:
        super().__init__(message, {"error_code": error_code, "retryable": retryable})
        self.error_code = error_code
        self.retryable = retryable


class MailerError(WinsColumnError):
    pass


class CommitAlreadyExistsError(WinsColumnError):
    pass


class InsufficientCreditsError(WinsColumnError):
    pass
