"""Retry classification for failed job attempts."""

import re
from typing import Any, Dict, Optional

from wins_column.schemas.jobs import JobProcessingConfig

NON_RETRYABLE_ERROR_CODES = frozenset({"output_token_limit", "generation_truncated", "empty_response"})

# Fallback for collaborators that only report free text.
NON_RETRYABLE_PATTERNS = (
    "output_token_limit",
    "finish_reason=length",
    "no summary generated from openai response",
)

RATE_LIMIT_RESET_RE = re.compile(r"rate limit exceeded.*?resets at:\s*(\d+)", re.IGNORECASE | re.DOTALL)


def is_non_retryable(error_message: Optional[str], metadata: Optional[Dict[str, Any]] = None) -> bool:
    """True when a retry cannot change the outcome.

    Structured signals from the handler win; message sniffing is the fallback.
    """
    metadata = metadata or {}
    if metadata.get("non_retryable") is True:
        return True
    if metadata.get("error_code") in NON_RETRYABLE_ERROR_CODES:
        return True
    message = (error_message or "").lower()
    return any(pattern in message for pattern in NON_RETRYABLE_PATTERNS)


def calculate_retry_delay(attempts: int, config: JobProcessingConfig) -> int:
    """Milliseconds to wait before the next try, given attempts already made."""
    if not config.exponential_backoff:
        return min(config.retry_delay_ms, config.max_retry_delay_ms)
    return min(config.retry_delay_ms * (2 ** max(attempts, 0)), config.max_retry_delay_ms)


def parse_rate_limit_reset(error_message: Optional[str]) -> Optional[int]:
    """Epoch seconds from a ``... rate limit exceeded ... Resets at: <epoch>`` message."""
    if not error_message:
        return None
    match = RATE_LIMIT_RESET_RE.search(error_message)
    if not match:
        return None
    return int(match.group(1))
