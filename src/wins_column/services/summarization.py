"""LLM summaries of commit diffs."""

import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Sequence

from jinja2 import Environment, FileSystemLoader
from openai import AsyncOpenAI
from pydantic import BaseModel

from wins_column.exceptions import SummarizationError

logger = logging.getLogger(__name__)
template_dir = Path(__file__).parent.parent / "prompts"
jinja_env = Environment(loader=FileSystemLoader(str(template_dir)), trim_blocks=True, lstrip_blocks=True)

TEMPLATE_NAME = "diff_summary.jinja2"
SYSTEM_PROMPT = "You are a changelog assistant that creates concise, clear summaries of code changes."
MAX_DIFF_LENGTH = 8000
TRUNCATION_MARKER = "... (diff truncated for length)"
EXCLUDE_PATTERNS = (
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "poetry.lock",
    "uv.lock",
    ".lock",
    "dist/",
    "build/",
    "node_modules/",
    ".git/",
    "coverage/",
    "__pycache__/",
    ".DS_Store",
    "Thumbs.db",
)
HEADER_PREFIXES = ("diff --git", "@@", "+++", "---", "index ")
DIFF_MARKERS = ("@@", "+++", "---", "diff --git")

ChangeType = Literal["feature", "bugfix"]


class SummaryMetadata(BaseModel):
    diff_length: int
    processing_time_ms: int
    template_used: str
    tokens_used: Optional[int] = None


class SummaryResult(BaseModel):
    summary: str
    change_type: ChangeType
    confidence: float
    metadata: SummaryMetadata


def validate_diff(diff: Optional[str]) -> bool:
    if not diff or len(diff.strip()) < 10:
        return False
    return any(marker in diff for marker in DIFF_MARKERS)


def filter_noise_files(diff: str, exclude_patterns: Sequence[str] = EXCLUDE_PATTERNS) -> str:
    """Drop whole file sections whose header matches a noise pattern."""
    kept: List[str] = []
    skipping = False
    for line in diff.split("\n"):
        if line.startswith("diff --git"):
            skipping = any(pattern in line for pattern in exclude_patterns)
        if not skipping:
            kept.append(line)
    return "\n".join(kept)


def truncate_diff(diff: str, max_length: int = MAX_DIFF_LENGTH) -> str:
    """Keep every header/hunk line, then fill with content lines up to ``max_length``."""
    if len(diff) <= max_length:
        return diff
    lines = diff.split("\n")
    headers = [line for line in lines if line.startswith(HEADER_PREFIXES)]
    content = [line for line in lines if not line.startswith(HEADER_PREFIXES)]
    result = "\n".join(headers)
    for line in content:
        if len(result) + len(line) + 1 > max_length:
            result += "\n" + TRUNCATION_MARKER
            break
        result += "\n" + line
    return result


def preprocess_diff(diff: str, max_length: int = MAX_DIFF_LENGTH) -> str:
    return truncate_diff(filter_noise_files(diff.strip()), max_length)


def calculate_confidence(diff: str, summary: str) -> float:
    confidence = 0.5
    if len(diff) > 500:
        confidence += 0.2
    if len(diff) > 2000:
        confidence += 0.1
    if "@@" in diff and "+++" in diff and "---" in diff:
        confidence += 0.2
    if len(summary) < 20 or len(summary) > 200:
        confidence -= 0.1
    return round(max(0.0, min(1.0, confidence)), 2)


def normalize_change_type(value: Any) -> ChangeType:
    text = str(value or "").strip().lower()
    if text in {"bugfix", "fix", "bug"}:
        return "bugfix"
    return "feature"


def render_prompt(diff: str, custom_context: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> str:
    template = jinja_env.get_template(TEMPLATE_NAME)
    return template.render(diff=diff, custom_context=custom_context, metadata=metadata or {})


class SummarizationService:
    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        max_tokens: int = 800,
        max_diff_length: int = MAX_DIFF_LENGTH,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.max_diff_length = max_diff_length

    async def process_diff(
        self,
        diff_text: str,
        custom_context: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SummaryResult:
        """Summarize a unified diff.

        Raises:
            SummarizationError: invalid input, truncated generation or an empty reply.
                ``retryable`` is False for the latter two.
        """
        started = time.monotonic()
        if not validate_diff(diff_text):
            raise SummarizationError("Invalid diff content provided", error_code="invalid_diff", retryable=False)

        processed = preprocess_diff(diff_text, self.max_diff_length)
        prompt = render_prompt(processed, custom_context, metadata)
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_completion_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )

        choice = response.choices[0] if response.choices else None
        finish_reason = getattr(choice, "finish_reason", None)
        content = (choice.message.content or "").strip() if choice and choice.message else ""
        usage = getattr(response, "usage", None)
        tokens_used = getattr(usage, "total_tokens", None)

        if finish_reason == "length":
            raise SummarizationError(
                f"Summary generation truncated: finish_reason=length; max_tokens={self.max_tokens}",
                error_code="output_token_limit",
                retryable=False,
            )
        if not content:
            raise SummarizationError(
                f"No summary generated from OpenAI response. finish_reason={finish_reason or 'unknown'}; "
                f"total_tokens={tokens_used if tokens_used is not None else 'n/a'}",
                error_code="empty_response",
                retryable=False,
            )

        summary, change_type = self._parse_content(content)
        if not summary:
            raise SummarizationError(
                "No summary generated from OpenAI response. summary field empty",
                error_code="empty_response",
                retryable=False,
            )

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.debug(f"Summarized {len(processed)} diff chars in {elapsed_ms}ms using {tokens_used} tokens")
        return SummaryResult(
            summary=summary,
            change_type=change_type,
            confidence=calculate_confidence(processed, summary),
            metadata=SummaryMetadata(
                diff_length=len(processed),
                processing_time_ms=elapsed_ms,
                template_used=TEMPLATE_NAME.rsplit(".", 1)[0],
                tokens_used=tokens_used,
            ),
        )

    @staticmethod
    def _parse_content(content: str) -> tuple[str, ChangeType]:
        # Some models wrap JSON in a code fence.
        cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", content.strip())
        try:
            body = json.loads(cleaned)
        except json.JSONDecodeError:
            logger.warning("Summary response was not JSON, using raw text")
            return content.strip(), "feature"
        if not isinstance(body, dict):
            return str(body).strip(), "feature"
        return str(body.get("summary") or "").strip(), normalize_change_type(body.get("change_type"))
