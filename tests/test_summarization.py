# mypy: ignore-errors

from types import SimpleNamespace

import pytest

from wins_column.exceptions import SummarizationError
from wins_column.services.summarization import (
    TRUNCATION_MARKER,
    SummarizationService,
    calculate_confidence,
    filter_noise_files,
    render_prompt,
    truncate_diff,
)

DIFF = """diff --git a/app/login.py b/app/login.py
--- a/app/login.py
+++ b/app/login.py
@@ -1,2 +1,3 @@
 def login(user):
+    if user is None:
+        return False
"""


class FakeCompletions:
    def __init__(self, content, finish_reason="stop", total_tokens=42):
        self.content = content
        self.finish_reason = finish_reason
        self.total_tokens = total_tokens
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        choice = SimpleNamespace(finish_reason=self.finish_reason, message=SimpleNamespace(content=self.content))
        return SimpleNamespace(choices=[choice], usage=SimpleNamespace(total_tokens=self.total_tokens))


def service_with(completions) -> SummarizationService:
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return SummarizationService(client, model="gpt-test", max_tokens=300)


@pytest.mark.asyncio
async def test_json_summary_parsed():
    completions = FakeCompletions('{"summary": "Guests can no longer crash login.", "change_type": "fix"}')

    result = await service_with(completions).process_diff(DIFF, custom_context="Commit by Dana", metadata={"a": 1})

    assert result.summary == "Guests can no longer crash login."
    assert result.change_type == "bugfix"
    assert result.metadata.tokens_used == 42
    assert result.metadata.template_used == "diff_summary"
    request = completions.requests[0]
    assert request["model"] == "gpt-test"
    assert request["max_completion_tokens"] == 300
    assert "Context: Commit by Dana" in request["messages"][1]["content"]


@pytest.mark.asyncio
async def test_code_fenced_json_and_plain_text():
    fenced = FakeCompletions('```json\n{"summary": "Adds dark mode.", "change_type": "feature"}\n```')
    plain = FakeCompletions("Adds dark mode to settings.")

    assert (await service_with(fenced).process_diff(DIFF)).summary == "Adds dark mode."
    result = await service_with(plain).process_diff(DIFF)
    assert result.summary == "Adds dark mode to settings."
    assert result.change_type == "feature"


@pytest.mark.asyncio
async def test_truncated_generation_is_terminal():
    completions = FakeCompletions('{"summary": "Adds', finish_reason="length")

    with pytest.raises(SummarizationError) as exc_info:
        await service_with(completions).process_diff(DIFF)

    assert exc_info.value.error_code == "output_token_limit"
    assert exc_info.value.retryable is False
    assert "finish_reason=length" in exc_info.value.message


@pytest.mark.asyncio
async def test_empty_reply_and_invalid_diff():
    with pytest.raises(SummarizationError) as empty:
        await service_with(FakeCompletions("")).process_diff(DIFF)
    with pytest.raises(SummarizationError) as invalid:
        await service_with(FakeCompletions("x")).process_diff("not a diff at all")

    assert empty.value.error_code == "empty_response"
    assert invalid.value.error_code == "invalid_diff"


def test_filter_noise_files_drops_lockfiles():
    diff = (
        "diff --git a/package-lock.json b/package-lock.json\n+noise\n"
        "diff --git a/src/app.js b/src/app.js\n+real change"
    )

    filtered = filter_noise_files(diff)

    assert "noise" not in filtered
    assert "+real change" in filtered


def test_truncate_keeps_headers():
    diff = "diff --git a/x b/x\n@@ -1 +1 @@\n" + "\n".join(f"+line {i}" for i in range(100))

    truncated = truncate_diff(diff, max_length=80)

    assert truncated.startswith("diff --git a/x b/x\n@@ -1 +1 @@")
    assert truncated.endswith(TRUNCATION_MARKER)


def test_confidence_and_prompt():
    assert calculate_confidence(DIFF, "A twenty-plus character summary") == 0.7
    prompt = render_prompt("the diff", metadata={"issues": "ACME-12"})
    assert "- issues: ACME-12" in prompt
    assert prompt.rstrip().endswith("the diff")
