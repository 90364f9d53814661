"""Collaborator contracts the job handlers depend on."""

from typing import Any, Dict, List, Optional, Protocol

from wins_column.entities.commits import Commit
from wins_column.entities.emails import EmailSend
from wins_column.entities.projects import Project
from wins_column.results import Result
from wins_column.schemas.github import CommitInfo, CompareResult, DiffReference
from wins_column.services.summarization import SummaryResult


class DiffProvider(Protocol):
    async def get_diff(self, ref: DiffReference) -> CompareResult: ...

    async def get_diff_raw(self, ref: DiffReference) -> str: ...

    async def get_commit(self, owner: str, repo: str, sha: str) -> CommitInfo: ...

    async def __aenter__(self) -> "DiffProvider": ...

    async def __aexit__(self, *exc_info: Any) -> None: ...


class DiffProviderFactory(Protocol):
    def __call__(self, token: str) -> DiffProvider: ...


class InstallationTokenProvider(Protocol):
    async def get_installation_token(self, installation_id: int) -> str: ...


class Summarizer(Protocol):
    async def process_diff(
        self,
        diff_text: str,
        custom_context: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SummaryResult: ...


class BillingLedger(Protocol):
    async def has_credits(self, user_id: str, amount: int) -> bool: ...

    async def deduct_credits(self, user_id: str, amount: int, description: str) -> Result[int]: ...

    def estimate_summary_credits(self, diff_text: str) -> int: ...


class CommitStore(Protocol):
    async def get_commit(self, commit_id: int) -> Result[Commit]: ...

    async def get_commit_by_sha(self, project_id: int, sha: str) -> Result[Optional[Commit]]: ...

    async def create_commit(self, **fields: Any) -> Result[Commit]: ...

    async def update_commit(self, commit_id: int, updates: Dict[str, Any]) -> Result[Commit]: ...

    async def mark_commit_as_email_sent(self, commit_id: int) -> Result[Commit]: ...


class ProjectStore(Protocol):
    async def get_project(self, project_id: int) -> Result[Project]: ...

    async def get_project_by_repository(self, repo_name: str) -> Result[Project]: ...


class Mailer(Protocol):
    async def send_email(self, to: List[str], from_: str, subject: str, html: str) -> Optional[str]: ...


class EmailTracker(Protocol):
    async def record_email_send(
        self,
        job_id: int,
        attempt: int,
        template_type: str,
        recipients: List[str],
        commit_ids: List[int],
        subject: str,
    ) -> Result[EmailSend]: ...

    async def mark_email_send_status(
        self,
        send_id: int,
        status: str,
        provider_message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Result[EmailSend]: ...

    async def find_sent_for_job(self, job_id: int) -> Result[Optional[EmailSend]]: ...
