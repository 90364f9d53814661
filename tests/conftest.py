from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from wins_column.database import create_session_maker, init_db
from wins_column.entities.commits import Commit
from wins_column.entities.projects import Project
from wins_column.queues.store import JobStore
from wins_column.services.billing import BillingService
from wins_column.services.commits import CommitService
from wins_column.services.emails import EmailTrackingService
from wins_column.services.projects import ProjectService
from wins_column.services.summarization import SummaryMetadata, SummaryResult

SAMPLE_DIFF = """diff --git a/app/login.py b/app/login.py
index 1111111..2222222 100644
--- a/app/login.py
+++ b/app/login.py
@@ -1,3 +1,4 @@
 def login(user):
-    return check(user)
+    if user is None:
+        return False
+    return check(user)
"""


@pytest_asyncio.fixture
async def db(tmp_path) -> AsyncGenerator[Tuple[AsyncEngine, async_sessionmaker[AsyncSession]], None]:
    engine, session_maker = create_session_maker(f"sqlite+aiosqlite:///{tmp_path / 'wins_column_test.db'}")
    await init_db(engine)
    yield engine, session_maker
    await engine.dispose()


@pytest.fixture
def session_maker(db) -> async_sessionmaker[AsyncSession]:
    return db[1]


@pytest.fixture
def store(session_maker) -> JobStore:
    return JobStore(session_maker, write_retry_delay_ms=0, retry_delay_ms=0)


@pytest.fixture
def commits(session_maker) -> CommitService:
    return CommitService(session_maker)


@pytest.fixture
def projects(session_maker) -> ProjectService:
    return ProjectService(session_maker)


@pytest.fixture
def billing(session_maker) -> BillingService:
    return BillingService(session_maker)


@pytest.fixture
def email_tracking(session_maker) -> EmailTrackingService:
    return EmailTrackingService(session_maker)


@pytest_asyncio.fixture
async def project(projects: ProjectService, billing: BillingService) -> Project:
    result = await projects.create_project(
        name="Acme Web",
        repo_name="acme/web",
        user_id="user_1",
        installation_id=42,
        email_recipients=["team@acme.dev"],
    )
    assert result.ok, result.error
    await billing.add_credits("user_1", 5, "starter credits")
    return result.data


@pytest_asyncio.fixture
async def commit(commits: CommitService, project: Project) -> Commit:
    result = await commits.create_commit(
        project_id=project.id,
        sha="a" * 40,
        message="Fix login crash for anonymous users (ACME-12, #7)",
        author="Dana",
        author_email="dana@acme.dev",
        branch="main",
    )
    assert result.ok, result.error
    return result.data


class FakeSummarizer:
    def __init__(self, summary: str = "Anonymous users no longer crash the login page.", change_type: str = "bugfix"):
        self.summary = summary
        self.change_type = change_type
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    async def process_diff(
        self, diff_text: str, custom_context: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None
    ) -> SummaryResult:
        self.calls.append({"diff": diff_text, "custom_context": custom_context, "metadata": metadata})
        if self.error is not None:
            raise self.error
        return SummaryResult(
            summary=self.summary,
            change_type=self.change_type,
            confidence=0.8,
            metadata=SummaryMetadata(
                diff_length=len(diff_text), processing_time_ms=5, template_used="diff_summary", tokens_used=120
            ),
        )


class FakeMailer:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    async def send_email(self, to: List[str], from_: str, subject: str, html: str) -> Optional[str]:
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "from": from_, "subject": subject, "html": html})
        return f"msg_{len(self.sent)}"


@pytest.fixture
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def sample_diff() -> str:
    return SAMPLE_DIFF
