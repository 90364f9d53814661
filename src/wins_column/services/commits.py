import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wins_column.database import current_timestamp, get_session, to_timestamp
from wins_column.entities.commits import Commit
from wins_column.exceptions import CommitAlreadyExistsError, WinsColumnError
from wins_column.results import Result

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "message",
    "author",
    "author_email",
    "branch",
    "url",
    "base_sha",
    "pr_number",
    "pr_title",
    "pr_url",
    "summary",
    "change_type",
    "summary_confidence",
    "email_sent",
    "committed_at",
}


class CommitService:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def get_commit(self, commit_id: int) -> Result[Commit]:
        try:
            async with get_session(self.session_maker, read_only=True) as session:
                commit = await session.get(Commit, commit_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load commit {commit_id}: {e}")
            return Result.failure(WinsColumnError(f"Failed to load commit {commit_id}: {e}"))
        if commit is None:
            return Result.failure(WinsColumnError(f"Commit {commit_id} not found"))
        return Result.success(commit)

    async def get_commit_by_sha(self, project_id: int, sha: str) -> Result[Optional[Commit]]:
        try:
            async with get_session(self.session_maker, read_only=True) as session:
                result = await session.execute(
                    select(Commit).where(Commit.project_id == project_id, Commit.sha == sha)
                )
                return Result.success(result.scalars().first())
        except SQLAlchemyError as e:
            return Result.failure(WinsColumnError(f"Failed to look up commit {sha}: {e}"))

    async def create_commit(self, **fields: Any) -> Result[Commit]:
        """Insert a commit row; an existing (project_id, sha) pair yields CommitAlreadyExistsError."""
        now = current_timestamp()
        try:
            committed_at = to_timestamp(fields.pop("committed_at", None))
        except ValueError as e:
            return Result.failure(WinsColumnError(str(e)))
        commit = Commit(**fields, committed_at=committed_at, created_at=now, updated_at=now)
        try:
            async with get_session(self.session_maker) as session:
                session.add(commit)
                await session.flush()
                await session.refresh(commit)
        except IntegrityError:
            return Result.failure(
                CommitAlreadyExistsError(f"Commit {commit.sha} already exists for project {commit.project_id}")
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to create commit {commit.sha}: {e}")
            return Result.failure(WinsColumnError(f"Failed to create commit: {e}"))
        return Result.success(commit)

    async def update_commit(self, commit_id: int, updates: Dict[str, Any]) -> Result[Commit]:
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            return Result.failure(WinsColumnError(f"Cannot update commit fields: {sorted(unknown)}"))
        try:
            async with get_session(self.session_maker) as session:
                commit = await session.get(Commit, commit_id)
                if commit is None:
                    return Result.failure(WinsColumnError(f"Commit {commit_id} not found"))
                for key, value in updates.items():
                    setattr(commit, key, value)
                commit.updated_at = current_timestamp()
                await session.flush()
                await session.refresh(commit)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update commit {commit_id}: {e}")
            return Result.failure(WinsColumnError(f"Failed to update commit {commit_id}: {e}"))
        return Result.success(commit)

    async def mark_commit_as_email_sent(self, commit_id: int) -> Result[Commit]:
        return await self.update_commit(commit_id, {"email_sent": True})

    async def get_commits_for_email(self, project_id: int, limit: int = 100) -> Result[List[Commit]]:
        """Summarized commits of a project that no email has covered yet, oldest first."""
        try:
            async with get_session(self.session_maker, read_only=True) as session:
                result = await session.execute(
                    select(Commit)
                    .where(
                        Commit.project_id == project_id,
                        Commit.summary.is_not(None),
                        Commit.email_sent.is_(False),
                    )
                    .order_by(Commit.created_at.asc(), Commit.id.asc())
                    .limit(limit)
                )
                commits = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to load commits for email in project {project_id}: {e}")
            return Result.failure(WinsColumnError(f"Failed to load commits for email: {e}"))
        return Result.success(commits, count=len(commits))
