import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wins_column.database import current_timestamp, get_session
from wins_column.entities.projects import Project
from wins_column.exceptions import WinsColumnError
from wins_column.results import Result

logger = logging.getLogger(__name__)


class ProjectService:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def get_project(self, project_id: int) -> Result[Project]:
        try:
            async with get_session(self.session_maker, read_only=True) as session:
                project = await session.get(Project, project_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load project {project_id}: {e}")
            return Result.failure(WinsColumnError(f"Failed to load project {project_id}: {e}"))
        if project is None:
            return Result.failure(WinsColumnError(f"Project {project_id} not found"))
        return Result.success(project)

    async def get_project_by_repository(self, repo_name: str) -> Result[Project]:
        """Look up a project by ``owner/name``, case-insensitively."""
        try:
            async with get_session(self.session_maker, read_only=True) as session:
                result = await session.execute(select(Project).where(Project.repo_name.ilike(repo_name)))
                project = result.scalars().first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up project for {repo_name}: {e}")
            return Result.failure(WinsColumnError(f"Failed to look up project for {repo_name}: {e}"))
        if project is None:
            return Result.failure(WinsColumnError(f"No project found for repository: {repo_name}"))
        return Result.success(project)

    async def create_project(self, **fields: Any) -> Result[Project]:
        now = current_timestamp()
        project = Project(**fields, created_at=now, updated_at=now)
        try:
            async with get_session(self.session_maker) as session:
                session.add(project)
                await session.flush()
                await session.refresh(project)
        except IntegrityError:
            return Result.failure(WinsColumnError(f"Project for {project.repo_name} already exists"))
        except SQLAlchemyError as e:
            logger.error(f"Failed to create project {project.repo_name}: {e}")
            return Result.failure(WinsColumnError(f"Failed to create project: {e}"))
        return Result.success(project)
