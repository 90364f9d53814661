"""Project entities."""

from typing import List, Optional

from sqlalchemy import JSON
from sqlmodel import Field, SQLModel


class Project(SQLModel, table=True):
    """A watched GitHub repository and who hears about its commits."""

    __tablename__ = "projects"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    repo_name: str = Field(unique=True, index=True)
    user_id: Optional[str] = None
    installation_id: Optional[int] = None
    email_recipients: List[str] = Field(default_factory=list, sa_type=JSON)
    email_distribution: str = Field(default="per_commit")
    created_at: int
    updated_at: int
