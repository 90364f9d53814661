"""Commit entities."""

from typing import Optional

from sqlalchemy import Index, UniqueConstraint
from sqlmodel import Field, SQLModel


class Commit(SQLModel, table=True):
    __tablename__ = "commits"
    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="projects.id")
    sha: str
    message: str = ""
    author: Optional[str] = None
    author_email: Optional[str] = None
    branch: Optional[str] = None
    url: Optional[str] = None
    base_sha: Optional[str] = None
    pr_number: Optional[int] = None
    pr_title: Optional[str] = None
    pr_url: Optional[str] = None
    summary: Optional[str] = None
    change_type: Optional[str] = None
    summary_confidence: Optional[float] = None
    email_sent: bool = Field(default=False)
    committed_at: Optional[int] = None
    created_at: int
    updated_at: int
    __table_args__ = (
        UniqueConstraint("project_id", "sha", name="uq_commits_project_sha"),
        Index("idx_commits_project", "project_id"),
    )
