"""Job queue entities."""

from typing import Any, Dict, Optional

from sqlalchemy import JSON, CheckConstraint, Column, ForeignKey, Index, Integer, UniqueConstraint
from sqlmodel import Field, SQLModel


class Job(SQLModel, table=True):
    """Unit of deferred work picked up by the job processor."""

    __tablename__ = "jobs"
    id: Optional[int] = Field(default=None, primary_key=True)
    type: str
    status: str = Field(default="pending")
    priority: int = Field(default=0)
    data: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    context: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    commit_id: Optional[int] = None
    project_id: Optional[int] = None
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    retry_after: Optional[int] = None
    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    scheduled_for: int
    expires_at: Optional[int] = None
    created_at: int
    updated_at: int
    __table_args__ = (
        CheckConstraint("priority >= 0 AND priority <= 100", name="ck_jobs_priority"),
        CheckConstraint("max_attempts >= 1 AND max_attempts <= 10", name="ck_jobs_max_attempts"),
        CheckConstraint("attempts <= max_attempts", name="ck_jobs_attempts"),
        Index("idx_jobs_status", "status"),
        Index("idx_jobs_ready", "status", "scheduled_for", "priority"),
        Index("idx_jobs_commit", "commit_id"),
        Index("idx_jobs_project", "project_id"),
    )


class JobDependency(SQLModel, table=True):
    """Edge meaning ``job_id`` may not start until ``depends_on_job_id`` completed."""

    __tablename__ = "job_dependencies"
    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: int = Field(sa_column=Column(Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False))
    depends_on_job_id: int = Field(
        sa_column=Column(Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False)
    )
    created_at: int
    __table_args__ = (
        UniqueConstraint("job_id", "depends_on_job_id", name="uq_job_dependencies_pair"),
        CheckConstraint("job_id != depends_on_job_id", name="ck_job_dependencies_no_self"),
        Index("idx_job_dependencies_job", "job_id"),
        Index("idx_job_dependencies_depends_on", "depends_on_job_id"),
    )
