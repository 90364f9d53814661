"""Email tracking entities."""

from typing import List, Optional

from sqlalchemy import JSON, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


class EmailSend(SQLModel, table=True):
    """One dispatch attempt of a send_email job."""

    __tablename__ = "email_sends"
    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: int
    attempt: int
    template_type: str
    recipients: List[str] = Field(default_factory=list, sa_type=JSON)
    commit_ids: List[int] = Field(default_factory=list, sa_type=JSON)
    subject: str = ""
    status: str = Field(default="pending")
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    created_at: int
    updated_at: int
    __table_args__ = (
        UniqueConstraint("job_id", "attempt", name="uq_email_sends_job_attempt"),
        Index("idx_email_sends_job", "job_id"),
    )
