"""Ledger of email dispatch attempts."""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wins_column.database import current_timestamp, get_session
from wins_column.entities.emails import EmailSend
from wins_column.exceptions import WinsColumnError
from wins_column.results import Result

logger = logging.getLogger(__name__)

EMAIL_STATUSES = ("pending", "sent", "failed")


class EmailTrackingService:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def record_email_send(
        self,
        job_id: int,
        attempt: int,
        template_type: str,
        recipients: List[str],
        commit_ids: List[int],
        subject: str,
    ) -> Result[EmailSend]:
        """Record a send attempt before dispatch; an existing ``(job_id, attempt)`` row is reused."""
        try:
            async with get_session(self.session_maker) as session:
                result = await session.execute(
                    select(EmailSend).where(EmailSend.job_id == job_id, EmailSend.attempt == attempt)
                )
                record = result.scalars().first()
                if record is None:
                    now = current_timestamp()
                    record = EmailSend(
                        job_id=job_id,
                        attempt=attempt,
                        template_type=template_type,
                        recipients=recipients,
                        commit_ids=commit_ids,
                        subject=subject,
                        status="pending",
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(record)
                    await session.flush()
                    await session.refresh(record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record email send for job {job_id}: {e}")
            return Result.failure(WinsColumnError(f"Failed to record email send: {e}"))
        return Result.success(record)

    async def mark_email_send_status(
        self,
        send_id: int,
        status: str,
        provider_message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Result[EmailSend]:
        if status not in EMAIL_STATUSES:
            return Result.failure(WinsColumnError(f"Invalid email send status: {status}"))
        try:
            async with get_session(self.session_maker) as session:
                record = await session.get(EmailSend, send_id)
                if record is None:
                    return Result.failure(WinsColumnError(f"Email send {send_id} not found"))
                record.status = status
                record.provider_message_id = provider_message_id or record.provider_message_id
                record.error = error
                record.updated_at = current_timestamp()
                await session.flush()
                await session.refresh(record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update email send {send_id}: {e}")
            return Result.failure(WinsColumnError(f"Failed to update email send: {e}"))
        return Result.success(record)

    async def find_sent_for_job(self, job_id: int) -> Result[Optional[EmailSend]]:
        try:
            async with get_session(self.session_maker, read_only=True) as session:
                result = await session.execute(
                    select(EmailSend)
                    .where(EmailSend.job_id == job_id, EmailSend.status == "sent")
                    .order_by(EmailSend.attempt.desc())
                )
                return Result.success(result.scalars().first())
        except SQLAlchemyError as e:
            return Result.failure(WinsColumnError(f"Failed to look up email sends for job {job_id}: {e}"))
