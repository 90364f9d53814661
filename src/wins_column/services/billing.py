"""Credit balances and the append-only ledger."""

import logging

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wins_column.database import current_timestamp, get_session
from wins_column.entities.billing import CreditBalance, CreditLedgerEntry
from wins_column.exceptions import InsufficientCreditsError, WinsColumnError
from wins_column.results import Result

logger = logging.getLogger(__name__)

SUMMARY_CREDIT_COST = 1


class BillingService:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def get_balance(self, user_id: str) -> int:
        async with get_session(self.session_maker, read_only=True) as session:
            balance = await session.get(CreditBalance, user_id)
        return balance.balance if balance else 0

    async def has_credits(self, user_id: str, amount: int) -> bool:
        return await self.get_balance(user_id) >= amount

    def estimate_summary_credits(self, diff_text: str) -> int:
        return SUMMARY_CREDIT_COST

    async def deduct_credits(self, user_id: str, amount: int, description: str) -> Result[int]:
        """Atomically take ``amount`` credits; never lets the balance go negative."""
        if amount <= 0:
            return Result.failure(WinsColumnError(f"Deduction must be positive, got {amount}"))
        try:
            async with get_session(self.session_maker) as session:
                now = current_timestamp()
                result = await session.execute(
                    update(CreditBalance)
                    .where(CreditBalance.user_id == user_id, CreditBalance.balance >= amount)
                    .values(balance=CreditBalance.balance - amount, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    return Result.failure(
                        InsufficientCreditsError(f"Insufficient credits for user {user_id}: need {amount}")
                    )
                balance = await session.get(CreditBalance, user_id)
                await session.refresh(balance)
                session.add(
                    CreditLedgerEntry(
                        user_id=user_id,
                        amount=-amount,
                        balance_after=balance.balance,
                        description=description,
                        created_at=now,
                    )
                )
                new_balance = balance.balance
        except SQLAlchemyError as e:
            logger.error(f"Failed to deduct {amount} credits from {user_id}: {e}")
            return Result.failure(WinsColumnError(f"Failed to deduct credits: {e}"))
        logger.info(f"Deducted {amount} credits from {user_id}, balance now {new_balance}")
        return Result.success(new_balance)

    async def add_credits(self, user_id: str, amount: int, description: str = "") -> Result[int]:
        if amount <= 0:
            return Result.failure(WinsColumnError(f"Credit amount must be positive, got {amount}"))
        try:
            async with get_session(self.session_maker) as session:
                now = current_timestamp()
                balance = await session.get(CreditBalance, user_id)
                if balance is None:
                    balance = CreditBalance(user_id=user_id, balance=0, updated_at=now)
                    session.add(balance)
                balance.balance += amount
                balance.updated_at = now
                session.add(
                    CreditLedgerEntry(
                        user_id=user_id,
                        amount=amount,
                        balance_after=balance.balance,
                        description=description,
                        created_at=now,
                    )
                )
                new_balance = balance.balance
        except SQLAlchemyError as e:
            logger.error(f"Failed to add {amount} credits to {user_id}: {e}")
            return Result.failure(WinsColumnError(f"Failed to add credits: {e}"))
        return Result.success(new_balance)
