# mypy: ignore-errors

import pytest
from sqlalchemy import select

from wins_column.database import get_session
from wins_column.entities.billing import CreditLedgerEntry
from wins_column.exceptions import InsufficientCreditsError


@pytest.mark.asyncio
async def test_balance_starts_at_zero(billing):
    assert await billing.get_balance("nobody") == 0
    assert not await billing.has_credits("nobody", 1)


@pytest.mark.asyncio
async def test_deduct_never_goes_negative(billing):
    """A deduction larger than the balance is refused and changes nothing."""
    await billing.add_credits("user_9", 2, "top up")

    first = await billing.deduct_credits("user_9", 2, "two summaries")
    second = await billing.deduct_credits("user_9", 1, "one more")

    assert first.ok and first.data == 0
    assert isinstance(second.error, InsufficientCreditsError)
    assert await billing.get_balance("user_9") == 0


@pytest.mark.asyncio
async def test_ledger_records_every_change(billing, session_maker):
    await billing.add_credits("user_9", 3, "top up")
    await billing.deduct_credits("user_9", 1, "summary")

    async with get_session(session_maker, read_only=True) as session:
        query = select(CreditLedgerEntry).where(CreditLedgerEntry.user_id == "user_9").order_by(CreditLedgerEntry.id)
        entries = (await session.execute(query)).scalars().all()

    assert [(e.amount, e.balance_after) for e in entries] == [(3, 3), (-1, 2)]


@pytest.mark.asyncio
async def test_non_positive_amounts_rejected(billing):
    assert not (await billing.add_credits("user_9", 0)).ok
    assert not (await billing.deduct_credits("user_9", -1, "refund")).ok
