"""Credit billing entities."""

from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class CreditBalance(SQLModel, table=True):
    __tablename__ = "credit_balances"
    user_id: str = Field(primary_key=True)
    balance: int = Field(default=0)
    updated_at: int


class CreditLedgerEntry(SQLModel, table=True):
    """Append-only record of every balance change."""

    __tablename__ = "credits_ledger"
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str
    amount: int
    balance_after: int
    description: str = ""
    created_at: int
    __table_args__ = (Index("idx_credits_ledger_user", "user_id"),)
