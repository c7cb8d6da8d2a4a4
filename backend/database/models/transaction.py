# backend/database/models/transaction.py
"""
Transaction model.

Maps to:
- transactions table

Only the columns the email import writes or the duplicate detector reads are
modelled here; budgets, goals and reports live in the surrounding application.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.sql import func

from database.base import Base


class Transaction(Base):
    """A recorded income or expense."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(5), nullable=False, default="RD$")
    type = Column(String(10), nullable=False, default="EXPENSE")
    description = Column(Text, nullable=True)
    merchant = Column(String(255), nullable=True)
    # Wall-clock time printed by the bank (no timezone conversion)
    date = Column(DateTime(timezone=False), nullable=False)
    category_id = Column(
        Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    source = Column(String(20), nullable=False, default="manual")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_transactions_user_date", "user_id", "date"),
        Index("idx_transactions_user_amount_date", "user_id", "amount", "date"),
        CheckConstraint("type IN ('EXPENSE', 'INCOME')", name="ck_transaction_type"),
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
    )

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, user={self.user_id}, amount={self.amount}, merchant={self.merchant})>"
