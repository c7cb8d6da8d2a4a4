"""
Transactions - Database Operations

Writes transactions imported from bank emails and answers the same-day
existence query used by the duplicate detector.
"""

from datetime import datetime, timedelta
from decimal import Decimal

from .base import get_session, store_operation
from .models.transaction import Transaction


def _day_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """Half-open [start, end) calendar day containing moment (naive wall-clock)."""
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    return start, start + timedelta(days=1)


@store_operation
def create_transaction(
    user_id: int,
    amount: Decimal,
    date: datetime,
    description: str = None,
    merchant: str = None,
    category_id: int = None,
    currency: str = "RD$",
    transaction_type: str = "EXPENSE",
    source: str = "email",
) -> int:
    """
    Create a transaction.

    Args:
        user_id: Owner
        amount: Positive amount
        date: Transaction date as printed by the bank
        description: Synthesized description
        merchant: Merchant name as extracted
        category_id: Resolved category (nullable)
        currency: Canonical currency code
        transaction_type: EXPENSE or INCOME
        source: Origin of the record ("email" for imports)

    Returns:
        Transaction ID
    """
    with get_session() as session:
        transaction = Transaction(
            user_id=user_id,
            amount=amount,
            currency=currency,
            type=transaction_type,
            description=description,
            merchant=merchant,
            date=date.replace(tzinfo=None),
            category_id=category_id,
            source=source,
        )
        session.add(transaction)
        session.commit()
        return transaction.id


@store_operation
def find_same_day_transaction(
    user_id: int,
    amount: Decimal,
    date: datetime,
    merchant: str = None,
    transaction_type: str = "EXPENSE",
) -> dict | None:
    """
    Find an existing transaction for the same user, amount and calendar day.

    When merchant is given it must appear (case-insensitively) in the stored
    description.

    Returns:
        The first matching transaction as a dict, or None
    """
    day_start, day_end = _day_bounds(date)

    with get_session() as session:
        query = session.query(Transaction).filter(
            Transaction.user_id == user_id,
            Transaction.type == transaction_type,
            Transaction.amount == amount,
            Transaction.date >= day_start,
            Transaction.date < day_end,
        )
        if merchant:
            query = query.filter(Transaction.description.icontains(merchant, autoescape=True))

        match = query.order_by(Transaction.id.asc()).first()
        if not match:
            return None

        return {
            "id": match.id,
            "amount": match.amount,
            "date": match.date,
            "description": match.description,
            "merchant": match.merchant,
        }


@store_operation
def get_transaction(transaction_id: int) -> dict | None:
    with get_session() as session:
        transaction = session.get(Transaction, transaction_id)
        if not transaction:
            return None

        return {
            "id": transaction.id,
            "user_id": transaction.user_id,
            "amount": transaction.amount,
            "currency": transaction.currency,
            "type": transaction.type,
            "description": transaction.description,
            "merchant": transaction.merchant,
            "date": transaction.date,
            "category_id": transaction.category_id,
            "source": transaction.source,
        }


@store_operation
def count_transactions(user_id: int, source: str = None) -> int:
    with get_session() as session:
        query = session.query(Transaction).filter(Transaction.user_id == user_id)
        if source:
            query = query.filter(Transaction.source == source)
        return query.count()
