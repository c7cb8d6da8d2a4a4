"""
Duplicate Detector
Checks whether a parsed email transaction was already recorded, so the same
purchase notified twice (or entered by hand) is not imported again.

A duplicate is an EXPENSE of the same user with the same amount on the same
calendar day, whose description contains the merchant (when one is known).
Time of day is ignored; a one-cent difference is not a duplicate.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import database

from .email_parser import UNKNOWN_MERCHANT_NAMES


def find_duplicate(
    user_id: int,
    amount: Decimal,
    date: datetime,
    merchant: Optional[str] = None,
) -> Optional[dict]:
    """
    Find an already-recorded transaction matching the parsed one.

    Args:
        user_id: Owner of the transaction
        amount: Parsed amount
        date: Parsed transaction date (only the calendar day is compared)
        merchant: Parsed merchant; placeholders like "Unknown" are ignored

    Returns:
        The matching transaction dict, or None
    """
    if merchant and merchant.strip().lower() in UNKNOWN_MERCHANT_NAMES:
        merchant = None

    return database.find_same_day_transaction(
        user_id,
        amount,
        date,
        merchant=merchant.strip() if merchant else None,
    )
