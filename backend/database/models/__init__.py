# backend/database/models/__init__.py
"""SQLAlchemy models for all database tables."""

from .category import Category
from .mailbox import BankFilterRule, CandidateEmail, EmailSyncLog, MailboxConnection
from .merchant_mapping import MerchantCategoryMapping
from .transaction import Transaction

__all__ = [
    "Category",
    "Transaction",
    "MailboxConnection",
    "BankFilterRule",
    "CandidateEmail",
    "EmailSyncLog",
    "MerchantCategoryMapping",
]
