# backend/database/models/mailbox.py
"""
Mailbox integration models for bank notification import.

Maps to:
- mailbox_connections table - one per (user, provider), OAuth tokens encrypted
- bank_filter_rules table - sender/subject filters used to build the search query
- candidate_emails table - per-message audit record and idempotency key
- email_sync_logs table - per-run aggregate counters and timing
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from database.base import Base
from database.models.types import JSONType

SYNC_STATUSES = ("PENDING", "IN_PROGRESS", "SUCCESS", "FAILED")
CANDIDATE_STATUSES = (
    "PENDING",
    "PROCESSING",
    "SUCCESS",
    "FAILED",
    "DUPLICATE",
    "SKIPPED",
)


def _in_list(column: str, values: tuple) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class MailboxConnection(Base):
    """OAuth connection to a user's mailbox (encrypted tokens)."""

    __tablename__ = "mailbox_connections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    provider = Column(String(20), nullable=False, default="gmail")
    email_address = Column(String(255), nullable=False)
    access_token = Column(Text, nullable=False)  # Encrypted
    refresh_token = Column(Text, nullable=True)  # Encrypted
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_status = Column(String(20), nullable=False, default="PENDING")
    last_sync_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_mailbox_conn_user_provider"),
        CheckConstraint(
            _in_list("last_sync_status", SYNC_STATUSES),
            name="ck_mailbox_conn_sync_status",
        ),
        CheckConstraint("provider IN ('gmail', 'outlook')", name="ck_mailbox_conn_provider"),
        Index("idx_mailbox_conn_active_sync", "is_active", "last_sync_at"),
    )

    def __repr__(self) -> str:
        return f"<MailboxConnection(id={self.id}, email={self.email_address}, status={self.last_sync_status})>"


class BankFilterRule(Base):
    """Sender addresses and subject keywords identifying one bank's notifications."""

    __tablename__ = "bank_filter_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(
        Integer,
        ForeignKey("mailbox_connections.id", ondelete="CASCADE"),
        nullable=False,
    )
    bank_name = Column(String(255), nullable=False)
    sender_emails = Column(JSONType, nullable=False, default=list)
    subject_keywords = Column(JSONType, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("connection_id", "bank_name", name="uq_bank_filter_conn_bank"),
    )

    def __repr__(self) -> str:
        return f"<BankFilterRule(id={self.id}, bank={self.bank_name})>"


class CandidateEmail(Base):
    """Audit record for one examined mailbox message.

    The (connection_id, message_id) pair is the idempotency key: at most one
    row, and therefore at most one transaction, per provider message.
    """

    __tablename__ = "candidate_emails"

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(
        Integer,
        ForeignKey("mailbox_connections.id", ondelete="CASCADE"),
        nullable=False,
    )
    message_id = Column(String(255), nullable=False)
    subject = Column(Text, nullable=True)
    sender_email = Column(String(255), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    raw_content = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="PROCESSING")
    parsed_data = Column(JSONType, nullable=True)
    transaction_id = Column(
        Integer, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True
    )
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "connection_id", "message_id", name="uq_candidate_email_conn_message"
        ),
        CheckConstraint(
            _in_list("status", CANDIDATE_STATUSES), name="ck_candidate_email_status"
        ),
        Index("idx_candidate_email_conn_status", "connection_id", "status"),
        Index("idx_candidate_email_status_claimed", "status", "claimed_at"),
    )

    def __repr__(self) -> str:
        return f"<CandidateEmail(id={self.id}, message_id={self.message_id}, status={self.status})>"


class EmailSyncLog(Base):
    """Aggregate counters and timing for one sync run of one connection."""

    __tablename__ = "email_sync_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(
        Integer,
        ForeignKey("mailbox_connections.id", ondelete="CASCADE"),
        nullable=False,
    )
    status = Column(String(20), nullable=False, default="IN_PROGRESS")
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    emails_found = Column(Integer, nullable=False, default=0)
    emails_processed = Column(Integer, nullable=False, default=0)
    emails_skipped = Column(Integer, nullable=False, default=0)
    emails_duplicated = Column(Integer, nullable=False, default=0)
    emails_failed = Column(Integer, nullable=False, default=0)
    transactions_created = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            _in_list("status", SYNC_STATUSES), name="ck_email_sync_log_status"
        ),
        Index("idx_email_sync_logs_connection", "connection_id", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<EmailSyncLog(id={self.id}, connection={self.connection_id}, status={self.status})>"
