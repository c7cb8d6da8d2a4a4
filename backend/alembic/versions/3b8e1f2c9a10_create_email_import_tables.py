"""create_email_import_tables

Revision ID: 3b8e1f2c9a10
Revises:
Create Date: 2026-10-19 09:12:31.118402

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3b8e1f2c9a10"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
SYNC_STATUS_CHECK = "IN ('PENDING', 'IN_PROGRESS', 'SUCCESS', 'FAILED')"


def upgrade() -> None:
    """Create categories, transactions, mailbox, candidate and mapping tables.

    candidate_emails (connection_id, message_id) is the idempotency key for
    imported messages; merchant_category_mappings keeps one global row per
    merchant through a partial unique index on user_id IS NULL.
    """
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.String(length=10), nullable=False),
        sa.Column("icon", sa.String(length=50), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.CheckConstraint("type IN ('EXPENSE', 'INCOME')", name="ck_category_type"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=5), nullable=False),
        sa.Column("type", sa.String(length=10), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("merchant", sa.String(length=255), nullable=True),
        sa.Column("date", sa.DateTime(timezone=False), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.CheckConstraint("type IN ('EXPENSE', 'INCOME')", name="ck_transaction_type"),
        sa.CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "idx_transactions_user_amount_date", "transactions", ["user_id", "amount", "date"]
    )

    op.create_table(
        "mailbox_connections",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("email_address", sa.String(length=255), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_status", sa.String(length=20), nullable=False),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.CheckConstraint(
            f"last_sync_status {SYNC_STATUS_CHECK}", name="ck_mailbox_conn_sync_status"
        ),
        sa.CheckConstraint(
            "provider IN ('gmail', 'outlook')", name="ck_mailbox_conn_provider"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "provider", name="uq_mailbox_conn_user_provider"),
    )
    op.create_index(
        "idx_mailbox_conn_active_sync",
        "mailbox_connections",
        ["is_active", "last_sync_at"],
    )

    op.create_table(
        "bank_filter_rules",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("connection_id", sa.Integer(), nullable=False),
        sa.Column("bank_name", sa.String(length=255), nullable=False),
        sa.Column("sender_emails", JSON_TYPE, nullable=False),
        sa.Column("subject_keywords", JSON_TYPE, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.ForeignKeyConstraint(
            ["connection_id"], ["mailbox_connections.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("connection_id", "bank_name", name="uq_bank_filter_conn_bank"),
    )

    op.create_table(
        "candidate_emails",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("connection_id", sa.Integer(), nullable=False),
        sa.Column("message_id", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("sender_email", sa.String(length=255), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw_content", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("parsed_data", JSON_TYPE, nullable=True),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'SUCCESS', 'FAILED', 'DUPLICATE', 'SKIPPED')",
            name="ck_candidate_email_status",
        ),
        sa.ForeignKeyConstraint(
            ["connection_id"], ["mailbox_connections.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["transaction_id"], ["transactions.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "connection_id", "message_id", name="uq_candidate_email_conn_message"
        ),
    )
    op.create_index(
        "idx_candidate_email_conn_status", "candidate_emails", ["connection_id", "status"]
    )
    op.create_index(
        "idx_candidate_email_status_claimed", "candidate_emails", ["status", "claimed_at"]
    )

    op.create_table(
        "email_sync_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("connection_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column(
            "started_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("emails_found", sa.Integer(), nullable=False),
        sa.Column("emails_processed", sa.Integer(), nullable=False),
        sa.Column("emails_skipped", sa.Integer(), nullable=False),
        sa.Column("emails_duplicated", sa.Integer(), nullable=False),
        sa.Column("emails_failed", sa.Integer(), nullable=False),
        sa.Column("transactions_created", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.CheckConstraint(f"status {SYNC_STATUS_CHECK}", name="ck_email_sync_log_status"),
        sa.ForeignKeyConstraint(
            ["connection_id"], ["mailbox_connections.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_email_sync_logs_connection", "email_sync_logs", ["connection_id", "started_at"]
    )

    op.create_table(
        "merchant_category_mappings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("merchant_name", sa.String(length=255), nullable=False),
        sa.Column("merchant_pattern", sa.String(length=255), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        sa.Column("times_used", sa.Integer(), nullable=False),
        sa.Column("confirmed_by_users", sa.Integer(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 100", name="ck_merchant_mapping_confidence"
        ),
        sa.CheckConstraint(
            "source IN ('USER_CORRECTION', 'AI_INFERRED', 'SEED')",
            name="ck_merchant_mapping_source",
        ),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "merchant_name", name="uq_merchant_mapping_user_merchant"
        ),
    )
    op.create_index(
        "uq_merchant_mapping_global_merchant",
        "merchant_category_mappings",
        ["merchant_name"],
        unique=True,
        postgresql_where=sa.text("user_id IS NULL"),
        sqlite_where=sa.text("user_id IS NULL"),
    )
    op.create_index(
        "idx_merchant_mapping_trust",
        "merchant_category_mappings",
        ["confirmed_by_users", "confidence"],
    )


def downgrade() -> None:
    """Drop the email import tables in reverse dependency order."""
    op.drop_index("idx_merchant_mapping_trust", table_name="merchant_category_mappings")
    op.drop_index(
        "uq_merchant_mapping_global_merchant", table_name="merchant_category_mappings"
    )
    op.drop_table("merchant_category_mappings")
    op.drop_index("idx_email_sync_logs_connection", table_name="email_sync_logs")
    op.drop_table("email_sync_logs")
    op.drop_index("idx_candidate_email_status_claimed", table_name="candidate_emails")
    op.drop_index("idx_candidate_email_conn_status", table_name="candidate_emails")
    op.drop_table("candidate_emails")
    op.drop_table("bank_filter_rules")
    op.drop_index("idx_mailbox_conn_active_sync", table_name="mailbox_connections")
    op.drop_table("mailbox_connections")
    op.drop_index("idx_transactions_user_amount_date", table_name="transactions")
    op.drop_index("idx_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
