"""
Database Layer - Public API

This module provides the public interface for all database operations.
It imports and re-exports functions from domain-specific modules.

Usage:
    from database import get_session, claim_candidate_email
    # or
    import database

Organization:
    - base.py: Engine, session factory and utilities
    - mailbox.py: Mailbox connections, bank filters, candidate emails, sync logs
    - transactions.py: Transaction writes and same-day lookups
    - categories.py: Category catalog reads
    - merchant_mappings.py: Two-tier merchant -> category mappings
"""

# Core session utilities (always available)
from .base import Base, engine, get_session, init_db, drop_db, utcnow, as_utc

# Category catalog
from .categories import (
    create_category,
    get_expense_categories,
)

# Mailbox sync operations
from .mailbox import (
    # Connection management
    save_mailbox_connection,
    get_mailbox_connection,
    get_user_mailbox_connection,
    deactivate_mailbox_connection,
    update_connection_tokens,
    mark_connection_sync_started,
    finish_connection_sync,
    get_connections_due_for_sync,
    # Bank filters
    create_bank_filters,
    get_bank_filters,
    get_active_bank_filters,
    update_bank_filter,
    # Candidate emails
    claim_candidate_email,
    record_candidate_content,
    finish_candidate_email,
    record_candidate_success,
    get_candidate_email,
    get_pending_candidate_message_ids,
    get_candidate_status_counts,
    count_imported_transactions,
    # Recovery
    sweep_stale_candidates,
    # Sync logs
    create_sync_log,
    complete_sync_log,
    get_recent_sync_logs,
)

# Merchant mappings
from .merchant_mappings import (
    find_user_mapping,
    get_global_mapping,
    find_trusted_global_mapping,
    increment_mapping_usage,
    upsert_user_mapping,
    delete_user_mapping,
    create_global_mapping_if_absent,
    apply_global_agreement,
    apply_global_disagreement,
    get_user_mapping_stats,
)

# Transactions
from .transactions import (
    count_transactions,
    create_transaction,
    find_same_day_transaction,
    get_transaction,
)
