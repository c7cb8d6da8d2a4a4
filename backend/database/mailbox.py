"""
Mailbox Sync - Database Operations

Handles all database operations for bank notification email import.

Modules:
- Connection management (save_mailbox_connection, get_mailbox_connection, etc.)
- Bank filter rules (create_bank_filters, get_active_bank_filters, update_bank_filter)
- Candidate emails (claim_candidate_email, finish_candidate_email, record_candidate_success)
- Recovery sweep (sweep_stale_candidates)
- Sync run logs (create_sync_log, complete_sync_log, get_recent_sync_logs)
"""

from datetime import datetime, timedelta

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError

from mailsync.candidate_state import CandidateStatus, transition
from mailsync.errors import InvalidTransitionError

from .base import as_utc, get_session, store_operation, utcnow
from .models.mailbox import BankFilterRule, CandidateEmail, EmailSyncLog, MailboxConnection
from .models.transaction import Transaction

# ============================================================================
# CONNECTION MANAGEMENT
# ============================================================================


def _connection_to_dict(connection: MailboxConnection) -> dict:
    return {
        "id": connection.id,
        "user_id": connection.user_id,
        "provider": connection.provider,
        "email_address": connection.email_address,
        "access_token": connection.access_token,
        "refresh_token": connection.refresh_token,
        "token_expires_at": as_utc(connection.token_expires_at),
        "is_active": connection.is_active,
        "last_sync_at": as_utc(connection.last_sync_at),
        "last_sync_status": connection.last_sync_status,
        "last_sync_error": connection.last_sync_error,
    }


@store_operation
def save_mailbox_connection(
    user_id: int,
    email_address: str,
    access_token: str,
    refresh_token: str = None,
    token_expires_at: datetime = None,
    provider: str = "gmail",
) -> int:
    """
    Save or update a mailbox connection, reactivating it if it was disabled.

    Args:
        user_id: User ID
        email_address: Connected mailbox address
        access_token: Encrypted access token
        refresh_token: Encrypted refresh token
        token_expires_at: Access token expiry
        provider: Mailbox provider

    Returns:
        Connection ID
    """
    with get_session() as session:
        connection = (
            session.query(MailboxConnection)
            .filter(
                MailboxConnection.user_id == user_id,
                MailboxConnection.provider == provider,
            )
            .first()
        )

        if connection is None:
            connection = MailboxConnection(user_id=user_id, provider=provider)
            session.add(connection)

        connection.email_address = email_address
        connection.access_token = access_token
        if refresh_token:
            connection.refresh_token = refresh_token
        connection.token_expires_at = token_expires_at
        connection.is_active = True
        connection.last_sync_error = None

        session.commit()
        return connection.id


@store_operation
def get_mailbox_connection(connection_id: int) -> dict | None:
    """Get a mailbox connection by ID."""
    with get_session() as session:
        connection = session.get(MailboxConnection, connection_id)
        return _connection_to_dict(connection) if connection else None


@store_operation
def get_user_mailbox_connection(user_id: int, provider: str = "gmail") -> dict | None:
    with get_session() as session:
        connection = (
            session.query(MailboxConnection)
            .filter(
                MailboxConnection.user_id == user_id,
                MailboxConnection.provider == provider,
            )
            .first()
        )
        return _connection_to_dict(connection) if connection else None


@store_operation
def deactivate_mailbox_connection(user_id: int, provider: str = "gmail") -> bool:
    """Soft-disable a connection. Returns True if an active connection was disabled."""
    with get_session() as session:
        result = session.execute(
            update(MailboxConnection)
            .where(
                MailboxConnection.user_id == user_id,
                MailboxConnection.provider == provider,
                MailboxConnection.is_active.is_(True),
            )
            .values(is_active=False, updated_at=utcnow())
        )
        session.commit()
        return result.rowcount > 0


@store_operation
def update_connection_tokens(
    connection_id: int,
    access_token: str,
    token_expires_at: datetime,
    refresh_token: str = None,
) -> None:
    """Store refreshed (encrypted) tokens."""
    values = {
        "access_token": access_token,
        "token_expires_at": token_expires_at,
        "updated_at": utcnow(),
    }
    if refresh_token:
        values["refresh_token"] = refresh_token

    with get_session() as session:
        session.execute(
            update(MailboxConnection)
            .where(MailboxConnection.id == connection_id)
            .values(**values)
        )
        session.commit()


@store_operation
def mark_connection_sync_started(connection_id: int) -> None:
    with get_session() as session:
        session.execute(
            update(MailboxConnection)
            .where(MailboxConnection.id == connection_id)
            .values(last_sync_status="IN_PROGRESS", updated_at=utcnow())
        )
        session.commit()


@store_operation
def finish_connection_sync(
    connection_id: int,
    status: str,
    error_message: str = None,
    cursor: datetime = None,
) -> None:
    """
    Record the outcome of a sync run on its connection.

    Args:
        connection_id: Connection ID
        status: SUCCESS or FAILED
        error_message: Error text shown to the user (None clears it)
        cursor: New last-sync cursor; None leaves the cursor where it was
    """
    values = {
        "last_sync_status": status,
        "last_sync_error": error_message,
        "updated_at": utcnow(),
    }
    if cursor is not None:
        values["last_sync_at"] = cursor

    with get_session() as session:
        session.execute(
            update(MailboxConnection)
            .where(MailboxConnection.id == connection_id)
            .values(**values)
        )
        session.commit()


@store_operation
def get_connections_due_for_sync(min_interval_minutes: int, force: bool = False) -> list[int]:
    """
    Get IDs of active connections whose last sync is older than the interval.

    Args:
        min_interval_minutes: Minimum time between two syncs of one connection
        force: Return every active connection regardless of last sync

    Returns:
        Connection IDs, never-synced connections first
    """
    cutoff = utcnow() - timedelta(minutes=min_interval_minutes)

    with get_session() as session:
        query = session.query(MailboxConnection.id).filter(
            MailboxConnection.is_active.is_(True)
        )
        if not force:
            query = query.filter(
                or_(
                    MailboxConnection.last_sync_at.is_(None),
                    MailboxConnection.last_sync_at < cutoff,
                )
            )

        rows = query.order_by(
            MailboxConnection.last_sync_at.is_(None).desc(),
            MailboxConnection.last_sync_at.asc(),
            MailboxConnection.id.asc(),
        ).all()
        return [row.id for row in rows]


# ============================================================================
# BANK FILTER RULES
# ============================================================================


def _filter_to_dict(rule: BankFilterRule) -> dict:
    return {
        "id": rule.id,
        "connection_id": rule.connection_id,
        "bank_name": rule.bank_name,
        "sender_emails": list(rule.sender_emails or []),
        "subject_keywords": list(rule.subject_keywords or []),
        "is_active": rule.is_active,
    }


@store_operation
def create_bank_filters(connection_id: int, filters: list[dict]) -> int:
    """
    Create bank filter rules that the connection does not have yet.

    Args:
        connection_id: Connection ID
        filters: Dicts with bank_name, sender_emails, subject_keywords

    Returns:
        Number of rules created
    """
    with get_session() as session:
        existing = {
            name
            for (name,) in session.query(BankFilterRule.bank_name).filter(
                BankFilterRule.connection_id == connection_id
            )
        }

        created = 0
        for item in filters:
            if item["bank_name"] in existing:
                continue
            session.add(
                BankFilterRule(
                    connection_id=connection_id,
                    bank_name=item["bank_name"],
                    sender_emails=list(item["sender_emails"]),
                    subject_keywords=list(item["subject_keywords"]),
                    is_active=True,
                )
            )
            existing.add(item["bank_name"])
            created += 1

        session.commit()
        return created


@store_operation
def get_bank_filters(connection_id: int, active_only: bool = False) -> list[dict]:
    with get_session() as session:
        query = session.query(BankFilterRule).filter(
            BankFilterRule.connection_id == connection_id
        )
        if active_only:
            query = query.filter(BankFilterRule.is_active.is_(True))
        return [_filter_to_dict(r) for r in query.order_by(BankFilterRule.id.asc())]


def get_active_bank_filters(connection_id: int) -> list[dict]:
    return get_bank_filters(connection_id, active_only=True)


@store_operation
def update_bank_filter(
    filter_id: int,
    sender_emails: list[str] = None,
    subject_keywords: list[str] = None,
    is_active: bool = None,
) -> dict | None:
    """
    Edit a bank filter rule. Arguments left as None are not changed.

    Returns:
        The updated rule, or None if it does not exist
    """
    with get_session() as session:
        rule = session.get(BankFilterRule, filter_id)
        if rule is None:
            return None

        if sender_emails is not None:
            rule.sender_emails = [s.strip() for s in sender_emails if s and s.strip()]
        if subject_keywords is not None:
            rule.subject_keywords = [k.strip() for k in subject_keywords if k and k.strip()]
        if is_active is not None:
            rule.is_active = is_active

        session.commit()
        return _filter_to_dict(rule)


# ============================================================================
# CANDIDATE EMAILS
# ============================================================================


@store_operation
def claim_candidate_email(connection_id: int, message_id: str) -> int | None:
    """
    Atomically claim a mailbox message for processing.

    Inserts the candidate row in PROCESSING. If the (connection, message) key
    already exists the message belongs to another run, unless the recovery
    sweep released it to PENDING, in which case it is reclaimed with a
    compare-and-set update.

    Returns:
        Candidate ID if this caller now owns the message, else None
    """
    now = utcnow()
    status = transition(CandidateStatus.PENDING, CandidateStatus.PROCESSING)

    with get_session() as session:
        candidate = CandidateEmail(
            connection_id=connection_id,
            message_id=message_id,
            status=status.value,
            attempts=1,
            claimed_at=now,
        )
        session.add(candidate)
        try:
            session.commit()
            return candidate.id
        except IntegrityError:
            session.rollback()

        result = session.execute(
            update(CandidateEmail)
            .where(
                CandidateEmail.connection_id == connection_id,
                CandidateEmail.message_id == message_id,
                CandidateEmail.status == CandidateStatus.PENDING.value,
            )
            .values(
                status=status.value,
                attempts=CandidateEmail.attempts + 1,
                claimed_at=now,
                error_message=None,
            )
        )
        session.commit()
        if not result.rowcount:
            return None

        return (
            session.query(CandidateEmail.id)
            .filter(
                CandidateEmail.connection_id == connection_id,
                CandidateEmail.message_id == message_id,
            )
            .scalar()
        )


@store_operation
def record_candidate_content(
    candidate_id: int,
    subject: str,
    sender_email: str,
    received_at: datetime,
    raw_content: str,
) -> None:
    """Store the fetched message headers and truncated body on a claimed candidate."""
    with get_session() as session:
        session.execute(
            update(CandidateEmail)
            .where(CandidateEmail.id == candidate_id)
            .values(
                subject=subject,
                sender_email=sender_email,
                received_at=received_at,
                raw_content=raw_content,
            )
        )
        session.commit()


def _guarded_status_update(session, candidate_id: int, target: CandidateStatus, **values) -> None:
    """Move a candidate to target, compare-and-set on its current status."""
    current = (
        session.query(CandidateEmail.status)
        .filter(CandidateEmail.id == candidate_id)
        .scalar()
    )
    if current is None:
        raise LookupError(f"Candidate email {candidate_id} not found")

    transition(current, target)

    result = session.execute(
        update(CandidateEmail)
        .where(CandidateEmail.id == candidate_id, CandidateEmail.status == current)
        .values(status=target.value, **values)
    )
    if not result.rowcount:
        # Lost a race with another writer (the recovery sweep)
        raise InvalidTransitionError(
            f"Candidate email {candidate_id} left {current} before reaching {target.value}"
        )


@store_operation
def finish_candidate_email(
    candidate_id: int,
    status: CandidateStatus,
    error_message: str = None,
    parsed_data: dict = None,
) -> None:
    """
    Move a PROCESSING candidate to a terminal status without a transaction.

    Raises:
        InvalidTransitionError: If the candidate is not in a state that allows it
    """
    values = {"processed_at": utcnow(), "error_message": error_message}
    if parsed_data is not None:
        values["parsed_data"] = parsed_data

    with get_session() as session:
        _guarded_status_update(session, candidate_id, CandidateStatus(status), **values)
        session.commit()


@store_operation
def record_candidate_success(
    candidate_id: int,
    transaction: dict,
    parsed_data: dict = None,
) -> int:
    """
    Create the transaction and mark the candidate SUCCESS in one database transaction.

    Either both writes land or neither does, so a candidate never reaches
    SUCCESS without its transaction and a transaction never exists for a
    candidate that stayed non-terminal.

    Args:
        candidate_id: Claimed candidate
        transaction: Column values for the new Transaction
        parsed_data: Parser snapshot stored on the candidate

    Returns:
        Transaction ID
    """
    with get_session() as session:
        record = Transaction(**transaction)
        session.add(record)
        session.flush()

        _guarded_status_update(
            session,
            candidate_id,
            CandidateStatus.SUCCESS,
            transaction_id=record.id,
            parsed_data=parsed_data,
            processed_at=utcnow(),
            error_message=None,
        )
        session.commit()
        return record.id


@store_operation
def get_candidate_email(connection_id: int, message_id: str) -> dict | None:
    with get_session() as session:
        candidate = (
            session.query(CandidateEmail)
            .filter(
                CandidateEmail.connection_id == connection_id,
                CandidateEmail.message_id == message_id,
            )
            .first()
        )
        if not candidate:
            return None

        return {
            "id": candidate.id,
            "connection_id": candidate.connection_id,
            "message_id": candidate.message_id,
            "subject": candidate.subject,
            "sender_email": candidate.sender_email,
            "received_at": as_utc(candidate.received_at),
            "raw_content": candidate.raw_content,
            "status": candidate.status,
            "parsed_data": candidate.parsed_data,
            "transaction_id": candidate.transaction_id,
            "error_message": candidate.error_message,
            "attempts": candidate.attempts,
            "processed_at": as_utc(candidate.processed_at),
        }


@store_operation
def get_pending_candidate_message_ids(connection_id: int) -> list[str]:
    """Message IDs released by the recovery sweep and waiting to be reclaimed."""
    with get_session() as session:
        rows = (
            session.query(CandidateEmail.message_id)
            .filter(
                CandidateEmail.connection_id == connection_id,
                CandidateEmail.status == CandidateStatus.PENDING.value,
            )
            .order_by(CandidateEmail.id.asc())
            .all()
        )
        return [row.message_id for row in rows]


@store_operation
def get_candidate_status_counts(connection_id: int) -> dict:
    """Count candidates by status, with every status present (zero if unused)."""
    with get_session() as session:
        rows = (
            session.query(CandidateEmail.status, func.count(CandidateEmail.id))
            .filter(CandidateEmail.connection_id == connection_id)
            .group_by(CandidateEmail.status)
            .all()
        )

    counts = {status.value: 0 for status in CandidateStatus}
    counts.update({status: count for status, count in rows})
    return counts


@store_operation
def count_imported_transactions(connection_id: int) -> int:
    with get_session() as session:
        return (
            session.query(func.count(CandidateEmail.id))
            .filter(
                CandidateEmail.connection_id == connection_id,
                CandidateEmail.status == CandidateStatus.SUCCESS.value,
                CandidateEmail.transaction_id.isnot(None),
            )
            .scalar()
            or 0
        )


# ============================================================================
# RECOVERY SWEEP
# ============================================================================


@store_operation
def sweep_stale_candidates(stale_after_minutes: int, max_attempts: int) -> dict:
    """
    Resolve PROCESSING candidates whose claim is older than the threshold.

    - Already linked to a transaction -> SUCCESS
    - Fewer than max_attempts claims -> PENDING (reclaimed by the next run)
    - Otherwise -> FAILED

    Each bulk update is guarded by status = PROCESSING so rows finished by a
    live worker in the meantime are left alone.

    Returns:
        Dict with recovered, released and abandoned counts
    """
    for target in (CandidateStatus.SUCCESS, CandidateStatus.PENDING, CandidateStatus.FAILED):
        transition(CandidateStatus.PROCESSING, target)

    now = utcnow()
    cutoff = now - timedelta(minutes=stale_after_minutes)
    stale = (
        CandidateEmail.status == CandidateStatus.PROCESSING.value,
        or_(CandidateEmail.claimed_at.is_(None), CandidateEmail.claimed_at < cutoff),
    )

    with get_session() as session:
        recovered = session.execute(
            update(CandidateEmail)
            .where(*stale, CandidateEmail.transaction_id.isnot(None))
            .values(status=CandidateStatus.SUCCESS.value, processed_at=now)
        ).rowcount

        released = session.execute(
            update(CandidateEmail)
            .where(
                *stale,
                CandidateEmail.transaction_id.is_(None),
                CandidateEmail.attempts < max_attempts,
            )
            .values(status=CandidateStatus.PENDING.value, claimed_at=None)
        ).rowcount

        abandoned = session.execute(
            update(CandidateEmail)
            .where(
                *stale,
                CandidateEmail.transaction_id.is_(None),
                CandidateEmail.attempts >= max_attempts,
            )
            .values(
                status=CandidateStatus.FAILED.value,
                processed_at=now,
                error_message=f"Processing abandoned after {max_attempts} attempts",
            )
        ).rowcount

        session.commit()

    return {"recovered": recovered, "released": released, "abandoned": abandoned}


# ============================================================================
# SYNC RUN LOGS
# ============================================================================


@store_operation
def create_sync_log(connection_id: int) -> int:
    with get_session() as session:
        log = EmailSyncLog(connection_id=connection_id, status="IN_PROGRESS", started_at=utcnow())
        session.add(log)
        session.commit()
        return log.id


@store_operation
def complete_sync_log(
    log_id: int,
    status: str,
    duration_ms: int,
    emails_found: int = 0,
    emails_processed: int = 0,
    emails_skipped: int = 0,
    emails_duplicated: int = 0,
    emails_failed: int = 0,
    transactions_created: int = 0,
    error_message: str = None,
) -> None:
    with get_session() as session:
        session.execute(
            update(EmailSyncLog)
            .where(EmailSyncLog.id == log_id)
            .values(
                status=status,
                completed_at=utcnow(),
                duration_ms=duration_ms,
                emails_found=emails_found,
                emails_processed=emails_processed,
                emails_skipped=emails_skipped,
                emails_duplicated=emails_duplicated,
                emails_failed=emails_failed,
                transactions_created=transactions_created,
                error_message=error_message,
            )
        )
        session.commit()


@store_operation
def get_recent_sync_logs(connection_id: int, limit: int = 10) -> list[dict]:
    with get_session() as session:
        logs = (
            session.query(EmailSyncLog)
            .filter(EmailSyncLog.connection_id == connection_id)
            .order_by(EmailSyncLog.id.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "id": log.id,
                "status": log.status,
                "started_at": as_utc(log.started_at),
                "completed_at": as_utc(log.completed_at),
                "duration_ms": log.duration_ms,
                "emails_found": log.emails_found,
                "emails_processed": log.emails_processed,
                "emails_skipped": log.emails_skipped,
                "emails_duplicated": log.emails_duplicated,
                "emails_failed": log.emails_failed,
                "transactions_created": log.transactions_created,
                "error_message": log.error_message,
            }
            for log in logs
        ]
