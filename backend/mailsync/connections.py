"""
Mailbox Connection Lifecycle
Connect, disconnect and inspect a user's mailbox connection. The web layer
calls these after the OAuth consent flow and from the settings screen.
"""

from datetime import datetime
from typing import Optional

import database

from .bank_catalog import default_bank_filters, map_country_to_code
from .gmail_auth import decrypt_token, encrypt_token, revoke_access
from .logging_config import get_logger

logger = get_logger(__name__)


def connect_mailbox(
    user_id: int,
    email_address: str,
    access_token: str,
    refresh_token: Optional[str] = None,
    token_expires_at: Optional[datetime] = None,
    country: Optional[str] = None,
    provider: str = "gmail",
) -> dict:
    """
    Store (or reactivate) a mailbox connection and create its default bank filters.

    Args:
        user_id: Owning user
        email_address: Mailbox address
        access_token: Plain access token (encrypted before storage)
        refresh_token: Plain refresh token
        token_expires_at: Access token expiry
        country: User's country name or ISO code (selects the bank catalog)
        provider: Mailbox provider

    Returns:
        Dictionary with connection_id, country and filters_created
    """
    connection_id = database.save_mailbox_connection(
        user_id=user_id,
        email_address=email_address,
        access_token=encrypt_token(access_token),
        refresh_token=encrypt_token(refresh_token) if refresh_token else None,
        token_expires_at=token_expires_at,
        provider=provider,
    )

    country_code = map_country_to_code(country)
    filters = default_bank_filters(country_code)
    if not filters:
        logger.warning(
            f"No supported banks for country {country_code}",
            extra={"connection_id": connection_id},
        )
    created = database.create_bank_filters(connection_id, filters)

    logger.info(
        f"Mailbox connected for user {user_id}: {created} bank filters created ({country_code})",
        extra={"connection_id": connection_id},
    )
    return {"connection_id": connection_id, "country": country_code, "filters_created": created}


def disconnect_mailbox(user_id: int, provider: str = "gmail", revoke: bool = True) -> bool:
    """
    Soft-disable a user's mailbox connection.

    Candidate emails and sync history are kept. The token is revoked at the
    provider on a best-effort basis.

    Returns:
        True if an active connection was disabled
    """
    connection = database.get_user_mailbox_connection(user_id, provider)
    if connection is None:
        return False

    disabled = database.deactivate_mailbox_connection(user_id, provider)

    if disabled and revoke and provider == "gmail":
        revoke_access(decrypt_token(connection["access_token"]))

    logger.info(
        f"Mailbox disconnected for user {user_id}",
        extra={"connection_id": connection["id"]},
    )
    return disabled


def get_connection_status(user_id: int, provider: str = "gmail") -> Optional[dict]:
    """
    Read-only sync status for the owning user.

    Returns:
        Dictionary with connection details, last sync outcome and error text,
        configured bank count, candidate counts by status and number of
        imported transactions; None when the user has no connection
    """
    connection = database.get_user_mailbox_connection(user_id, provider)
    if connection is None:
        return None

    filters = database.get_bank_filters(connection["id"], active_only=True)

    return {
        "connection_id": connection["id"],
        "provider": connection["provider"],
        "email_address": connection["email_address"],
        "is_active": connection["is_active"],
        "last_sync_at": connection["last_sync_at"],
        "last_sync_status": connection["last_sync_status"],
        "last_sync_error": connection["last_sync_error"],
        "bank_count": len(filters),
        "banks": [f["bank_name"] for f in filters],
        "emails_by_status": database.get_candidate_status_counts(connection["id"]),
        "transactions_imported": database.count_imported_transactions(connection["id"]),
        "recent_runs": database.get_recent_sync_logs(connection["id"], limit=5),
    }
