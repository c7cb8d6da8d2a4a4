"""
Gmail OAuth 2.0 Token Management
Keeps mailbox connection tokens usable: Fernet encryption at rest, refresh
against Google's token endpoint, and revocation on disconnect.

Acquiring the first tokens (the consent screen) is handled by the web app;
this module starts from a stored connection.
"""

import os
from datetime import datetime, timedelta

import requests
from cryptography.fernet import Fernet, InvalidToken
from dotenv import load_dotenv

import database
from database import as_utc, utcnow

from .errors import CredentialError
from .logging_config import get_logger

# Load environment variables (Docker env vars take precedence)
load_dotenv(override=False)

logger = get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"

# Refresh tokens this close to expiry
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)

TOKEN_REQUEST_TIMEOUT = 10


def _cipher():
    key = os.getenv("ENCRYPTION_KEY")
    return Fernet(key) if key else None


def encrypt_token(token: str) -> str:
    """Encrypt sensitive token for storage."""
    cipher = _cipher()
    if not cipher:
        logger.warning("ENCRYPTION_KEY not set. Storing token unencrypted (NOT recommended for production)")
        return token
    return cipher.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt stored token."""
    cipher = _cipher()
    if not cipher:
        return encrypted_token

    try:
        return cipher.decrypt(encrypted_token.encode()).decode()
    except InvalidToken as e:
        raise CredentialError("Stored token could not be decrypted (ENCRYPTION_KEY changed?)") from e


def refresh_access_token(refresh_token: str) -> dict:
    """
    Refresh an expired access token.

    Args:
        refresh_token: Refresh token from previous authentication

    Returns:
        Dictionary with new 'access_token', 'refresh_token' and 'expires_at'

    Raises:
        CredentialError: If client credentials are missing or Google rejects the refresh
    """
    client_id = os.getenv("GOOGLE_CLIENT_ID")
    client_secret = os.getenv("GOOGLE_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise CredentialError("GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET not configured")

    data = {
        "grant_type": "refresh_token",
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
    }
    headers = {"Content-Type": "application/x-www-form-urlencoded"}

    try:
        response = requests.post(
            GOOGLE_TOKEN_URL, data=data, headers=headers, timeout=TOKEN_REQUEST_TIMEOUT
        )
        response.raise_for_status()
        token_data = response.json()
    except requests.RequestException as e:
        detail = ""
        if getattr(e, "response", None) is not None:
            detail = f" ({e.response.status_code}: {e.response.text[:200]})"
        raise CredentialError(f"Gmail token refresh failed{detail}") from e

    if not token_data.get("access_token"):
        raise CredentialError("Gmail token refresh returned no access token")

    expires_in = int(token_data.get("expires_in", 3600))

    return {
        "access_token": token_data["access_token"],
        # Google only returns a refresh token when it rotates it
        "refresh_token": token_data.get("refresh_token", refresh_token),
        "expires_at": utcnow() + timedelta(seconds=expires_in),
    }


def get_valid_access_token(connection: dict) -> str:
    """
    Get a valid access token for a mailbox connection, refreshing if needed.

    Args:
        connection: Connection dict as returned by database.get_mailbox_connection

    Returns:
        Valid (decrypted) access token string

    Raises:
        CredentialError: If the token is expired and cannot be refreshed
    """
    access_token = decrypt_token(connection["access_token"])
    refresh_token = (
        decrypt_token(connection["refresh_token"]) if connection.get("refresh_token") else None
    )

    expires_at = connection.get("token_expires_at")
    if isinstance(expires_at, str):
        expires_at = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
    expires_at = as_utc(expires_at)

    if expires_at is None or expires_at > utcnow() + TOKEN_REFRESH_MARGIN:
        return access_token

    if not refresh_token:
        raise CredentialError("Access token expired and no refresh token available")

    logger.info(
        "Access token expiring, refreshing",
        extra={"connection_id": connection["id"]},
    )
    new_tokens = refresh_access_token(refresh_token)

    database.update_connection_tokens(
        connection_id=connection["id"],
        access_token=encrypt_token(new_tokens["access_token"]),
        refresh_token=encrypt_token(new_tokens["refresh_token"]),
        token_expires_at=new_tokens["expires_at"],
    )

    return new_tokens["access_token"]


def revoke_access(access_token: str) -> bool:
    """Revoke a token at Google. Returns False (and logs) if Google refuses."""
    try:
        response = requests.post(
            GOOGLE_REVOKE_URL,
            params={"token": access_token},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=TOKEN_REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        return True
    except requests.RequestException as e:
        logger.warning(f"Gmail token revocation failed: {e}")
        return False
