"""
Mailbox Gateway
Abstract interface the sync orchestrator uses to reach a mailbox, plus the
Gmail REST implementation.

The Gmail client includes rate limiting, exponential backoff on 429/5xx,
pagination and body decoding (base64url, HTML flattened to text).
"""

import base64
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import requests
from bs4 import BeautifulSoup
from dotenv import load_dotenv
from google.auth.transport.requests import AuthorizedSession
from google.oauth2.credentials import Credentials

from . import gmail_auth
from .errors import CredentialError, GatewayError
from .logging_config import get_logger

# Load environment variables (Docker env vars take precedence)
load_dotenv(override=False)

logger = get_logger(__name__)

# Rate limiting configuration
RATE_LIMIT_DELAY = 0.1  # 100ms between requests (10 req/sec)
MAX_RETRIES = 3
BACKOFF_MULTIPLIER = 2
RETRYABLE_STATUS_CODES = (429, 500, 503)
REQUEST_TIMEOUT = 60

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"

# Gmail caps maxResults per page at 500
GMAIL_PAGE_LIMIT = 500

WHITESPACE_RE = re.compile(r"\s+")
ANGLE_ADDRESS_RE = re.compile(r"<([^<>@\s]+@[^<>\s]+)>")


@dataclass
class MailMessage:
    """A fetched mailbox message reduced to what the parser needs."""

    message_id: str
    subject: str
    sender: str
    received_at: Optional[datetime]
    body: str


class MailboxGateway(ABC):
    """Mail search/fetch collaborator used by the sync orchestrator."""

    @abstractmethod
    def refresh_token(self, connection: dict) -> str:
        """
        Return a valid access token for the connection.

        Raises:
            CredentialError: If no usable token can be obtained
        """

    @abstractmethod
    def search(
        self,
        access_token: str,
        sender_emails: list[str],
        subject_keywords: list[str],
        after: Optional[datetime],
        limit: int,
    ) -> list[str]:
        """
        Return message IDs matching any sender and any subject keyword,
        received after the given time, in mailbox order.

        Raises:
            GatewayError: On network/API failure
        """

    @abstractmethod
    def fetch(self, access_token: str, message_id: str) -> MailMessage:
        """
        Fetch one message.

        Raises:
            GatewayError: On network/API failure
        """


def build_gmail_session(access_token: str, refresh_token: str = None) -> AuthorizedSession:
    """
    Build a requests-based Gmail API session for an access token.

    Args:
        access_token: Valid OAuth access token
        refresh_token: Optional refresh token for automatic refresh

    Returns:
        AuthorizedSession object for making Gmail API requests
    """
    credentials = Credentials(
        token=access_token,
        refresh_token=refresh_token,
        token_uri=GOOGLE_TOKEN_URL,
        client_id=os.getenv("GOOGLE_CLIENT_ID"),
        client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
    )
    # Tokens are refreshed up front by gmail_auth; a 401 here means the grant was revoked
    return AuthorizedSession(credentials, refresh_status_codes=())


def build_bank_query(
    sender_emails: list[str], subject_keywords: list[str], after: Optional[datetime] = None
) -> str:
    """
    Build the Gmail search query for bank notifications.

    Format: (from:a OR from:b) (subject:k1 OR subject:"two words") after:<epoch>

    Args:
        sender_emails: Sender addresses (any of)
        subject_keywords: Subject keywords (any of); omitted when empty
        after: Only messages received after this instant

    Returns:
        Gmail search query string
    """
    senders = sorted({s.strip() for s in sender_emails if s and s.strip()})
    keywords = []
    for keyword in subject_keywords:
        keyword = (keyword or "").strip().replace('"', "")
        if keyword and keyword not in keywords:
            keywords.append(keyword)

    parts = []
    if senders:
        parts.append("(" + " OR ".join(f"from:{s}" for s in senders) + ")")
    if keywords:
        parts.append(
            "(" + " OR ".join(f'subject:"{k}"' if " " in k else f"subject:{k}" for k in keywords) + ")"
        )
    if after is not None:
        if after.tzinfo is None:
            after = after.replace(tzinfo=timezone.utc)
        parts.append(f"after:{int(after.timestamp())}")

    return " ".join(parts)


def html_to_text(html: str) -> str:
    """Flatten HTML to whitespace-collapsed text (scripts and styles removed)."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    return WHITESPACE_RE.sub(" ", soup.get_text(" ")).strip()


def parse_sender_email(from_header: str) -> str:
    """Extract the address from a From header ('Bank <alerts@bank.com>' -> 'alerts@bank.com')."""
    if not from_header:
        return ""

    # "Display Name" <email@example.com> or just email@example.com
    match = ANGLE_ADDRESS_RE.search(from_header)
    if match:
        return match.group(1).strip().lower()
    return from_header.strip().strip('"').lower()


def _decode_part(data: str) -> str:
    # Gmail strips base64url padding
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="ignore")


def extract_message_body(payload: dict) -> str:
    """
    Decode a Gmail message payload into plain text.

    Walks nested multipart payloads; HTML is preferred over text/plain
    because banks put the full notification in the HTML part.
    """
    body_html = None
    body_text = None

    def walk(part: dict):
        nonlocal body_html, body_text
        mime_type = part.get("mimeType", "")
        data = part.get("body", {}).get("data")

        if data and not part.get("filename"):
            decoded = _decode_part(data)
            if mime_type == "text/html" and body_html is None:
                body_html = decoded
            elif mime_type.startswith("text/") and body_text is None:
                body_text = decoded

        for child in part.get("parts", []) or []:
            walk(child)

    walk(payload)

    if body_html:
        return html_to_text(body_html)
    return WHITESPACE_RE.sub(" ", body_text or "").strip()


class GmailGateway(MailboxGateway):
    """Gmail REST API implementation of the mailbox gateway."""

    def __init__(
        self,
        rate_limit_delay: float = RATE_LIMIT_DELAY,
        max_retries: int = MAX_RETRIES,
        backoff_initial: float = 1.0,
    ):
        self.rate_limit_delay = rate_limit_delay
        self.max_retries = max_retries
        self.backoff_initial = backoff_initial

    def refresh_token(self, connection: dict) -> str:
        return gmail_auth.get_valid_access_token(connection)

    def fetch_with_backoff(self, session, method: str, url: str, **kwargs) -> dict:
        """
        Execute Gmail API request with exponential backoff.

        Raises:
            CredentialError: On 401 (token rejected)
            GatewayError: If the request fails after all retries or is not retryable
        """
        delay = self.backoff_initial
        last_error = None

        for attempt in range(self.max_retries):
            if self.rate_limit_delay:
                time.sleep(self.rate_limit_delay)

            try:
                response = session.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
                response.raise_for_status()
                return response.json()

            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status == 401:
                    raise CredentialError("Gmail rejected the access token (401)") from e
                if status not in RETRYABLE_STATUS_CODES:
                    raise GatewayError(f"Gmail API error {status} for {url}") from e
                last_error = e
                logger.warning(
                    f"Gmail API returned {status} (attempt {attempt + 1}/{self.max_retries}), retrying in {delay}s"
                )

            except requests.RequestException as e:
                last_error = e
                logger.warning(
                    f"Gmail API request failed (attempt {attempt + 1}/{self.max_retries}): {e}, retrying in {delay}s"
                )

            if attempt < self.max_retries - 1:
                time.sleep(delay)
                delay *= BACKOFF_MULTIPLIER

        raise GatewayError(f"Gmail API request failed after {self.max_retries} attempts: {last_error}") from last_error

    def search(
        self,
        access_token: str,
        sender_emails: list[str],
        subject_keywords: list[str],
        after: Optional[datetime],
        limit: int,
    ) -> list[str]:
        query = build_bank_query(sender_emails, subject_keywords, after)
        logger.info(f"Gmail search query: {query}")

        session = build_gmail_session(access_token)
        url = f"{GMAIL_API_BASE}/users/me/messages"
        message_ids: list[str] = []
        page_token = None

        while len(message_ids) < limit:
            params = {"q": query, "maxResults": min(limit - len(message_ids), GMAIL_PAGE_LIMIT)}
            if page_token:
                params["pageToken"] = page_token

            result = self.fetch_with_backoff(session, "GET", url, params=params)
            message_ids.extend(m["id"] for m in result.get("messages", []) if m.get("id"))

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        return message_ids[:limit]

    def fetch(self, access_token: str, message_id: str) -> MailMessage:
        session = build_gmail_session(access_token)
        url = f"{GMAIL_API_BASE}/users/me/messages/{message_id}"
        message = self.fetch_with_backoff(session, "GET", url, params={"format": "full"})

        payload = message.get("payload", {})
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}

        # Internal date is a Unix timestamp in ms
        received_at = None
        internal_date = message.get("internalDate")
        if internal_date:
            received_at = datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)

        return MailMessage(
            message_id=message_id,
            subject=headers.get("subject", ""),
            sender=parse_sender_email(headers.get("from", "")),
            received_at=received_at,
            body=extract_message_body(payload),
        )
