"""Core test fixtures for the bank email sync tests.

Provides an isolated in-memory database per test, the category catalog,
and in-process stand-ins for the mailbox gateway and completion service.

CRITICAL: Environment is configured BEFORE any backend module is imported,
so tests never touch a real database, mailbox or LLM API.
"""

import json
import os
import tempfile
from datetime import datetime, timezone

# CRITICAL: Set test mode BEFORE importing database modules
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="mailsync-test-logs-")
# Empty values stop python-dotenv from filling these in from a developer .env
os.environ["ENCRYPTION_KEY"] = ""
os.environ["LLM_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["ANTHROPIC_API_KEY"] = ""

import pytest  # noqa: E402

import database  # noqa: E402
from database.base import get_session  # noqa: E402
from mailsync.errors import CredentialError, GatewayError  # noqa: E402
from mailsync.gmail_client import MailboxGateway, MailMessage  # noqa: E402
from mailsync.llm_providers.base_provider import BaseLLMProvider, LLMResponse  # noqa: E402

CATEGORY_NAMES = ["Alimentación", "Transporte", "Salud", "Entretenimiento", "Otros"]

BANK_SENDER = "alertas@bpd.com.do"


# ============================================================================
# DATABASE
# ============================================================================


@pytest.fixture(autouse=True)
def clean_database():
    """Create every table before a test and drop them afterwards (leave no trace)."""
    database.init_db()
    yield
    database.drop_db()


@pytest.fixture
def db_session():
    """Raw SQLAlchemy session for assertions and test-only mutations."""
    with get_session() as session:
        yield session


@pytest.fixture
def categories():
    """Seed the category catalog.

    Returns:
        dict: category name -> id
    """
    return {name: database.create_category(name) for name in CATEGORY_NAMES}


@pytest.fixture
def connection_id():
    """Active Gmail connection for user 1 with one Banco Popular filter."""
    conn_id = database.save_mailbox_connection(
        user_id=1,
        email_address="usuario@gmail.com",
        access_token="plain-access-token",
        refresh_token="plain-refresh-token",
    )
    database.create_bank_filters(
        conn_id,
        [
            {
                "bank_name": "Banco Popular Dominicano",
                "sender_emails": [BANK_SENDER],
                "subject_keywords": ["consumo", "compra"],
            }
        ],
    )
    return conn_id


# ============================================================================
# COLLABORATOR STAND-INS
# ============================================================================


class FakeProvider(BaseLLMProvider):
    """Completion provider that replays canned replies.

    Each reply is a dict (serialized to JSON), a raw string, or an exception
    instance to raise. The last reply repeats once the list is exhausted.
    """

    def __init__(self, replies):
        super().__init__(api_key="test-key", model="fake-model")
        self.replies = list(replies)
        self.prompts = []

    def complete(self, prompt, system_prompt=None):
        self.prompts.append((system_prompt, prompt))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]

        if isinstance(reply, Exception):
            raise reply
        content = json.dumps(reply) if isinstance(reply, dict) else reply
        return LLMResponse(content=content, input_tokens=100, output_tokens=50, total_tokens=150)


class FakeGateway(MailboxGateway):
    """Mailbox gateway backed by an in-memory message list."""

    def __init__(self):
        self.messages = {}
        self.order = []
        self.fetch_errors = {}
        self.token_error = None
        self.search_error = None
        self.searches = []
        self.fetches = []

    def add_message(self, message_id, subject, body, sender=BANK_SENDER, received_at=None):
        self.messages[message_id] = MailMessage(
            message_id=message_id,
            subject=subject,
            sender=sender,
            received_at=received_at or datetime(2026, 10, 15, 18, 30, tzinfo=timezone.utc),
            body=body,
        )
        self.order.append(message_id)

    def refresh_token(self, connection):
        if self.token_error:
            raise self.token_error
        return "access-token"

    def search(self, access_token, sender_emails, subject_keywords, after, limit):
        self.searches.append(
            {"senders": sender_emails, "keywords": subject_keywords, "after": after, "limit": limit}
        )
        if self.search_error:
            raise self.search_error
        return list(self.order[:limit])

    def fetch(self, access_token, message_id):
        self.fetches.append(message_id)
        if message_id in self.fetch_errors:
            raise self.fetch_errors[message_id]
        if message_id not in self.messages:
            raise GatewayError(f"Message {message_id} not found")
        return self.messages[message_id]


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def make_provider():
    """Factory for FakeProvider instances.

    Example:
        provider = make_provider({"amount": 1250, "merchant": "Uber"})
    """

    def _make(*replies):
        return FakeProvider(replies)

    return _make


@pytest.fixture
def credential_error():
    return CredentialError("Access token expired and no refresh token available")


def purchase_reply(
    amount=1250.0,
    merchant="SUPERMERCADO NACIONAL",
    category="Alimentación",
    date="2026-10-15T14:30:00",
    card="1234",
    auth="998877",
    currency="RD$",
):
    """Well-formed parser reply for a card purchase."""
    return {
        "amount": amount,
        "currency": currency,
        "merchant": merchant,
        "category": category,
        "date": date,
        "cardLast4": card,
        "authorizationCode": auth,
        "description": None,
    }


@pytest.fixture
def reply():
    """Builder for well-formed parser replies (see purchase_reply)."""
    return purchase_reply
