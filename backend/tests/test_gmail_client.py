"""Tests for the Gmail mailbox gateway.

Tests critical integration points:
- Search query construction from bank filters
- Pagination handling (avoiding silently dropped notifications)
- Rate limit handling with exponential backoff
- Error response handling (401 token rejection, 4xx/5xx)
- Message body decoding (base64url, nested multipart, HTML)
"""

import base64
from datetime import datetime, timezone

import pytest
import responses

from mailsync.errors import CredentialError, GatewayError
from mailsync.gmail_client import (
    GMAIL_API_BASE,
    GmailGateway,
    build_bank_query,
    extract_message_body,
    html_to_text,
    parse_sender_email,
)

MESSAGES_URL = f"{GMAIL_API_BASE}/users/me/messages"
SENDERS = ["alertas@bpd.com.do"]


def encode(text):
    """base64url without padding, as Gmail returns it."""
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


@pytest.fixture
def gateway():
    return GmailGateway(rate_limit_delay=0, backoff_initial=0)


# ============================================================================
# QUERY CONSTRUCTION
# ============================================================================


def test_build_bank_query_full():
    query = build_bank_query(
        ["b@bank.com", "a@bank.com", "a@bank.com"],
        ["consumo", "compra aprobada"],
        datetime(2026, 10, 1, tzinfo=timezone.utc),
    )

    assert query == (
        '(from:a@bank.com OR from:b@bank.com) (subject:consumo OR subject:"compra aprobada") '
        "after:1790812800"
    )


def test_build_bank_query_without_keywords_or_cursor():
    assert build_bank_query(["a@bank.com"], [], None) == "(from:a@bank.com)"


def test_build_bank_query_naive_cursor_is_utc():
    naive = build_bank_query(["a@bank.com"], [], datetime(2026, 10, 1))
    aware = build_bank_query(["a@bank.com"], [], datetime(2026, 10, 1, tzinfo=timezone.utc))

    assert naive == aware


# ============================================================================
# BODY DECODING
# ============================================================================


def test_html_to_text_drops_scripts_and_styles():
    html = "<html><head><style>p {}</style></head><body><p>Consumo</p><script>x()</script><b>RD$ 500</b></body></html>"

    assert html_to_text(html) == "Consumo RD$ 500"


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Banco Popular <Alertas@BPD.com.do>", "alertas@bpd.com.do"),
        ('"Banreservas" <notificaciones@banreservas.com>', "notificaciones@banreservas.com"),
        ("alertas@bhdleon.com.do", "alertas@bhdleon.com.do"),
        ("", ""),
    ],
)
def test_parse_sender_email(header, expected):
    assert parse_sender_email(header) == expected


def test_extract_body_prefers_html_in_nested_multipart():
    payload = {
        "mimeType": "multipart/mixed",
        "parts": [
            {
                "mimeType": "multipart/alternative",
                "parts": [
                    {"mimeType": "text/plain", "body": {"data": encode("texto plano")}},
                    {"mimeType": "text/html", "body": {"data": encode("<p>Consumo <b>RD$1,250.00</b></p>")}},
                ],
            },
            {"mimeType": "application/pdf", "filename": "estado.pdf", "body": {"attachmentId": "a1"}},
        ],
    }

    assert extract_message_body(payload) == "Consumo RD$1,250.00"


def test_extract_body_plain_text_only():
    payload = {"mimeType": "text/plain", "body": {"data": encode("Consumo  por\nRD$ 300")}}

    assert extract_message_body(payload) == "Consumo por RD$ 300"


# ============================================================================
# SEARCH / PAGINATION
# ============================================================================


@responses.activate
def test_search_follows_pagination(gateway):
    responses.add(
        responses.GET,
        MESSAGES_URL,
        json={"messages": [{"id": "m1"}, {"id": "m2"}], "nextPageToken": "page2"},
        status=200,
    )
    responses.add(responses.GET, MESSAGES_URL, json={"messages": [{"id": "m3"}]}, status=200)

    ids = gateway.search("token", SENDERS, ["consumo"], None, 100)

    assert ids == ["m1", "m2", "m3"]
    assert len(responses.calls) == 2
    assert "pageToken=page2" in responses.calls[1].request.url
    assert responses.calls[0].request.headers["Authorization"] == "Bearer token"


@responses.activate
def test_search_respects_limit(gateway):
    responses.add(
        responses.GET,
        MESSAGES_URL,
        json={"messages": [{"id": f"m{i}"} for i in range(5)], "nextPageToken": "more"},
        status=200,
    )

    ids = gateway.search("token", SENDERS, [], None, 3)

    assert ids == ["m0", "m1", "m2"]
    assert len(responses.calls) == 1
    assert "maxResults=3" in responses.calls[0].request.url


@responses.activate
def test_search_empty_mailbox(gateway):
    responses.add(responses.GET, MESSAGES_URL, json={"resultSizeEstimate": 0}, status=200)

    assert gateway.search("token", SENDERS, [], None, 100) == []


# ============================================================================
# ERROR HANDLING
# ============================================================================


@responses.activate
def test_401_raises_credential_error(gateway):
    responses.add(responses.GET, MESSAGES_URL, json={"error": "invalid_token"}, status=401)

    with pytest.raises(CredentialError):
        gateway.search("token", SENDERS, [], None, 100)

    assert len(responses.calls) == 1


@responses.activate
def test_rate_limit_is_retried(gateway):
    responses.add(responses.GET, MESSAGES_URL, json={"error": "rate"}, status=429)
    responses.add(responses.GET, MESSAGES_URL, json={"messages": [{"id": "m1"}]}, status=200)

    assert gateway.search("token", SENDERS, [], None, 100) == ["m1"]
    assert len(responses.calls) == 2


@responses.activate
def test_server_errors_exhaust_retries(gateway):
    for _ in range(3):
        responses.add(responses.GET, MESSAGES_URL, json={"error": "backend"}, status=503)

    with pytest.raises(GatewayError):
        gateway.search("token", SENDERS, [], None, 100)

    assert len(responses.calls) == 3


@responses.activate
def test_client_error_is_not_retried(gateway):
    responses.add(responses.GET, f"{MESSAGES_URL}/missing", json={"error": "not found"}, status=404)

    with pytest.raises(GatewayError):
        gateway.fetch("token", "missing")

    assert len(responses.calls) == 1


# ============================================================================
# FETCH
# ============================================================================


@responses.activate
def test_fetch_builds_mail_message(gateway):
    responses.add(
        responses.GET,
        f"{MESSAGES_URL}/m1",
        json={
            "id": "m1",
            "internalDate": "1792060200000",
            "payload": {
                "mimeType": "text/html",
                "headers": [
                    {"name": "Subject", "value": "Notificación de consumo"},
                    {"name": "From", "value": "Banco Popular <alertas@bpd.com.do>"},
                ],
                "body": {"data": encode("<p>Consumo RD$500.00 en UBER</p>")},
            },
        },
        status=200,
    )

    message = gateway.fetch("token", "m1")

    assert message.message_id == "m1"
    assert message.subject == "Notificación de consumo"
    assert message.sender == "alertas@bpd.com.do"
    assert message.received_at == datetime.fromtimestamp(1792060200, tz=timezone.utc)
    assert message.body == "Consumo RD$500.00 en UBER"
    assert "format=full" in responses.calls[0].request.url
