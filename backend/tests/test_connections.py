"""Tests for the supported bank catalog and the mailbox connection lifecycle."""

import pytest
import responses
from cryptography.fernet import Fernet

import database
from mailsync import gmail_auth
from mailsync.bank_catalog import (
    SUPPORTED_BANKS,
    default_bank_filters,
    get_supported_banks,
    map_country_to_code,
)
from mailsync.candidate_state import CandidateStatus
from mailsync.connections import connect_mailbox, disconnect_mailbox, get_connection_status

# ============================================================================
# BANK CATALOG
# ============================================================================


@pytest.mark.parametrize(
    "country, expected",
    [
        ("República Dominicana", "DO"),
        ("dominican republic", "DO"),
        ("México", "MX"),
        ("co", "CO"),
        ("Atlantis", "DO"),
        (None, "DO"),
        ("", "DO"),
    ],
)
def test_map_country_to_code(country, expected):
    assert map_country_to_code(country) == expected


def test_dominican_catalog():
    banks = get_supported_banks("do")

    assert len(banks) == 10
    assert {b.name for b in banks} >= {"Banco Popular Dominicano", "Banreservas", "BHD Leon"}
    assert all(b.sender_emails for b in banks)


def test_default_filters_for_unsupported_country():
    assert default_bank_filters("MX") == []


def test_default_filters_shape():
    filters = default_bank_filters("República Dominicana")

    assert len(filters) == len(SUPPORTED_BANKS["DO"])
    popular = next(f for f in filters if f["bank_name"] == "Banco Popular Dominicano")
    assert "alertas@bpd.com.do" in popular["sender_emails"]
    assert "consumo" in popular["subject_keywords"]


# ============================================================================
# CONNECT / DISCONNECT
# ============================================================================


def test_connect_mailbox_creates_default_filters():
    result = connect_mailbox(1, "usuario@gmail.com", "access-1", "refresh-1")

    assert result["country"] == "DO"
    assert result["filters_created"] == 10
    assert len(database.get_active_bank_filters(result["connection_id"])) == 10


def test_connect_mailbox_encrypts_tokens(monkeypatch):
    monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())

    result = connect_mailbox(1, "usuario@gmail.com", "access-1", "refresh-1")

    connection = database.get_mailbox_connection(result["connection_id"])
    assert connection["access_token"] != "access-1"
    assert gmail_auth.decrypt_token(connection["access_token"]) == "access-1"
    assert gmail_auth.decrypt_token(connection["refresh_token"]) == "refresh-1"


def test_reconnect_reuses_connection_and_filters():
    first = connect_mailbox(1, "usuario@gmail.com", "access-1", "refresh-1")
    second = connect_mailbox(1, "usuario@gmail.com", "access-2")

    connection = database.get_mailbox_connection(second["connection_id"])
    assert second["connection_id"] == first["connection_id"]
    assert second["filters_created"] == 0
    # Refresh token is kept when the provider does not send a new one
    assert connection["refresh_token"] == "refresh-1"
    assert connection["access_token"] == "access-2"


@responses.activate
def test_disconnect_deactivates_and_revokes():
    responses.add(responses.POST, gmail_auth.GOOGLE_REVOKE_URL, status=200)
    result = connect_mailbox(1, "usuario@gmail.com", "access-1", "refresh-1")

    assert disconnect_mailbox(1) is True

    connection = database.get_mailbox_connection(result["connection_id"])
    assert connection["is_active"] is False
    assert len(responses.calls) == 1
    assert "token=access-1" in responses.calls[0].request.url


def test_disconnect_without_connection():
    assert disconnect_mailbox(42, revoke=False) is False


def test_reconnect_reactivates_connection():
    result = connect_mailbox(1, "usuario@gmail.com", "access-1")
    disconnect_mailbox(1, revoke=False)

    connect_mailbox(1, "usuario@gmail.com", "access-2")

    assert database.get_mailbox_connection(result["connection_id"])["is_active"] is True


# ============================================================================
# STATUS
# ============================================================================


def test_connection_status(connection_id):
    candidate_id = database.claim_candidate_email(connection_id, "msg-1")
    database.finish_candidate_email(candidate_id, CandidateStatus.SKIPPED)

    status = get_connection_status(1)

    assert status["connection_id"] == connection_id
    assert status["email_address"] == "usuario@gmail.com"
    assert status["bank_count"] == 1
    assert status["banks"] == ["Banco Popular Dominicano"]
    assert status["emails_by_status"]["SKIPPED"] == 1
    assert status["transactions_imported"] == 0
    assert status["last_sync_status"] == "PENDING"
    assert status["recent_runs"] == []


def test_connection_status_without_connection():
    assert get_connection_status(42) is None
