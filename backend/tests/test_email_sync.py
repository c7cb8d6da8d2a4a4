"""Tests for the per-connection sync orchestrator.

Runs sync_connection end to end against the in-memory database with a fake
mailbox and a fake completion service.

Critical properties:
- At most one transaction per provider message, across repeated runs
- Per-message failures are recorded and never abort the run
- Connection-level failures abort the run without advancing the cursor
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

import database
from config.sync_config import MappingConfig, SyncConfig
from database.models.mailbox import CandidateEmail
from mailsync.email_parser import ParsedTransaction
from mailsync.email_sync import build_transaction_description, sync_connection
from mailsync.errors import (
    CompletionError,
    ConnectionInactiveError,
    ConnectionNotFoundError,
    CredentialError,
    GatewayError,
    StoreError,
)
from mailsync.merchant_mapping import record_correction

SYNC_CONFIG = SyncConfig()
MAPPING_CONFIG = MappingConfig()

PURCHASE_BODY = (
    "Se realizó un consumo con su tarjeta terminada en 1234 por RD$1,250.00 "
    "en SUPERMERCADO NACIONAL. Autorización: 998877"
)
PHARMACY_BODY = (
    "Se realizó un consumo con su tarjeta terminada en 1234 por RD$350.00 "
    "en FARMACIA CAROL. Autorización: 554433"
)


def run_sync(connection_id, gateway, provider):
    return sync_connection(
        connection_id,
        gateway=gateway,
        provider=provider,
        sync_config=SYNC_CONFIG,
        mapping_config=MAPPING_CONFIG,
    )


def imported_transaction(connection_id, message_id):
    candidate = database.get_candidate_email(connection_id, message_id)
    return database.get_transaction(candidate["transaction_id"])


# ============================================================================
# END-TO-END RUN
# ============================================================================


def test_sync_mixed_mailbox(connection_id, categories, fake_gateway, make_provider, reply):
    """Purchase imported, payment confirmation skipped, malformed reply failed."""
    before = database.utcnow()
    received = before - timedelta(hours=2)
    for message_id, subject, body in [
        ("msg-1", "Notificación de consumo", PHARMACY_BODY),
        ("msg-2", "Hemos recibido tu pago", "Gracias por tu pago"),
        ("msg-3", "Notificación de consumo", "Consumo por RD$ 75.00"),
    ]:
        fake_gateway.add_message(message_id, subject, body, received_at=received)
    provider = make_provider(
        reply(amount=350.0, merchant="FARMACIA CAROL", category="Salud"),
        "Lo siento, no puedo procesar este correo.",
    )

    result = run_sync(connection_id, fake_gateway, provider)

    assert result.success is True
    assert result.emails_found == 3
    assert result.emails_processed == 1
    assert result.transactions_created == 1
    assert result.emails_skipped == 1
    assert result.emails_failed == 1
    assert result.emails_duplicated == 0

    transaction = imported_transaction(connection_id, "msg-1")
    assert transaction["amount"] == Decimal("350.00")
    assert transaction["category_id"] == categories["Salud"]
    assert database.get_candidate_email(connection_id, "msg-2")["status"] == "SKIPPED"
    failed = database.get_candidate_email(connection_id, "msg-3")
    assert failed["status"] == "FAILED"
    assert failed["error_message"].startswith("malformed")

    # Payment confirmations never reach the completion service
    assert len(provider.prompts) == 2

    cursor = database.get_mailbox_connection(connection_id)["last_sync_at"]
    assert cursor >= before
    assert cursor > received


def test_sub_cent_amount_fails_only_its_message(
    connection_id, categories, fake_gateway, make_provider, reply
):
    fake_gateway.add_message("msg-1", "Notificación de consumo", "Consumo por RD$0.004")
    fake_gateway.add_message("msg-2", "Notificación de consumo", PHARMACY_BODY)
    provider = make_provider(
        reply(amount=0.004),
        reply(amount=350.0, merchant="FARMACIA CAROL", category="Salud"),
    )

    result = run_sync(connection_id, fake_gateway, provider)

    assert result.success is True
    assert result.transactions_created == 1
    failed = database.get_candidate_email(connection_id, "msg-1")
    assert failed["status"] == "FAILED"
    assert failed["error_message"].startswith("invalid_amount")
    assert database.get_candidate_email(connection_id, "msg-2")["status"] == "SUCCESS"
    assert database.get_mailbox_connection(connection_id)["last_sync_at"] is not None


def test_oversized_merchant_is_imported(connection_id, categories, fake_gateway, make_provider, reply):
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)

    result = run_sync(connection_id, fake_gateway, make_provider(reply(merchant="TIENDA " * 60)))

    assert result.success is True
    assert len(imported_transaction(connection_id, "msg-1")["merchant"]) <= 255


def test_imported_transaction_fields(connection_id, categories, fake_gateway, make_provider, reply):
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)

    run_sync(connection_id, fake_gateway, make_provider(reply()))

    transaction = imported_transaction(connection_id, "msg-1")
    assert transaction["user_id"] == 1
    assert transaction["amount"] == Decimal("1250.00")
    assert transaction["currency"] == "RD$"
    assert transaction["type"] == "EXPENSE"
    assert transaction["source"] == "email"
    assert transaction["merchant"] == "SUPERMERCADO NACIONAL"
    assert transaction["date"] == datetime(2026, 10, 15, 14, 30)
    assert transaction["category_id"] == categories["Alimentación"]
    assert transaction["description"] == (
        "SUPERMERCADO NACIONAL - (****1234) - Auth: 998877 - [Importado de Email]"
    )


def test_candidate_keeps_audit_content(connection_id, categories, fake_gateway, make_provider, reply):
    fake_gateway.add_message("msg-1", "Notificación de consumo", "x" * 8000)

    run_sync(connection_id, fake_gateway, make_provider(reply()))

    candidate = database.get_candidate_email(connection_id, "msg-1")
    assert candidate["subject"] == "Notificación de consumo"
    assert candidate["sender_email"] == "alertas@bpd.com.do"
    assert len(candidate["raw_content"]) == SYNC_CONFIG.raw_content_limit
    assert candidate["parsed_data"]["amount"] == "1250.00"
    assert candidate["parsed_data"]["category_source"] == "ai"


def test_sync_log_records_counters(connection_id, categories, fake_gateway, make_provider, reply):
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)

    result = run_sync(connection_id, fake_gateway, make_provider(reply()))

    log = database.get_recent_sync_logs(connection_id)[0]
    assert log["id"] == result.sync_log_id
    assert log["status"] == "SUCCESS"
    assert log["emails_found"] == 1
    assert log["emails_processed"] == 1
    assert log["transactions_created"] == 1
    assert log["completed_at"] is not None


def test_empty_mailbox_succeeds_without_llm(connection_id, categories, fake_gateway):
    result = run_sync(connection_id, fake_gateway, None)

    assert result.success is True
    assert result.emails_found == 0


# ============================================================================
# IDEMPOTENCY / AT-MOST-ONCE
# ============================================================================


def test_rerun_does_not_import_twice(connection_id, categories, fake_gateway, make_provider, reply):
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)
    provider = make_provider(reply())

    first = run_sync(connection_id, fake_gateway, provider)
    second = run_sync(connection_id, fake_gateway, provider)

    assert first.transactions_created == 1
    assert second.transactions_created == 0
    assert second.emails_skipped == 1
    assert database.count_transactions(1, source="email") == 1
    assert len(provider.prompts) == 1


def test_message_claimed_by_other_run_is_skipped(
    connection_id, categories, fake_gateway, make_provider, reply
):
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)
    database.claim_candidate_email(connection_id, "msg-1")

    result = run_sync(connection_id, fake_gateway, make_provider(reply()))

    assert result.emails_skipped == 1
    assert result.transactions_created == 0
    assert fake_gateway.fetches == []


def test_same_purchase_in_two_emails_is_duplicate(
    connection_id, categories, fake_gateway, make_provider, reply
):
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)
    fake_gateway.add_message("msg-2", "Notificación de consumo", PURCHASE_BODY)

    result = run_sync(connection_id, fake_gateway, make_provider(reply()))

    duplicate = database.get_candidate_email(connection_id, "msg-2")
    first = database.get_candidate_email(connection_id, "msg-1")
    assert result.transactions_created == 1
    assert result.emails_duplicated == 1
    assert duplicate["status"] == "DUPLICATE"
    assert duplicate["transaction_id"] is None
    assert duplicate["parsed_data"]["duplicate_of"] == first["transaction_id"]


def test_manually_entered_purchase_is_duplicate(
    connection_id, categories, fake_gateway, make_provider, reply
):
    database.create_transaction(
        user_id=1,
        amount=Decimal("1250.00"),
        date=datetime(2026, 10, 15, 9, 0),
        description="Compra SUPERMERCADO NACIONAL",
        source="manual",
    )
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)

    result = run_sync(connection_id, fake_gateway, make_provider(reply()))

    assert result.emails_duplicated == 1
    assert database.count_transactions(1) == 1


# ============================================================================
# CATEGORY RESOLUTION
# ============================================================================


def test_user_mapping_overrides_parser_category(
    connection_id, categories, fake_gateway, make_provider, reply
):
    record_correction(1, "Supermercado Nacional", categories["Otros"], config=MAPPING_CONFIG)
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)

    run_sync(connection_id, fake_gateway, make_provider(reply()))

    candidate = database.get_candidate_email(connection_id, "msg-1")
    assert imported_transaction(connection_id, "msg-1")["category_id"] == categories["Otros"]
    assert candidate["parsed_data"]["category_source"] == "user"


def test_parser_category_seeds_global_mapping(
    connection_id, categories, fake_gateway, make_provider, reply
):
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)

    run_sync(connection_id, fake_gateway, make_provider(reply()))

    mapping = database.get_global_mapping("SUPERMERCADO NACIONAL")
    assert mapping["source"] == "AI_INFERRED"
    assert mapping["category_id"] == categories["Alimentación"]
    assert mapping["confirmed_by_users"] == 0


def test_unknown_merchant_is_not_learned(connection_id, categories, fake_gateway, make_provider, reply):
    fake_gateway.add_message("msg-1", "Notificación de consumo", "Consumo RD$300.00")

    run_sync(connection_id, fake_gateway, make_provider(reply(merchant=None, amount=300)))

    transaction = imported_transaction(connection_id, "msg-1")
    assert transaction["merchant"] == "Unknown"
    assert database.get_global_mapping("UNKNOWN") is None


# ============================================================================
# PER-MESSAGE FAILURES
# ============================================================================


def test_fetch_failure_only_fails_that_message(
    connection_id, categories, fake_gateway, make_provider, reply
):
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)
    fake_gateway.add_message("msg-2", "Notificación de consumo", PURCHASE_BODY)
    fake_gateway.fetch_errors["msg-1"] = GatewayError("Gmail API error 404")

    result = run_sync(connection_id, fake_gateway, make_provider(reply()))

    assert result.success is True
    assert result.emails_failed == 1
    assert result.transactions_created == 1
    failed = database.get_candidate_email(connection_id, "msg-1")
    assert failed["status"] == "FAILED"
    assert "Fetch failed" in failed["error_message"]


def test_completion_outage_fails_message_not_run(connection_id, categories, fake_gateway, make_provider):
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)

    result = run_sync(connection_id, fake_gateway, make_provider(CompletionError("timed out")))

    assert result.success is True
    assert result.emails_failed == 1
    candidate = database.get_candidate_email(connection_id, "msg-1")
    assert candidate["status"] == "FAILED"
    assert candidate["error_message"].startswith("transient")


# ============================================================================
# CONNECTION-LEVEL FAILURES
# ============================================================================


def test_credential_failure_aborts_run(connection_id, categories, fake_gateway, make_provider, reply):
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)
    fake_gateway.token_error = CredentialError("Access token expired and no refresh token available")

    result = run_sync(connection_id, fake_gateway, make_provider(reply()))

    connection = database.get_mailbox_connection(connection_id)
    assert result.success is False
    assert "Access token expired" in result.errors[0]
    assert connection["last_sync_status"] == "FAILED"
    assert "Access token expired" in connection["last_sync_error"]
    assert connection["last_sync_at"] is None
    assert database.get_recent_sync_logs(connection_id)[0]["status"] == "FAILED"
    assert fake_gateway.searches == []


def test_search_failure_aborts_run(connection_id, categories, fake_gateway):
    fake_gateway.search_error = GatewayError("Gmail API request failed after 3 attempts")

    result = run_sync(connection_id, fake_gateway, None)

    assert result.success is False
    assert database.get_mailbox_connection(connection_id)["last_sync_at"] is None


def test_no_active_filters_aborts_run(connection_id, categories, fake_gateway):
    for rule in database.get_bank_filters(connection_id):
        database.update_bank_filter(rule["id"], is_active=False)

    result = run_sync(connection_id, fake_gateway, None)

    assert result.success is False
    assert "No active bank filters" in result.errors[0]


def test_store_failure_leaves_message_for_recovery(
    connection_id, categories, fake_gateway, make_provider, reply, monkeypatch, db_session
):
    """A crash mid-write leaves the candidate PROCESSING; recovery re-imports it once."""
    fake_gateway.add_message("msg-1", "Notificación de consumo", PURCHASE_BODY)
    original = database.record_candidate_success

    def broken_store(*args, **kwargs):
        raise StoreError("record_candidate_success failed: OperationalError")

    monkeypatch.setattr(database, "record_candidate_success", broken_store)
    failed = run_sync(connection_id, fake_gateway, make_provider(reply()))

    assert failed.success is False
    assert database.get_candidate_email(connection_id, "msg-1")["status"] == "PROCESSING"
    assert database.count_transactions(1) == 0

    # Recovery sweep releases the stale claim; the next run picks it up
    monkeypatch.setattr(database, "record_candidate_success", original)
    db_session.execute(
        update(CandidateEmail).values(claimed_at=database.utcnow() - timedelta(hours=1))
    )
    db_session.commit()
    database.sweep_stale_candidates(stale_after_minutes=30, max_attempts=3)

    retried = run_sync(connection_id, fake_gateway, make_provider(reply()))

    candidate = database.get_candidate_email(connection_id, "msg-1")
    assert retried.transactions_created == 1
    assert candidate["status"] == "SUCCESS"
    assert candidate["attempts"] == 2
    assert database.count_transactions(1) == 1


def test_released_message_outside_search_window_is_retried(
    connection_id, categories, fake_gateway, make_provider, reply, db_session
):
    fake_gateway.add_message("msg-old", "Notificación de consumo", PURCHASE_BODY)
    database.claim_candidate_email(connection_id, "msg-old")
    db_session.execute(
        update(CandidateEmail).values(claimed_at=database.utcnow() - timedelta(hours=1))
    )
    db_session.commit()
    database.sweep_stale_candidates(stale_after_minutes=30, max_attempts=3)
    # The mailbox search no longer returns it
    fake_gateway.order.remove("msg-old")

    result = run_sync(connection_id, fake_gateway, make_provider(reply()))

    assert result.emails_found == 1
    assert result.transactions_created == 1


def test_unknown_connection_raises(fake_gateway):
    with pytest.raises(ConnectionNotFoundError):
        run_sync(999, fake_gateway, None)


def test_inactive_connection_raises(connection_id, fake_gateway):
    database.deactivate_mailbox_connection(1)

    with pytest.raises(ConnectionInactiveError):
        run_sync(connection_id, fake_gateway, None)


# ============================================================================
# CURSOR
# ============================================================================


def test_first_sync_uses_lookback_window(connection_id, categories, fake_gateway):
    before = database.utcnow()

    run_sync(connection_id, fake_gateway, None)

    after = fake_gateway.searches[0]["after"]
    assert before - timedelta(days=SYNC_CONFIG.lookback_days, seconds=5) <= after
    assert after <= database.utcnow() - timedelta(days=SYNC_CONFIG.lookback_days)


def test_successful_sync_advances_cursor(connection_id, categories, fake_gateway):
    before = database.utcnow()

    run_sync(connection_id, fake_gateway, None)
    cursor = database.get_mailbox_connection(connection_id)["last_sync_at"]
    run_sync(connection_id, fake_gateway, None)

    assert cursor >= before
    assert fake_gateway.searches[1]["after"] == cursor
    assert fake_gateway.searches[1]["senders"] == ["alertas@bpd.com.do"]
    assert fake_gateway.searches[1]["keywords"] == ["consumo", "compra"]


# ============================================================================
# DESCRIPTION
# ============================================================================


def test_description_without_card_or_authorization():
    parsed = ParsedTransaction(
        amount=Decimal("10.00"),
        currency="RD$",
        merchant="UBER",
        category="Transporte",
        date=datetime(2026, 10, 15),
    )

    assert build_transaction_description(parsed) == "UBER - [Importado de Email]"
