"""
Bank Email Sync Orchestrator
Walks one mailbox connection for bank notification emails and turns each new
message into at most one transaction.

Per-connection run:
1. Require an active connection, obtain a valid access token
2. Search with the union of the connection's bank filters, after the last
   sync cursor (or the look-back window on first sync)
3. For every message: claim it (insert-if-absent on connection + message id),
   fetch, parse, check duplicates, resolve the category, create the
   transaction and finish the candidate in the same database transaction
4. Advance the cursor and record the run summary

Per-message failures are recorded on the candidate and never abort the run.
Connection-level failures (credentials, search, store) abort only this
connection and are recorded on it; the cursor is not advanced.
"""

import time
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Optional

import database
from config.sync_config import MappingConfig, SyncConfig, load_mapping_config, load_sync_config
from database import utcnow

from .candidate_state import CandidateStatus
from .duplicate_detector import find_duplicate
from .email_parser import UNKNOWN_MERCHANT_NAMES, ParsedTransaction, parse_email_content
from .errors import (
    ConnectionInactiveError,
    ConnectionNotFoundError,
    CredentialError,
    EmailSyncError,
    GatewayError,
    InvalidTransitionError,
    StoreError,
)
from .gmail_client import GmailGateway, MailboxGateway
from .llm_providers import get_completion_provider
from .llm_providers.base_provider import BaseLLMProvider
from .logging_config import DEBUG_EMAIL_SYNC, get_logger
from .merchant_mapping import resolve_merchant, seed_global_mapping

logger = get_logger(__name__)

IMPORT_MARKER = "[Importado de Email]"
TRANSACTION_SOURCE = "email"


@dataclass
class SyncRunResult:
    """Outcome of one sync_connection call.

    emails_processed counts messages imported as transactions; failed, skipped
    and duplicate messages have their own counters. emails_skipped counts
    payment confirmations plus messages already handled by an earlier or
    concurrent run.
    """

    connection_id: int
    success: bool = False
    emails_found: int = 0
    emails_processed: int = 0
    emails_skipped: int = 0
    emails_duplicated: int = 0
    emails_failed: int = 0
    transactions_created: int = 0
    errors: list = field(default_factory=list)
    sync_log_id: Optional[int] = None
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def build_transaction_description(parsed: ParsedTransaction) -> str:
    """'MERCHANT - (****1234) - Auth: 998877 - [Importado de Email]'"""
    parts = [
        parsed.merchant,
        f"(****{parsed.card_last4})" if parsed.card_last4 else None,
        f"Auth: {parsed.authorization_code}" if parsed.authorization_code else None,
        IMPORT_MARKER,
    ]
    return " - ".join(p for p in parts if p)


def _union_filters(filters: list[dict]) -> tuple[list[str], list[str], dict]:
    senders: list[str] = []
    keywords: list[str] = []
    bank_by_sender: dict = {}

    for rule in filters:
        for sender in rule["sender_emails"]:
            sender = sender.strip().lower()
            if sender and sender not in senders:
                senders.append(sender)
            bank_by_sender.setdefault(sender, rule["bank_name"])
        for keyword in rule["subject_keywords"]:
            keyword = keyword.strip()
            if keyword and keyword not in keywords:
                keywords.append(keyword)

    return senders, keywords, bank_by_sender


class ConnectionSync:
    """One sync run of one mailbox connection."""

    def __init__(
        self,
        connection: dict,
        gateway: MailboxGateway,
        provider: Optional[BaseLLMProvider],
        sync_config: SyncConfig,
        mapping_config: MappingConfig,
    ):
        self.connection = connection
        self.connection_id = connection["id"]
        self.user_id = connection["user_id"]
        self.gateway = gateway
        self.provider = provider
        self.sync_config = sync_config
        self.mapping_config = mapping_config
        self.result = SyncRunResult(connection_id=self.connection_id)
        self.access_token = None
        self.categories: list[dict] = []
        self.bank_by_sender: dict = {}

    def _log_extra(self, message_id: str = None, **extra) -> dict:
        return {
            "sync_run_id": self.result.sync_log_id,
            "connection_id": self.connection_id,
            "message_id": message_id,
            **extra,
        }

    def run(self) -> SyncRunResult:
        started = time.monotonic()
        cursor = utcnow()

        self.result.sync_log_id = database.create_sync_log(self.connection_id)
        database.mark_connection_sync_started(self.connection_id)
        logger.info(f"Starting email sync for user {self.user_id}", extra=self._log_extra())

        try:
            message_ids = self._collect_message_ids(cursor)
            self.result.emails_found = len(message_ids)
            logger.info(f"Found {len(message_ids)} candidate messages", extra=self._log_extra())

            if message_ids:
                self.categories = database.get_expense_categories()
                if self.provider is None:
                    self.provider = get_completion_provider()

            for message_id in message_ids:
                self._process_message(message_id)

        except Exception as e:
            self.result.success = False
            self.result.errors.append(str(e))
            self.result.duration_ms = int((time.monotonic() - started) * 1000)
            logger.error(
                f"Email sync failed: {e.__class__.__name__}: {e}",
                extra=self._log_extra(),
                exc_info=DEBUG_EMAIL_SYNC or not isinstance(e, EmailSyncError),
            )
            self._record_outcome("FAILED", str(e), cursor=None)
            return self.result

        self.result.success = True
        self.result.duration_ms = int((time.monotonic() - started) * 1000)
        self._record_outcome("SUCCESS", None, cursor=cursor)

        logger.info(
            f"Email sync complete: found={self.result.emails_found} processed={self.result.emails_processed} "
            f"created={self.result.transactions_created} skipped={self.result.emails_skipped} "
            f"duplicates={self.result.emails_duplicated} failed={self.result.emails_failed} "
            f"({self.result.duration_ms}ms)",
            extra=self._log_extra(),
        )
        return self.result

    def _collect_message_ids(self, now) -> list[str]:
        self.access_token = self.gateway.refresh_token(self.connection)

        filters = database.get_active_bank_filters(self.connection_id)
        senders, keywords, self.bank_by_sender = _union_filters(filters)
        if not senders:
            raise EmailSyncError("No active bank filters configured for this connection")

        after = self.connection.get("last_sync_at") or now - timedelta(
            days=self.sync_config.lookback_days
        )

        message_ids = self.gateway.search(
            self.access_token, senders, keywords, after, self.sync_config.max_results
        )

        # Released by the recovery sweep; may be older than the cursor
        seen = set(message_ids)
        for pending_id in database.get_pending_candidate_message_ids(self.connection_id):
            if pending_id not in seen:
                message_ids.append(pending_id)
                seen.add(pending_id)

        return message_ids

    def _record_outcome(self, status: str, error: Optional[str], cursor) -> None:
        r = self.result
        try:
            database.complete_sync_log(
                r.sync_log_id,
                status,
                r.duration_ms,
                emails_found=r.emails_found,
                emails_processed=r.emails_processed,
                emails_skipped=r.emails_skipped,
                emails_duplicated=r.emails_duplicated,
                emails_failed=r.emails_failed,
                transactions_created=r.transactions_created,
                error_message=error,
            )
            database.finish_connection_sync(
                self.connection_id, status, error_message=error, cursor=cursor
            )
        except StoreError as e:
            r.success = False
            r.errors.append(str(e))
            logger.error(f"Could not record sync outcome: {e}", extra=self._log_extra())

    # ------------------------------------------------------------------
    # Per-message processing
    # ------------------------------------------------------------------

    def _process_message(self, message_id: str) -> None:
        candidate_id = database.claim_candidate_email(self.connection_id, message_id)
        if candidate_id is None:
            self.result.emails_skipped += 1
            logger.debug("Message already handled, skipping", extra=self._log_extra(message_id))
            return

        try:
            status = self._handle_candidate(candidate_id, message_id)
        except (StoreError, CredentialError):
            # Candidate stays PROCESSING; the recovery sweep releases it for retry
            raise
        except InvalidTransitionError as e:
            self.result.errors.append(f"Message {message_id}: {e}")
            logger.warning(str(e), extra=self._log_extra(message_id))
            return
        except Exception as e:
            logger.error(
                f"Unexpected error processing message: {e}",
                extra=self._log_extra(message_id),
                exc_info=True,
            )
            self._fail(candidate_id, message_id, f"Unexpected error: {e}")
            return

        if status is CandidateStatus.SUCCESS:
            self.result.emails_processed += 1
        logger.info(f"Message {status.value}", extra=self._log_extra(message_id))

    def _fail(self, candidate_id: int, message_id: str, error: str) -> CandidateStatus:
        database.finish_candidate_email(candidate_id, CandidateStatus.FAILED, error_message=error)
        self.result.emails_failed += 1
        self.result.errors.append(f"Message {message_id}: {error}")
        return CandidateStatus.FAILED

    def _handle_candidate(self, candidate_id: int, message_id: str) -> CandidateStatus:
        try:
            message = self.gateway.fetch(self.access_token, message_id)
        except GatewayError as e:
            return self._fail(candidate_id, message_id, f"Fetch failed: {e}")

        database.record_candidate_content(
            candidate_id,
            subject=message.subject,
            sender_email=message.sender,
            received_at=message.received_at,
            raw_content=(message.body or "")[: self.sync_config.raw_content_limit],
        )

        parse = parse_email_content(
            message.subject,
            message.body,
            self.categories,
            self.provider,
            bank_name=self.bank_by_sender.get((message.sender or "").lower()),
            body_limit=self.sync_config.prompt_body_limit,
        )

        if parse.error is not None:
            if not parse.error.is_failure:
                database.finish_candidate_email(
                    candidate_id, CandidateStatus.SKIPPED, error_message=str(parse.error)
                )
                self.result.emails_skipped += 1
                return CandidateStatus.SKIPPED
            return self._fail(candidate_id, message_id, str(parse.error))

        parsed = parse.transaction
        snapshot = parsed.to_dict()

        duplicate = find_duplicate(self.user_id, parsed.amount, parsed.date, parsed.merchant)
        if duplicate:
            snapshot["duplicate_of"] = duplicate["id"]
            database.finish_candidate_email(
                candidate_id, CandidateStatus.DUPLICATE, parsed_data=snapshot
            )
            self.result.emails_duplicated += 1
            return CandidateStatus.DUPLICATE

        category_id, category_source = self._resolve_category(parsed)
        snapshot.update({"category_id": category_id, "category_source": category_source})

        transaction_id = database.record_candidate_success(
            candidate_id,
            {
                "user_id": self.user_id,
                "amount": parsed.amount,
                "currency": parsed.currency,
                "type": "EXPENSE",
                "description": build_transaction_description(parsed),
                "merchant": parsed.merchant,
                "date": parsed.date.replace(tzinfo=None),
                "category_id": category_id,
                "source": TRANSACTION_SOURCE,
            },
            parsed_data=snapshot,
        )
        self.result.transactions_created += 1
        logger.info(
            f"Created transaction {transaction_id}: {parsed.currency} {parsed.amount} "
            f"(category {category_id} via {category_source}, confidence {parsed.confidence})",
            extra=self._log_extra(message_id, merchant=parsed.merchant),
        )
        return CandidateStatus.SUCCESS

    def _resolve_category(self, parsed: ParsedTransaction) -> tuple[Optional[int], str]:
        """Mapping engine first, then the parser's own category."""
        known_merchant = parsed.merchant.strip().lower() not in UNKNOWN_MERCHANT_NAMES

        if known_merchant:
            match = resolve_merchant(self.user_id, parsed.merchant, self.mapping_config)
            if match:
                return match.category_id, match.source

        category_id = next(
            (c["id"] for c in self.categories if c["name"] == parsed.category), None
        )
        if category_id is not None and known_merchant:
            seed_global_mapping(parsed.merchant, category_id, self.mapping_config)

        return category_id, "ai"


def sync_connection(
    connection_id: int,
    gateway: Optional[MailboxGateway] = None,
    provider: Optional[BaseLLMProvider] = None,
    sync_config: Optional[SyncConfig] = None,
    mapping_config: Optional[MappingConfig] = None,
) -> SyncRunResult:
    """
    Sync one mailbox connection.

    Args:
        connection_id: Mailbox connection to sync
        gateway: Mailbox gateway (Gmail by default)
        provider: Completion provider (built from LLM config when omitted)
        sync_config: Orchestrator settings (environment when omitted)
        mapping_config: Merchant mapping settings (environment when omitted)

    Returns:
        SyncRunResult; success is False when the run aborted at connection level

    Raises:
        ConnectionNotFoundError: Unknown connection
        ConnectionInactiveError: Connection has been disabled
    """
    connection = database.get_mailbox_connection(connection_id)
    if connection is None:
        raise ConnectionNotFoundError(f"Mailbox connection {connection_id} not found")
    if not connection["is_active"]:
        raise ConnectionInactiveError(f"Mailbox connection {connection_id} is not active")

    return ConnectionSync(
        connection,
        gateway or GmailGateway(),
        provider,
        sync_config or load_sync_config(),
        mapping_config or load_mapping_config(),
    ).run()
