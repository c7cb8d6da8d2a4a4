"""
Email Sync Scheduler
Periodic driver that fans the orchestrator out over every mailbox connection
that is due, one connection at a time with a short pause in between to keep
the mailbox and LLM APIs within their rate limits.

Nothing here raises: failures are logged and counted so one broken
connection never stops the others.
"""

import random
import time
from typing import Optional

import database
from config.sync_config import MappingConfig, SyncConfig, load_mapping_config, load_sync_config

from .email_sync import sync_connection
from .errors import EmailSyncError, StoreError
from .gmail_client import GmailGateway, MailboxGateway
from .llm_providers.base_provider import BaseLLMProvider
from .logging_config import get_logger

logger = get_logger(__name__)


def recover_stale_candidates(
    stale_after_minutes: Optional[int] = None,
    max_attempts: Optional[int] = None,
    sync_config: Optional[SyncConfig] = None,
) -> dict:
    """
    Resolve candidate emails left in PROCESSING by a crashed or killed run.

    Rows already linked to a transaction become SUCCESS, rows with attempts
    left are released to PENDING for the next run, the rest become FAILED.

    Returns:
        Dict with recovered, released and abandoned counts
    """
    sync_config = sync_config or load_sync_config()
    counts = database.sweep_stale_candidates(
        stale_after_minutes or sync_config.stale_after_minutes,
        max_attempts or sync_config.max_attempts,
    )

    if any(counts.values()):
        logger.warning(
            f"Recovered stale candidates: {counts['recovered']} completed, "
            f"{counts['released']} released for retry, {counts['abandoned']} abandoned"
        )
    return counts


def sync_all_connections(
    force: bool = False,
    gateway: Optional[MailboxGateway] = None,
    provider: Optional[BaseLLMProvider] = None,
    sync_config: Optional[SyncConfig] = None,
    mapping_config: Optional[MappingConfig] = None,
    sleep=time.sleep,
) -> dict:
    """
    Sync every active connection that is due.

    A connection is due when it has never synced or its last sync is older
    than the minimum interval; force=True syncs every active connection.

    Args:
        force: Ignore the minimum interval (manual trigger)
        gateway: Mailbox gateway shared by all runs
        provider: Completion provider shared by all runs
        sync_config: Orchestrator and scheduler settings
        mapping_config: Merchant mapping settings
        sleep: Delay function between connections

    Returns:
        Dict with connections, success, errors and transactions counts
    """
    sync_config = sync_config or load_sync_config()
    mapping_config = mapping_config or load_mapping_config()
    gateway = gateway or GmailGateway()
    summary = {"connections": 0, "success": 0, "errors": 0, "transactions": 0}

    try:
        recover_stale_candidates(sync_config=sync_config)
        connection_ids = database.get_connections_due_for_sync(
            sync_config.min_sync_interval_minutes, force=force
        )
    except StoreError as e:
        logger.error(f"Scheduled email sync could not start: {e}")
        return summary

    logger.info(f"Scheduled email sync: {len(connection_ids)} connections due (force={force})")

    for index, connection_id in enumerate(connection_ids):
        if index > 0:
            sleep(
                sync_config.connection_delay_seconds
                + random.uniform(0, sync_config.connection_jitter_seconds)
            )

        summary["connections"] += 1
        try:
            result = sync_connection(
                connection_id,
                gateway=gateway,
                provider=provider,
                sync_config=sync_config,
                mapping_config=mapping_config,
            )
        except EmailSyncError as e:
            summary["errors"] += 1
            logger.error(f"Sync aborted: {e}", extra={"connection_id": connection_id})
            continue
        except Exception as e:
            summary["errors"] += 1
            logger.error(
                f"Unexpected sync failure: {e}",
                extra={"connection_id": connection_id},
                exc_info=True,
            )
            continue

        if result.success:
            summary["success"] += 1
        else:
            summary["errors"] += 1
        summary["transactions"] += result.transactions_created

    logger.info(
        f"Scheduled email sync finished: {summary['success']}/{summary['connections']} succeeded, "
        f"{summary['transactions']} transactions created"
    )
    return summary


def trigger_manual_sync(**kwargs) -> dict:
    """Sync every active connection now, ignoring the minimum interval."""
    logger.info("Manual email sync triggered")
    return sync_all_connections(force=True, **kwargs)
