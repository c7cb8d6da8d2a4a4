"""Celery tasks for bank notification email sync."""

from celery_app import celery_app
from mailsync.errors import ConnectionInactiveError, ConnectionNotFoundError
from mailsync.logging_config import get_logger

logger = get_logger(__name__)


@celery_app.task(bind=True, time_limit=1800, soft_time_limit=1740)
def sync_all_connections_task(self, force: bool = False):
    """
    Celery task run by beat every hour: sync every connection that is due.

    Args:
        force: Sync all active connections regardless of last sync time

    Returns:
        dict: connections, success, errors and transactions counts
    """
    from mailsync.scheduler import sync_all_connections

    return sync_all_connections(force=force)


@celery_app.task(bind=True, time_limit=600, soft_time_limit=570)
def sync_connection_task(self, connection_id: int):
    """
    Celery task to sync one mailbox connection on demand.

    Args:
        connection_id: Mailbox connection ID

    Returns:
        dict: SyncRunResult fields, or a failed status for unknown/disabled connections
    """
    from mailsync.email_sync import sync_connection

    try:
        result = sync_connection(connection_id)
    except (ConnectionNotFoundError, ConnectionInactiveError) as e:
        logger.warning(f"Manual sync rejected: {e}", extra={"connection_id": connection_id})
        return {"status": "failed", "connection_id": connection_id, "error": str(e)}

    return {"status": "completed" if result.success else "failed", **result.to_dict()}


@celery_app.task(bind=True)
def recover_stale_candidates_task(self):
    """
    Celery task run by beat every 15 minutes: resolve candidate emails stuck
    in PROCESSING after a worker crash.

    Returns:
        dict: recovered, released and abandoned counts
    """
    from mailsync.scheduler import recover_stale_candidates

    return recover_stale_candidates()
