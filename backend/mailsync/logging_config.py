"""Centralized logging configuration for the bank email sync workflow.

This module provides structured logging with context fields for sync runs.
Logs are written to both console (for Docker logs) and rotating files.

Usage:
    from mailsync.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Starting sync", extra={'sync_run_id': run_id, 'connection_id': conn_id})
"""

import logging
import os
from logging.handlers import RotatingFileHandler

# Log directory from environment or default
LOG_DIR = os.getenv("LOG_DIR", "logs")

DEBUG_EMAIL_SYNC = os.getenv("EMAIL_SYNC_DEBUG", "false").lower() == "true"


class StructuredFormatter(logging.Formatter):
    """Custom formatter that adds context fields to log records.

    Supports the following context fields via extra={} parameter:
    - sync_run_id: Email sync log ID
    - connection_id: Mailbox connection ID
    - message_id: Provider message ID
    - merchant: Merchant name being parsed or mapped
    """

    def format(self, record):
        """Format log record with context fields."""
        record.sync_run_id = getattr(record, "sync_run_id", None)
        record.connection_id = getattr(record, "connection_id", None)
        record.message_id = getattr(record, "message_id", None)
        record.merchant = getattr(record, "merchant", None)

        return super().format(record)


def get_logger(name: str) -> logging.Logger:
    """Get configured logger for email sync operations.

    Creates a logger with:
    - Console handler for Docker logs (INFO level)
    - Rotating file handler for all logs (DEBUG level)
    - Separate error file handler (ERROR level)

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logging.Logger instance
    """
    logger = logging.getLogger(name)

    # Skip if already configured (prevents duplicate handlers)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False  # Don't propagate to root logger

    log_dir = os.getenv("LOG_DIR", LOG_DIR)
    os.makedirs(log_dir, exist_ok=True)

    # ========================================
    # Console Handler (for Docker logs)
    # ========================================
    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(
        StructuredFormatter(
            "[%(levelname)s] [run:%(sync_run_id)s conn:%(connection_id)s] %(message)s"
        )
    )
    logger.addHandler(console)

    file_format = StructuredFormatter(
        "[%(asctime)s] [%(levelname)s] [%(name)s] "
        "[run:%(sync_run_id)s conn:%(connection_id)s msg:%(message_id)s "
        "merchant:%(merchant)s] %(message)s"
    )

    # ========================================
    # File Handler (rotating, all levels)
    # ========================================
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, "email_sync.log"),
        maxBytes=10 * 1024 * 1024,  # 10MB per file
        backupCount=30,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_format)
    logger.addHandler(file_handler)

    # ========================================
    # Error File Handler (errors only)
    # ========================================
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, "email_sync_errors.log"),
        maxBytes=10 * 1024 * 1024,
        backupCount=30,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_format)
    logger.addHandler(error_handler)

    return logger
