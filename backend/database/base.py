# backend/database/base.py
"""
SQLAlchemy Base and Engine Configuration

Provides the declarative base for all models and the session factory used by
the data-access modules.

CRITICAL SAFETY: When TESTING=true, this module ONLY connects to the test
database (mailsync_db_test). Production database access is blocked during tests.
"""

import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps

from dotenv import load_dotenv
from sqlalchemy import URL, create_engine, make_url
from sqlalchemy.exc import OperationalError, SQLAlchemyError, TimeoutError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from mailsync.errors import StoreError

load_dotenv(override=False)

logger = logging.getLogger(__name__)

# ============================================================================
# CRITICAL: TEST DATABASE SAFETY CHECK
# ============================================================================
IS_TESTING = os.getenv("TESTING", "").lower() in ("true", "1", "yes")
PRODUCTION_DB_NAME = "mailsync_db"
TEST_DB_NAME = os.getenv("POSTGRES_TEST_DB", "mailsync_db_test")

db_name = os.getenv("POSTGRES_DB", PRODUCTION_DB_NAME)

# SAFETY: If testing, FORCE use of test database
if IS_TESTING:
    if db_name == PRODUCTION_DB_NAME:
        db_name = TEST_DB_NAME
        logger.warning(
            f"TESTING=true but POSTGRES_DB was production. Forcing test database: {db_name}"
        )
    elif db_name != TEST_DB_NAME:
        logger.warning(f"TESTING=true with custom database: {db_name}")


def _database_url():
    """Resolve the database URL (DATABASE_URL wins over POSTGRES_* variables)."""
    explicit = os.getenv("DATABASE_URL", "").strip()
    if explicit:
        return make_url(explicit)

    # URL.create keeps the password out of logs
    return URL.create(
        "postgresql",
        username=os.getenv("POSTGRES_USER", "mailsync_user"),
        password=os.getenv("POSTGRES_PASSWORD", "mailsync_password"),
        host=os.getenv("POSTGRES_HOST", "localhost"),
        port=int(os.getenv("POSTGRES_PORT", "5432")),
        database=db_name,
    )


DATABASE_URL = _database_url()

# Declarative base for all models
Base = declarative_base()

if DATABASE_URL.get_backend_name() == "sqlite":
    # Single shared connection so in-memory databases survive across sessions
    engine = create_engine(
        DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False,
    )
else:
    engine = create_engine(
        DATABASE_URL,
        poolclass=QueuePool,
        pool_size=10,
        max_overflow=0,
        pool_pre_ping=True,  # Verify connections before use
        echo=False,  # Set to True for SQL logging during development
        hide_parameters=True,  # Redact password in logs
    )

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_session():
    """Get a new SQLAlchemy session (context manager)."""
    try:
        db = SessionLocal()
    except TimeoutError:
        logger.error("Connection pool exhausted (all connections in use)")
        raise
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise

    try:
        yield db
    except Exception as e:
        logger.error(f"Session error: {e}")
        db.rollback()  # Explicit rollback on error
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create all tables known to the metadata (development and tests)."""
    import database.models  # noqa: F401  registers every model on Base

    Base.metadata.create_all(bind=engine)


def drop_db() -> None:
    """Drop all tables known to the metadata."""
    import database.models  # noqa: F401

    Base.metadata.drop_all(bind=engine)


def store_operation(func):
    """Wrap SQLAlchemy failures raised by a data-access function in StoreError."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"{func.__name__} failed: {e}")
            raise StoreError(f"{func.__name__} failed: {e.__class__.__name__}") from e

    return wrapper


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value):
    """Attach UTC to naive timestamps read back from backends without timezone support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
