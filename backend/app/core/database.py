"""
PostgreSQL database access

This module centralizes every way the application reaches the database:
- SQLAlchemy declarative Base (schema definition and table creation)
- psycopg2 direct connections (raw SQL queries in repositories)
- transaction() context manager for multi-statement writes

Author: Platform Team
Updated: 2025-11-20
"""
import time
import logging
from contextlib import contextmanager

import psycopg2
from psycopg2.extras import RealDictCursor
from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base

from .config import settings

logger = logging.getLogger(__name__)


# ============================================================================
# SQLAlchemy Configuration (schema)
# ============================================================================

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

Base = declarative_base()


# Partial unique index backing the webhook/request idempotency claims.
# Regular audit entries are not constrained.
IDEMPOTENCY_INDEX_SQL = """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_audit_logs_idempotency
    ON audit_logs (action, entity_id)
    WHERE action IN ('WEBHOOK_IDEMPOTENCY', 'REQUEST_IDEMPOTENCY')
"""


def init_db():
    """Create all tables and the idempotency index"""
    # Import models so they register on Base.metadata
    from app import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    with engine.begin() as connection:
        connection.execute(text(IDEMPOTENCY_INDEX_SQL))
    logger.info("Database schema initialized")


# ============================================================================
# psycopg2 Direct Connections (for raw SQL queries)
# ============================================================================

def get_db_connection_dict():
    """
    Get a database connection with RealDictCursor (returns dictionaries)

    Example:
        conn = get_db_connection_dict()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM orders WHERE store_id = %s", (store_id,))
        results = cursor.fetchall()  # Returns list of dicts
        cursor.close()
        conn.close()
    """
    database_url = settings.DATABASE_URL
    if not database_url:
        raise Exception("DATABASE_URL not configured")

    return psycopg2.connect(database_url, cursor_factory=RealDictCursor)


@contextmanager
def transaction():
    """
    Run several statements atomically on one connection.

    Yields a RealDictCursor. Commits when the block exits normally,
    rolls back and re-raises on any exception.

    Example:
        with transaction() as cursor:
            cursor.execute("UPDATE payments SET status = 'PAID' WHERE id = %s", (payment_id,))
            cursor.execute("UPDATE orders SET payment_status = 'PAID' WHERE id = %s", (order_id,))
    """
    conn = get_db_connection_dict()
    cursor = conn.cursor()
    try:
        yield cursor
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cursor.close()
        conn.close()


# ============================================================================
# Database Connection with Retry Logic
# ============================================================================

def _connect_with_retry(max_retries: int, retry_delay: float):
    database_url = settings.DATABASE_URL
    if not database_url:
        raise Exception("DATABASE_URL not configured")

    last_error = None

    for attempt in range(1, max_retries + 1):
        try:
            logger.debug(f"Database connection attempt {attempt}/{max_retries}")
            conn = psycopg2.connect(database_url)

            # Test connection with a simple query
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.close()

            logger.debug(f"Database connection successful on attempt {attempt}")
            return conn

        except psycopg2.OperationalError as e:
            last_error = e
            error_msg = str(e)

            if "SSL connection has been closed unexpectedly" in error_msg:
                logger.warning(f"SSL connection error on attempt {attempt}/{max_retries}: {error_msg}")
            else:
                logger.warning(f"Connection error on attempt {attempt}/{max_retries}: {error_msg}")

            if attempt < max_retries:
                # Exponential backoff
                delay = retry_delay * (2 ** (attempt - 1))
                logger.info(f"Retrying in {delay:.2f} seconds...")
                time.sleep(delay)
            else:
                logger.error(f"All {max_retries} connection attempts failed")
                raise last_error

    raise last_error if last_error else Exception("Connection failed after all retries")


def get_db_connection_with_retry(max_retries=3, retry_delay=1.0):
    """
    Get a psycopg2 connection with automatic retry on connection failures

    Args:
        max_retries: Maximum number of connection attempts (default: 3)
        retry_delay: Initial delay between retries in seconds (default: 1.0)

    Raises:
        psycopg2.OperationalError: If all retry attempts fail
    """
    return _connect_with_retry(max_retries, retry_delay)
