"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Table definitions for usage, entitlements and the payment event log
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, BigInteger, String, DateTime, Boolean, Text, Index
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import os

from eagate.core.config import settings
from eagate.core.errors import StoreUnavailableError


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 10
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# SQLite busy timeout (seconds) for concurrent writers
SQLITE_BUSY_TIMEOUT = 30

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if _engine is not None:
        _engine.dispose()

    if url.startswith("sqlite"):
        _engine = create_engine(
            url,
            connect_args={"timeout": SQLITE_BUSY_TIMEOUT, "check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Commits on clean exit, rolls back on error. Driver-level failures
    (connection refused, lock timeouts) surface as StoreUnavailableError.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except DBAPIError as e:
        session.rollback()
        if e.connection_invalidated or _is_operational(e):
            raise StoreUnavailableError("Database unavailable") from e
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _is_operational(exc: DBAPIError) -> bool:
    from sqlalchemy.exc import OperationalError, InterfaceError

    return isinstance(exc, (OperationalError, InterfaceError))


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


# Usage counters: one row per identity, incremented in place
usage_counters = Table(
    'usage_counters',
    metadata,
    Column('identity_key', String(320), primary_key=True),  # anon:<token> | email:<address>
    Column('identity_kind', String(20), nullable=False),  # anonymous | authenticated
    Column('count', Integer, nullable=False, server_default='0'),
    Column('last_request_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('reset_at', DateTime(timezone=True), nullable=True),
)

# Entitlements: authoritative paid flag per email, written only by webhook ingestion
entitlements = Table(
    'entitlements',
    metadata,
    Column('identity_key', String(320), primary_key=True),  # lowercased email
    Column('has_paid', Boolean, nullable=False, server_default='false'),
    Column('updated_at', BigInteger, nullable=False),  # provider event time, epoch seconds
    Column('source_event_id', String(255), nullable=False),
    Column('written_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Payment event dedup log
payment_events = Table(
    'payment_events',
    metadata,
    Column('event_id', String(255), primary_key=True),
    Column('provider_type', String(100), nullable=False),
    Column('event_type', String(20), nullable=False),  # completed | canceled | other
    Column('customer_email', String(320), nullable=True),
    Column('payload_digest', String(64), nullable=False),  # SHA256 of raw body
    Column('event_created', BigInteger, nullable=False),
    Column('received_at', DateTime(timezone=True), nullable=False),
    Column('processed', Boolean, nullable=False, server_default='false'),
    Column('outcome', String(30), nullable=True),  # applied | stale | ignored
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Index('idx_payment_events_email', 'customer_email'),
    Index('idx_payment_events_received_at', 'received_at'),
)

# Anonymous identity -> paying email, recorded from verified checkout events
identity_links = Table(
    'identity_links',
    metadata,
    Column('identity_key', String(320), primary_key=True),
    Column('email', String(320), nullable=False),
    Column('source_event_id', String(255), nullable=False),
    Column('linked_at', DateTime(timezone=True), nullable=False),
    Index('idx_identity_links_email', 'email'),
)

# Admin audit log
admin_audit = Table(
    'admin_audit',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('actor', String(330), nullable=False),  # "legacy:<key hash>" or "self:<identity key>"
    Column('action', String(100), nullable=False),  # "usage.reset"
    Column('target_identity_key', String(320), nullable=True, index=True),
    Column('payload_json', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False, index=True),
)
