"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- SQLite support for tests (single shared connection, explicit BEGIN)
- Table definitions for the subscription lifecycle
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import (
    create_engine,
    event,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    JSON,
    Numeric,
    Text,
    Index,
    ForeignKey,
    UniqueConstraint,
    text,
)
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from hodos.core.config import settings


logger = logging.getLogger("hodos.database")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

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


def _enable_sqlite_transactions(engine) -> None:
    # pysqlite defers BEGIN and mishandles SAVEPOINT; take over transaction control.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


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

    if url.startswith("sqlite"):
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
        _enable_sqlite_transactions(_engine)
    else:
        # Create engine with connection pooling
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
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

    Usage:
        with get_db_session() as session:
            session.execute(...)

    Commits when the block exits normally, rolls back on any exception.
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


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


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# Subscription plans (read-only catalog, seeded from DEFAULT_PLANS)
plans = Table(
    'plans',
    metadata,
    Column('plan_type', String(50), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('price_monthly', Numeric(10, 2), nullable=False),
    Column('max_members', Integer, nullable=True),
    Column('max_admins', Integer, nullable=True),
    Column('features', JSON, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Churches (tenants)
churches = Table(
    'churches',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('slug', String(200), nullable=False),
    Column('name', Text, nullable=False),
    Column('cnpj', String(32), nullable=True),
    Column('cpf', String(32), nullable=True),
    Column('address', Text, nullable=True),
    Column('responsible_name', Text, nullable=True),
    Column('responsible_email', String(255), nullable=True),
    Column('responsible_phone', String(64), nullable=True),
    Column('is_active', Boolean, nullable=False, server_default='1'),
    Column('is_public', Boolean, nullable=False, server_default='0'),
    # Current subscription pointer; not a FK to avoid a churches<->subscriptions cycle
    Column('subscription_id', String(36), nullable=True, index=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('slug', name='uq_churches_slug'),
)

# Per-user profile: church affiliation + current individual subscription pointer
profiles = Table(
    'profiles',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('full_name', Text, nullable=True),
    Column('email', String(255), nullable=True),
    Column('church_id', String(36), ForeignKey('churches.id'), nullable=True, index=True),
    Column('subscription_id', String(36), nullable=True, index=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)

# Role grants, optionally scoped to a church
user_roles = Table(
    'user_roles',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('role', String(50), nullable=False),  # 'admin', 'super_admin', 'member', ...
    Column('church_id', String(36), ForeignKey('churches.id'), nullable=True, index=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'role', 'church_id', name='uq_user_roles_user_role_church'),
)

# Subscriptions: holder is a church (church_id set) or the individual user_id
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('plan_type', String(50), ForeignKey('plans.plan_type'), nullable=False),
    Column('holder_type', String(20), nullable=False),  # 'church' | 'user'
    Column('user_id', String(100), nullable=False, index=True),  # requester / billing contact
    Column('church_id', String(36), ForeignKey('churches.id'), nullable=True, index=True),
    Column('status', String(20), nullable=False, index=True),  # active, expired, cancelled
    Column('started_at', DateTime(timezone=True), nullable=False),
    Column('expires_at', DateTime(timezone=True), nullable=False),
    Column('cancelled_at', DateTime(timezone=True), nullable=True),
    Column('superseded_by', String(36), nullable=True),
    Column('payment_id', String(36), nullable=True, index=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # Sweeper scans by (status, expires_at)
    Index('idx_subscriptions_status_expires', 'status', 'expires_at'),
)

# Manual payment claims awaiting review
pending_payments = Table(
    'pending_payments',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('plan_type', String(50), ForeignKey('plans.plan_type'), nullable=False),
    Column('amount', Numeric(10, 2), nullable=False),
    Column('payment_method', String(20), nullable=False, server_default='pix'),
    Column('church_data', JSON, nullable=True),
    Column('confirmation_code', String(32), nullable=False),
    Column('status', String(20), nullable=False, server_default='pending', index=True),
    Column('rejection_reason', Text, nullable=True),
    Column('reviewed_by', String(100), nullable=True),
    Column('reviewed_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('confirmation_code', name='uq_pending_payments_confirmation_code'),
    # At most one open claim per (user, plan_type)
    Index(
        'uq_pending_payments_open_claim',
        'user_id',
        'plan_type',
        unique=True,
        postgresql_where=text("status = 'pending'"),
        sqlite_where=text("status = 'pending'"),
    ),
    Index('idx_pending_payments_status_created', 'status', 'created_at'),
)

# Reviewer / system action audit trail
admin_audit = Table(
    'admin_audit',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('actor', String(100), nullable=False),  # reviewer user id or "system_job"
    Column('action', String(100), nullable=False),  # "payment.approve", "subscription.cancel", ...
    Column('target_user_id', String(100), nullable=True, index=True),
    Column('target_resource', String(200), nullable=True),  # payment id, subscription id
    Column('payload_json', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False, index=True),
    Index('idx_admin_audit_actor', 'actor'),
    Index('idx_admin_audit_action', 'action'),
)

# Scheduled job runs
job_runs = Table(
    'job_runs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('job_name', String(100), nullable=False, index=True),
    Column('started_at', DateTime(timezone=True), nullable=False),
    Column('finished_at', DateTime(timezone=True), nullable=True),
    Column('status', String(20), nullable=False),
    Column('stats_json', Text, nullable=True),
)
