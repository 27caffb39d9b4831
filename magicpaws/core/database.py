"""
SQLAlchemy Core engine, unit-of-work sessions and the table definitions.

Timestamps are written timezone-aware in UTC. Uniqueness that the business
rules depend on (one purchase per user and tier, one progress row per user
and lesson, one ACTIVE subscription per user, one row per Stripe event)
lives in constraints here; services treat the violation as "already done".
"""
from typing import Iterable, Iterator, List, Optional
from contextlib import contextmanager
from datetime import datetime, timezone
from uuid import uuid4
import logging
import os

from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    Numeric,
    String,
    DateTime,
    Boolean,
    Text,
    Index,
    ForeignKey,
    UniqueConstraint,
    text,
    true,
    false,
    inspect,
)
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func

from magicpaws.core.config import settings

logger = logging.getLogger("magicpaws")

metadata = MetaData()

# Pool sizing for Postgres
POOL_SIZE = 5
MAX_OVERFLOW = 10
POOL_RECYCLE_SECONDS = 1800

_engine = None
_SessionLocal = None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def database_url() -> str:
    """TEST_DATABASE_URL wins so a test run never touches the real database."""
    url = os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL
    if not url:
        raise ValueError("DATABASE_URL is not configured")
    return url


def get_engine():
    global _engine, _SessionLocal
    if _engine is None:
        url = database_url()
        options = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            # Sync endpoints run on a threadpool
            options["connect_args"] = {"check_same_thread": False}
        else:
            options.update(pool_size=POOL_SIZE, max_overflow=MAX_OVERFLOW, pool_recycle=POOL_RECYCLE_SECONDS)
        _engine = create_engine(url, **options)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False)
        logger.info("db.engine_ready", extra={"dialect": _engine.dialect.name})
    return _engine


@contextmanager
def get_db_session() -> Iterator[Session]:
    """
    One unit of work: commits when the block exits cleanly, rolls back and
    re-raises otherwise.

        with get_db_session() as session:
            session.execute(insert(users).values(...))
    """
    get_engine()
    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    metadata.create_all(bind=get_engine())


def ping() -> None:
    """Raise if the database cannot answer a trivial query."""
    with get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))


def missing_tables(names: Iterable[str]) -> List[str]:
    inspector = inspect(get_engine())
    return [name for name in names if not inspector.has_table(name)]


# Users and roles
users = Table(
    'users',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('email', String(320), nullable=False),
    Column('name', String(200), nullable=True),
    Column('role', String(20), nullable=False, server_default='CLIENT'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('email', name='uq_users_email'),
    Index('idx_users_role', 'role'),
)

# Client profile (one per user, created on first booking)
client_profiles = Table(
    'client_profiles',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('user_id', String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('phone', String(50), nullable=True),
    Column('address', Text, nullable=True),
    Column('notes', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', name='uq_client_profiles_user_id'),
)

notification_preferences = Table(
    'notification_preferences',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('user_id', String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('booking_reminders', Boolean, nullable=False, server_default=true()),
    Column('booking_updates', Boolean, nullable=False, server_default=true()),
    Column('invoice_notifications', Boolean, nullable=False, server_default=true()),
    Column('marketing_emails', Boolean, nullable=False, server_default=true()),
    Column('training_updates', Boolean, nullable=False, server_default=true()),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('user_id', name='uq_notification_preferences_user_id'),
)

# Bookable services (training session, boarding, ...)
service_types = Table(
    'service_types',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('name', String(200), nullable=False),
    Column('slug', String(200), nullable=False),
    Column('description', Text, nullable=True),
    Column('duration_minutes', Integer, nullable=True),
    Column('base_price', Numeric(10, 2), nullable=False),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('slug', name='uq_service_types_slug'),
)

bookings = Table(
    'bookings',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('client_id', String(36), ForeignKey('client_profiles.id', ondelete='CASCADE'), nullable=False),
    Column('service_type_id', String(36), ForeignKey('service_types.id'), nullable=False),
    Column('requested_date', DateTime(timezone=True), nullable=False),
    Column('requested_time', String(20), nullable=True),
    Column('duration_minutes', Integer, nullable=True),
    Column('client_notes', Text, nullable=True),
    Column('status', String(20), nullable=False, server_default='PENDING'),
    Column('confirmed_date', DateTime(timezone=True), nullable=True),
    Column('confirmed_time', String(20), nullable=True),
    Column('admin_notes', Text, nullable=True),
    Column('rejection_reason', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_bookings_client_id', 'client_id'),
    Index('idx_bookings_status_confirmed_date', 'status', 'confirmed_date'),
)

# Training content hierarchy: tier -> module -> lesson
content_tiers = Table(
    'content_tiers',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('name', String(200), nullable=False),
    Column('slug', String(200), nullable=False),
    Column('description', Text, nullable=True),
    Column('price', Numeric(10, 2), nullable=False),
    Column('sort_order', Integer, nullable=False, server_default='0'),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('slug', name='uq_content_tiers_slug'),
    Index('idx_content_tiers_sort_order', 'sort_order'),
)

content_modules = Table(
    'content_modules',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('tier_id', String(36), ForeignKey('content_tiers.id', ondelete='CASCADE'), nullable=False),
    Column('title', String(200), nullable=False),
    Column('slug', String(200), nullable=False),
    Column('description', Text, nullable=True),
    Column('sort_order', Integer, nullable=False, server_default='0'),
    Column('is_published', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('tier_id', 'slug', name='uq_content_modules_tier_slug'),
    Index('idx_content_modules_tier_sort', 'tier_id', 'sort_order'),
)

content_lessons = Table(
    'content_lessons',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('module_id', String(36), ForeignKey('content_modules.id', ondelete='CASCADE'), nullable=False),
    Column('title', String(200), nullable=False),
    Column('slug', String(200), nullable=False),
    Column('description', Text, nullable=True),
    Column('youtube_video_id', String(50), nullable=True),
    Column('video_duration', Integer, nullable=True),  # seconds
    Column('content', Text, nullable=True),
    Column('is_free_preview', Boolean, nullable=False, server_default=false()),
    Column('is_published', Boolean, nullable=False, server_default=true()),
    Column('sort_order', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('module_id', 'slug', name='uq_content_lessons_module_slug'),
    Index('idx_content_lessons_module_sort', 'module_id', 'sort_order'),
)

# Tier ownership: one row per (user, tier), never updated
tier_purchases = Table(
    'tier_purchases',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('user_id', String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('tier_id', String(36), ForeignKey('content_tiers.id', ondelete='CASCADE'), nullable=False),
    Column('amount', Numeric(10, 2), nullable=True),
    Column('stripe_payment_id', String(255), nullable=True),
    Column('purchased_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'tier_id', name='uq_tier_purchases_user_tier'),
    Index('idx_tier_purchases_user_id', 'user_id'),
)

lesson_progress = Table(
    'lesson_progress',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('lesson_id', String(36), ForeignKey('content_lessons.id', ondelete='CASCADE'), nullable=False),
    Column('user_id', String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('last_position', Integer, nullable=False, server_default='0'),
    Column('is_completed', Boolean, nullable=False, server_default=false()),
    Column('completed_at', DateTime(timezone=True), nullable=True),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('lesson_id', 'user_id', name='uq_lesson_progress_lesson_user'),
    Index('idx_lesson_progress_user_id', 'user_id'),
)

# Live support subscriptions; at most one ACTIVE row per user
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('user_id', String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('type', String(50), nullable=False, server_default='LIVE_SUPPORT'),
    Column('status', String(20), nullable=False),  # ACTIVE, CANCELLED, PAST_DUE
    Column('stripe_subscription_id', String(255), nullable=True),
    Column('current_period_start', DateTime(timezone=True), nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('cancelled_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('stripe_subscription_id', name='uq_subscriptions_stripe_id'),
    Index('idx_subscriptions_user_id', 'user_id'),
    Index(
        'uq_subscriptions_one_active_per_user',
        'user_id',
        unique=True,
        postgresql_where=text("status = 'ACTIVE'"),
        sqlite_where=text("status = 'ACTIVE'"),
    ),
)

# Billing customers (Stripe customer per user)
billing_customers = Table(
    'billing_customers',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('stripe_customer_id', String(100), nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', name='uq_billing_customers_user_id'),
    UniqueConstraint('stripe_customer_id', name='uq_billing_customers_stripe_id'),
)

# Billing events (webhook idempotency)
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(100), nullable=False),
    Column('event_type', String(100), nullable=False),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('payload_hash', String(64), nullable=False),  # SHA256 hash for deduplication
    Column('processed', Boolean, nullable=False, server_default=false()),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    UniqueConstraint('stripe_event_id', name='uq_billing_events_stripe_id'),
    Index('idx_billing_events_received_at', 'received_at'),
    Index('idx_billing_events_processed', 'processed'),
)
