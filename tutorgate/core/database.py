"""
Subscription and promo-code storage on SQLAlchemy Core.

Tables are declared on one module-level MetaData. The process-wide engine is
created lazily from DATABASE_URL (or TEST_DATABASE_URL); tests build their own
engine and pass a session factory to the stores instead.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, MetaData, String, Table, Text, UniqueConstraint, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

from tutorgate.core.config import settings

logger = logging.getLogger("tutorgate")

metadata = MetaData()

# Server databases get a bounded pool; connections recycle hourly
POOL_OPTIONS = {"pool_size": 10, "max_overflow": 20, "pool_timeout": 30, "pool_recycle": 3600, "pool_pre_ping": True}

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_database_url() -> Optional[str]:
    return settings.TEST_DATABASE_URL or settings.DATABASE_URL


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # A single shared connection keeps sqlite:// alive across sessions
        return create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    return create_engine(url, **POOL_OPTIONS)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_engine(database_url: Optional[str] = None) -> Engine:
    """Create the process-wide engine and session factory."""
    global _engine, _session_factory

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured (set it in the environment or .env)")
    _engine = build_engine(url)
    _session_factory = make_session_factory(_engine)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        init_engine()
    return _session_factory


@contextmanager
def get_db_session(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """One unit of work: commit when the block finishes, roll back if it raises."""
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Optional[Engine] = None) -> None:
    metadata.create_all(bind=engine or get_engine())


def drop_all_tables(engine: Optional[Engine] = None) -> None:
    """Tests and local resets only."""
    metadata.drop_all(bind=engine or get_engine())


def check_connection(engine: Optional[Engine] = None) -> bool:
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, ValueError) as exc:
        logger.warning(f"Database connection check failed: {exc}")
        return False
    return True


# Every plan change writes in place; a new row is only added by create(),
# numbered per user so two concurrent creations cannot both land
subscriptions = Table(
    "subscriptions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(100), nullable=False, index=True),
    Column("plan", String(20), nullable=False, server_default="free"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("billing_cycle", String(20), nullable=False, server_default="monthly"),
    Column("current_period_start", DateTime(timezone=True), nullable=True),
    Column("current_period_end", DateTime(timezone=True), nullable=True),
    Column("cancel_at_period_end", Boolean, nullable=False, server_default="0"),
    # Pending change: all three set together or all NULL
    Column("scheduled_plan", String(20), nullable=True),
    Column("scheduled_billing_cycle", String(20), nullable=True),
    Column("scheduled_change_date", DateTime(timezone=True), nullable=True),
    Column("version", Integer, nullable=False, server_default="1"),
    Column("generation", Integer, nullable=False, server_default="1"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("idx_subscriptions_user_created", "user_id", "created_at"),
    Index("idx_subscriptions_scheduled_change", "scheduled_change_date"),
    UniqueConstraint("user_id", "generation", name="uq_subscriptions_user_generation"),
)

promo_codes = Table(
    "promo_codes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(50), nullable=False, unique=True, index=True),
    Column("description", Text, nullable=True),
    Column("discount_percent", Integer, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("valid_from", DateTime(timezone=True), nullable=True),
    Column("valid_until", DateTime(timezone=True), nullable=True),
    Column("max_uses", Integer, nullable=True),
    Column("current_uses", Integer, nullable=False, server_default="0"),
    Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
)
