#fleet_scheduler\infrastructure\sql\database.py

"""SQLAlchemy database setup and session management."""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from fleet_scheduler.infrastructure.sql.config import DatabaseSettings


# ============================================
# Base for ORM models
# ============================================
Base = declarative_base()


# ============================================
# Engine configuration
# ============================================
def create_db_engine(settings: Optional[DatabaseSettings] = None) -> Engine:
    """Create a SQLAlchemy engine for ``settings`` (defaults read from the environment)."""

    settings = settings or DatabaseSettings()

    if settings.is_sqlite:
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in settings.url or settings.url in ("sqlite://", "sqlite:///"):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(settings.url, echo=settings.echo_sql, **kwargs)

    return create_engine(
        settings.url,
        echo=settings.echo_sql,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        pool_recycle=settings.pool_recycle,
    )


# ============================================
# Session factory function
# ============================================
def get_session_factory(engine: Engine) -> sessionmaker:
    """Get a session factory bound to the given engine."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False
    )


# ============================================
# Database initialization
# ============================================
def init_db(engine: Engine) -> None:
    """Create all tables (use Alembic for server databases)."""
    # Models must be imported so they register on Base.metadata
    from fleet_scheduler.infrastructure.sql import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def drop_db(engine: Engine) -> None:
    """Drop all tables (for testing only)."""
    Base.metadata.drop_all(bind=engine)
