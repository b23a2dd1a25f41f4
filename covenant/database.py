"""
Covenant — Async Database Engine & Session Factory

Provides two connection strategies:

1. **Cloud Run (production)** – Uses ``cloud-sql-python-connector`` with
   automatic IAM authentication.  Activated when
   ``CLOUD_SQL_USE_UNIX_SOCKET`` is *True* **and** a valid
   ``CLOUD_SQL_INSTANCE_CONNECTION`` is provided.

2. **Local development** – Falls back to a standard ``asyncpg`` connection
   string read from ``DATABASE_URL``.

The engine is built on first use so that importing the ORM models (for
Alembic, tests, or scripts) never opens a connection pool.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, AsyncGenerator, Iterator

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from covenant.config import get_settings
from covenant.errors import StoreUnavailable

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------ #
# Declarative base for all ORM models
# ------------------------------------------------------------------ #

class Base(DeclarativeBase):
    """Shared declarative base.

    Every SQLAlchemy model in the project should inherit from this class::

        from covenant.database import Base

        class Profile(Base):
            __tablename__ = "profiles"
            ...
    """
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONList = JSON().with_variant(JSONB(), "postgresql")


# ------------------------------------------------------------------ #
# Pool configuration (PostgreSQL only)
# ------------------------------------------------------------------ #

_POOL_KWARGS = {
    "pool_size": 10,
    "max_overflow": 5,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
}


def _build_cloud_sql_engine() -> AsyncEngine:
    """Create an async engine that connects through the Cloud SQL Python
    Connector with automatic IAM authentication."""
    from google.cloud.sql.connector import Connector

    settings = get_settings()

    connector = Connector()

    async def _get_connection():
        return await connector.connect_async(
            settings.CLOUD_SQL_INSTANCE_CONNECTION,
            "asyncpg",
            user=settings.DB_USER,
            password=settings.DB_PASSWORD,
            db=settings.DB_NAME,
            enable_iam_auth=True,
        )

    engine = create_async_engine(
        "postgresql+asyncpg://",
        async_creator=_get_connection,
        echo=(settings.LOG_LEVEL == "DEBUG"),
        **_POOL_KWARGS,
    )

    logger.info(
        "Database engine created via Cloud SQL Connector (%s)",
        settings.CLOUD_SQL_INSTANCE_CONNECTION,
    )
    return engine


def _build_url_engine() -> AsyncEngine:
    """Create an async engine from the plain ``DATABASE_URL`` string.

    A bare ``postgresql://`` scheme is upgraded to the asyncpg dialect.
    Pool tuning is only applied to PostgreSQL URLs; SQLite (used by the
    test-suite and local scripts) keeps SQLAlchemy's default pool.
    """
    settings = get_settings()
    url = settings.DATABASE_URL

    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    pool_kwargs = _POOL_KWARGS if url.startswith("postgresql") else {}

    engine = create_async_engine(
        url,
        echo=(settings.LOG_LEVEL == "DEBUG"),
        **pool_kwargs,
    )

    logger.info("Database engine created from DATABASE_URL")
    return engine


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Return the process-wide engine, selecting the builder from config."""
    settings = get_settings()

    use_cloud_sql = (
        settings.CLOUD_SQL_USE_UNIX_SOCKET
        and settings.CLOUD_SQL_INSTANCE_CONNECTION
    )

    if use_cloud_sql:
        return _build_cloud_sql_engine()

    return _build_url_engine()


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ------------------------------------------------------------------ #
# Store helpers shared by the services
# ------------------------------------------------------------------ #

# Deadlock and serialization failures; the transaction was rolled back and
# can be replayed as-is.
RETRYABLE_SQLSTATES = frozenset({"40P01", "40001"})


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


@contextmanager
def translate_store_errors(operation: str) -> Iterator[None]:
    """Re-raise connection-level driver failures, deadlocks and
    serialization failures as ``StoreUnavailable``.

    Integrity violations and other statement errors pass through untouched
    so that callers can map them to domain errors.
    """
    try:
        yield
    except DBAPIError as exc:
        retryable = (
            isinstance(exc, (OperationalError, InterfaceError))
            or exc.connection_invalidated
            or _sqlstate(exc) in RETRYABLE_SQLSTATES
        )
        if not retryable:
            raise
        logger.error("Store unavailable during %s: %s", operation, exc)
        raise StoreUnavailable(
            f"Backing store unavailable during {operation}; retry the request."
        ) from exc
    except (PoolTimeoutError, ConnectionError) as exc:
        logger.error("Store unavailable during %s: %s", operation, exc)
        raise StoreUnavailable(
            f"Backing store unavailable during {operation}; retry the request."
        ) from exc


def dialect_insert(db_session: AsyncSession, model: Any) -> Any:
    """Return an ``INSERT`` construct supporting ``ON CONFLICT`` clauses for
    the dialect the session is bound to."""
    dialect = db_session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"Upserts are not supported on dialect {dialect!r}")


# ------------------------------------------------------------------ #
# FastAPI dependency
# ------------------------------------------------------------------ #

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` and ensure it is closed afterwards.

    Services commit their own unit of work; anything left pending when a
    request fails is rolled back here.
    """
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
