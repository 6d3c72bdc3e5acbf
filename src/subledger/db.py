"""
SQLAlchemy 2.0 database configuration.

Declarative base, engine and session management, and the transaction
executor every store operation runs inside.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, TypeVar
from urllib.parse import quote_plus

import structlog
from sqlalchemy import DateTime, text
from sqlalchemy.exc import DBAPIError, DisconnectionError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from subledger.billing.exceptions import (
    BillingConfigurationError,
    SubscriptionConstraintError,
    TransactionFailedError,
)
from subledger.settings import get_settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SUPPORTED_BACKENDS = frozenset({"postgresql", "sqlite"})

# ==========================================
# Database URLs from settings
# ==========================================


def get_database_url() -> str:
    """Get the sync database URL from settings."""
    settings = get_settings()
    if settings.database.url:
        return str(settings.database.url)

    # In development, use SQLite if PostgreSQL is not configured
    if settings.is_development and not settings.database.password:
        return "sqlite:///./subledger_dev.sqlite"

    username = quote_plus(settings.database.username)
    password = quote_plus(settings.database.password) if settings.database.password else ""
    host = settings.database.host
    port = settings.database.port
    database = settings.database.database

    return f"postgresql://{username}:{password}@{host}:{port}/{database}"


def get_async_database_url() -> str:
    """Get the async database URL from settings.

    Raises:
        BillingConfigurationError: the URL names a backend other than
            PostgreSQL or SQLite
    """
    sync_url = get_database_url()
    if sync_url.startswith("postgresql://"):
        return sync_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif sync_url.startswith("sqlite://"):
        return sync_url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    backend = sync_url.split("://", 1)[0].split("+", 1)[0]
    if backend not in SUPPORTED_BACKENDS:
        raise BillingConfigurationError(
            f"Unsupported database backend: {backend!r}",
            config_key="database.url",
            recovery_hint="Use a postgresql:// or sqlite:// database URL",
        )
    return sync_url


# ==========================================
# SQLAlchemy 2.0 Declarative Base
# ==========================================


class Base(DeclarativeBase):
    """Base class for all database models using SQLAlchemy 2.0 declarative mapping."""

    pass


class TimestampMixin:
    """Adds created_at and updated_at timestamps to models."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )


# ==========================================
# Engine and Session Management
# ==========================================

# Created lazily so settings can be overridden before first use
_async_engine: AsyncEngine | None = None
_async_session_maker: async_sessionmaker[AsyncSession] | None = None


def create_async_database_engine(url: str | None = None) -> AsyncEngine:
    """Create an async engine, passing pool options only to pooled dialects."""
    settings = get_settings()
    url = url or get_async_database_url()
    options: dict[str, Any] = {"echo": settings.database.echo}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_timeout=settings.database.pool_timeout,
            pool_recycle=settings.database.pool_recycle,
            pool_pre_ping=settings.database.pool_pre_ping,
        )
    return create_async_engine(url, **options)


def get_async_engine() -> AsyncEngine:
    """Get or create the asynchronous engine."""
    global _async_engine
    if _async_engine is None:
        _async_engine = create_async_database_engine()
    return _async_engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the global session factory (can be overridden for testing)."""
    global _async_session_maker
    if _async_session_maker is None:
        _async_session_maker = create_session_factory(get_async_engine())
    return _async_session_maker


async def dispose_engine() -> None:
    """Dispose the global engine and forget the session factory."""
    global _async_engine, _async_session_maker
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_session_maker = None


# ==========================================
# Transaction Executor
# ==========================================


class TransactionExecutor:
    """
    Runs units of work inside atomic transaction scopes.

    Each scope owns one session and one transaction: it commits when the
    block exits normally and rolls back on any exception, task cancellation
    included. Database failures are translated into billing errors so
    callers see the same taxonomy no matter which statement failed:

    - IntegrityError -> SubscriptionConstraintError
    - any other DBAPIError (connection loss, deadlock, serialization
      conflict, lock timeout) -> TransactionFailedError, which is retryable
    - pool checkout timeouts and disconnects -> TransactionFailedError

    Sessions are always opened with ``expire_on_commit=False``, whatever the
    factory's own setting, so rows loaded in a scope stay readable after it
    commits.

    The executor never retries. It holds no per-call state and can be
    shared across tasks.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Open a transaction scope and yield its session."""
        try:
            async with self.session_factory(expire_on_commit=False) as session:
                async with session.begin():
                    yield session
        except IntegrityError as exc:
            logger.warning("transaction.constraint_violation", error=str(exc.orig))
            raise SubscriptionConstraintError(
                "Insert rejected by a database constraint",
                context={"detail": str(exc.orig)},
            ) from exc
        except DBAPIError as exc:
            logger.error("transaction.failed", error=str(exc.orig))
            raise TransactionFailedError(
                "Transaction could not be completed",
                context={"detail": str(exc.orig)},
            ) from exc
        except (PoolTimeoutError, DisconnectionError) as exc:
            logger.error("transaction.connection_unavailable", error=str(exc))
            raise TransactionFailedError(
                "No database connection available",
                context={"detail": str(exc)},
            ) from exc

    async def run(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Await ``fn(session)`` inside a single transaction scope and return its result."""
        async with self.transaction() as session:
            return await fn(session)


# ==========================================
# Database Initialization
# ==========================================


async def create_all_tables_async(engine: AsyncEngine | None = None) -> None:
    """Create all tables in the database asynchronously."""
    engine = engine or get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all_tables_async(engine: AsyncEngine | None = None) -> None:
    """Drop all tables from the database asynchronously. Use with caution!"""
    engine = engine or get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def check_database_health(executor: TransactionExecutor | None = None) -> bool:
    """Check if the database is accessible."""
    executor = executor or TransactionExecutor()
    try:
        async with executor.transaction() as session:
            await session.execute(text("SELECT 1"))
        return True
    except TransactionFailedError:
        return False


__all__ = [
    "Base",
    "TimestampMixin",
    "TransactionExecutor",
    "get_database_url",
    "get_async_database_url",
    "create_async_database_engine",
    "get_async_engine",
    "create_session_factory",
    "get_session_factory",
    "dispose_engine",
    "create_all_tables_async",
    "drop_all_tables_async",
    "check_database_health",
]
