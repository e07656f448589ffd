"""Database connection helpers."""

import os

import psycopg
from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from dotenv import load_dotenv

from src.helpers.constants import (
    CONNECTION_TIMEOUT,
    DB_MAX_OVERFLOW,
    DB_POOL_RECYCLE,
    DB_POOL_SIZE,
)


# Load environment variables from .env file
load_dotenv()

Base = declarative_base()

DRIVER_SCHEME = "postgresql+psycopg://"

# admin_shutdown, crash_shutdown, cannot_connect_now
TRANSIENT_SQLSTATES = frozenset({"57P01", "57P02", "57P03"})

TRANSIENT_MESSAGES = (
    "connection terminated",
    "server closed the connection",
    "connection reset",
    "connection timed out",
    "terminating connection due to administrator command",
)


def normalize_database_url(url: str) -> str:
    """Point a libpq-style URL at the psycopg (version 3) async driver.

    Example:
        >>> normalize_database_url("postgres://u:p@db:5432/blocks")
        'postgresql+psycopg://u:p@db:5432/blocks'
    """
    for prefix in ("postgresql+psycopg://", "postgresql://", "postgres://"):
        if url.startswith(prefix):
            return DRIVER_SCHEME + url.removeprefix(prefix)
    return url


def get_database_url() -> str:
    """Get the database URL from environment variables.

    DATABASE_URL wins when set; otherwise the URL is assembled from the
    POSTGRE_* variables.

    Returns:
        str: PostgreSQL database URL for the psycopg async driver

    Raises:
        ValueError: If required environment variables are not set
    """
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return normalize_database_url(database_url)

    postgre_host = os.getenv("POSTGRE_HOST")
    if not postgre_host:
        msg = "DATABASE_URL or POSTGRE_HOST is not set"
        raise ValueError(msg)

    postgre_port = os.getenv("POSTGRE_PORT", "5432")

    postgre_user = os.getenv("POSTGRE_USER")
    if not postgre_user:
        msg = "POSTGRE_USER is not set"
        raise ValueError(msg)

    postgre_password = os.getenv("POSTGRE_PASSWORD")
    if not postgre_password:
        msg = "POSTGRE_PASSWORD is not set"
        raise ValueError(msg)

    postgre_db = os.getenv("POSTGRE_DB")
    if not postgre_db:
        msg = "POSTGRE_DB is not set"
        raise ValueError(msg)

    return (
        DRIVER_SCHEME
        + f"{postgre_user}:{postgre_password}"
        + f"@{postgre_host}:{postgre_port}"
        + f"/{postgre_db}"
    )


def create_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create the async engine used by the block store.

    Args:
        database_url: SQLAlchemy URL (normalized to the psycopg driver)
        echo: Log emitted SQL

    Returns:
        AsyncEngine with a bounded pool and pre-ping enabled
    """
    return create_async_engine(
        normalize_database_url(database_url),
        echo=echo,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_recycle=DB_POOL_RECYCLE,
        pool_pre_ping=True,
        connect_args={"connect_timeout": int(CONNECTION_TIMEOUT)},
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def is_transient_db_error(exc: Exception) -> bool:
    """Classify a database exception as transient (worth retrying).

    Transient: connection resets and timeouts, administrative disconnects,
    SQLSTATE class 08 (connection exception), pool checkout timeouts and
    connections SQLAlchemy has invalidated. Everything else (constraint
    violations, syntax errors, data errors) is permanent.

    Args:
        exc: Exception raised by a store operation

    Returns:
        True if the operation should be retried
    """
    if isinstance(exc, PoolTimeoutError):
        return True

    orig: BaseException | None = exc
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        orig = exc.orig

    if isinstance(orig, (ConnectionResetError, ConnectionAbortedError, TimeoutError)):
        return True

    if isinstance(orig, psycopg.Error):
        sqlstate = orig.sqlstate
        if sqlstate in TRANSIENT_SQLSTATES:
            return True
        if sqlstate is not None and sqlstate.startswith("08"):
            return True
        # Client-side connection failures carry no SQLSTATE
        if sqlstate is None and isinstance(orig, psycopg.OperationalError):
            return True

    message = str(exc).lower()
    return any(fragment in message for fragment in TRANSIENT_MESSAGES)


__all__ = [
    "Base",
    "create_engine",
    "create_session_factory",
    "get_database_url",
    "is_transient_db_error",
    "normalize_database_url",
]
