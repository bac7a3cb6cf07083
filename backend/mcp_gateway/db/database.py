"""
Async SQLAlchemy database setup.

Supports any SQLAlchemy async URL; SQLite through aiosqlite is the default.
Connection establishment is retried with exponential backoff before the
store is reported unavailable.
"""

from typing import Any, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mcp_gateway.core.errors import StoreUnavailableError

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


def _is_memory_url(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"))


def _display_url(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url


class Database:
    """Owns the async engine and session factory for the durable store."""

    def __init__(
        self,
        url: str,
        attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        echo: bool = False
    ):
        self.url = url
        self.attempts = attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self.connected = False

    def _create_engine(self) -> AsyncEngine:
        kwargs: dict[str, Any] = {"echo": self.echo}
        if self.url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if _is_memory_url(self.url):
                # One shared connection, otherwise every session sees an empty database
                kwargs["poolclass"] = StaticPool
        return create_async_engine(self.url, **kwargs)

    async def _check_connection(self) -> None:
        if self._engine is None:
            self._engine = self._create_engine()
            self._session_factory = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

        # Import models so the tables are registered on the metadata
        from mcp_gateway.db import models  # noqa: F401

        async with self._engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)

    async def connect(self) -> None:
        """
        Connect and create tables, retrying with exponential backoff.

        Raises:
            StoreUnavailableError: When every attempt failed
        """
        logger.info("Connecting to database", url=_display_url(self.url), max_attempts=self.attempts)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.base_delay, min=0, max=self.max_delay),
            retry=retry_if_exception_type((SQLAlchemyError, OSError)),
            before_sleep=lambda state: logger.warning(
                "Database connection attempt failed, retrying",
                attempt=state.attempt_number,
                error=str(state.outcome.exception()) if state.outcome else None,
            ),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    await self._check_connection()
        except (SQLAlchemyError, OSError) as e:
            self.connected = False
            await self.dispose()
            logger.error("Database unavailable", url=_display_url(self.url), error=str(e))
            raise StoreUnavailableError(f"Failed to connect to database: {e}") from e

        self.connected = True
        logger.info("Database connected", url=_display_url(self.url))

    def session(self) -> AsyncSession:
        """
        Get a new async session.

        Usage:
            async with database.session() as session:
                ...
        """
        if self._session_factory is None or not self.connected:
            raise StoreUnavailableError("Database is not connected")
        return self._session_factory()

    async def dispose(self) -> None:
        """Close all pooled connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
        if self.connected:
            logger.info("Database connection closed")
        self.connected = False
