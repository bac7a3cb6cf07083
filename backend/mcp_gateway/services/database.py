"""
Database Service

This module provides:
- DatabaseService: one store-agnostic facade over the durable and in-memory stores
- with_fallback: the single policy deciding when a call is served from memory
- Startup helpers (connection, environment configuration import, catalog seeding)
"""

import functools
import os
from typing import Iterable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from mcp_gateway.core.config import API_KEY_VARIABLES, SERVER_CONFIG_VARIABLES
from mcp_gateway.core.errors import StoreUnavailableError
from mcp_gateway.db.database import Database
from mcp_gateway.schemas.tools import (
    ConfigCategory,
    Configuration,
    ExecutionStats,
    ToolCategory,
    ToolDefinition,
    ToolExecution,
)
from mcp_gateway.services.executions import ExecutionHandle
from mcp_gateway.services.memory_store import InMemoryStore
from mcp_gateway.services.sql_store import SQLRecordStore

logger = structlog.get_logger(__name__)

FALLBACK_ERRORS = (StoreUnavailableError, SQLAlchemyError, OSError)


def with_fallback(method):
    """
    Serve a store call from the durable store, or from memory when it is unavailable.

    The in-memory store method with the same name is called with the same
    arguments when the service runs in fallback mode or the durable call fails.
    Without permission to fall back, the failure is raised as StoreUnavailableError.
    """
    name = method.__name__

    @functools.wraps(method)
    async def wrapper(self: "DatabaseService", *args, **kwargs):
        if self.use_fallback or self.durable is None:
            return await getattr(self.memory, name)(*args, **kwargs)

        try:
            return await method(self, *args, **kwargs)
        except FALLBACK_ERRORS as e:
            if not self.allow_fallback:
                if isinstance(e, StoreUnavailableError):
                    raise
                raise StoreUnavailableError(str(e)) from e

            logger.warning("Durable store unavailable, using fallback", method=name, error=str(e))
            return await getattr(self.memory, name)(*args, **kwargs)

    return wrapper


class DatabaseService:
    """Record store facade used by the rest of the gateway."""

    def __init__(
        self,
        database: Optional[Database] = None,
        memory: Optional[InMemoryStore] = None,
        encryption_key: Optional[str] = None,
        allow_fallback: bool = True
    ):
        self.database = database
        self.memory = memory or InMemoryStore(encryption_key=encryption_key)
        self.durable = SQLRecordStore(database, encryption_key=encryption_key) if database else None
        self.allow_fallback = allow_fallback
        self.use_fallback = database is None

    @property
    def is_connected(self) -> bool:
        return not self.use_fallback and self.database is not None and self.database.connected

    @property
    def mode(self) -> str:
        return "memory" if self.use_fallback else "database"

    async def connect(self) -> bool:
        """
        Connect the durable store, switching to fallback mode on failure.

        Returns:
            True when the durable store is in use

        Raises:
            StoreUnavailableError: If the connection failed and fallback is not allowed
        """
        if self.database is None:
            self.use_fallback = True
            logger.info("No durable store configured, using in-memory store")
            return False

        try:
            await self.database.connect()
        except StoreUnavailableError as e:
            if not self.allow_fallback:
                raise
            self.use_fallback = True
            logger.warning("Falling back to in-memory store", error=str(e))
            return False

        self.use_fallback = False
        await self.import_environment_configuration()
        return True

    async def close(self) -> None:
        if self.database is not None:
            await self.database.dispose()

    async def import_environment_configuration(self) -> None:
        """Copy provider keys and server settings from the environment into the store."""
        for key in API_KEY_VARIABLES:
            value = os.getenv(key)
            if value:
                await self.update_configuration(
                    key, value, True, ConfigCategory.API_KEY, f"{key.split('_')[0].title()} API key"
                )
                logger.info("Imported API key from environment", key=key)

        for key in SERVER_CONFIG_VARIABLES:
            value = os.getenv(key)
            if value:
                await self.update_configuration(key, value, False, ConfigCategory.SERVER, f"Server setting {key}")

    async def seed_tools(self, definitions: Iterable[ToolDefinition]) -> int:
        """Save built-in definitions whose names are not stored yet. Returns the number added."""
        added = 0
        for definition in definitions:
            if await self.get_tool_by_name(definition.name) is None:
                await self.save_tool_definition(definition)
                added += 1
        logger.info("Tool catalog seeded", added=added, mode=self.mode)
        return added

    @with_fallback
    async def get_all_tools(
        self,
        category: Optional[ToolCategory | str] = None,
        enabled_only: bool = False
    ) -> list[ToolDefinition]:
        return await self.durable.get_all_tools(category, enabled_only)

    @with_fallback
    async def get_tool_by_name(self, name: str) -> Optional[ToolDefinition]:
        return await self.durable.get_tool_by_name(name)

    @with_fallback
    async def save_tool_definition(self, definition: ToolDefinition) -> ToolDefinition:
        return await self.durable.save_tool_definition(definition)

    @with_fallback
    async def delete_tool_definition(self, name: str) -> bool:
        return await self.durable.delete_tool_definition(name)

    @with_fallback
    async def get_configuration(self, key: str, decrypt: bool = True) -> Optional[str]:
        return await self.durable.get_configuration(key, decrypt)

    @with_fallback
    async def get_configuration_record(self, key: str) -> Optional[Configuration]:
        return await self.durable.get_configuration_record(key)

    @with_fallback
    async def update_configuration(
        self,
        key: str,
        value: str,
        encrypt: bool = True,
        category: Optional[ConfigCategory | str] = None,
        description: Optional[str] = None
    ) -> Configuration:
        return await self.durable.update_configuration(key, value, encrypt, category, description)

    @with_fallback
    async def get_configurations_by_category(self, category: ConfigCategory | str) -> list[Configuration]:
        return await self.durable.get_configurations_by_category(category)

    @with_fallback
    async def log_tool_execution(self, execution: ToolExecution) -> ExecutionHandle:
        return await self.durable.log_tool_execution(execution)

    @with_fallback
    async def get_executions(self) -> list[ToolExecution]:
        return await self.durable.get_executions()

    @with_fallback
    async def get_tool_execution_stats(
        self,
        period: Optional[str] = "day",
        tool_name: Optional[str] = None,
        limit: int = 10
    ) -> ExecutionStats:
        return await self.durable.get_tool_execution_stats(period, tool_name, limit)

    # Write-through for cached state

    async def _write_through(self, name: str, *args):
        """
        Apply a write to the durable store without falling back per call.

        The in-memory store is kept current so fallback reads see the write,
        but a durable failure is still raised so the caller can retry later.
        """
        if self.use_fallback or self.durable is None:
            return await getattr(self.memory, name)(*args)

        try:
            return await getattr(self.durable, name)(*args)
        except FALLBACK_ERRORS as e:
            logger.warning("Durable write failed", method=name, error=str(e))
            if self.allow_fallback:
                await getattr(self.memory, name)(*args)
            if isinstance(e, StoreUnavailableError):
                raise
            raise StoreUnavailableError(str(e)) from e

    async def write_tool_definition(self, definition: ToolDefinition) -> ToolDefinition:
        """Like save_tool_definition, but raises StoreUnavailableError when the durable write fails."""
        return await self._write_through("save_tool_definition", definition)

    async def write_configuration(
        self,
        key: str,
        value: str,
        encrypt: bool = True,
        category: Optional[ConfigCategory | str] = None,
        description: Optional[str] = None
    ) -> Configuration:
        """Like update_configuration, but raises StoreUnavailableError when the durable write fails."""
        return await self._write_through("update_configuration", key, value, encrypt, category, description)
