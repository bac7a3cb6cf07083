"""
State Manager

This module provides:
- One in-process cache of tool definitions and configuration values
- Write-through saves with dirty tracking when the store rejects a write
- Periodic flushing of dirty entries on a single background task
- Execution logging that never raises into request handlers

Public methods never raise because the durable store is unreachable; the
worst case is serving from cache or the in-memory fallback.
"""

import asyncio
import os
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import structlog

from mcp_gateway.core.errors import DecryptionError, StoreUnavailableError
from mcp_gateway.schemas.tools import (
    ConfigCategory,
    ExecutionStats,
    ToolCategory,
    ToolDefinition,
    ToolExecution,
    utcnow,
)
from mcp_gateway.services.database import DatabaseService
from mcp_gateway.services.executions import ExecutionHandle
from mcp_gateway.services.memory_store import should_encrypt
from mcp_gateway.services.stats import resolve_period

logger = structlog.get_logger(__name__)

# Configuration categories loaded into the cache at startup
CACHED_CONFIG_CATEGORIES = (ConfigCategory.API_KEY, ConfigCategory.SERVER)


def generate_session_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"session_{int(time.time() * 1000)}_{suffix}"


@dataclass
class CachedConfig:
    """Cached configuration entry; ``plaintext`` is known only after a write or a decrypt."""
    key: str
    is_encrypted: bool
    plaintext: Optional[str] = None
    stored_value: Optional[str] = None
    category: Optional[ConfigCategory] = None
    description: Optional[str] = None
    dirty: bool = False


class StateManager:
    """Cache-plus-store facade used by request handlers."""

    def __init__(self, store: DatabaseService):
        self.store = store
        self._tools: dict[str, ToolDefinition] = {}
        self._configs: dict[str, CachedConfig] = {}
        self._dirty_tools: set[str] = set()
        self._statistics: Optional[ExecutionStats] = None
        self._flush_lock = asyncio.Lock()
        self._sync_task: Optional[asyncio.Task] = None

        self.initialized = False
        self.change_since_sync = False
        self.last_sync: Optional[datetime] = None

    # Lifecycle

    async def initialize(self, sync_interval: Optional[float] = 300.0) -> bool:
        """
        Load the cache and start the periodic flush.

        Args:
            sync_interval: Seconds between flushes; None or 0 disables the timer

        Returns:
            True if the cache was loaded from the store
        """
        if self.initialized:
            return True

        loaded = await self.load_state_from_db()

        if sync_interval and sync_interval > 0:
            self._sync_task = asyncio.create_task(self._sync_loop(sync_interval))

        self.initialized = True
        logger.info(
            "State manager initialized",
            tools=len(self._tools),
            configs=len(self._configs),
            mode=self.store.mode,
            sync_interval=sync_interval,
        )
        return loaded

    async def _sync_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.save_state_to_db()
            except Exception as e:
                logger.error("Periodic state flush failed", error=str(e))

    async def shutdown(self) -> None:
        """Stop the flush timer and write out anything still dirty."""
        if self._sync_task is not None:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None

        await self.save_state_to_db()
        self.initialized = False
        logger.info("State manager shut down")

    async def load_state_from_db(self) -> bool:
        """Refresh cached tools and api_key/server configuration from the store."""
        try:
            tools = await self.store.get_all_tools()
            configs = []
            for category in CACHED_CONFIG_CATEGORIES:
                configs.extend(await self.store.get_configurations_by_category(category))
        except StoreUnavailableError as e:
            logger.warning("Could not load state from store", error=str(e))
            self.last_sync = None
            return False

        for tool in tools:
            if tool.name not in self._dirty_tools:
                self._tools[tool.name] = tool

        for config in configs:
            cached = self._configs.get(config.key)
            if cached is not None and cached.dirty:
                continue
            self._configs[config.key] = CachedConfig(
                key=config.key,
                is_encrypted=config.is_encrypted,
                plaintext=None if config.is_encrypted else config.value,
                stored_value=config.value,
                category=config.category,
                description=config.description,
            )

        self.last_sync = utcnow()
        self.change_since_sync = False
        return True

    async def save_state_to_db(self) -> bool:
        """
        Flush dirty tools and configuration entries.

        Returns:
            True when nothing is left to flush
        """
        async with self._flush_lock:
            if not self.change_since_sync and self.last_sync is not None:
                return True

            if self.store.use_fallback:
                self.last_sync = utcnow()
                self.change_since_sync = False
                return True

            dirty_configs = [c for c in self._configs.values() if c.dirty]
            logger.info(
                "Saving state to database",
                dirty_tools=len(self._dirty_tools),
                dirty_configs=len(dirty_configs),
            )

            try:
                for name in sorted(self._dirty_tools):
                    tool = self._tools.get(name)
                    if tool is not None:
                        self._tools[name] = await self.store.write_tool_definition(tool)
                    self._dirty_tools.discard(name)

                for cached in dirty_configs:
                    config = await self.store.write_configuration(
                        cached.key,
                        cached.plaintext if cached.plaintext is not None else cached.stored_value,
                        cached.is_encrypted,
                        cached.category,
                        cached.description,
                    )
                    cached.stored_value = config.value
                    cached.dirty = False
            except StoreUnavailableError as e:
                logger.warning("State flush failed, keeping dirty entries", error=str(e))
                return False

            self.last_sync = utcnow()
            self.change_since_sync = False
            return True

    # Tools

    async def get_tool(self, name: str) -> Optional[ToolDefinition]:
        if name in self._tools:
            return self._tools[name]

        try:
            tool = await self.store.get_tool_by_name(name)
        except StoreUnavailableError as e:
            logger.warning("Tool lookup failed", tool_name=name, error=str(e))
            return None

        if tool is not None:
            self._tools[name] = tool
        return tool

    async def get_all_tools(
        self,
        category: Optional[ToolCategory | str] = None,
        enabled_only: bool = False
    ) -> list[ToolDefinition]:
        if not self._tools or category or enabled_only:
            try:
                tools = await self.store.get_all_tools(category, enabled_only)
            except StoreUnavailableError as e:
                logger.warning("Tool listing failed, serving from cache", error=str(e))
            else:
                for tool in tools:
                    self._tools.setdefault(tool.name, tool)
                return tools

        tools = sorted(self._tools.values(), key=lambda t: t.name)
        if category:
            tools = [t for t in tools if t.category == category]
        if enabled_only:
            tools = [t for t in tools if t.enabled is True]
        return tools

    async def save_tool(self, definition: ToolDefinition) -> ToolDefinition:
        """Cache the definition, then write it through to the store."""
        cached = definition.model_copy(deep=True)
        cached.metadata.updated_at = utcnow()
        self._tools[cached.name] = cached
        self._dirty_tools.add(cached.name)
        self.change_since_sync = True

        try:
            saved = await self.store.write_tool_definition(definition)
        except StoreUnavailableError as e:
            logger.warning("Tool save deferred until next sync", tool_name=cached.name, error=str(e))
            return cached

        self._tools[saved.name] = saved
        self._dirty_tools.discard(saved.name)
        return saved

    async def delete_tool(self, name: str) -> bool:
        had_tool = self._tools.pop(name, None) is not None
        self._dirty_tools.discard(name)
        if had_tool:
            self.change_since_sync = True

        try:
            deleted = await self.store.delete_tool_definition(name)
        except StoreUnavailableError as e:
            logger.warning("Tool delete failed in store", tool_name=name, error=str(e))
            return had_tool

        return deleted or had_tool

    async def record_tool_usage(self, name: str) -> None:
        """Increment usage counters of a tool after it ran."""
        tool = await self.get_tool(name)
        if tool is None:
            return

        # Replace metadata as a whole so the store merge sees it as set
        metadata = tool.metadata.model_copy(update={
            "usage_count": tool.metadata.usage_count + 1,
            "last_used": utcnow(),
        })
        await self.save_tool(tool.model_copy(update={"metadata": metadata}))

    # Configuration

    async def get_config(self, key: str, decrypt: bool = True) -> Optional[str]:
        """
        Get a configuration value.

        Lookup order is the cache, then the store, then the process environment.
        A value that cannot be decrypted is reported as unavailable (None).
        """
        cached = self._configs.get(key)
        if cached is not None:
            if not cached.is_encrypted:
                return cached.plaintext if cached.plaintext is not None else cached.stored_value
            if not decrypt:
                return cached.stored_value if cached.stored_value is not None else cached.plaintext
            if cached.plaintext is not None:
                return cached.plaintext

            try:
                cached.plaintext = await self.store.get_configuration(key, True)
            except DecryptionError as e:
                logger.warning("Configuration value unavailable", key=key, error=str(e))
                return None
            except StoreUnavailableError as e:
                logger.warning("Configuration lookup failed", key=key, error=str(e))
                return None
            return cached.plaintext

        try:
            record = await self.store.get_configuration_record(key)
            if record is not None:
                plaintext = None if record.is_encrypted else record.value
                if record.is_encrypted and decrypt:
                    plaintext = await self.store.get_configuration(key, True)
                self._configs[key] = CachedConfig(
                    key=key,
                    is_encrypted=record.is_encrypted,
                    plaintext=plaintext,
                    stored_value=record.value,
                    category=record.category,
                    description=record.description,
                )
                return plaintext if decrypt else record.value
        except DecryptionError as e:
            logger.warning("Configuration value unavailable", key=key, error=str(e))
            return None
        except StoreUnavailableError as e:
            logger.warning("Configuration lookup failed", key=key, error=str(e))

        return os.environ.get(key) or None

    async def set_config(
        self,
        key: str,
        value: str,
        encrypt: bool = True,
        category: Optional[ConfigCategory | str] = None,
        description: Optional[str] = None
    ) -> bool:
        """
        Cache a configuration value and write it through to the store.

        Returns:
            True if the store accepted the write
        """
        cached = CachedConfig(
            key=key,
            is_encrypted=should_encrypt(key, encrypt),
            plaintext=value,
            category=ConfigCategory(category) if category else None,
            description=description,
            dirty=True,
        )
        self._configs[key] = cached
        self.change_since_sync = True

        try:
            config = await self.store.write_configuration(key, value, encrypt, category, description)
        except StoreUnavailableError as e:
            logger.warning("Configuration save deferred until next sync", key=key, error=str(e))
            return False

        cached.stored_value = config.value
        cached.category = config.category
        cached.description = config.description
        cached.dirty = False
        return True

    # Executions

    async def log_execution(self, execution: ToolExecution) -> ExecutionHandle:
        """Create a pending execution record and return its completion handle."""
        if not execution.session_id:
            execution = execution.model_copy(update={"session_id": generate_session_id()})
        self.change_since_sync = True

        try:
            return await self.store.log_tool_execution(execution)
        except Exception as e:
            logger.warning("Execution logging failed", tool_name=execution.tool_name, error=str(e))
            return ExecutionHandle.noop(execution)

    async def get_statistics(
        self,
        period: Optional[str] = "day",
        tool_name: Optional[str] = None,
        limit: int = 10
    ) -> ExecutionStats:
        try:
            stats = await self.store.get_tool_execution_stats(period, tool_name, limit)
        except StoreUnavailableError as e:
            logger.warning("Statistics unavailable", error=str(e))
            return self._statistics or ExecutionStats(period=resolve_period(period))

        self._statistics = stats
        return stats

    def get_status(self) -> dict[str, Any]:
        return {
            "dbConnected": self.store.is_connected,
            "useFallback": self.store.use_fallback,
            "lastSync": self.last_sync.isoformat() if self.last_sync else None,
            "changeSinceSync": self.change_since_sync,
            "toolCount": len(self._tools),
            "configCount": len(self._configs),
            "dirtyTools": len(self._dirty_tools),
            "dirtyConfigs": sum(1 for c in self._configs.values() if c.dirty),
        }
