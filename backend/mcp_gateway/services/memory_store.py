"""
In-Memory Fallback Store

This module provides:
- The record store contract backed by plain dictionaries
- A bounded execution log (oldest entries evicted past MAX_EXECUTIONS)
- Encryption of configuration values with an in-process key

It never raises for connectivity reasons and is the terminal fallback of
the DatabaseService.
"""

import uuid
from collections import deque
from typing import Optional

import structlog

from mcp_gateway.core.crypto import ENCRYPTION_KEY_CONFIG, KeyResolver, SecretStore
from mcp_gateway.schemas.tools import (
    ConfigCategory,
    ConfigMetadata,
    Configuration,
    ExecutionStats,
    ToolCategory,
    ToolDefinition,
    ToolExecution,
    merge_tool,
    utcnow,
)
from mcp_gateway.services.executions import ExecutionHandle
from mcp_gateway.services.stats import compute_stats

logger = structlog.get_logger(__name__)

MAX_EXECUTIONS = 100


def infer_config_category(key: str) -> ConfigCategory:
    """Default category for a configuration key seen for the first time."""
    return ConfigCategory.API_KEY if key.upper().endswith("_API_KEY") else ConfigCategory.SERVER


def should_encrypt(key: str, encrypt: bool) -> bool:
    """The encryption key row itself is always stored in plaintext."""
    return encrypt and key != ENCRYPTION_KEY_CONFIG


class InMemoryStore:
    """Record store kept entirely in process memory."""

    def __init__(self, encryption_key: Optional[str] = None, max_executions: int = MAX_EXECUTIONS):
        self._tools: dict[str, ToolDefinition] = {}
        self._configs: dict[str, Configuration] = {}
        self._executions: deque[ToolExecution] = deque(maxlen=max_executions)
        self.secrets = SecretStore(KeyResolver(
            load_key=self._load_encryption_key,
            save_key=self._save_encryption_key,
            env_key=encryption_key,
        ))

    async def _load_encryption_key(self) -> Optional[str]:
        config = self._configs.get(ENCRYPTION_KEY_CONFIG)
        return config.value if config else None

    async def _save_encryption_key(self, key: str) -> None:
        await self.update_configuration(
            ENCRYPTION_KEY_CONFIG,
            key,
            encrypt=False,
            category=ConfigCategory.SERVER,
            description="Encryption key for sensitive configuration values",
        )

    # Tool definitions

    async def get_all_tools(
        self,
        category: Optional[ToolCategory | str] = None,
        enabled_only: bool = False
    ) -> list[ToolDefinition]:
        tools = sorted(self._tools.values(), key=lambda t: t.name)
        if category:
            tools = [t for t in tools if t.category == category]
        if enabled_only:
            tools = [t for t in tools if t.enabled is True]
        return [t.model_copy(deep=True) for t in tools]

    async def get_tool_by_name(self, name: str) -> Optional[ToolDefinition]:
        tool = self._tools.get(name)
        return tool.model_copy(deep=True) if tool else None

    async def save_tool_definition(self, definition: ToolDefinition) -> ToolDefinition:
        now = utcnow()
        existing = self._tools.get(definition.name)

        if existing:
            saved = merge_tool(existing, definition)
        else:
            saved = definition.model_copy(deep=True)
            saved.metadata.created_at = saved.metadata.created_at or now

        saved.metadata.updated_at = now
        self._tools[saved.name] = saved
        return saved.model_copy(deep=True)

    async def delete_tool_definition(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    # Configuration

    async def get_configuration_record(self, key: str) -> Optional[Configuration]:
        config = self._configs.get(key)
        return config.model_copy(deep=True) if config else None

    async def get_configuration(self, key: str, decrypt: bool = True) -> Optional[str]:
        config = self._configs.get(key)
        if config is None:
            return None
        if decrypt and config.is_encrypted:
            return await self.secrets.decrypt(config.value)
        return config.value

    async def update_configuration(
        self,
        key: str,
        value: str,
        encrypt: bool = True,
        category: Optional[ConfigCategory | str] = None,
        description: Optional[str] = None
    ) -> Configuration:
        now = utcnow()
        existing = self._configs.get(key)
        encrypted = should_encrypt(key, encrypt)
        stored_value = await self.secrets.encrypt(value) if encrypted else value

        config = Configuration(
            key=key,
            value=stored_value,
            is_encrypted=encrypted,
            category=category or (existing.category if existing else infer_config_category(key)),
            description=description if description is not None else (existing.description if existing else ""),
            metadata=ConfigMetadata(
                created_at=existing.metadata.created_at if existing else now,
                updated_at=now,
                last_used=existing.metadata.last_used if existing else None,
                expires_at=existing.metadata.expires_at if existing else None,
            ),
        )
        self._configs[key] = config
        return config.model_copy(deep=True)

    async def get_configurations_by_category(self, category: ConfigCategory | str) -> list[Configuration]:
        wanted = ConfigCategory(category)
        configs = sorted(
            (c for c in self._configs.values() if c.category == wanted),
            key=lambda c: c.key,
        )
        return [c.model_copy(deep=True) for c in configs]

    # Executions

    async def log_tool_execution(self, execution: ToolExecution) -> ExecutionHandle:
        record = execution.model_copy(deep=True)
        record.id = record.id or uuid.uuid4().hex
        record.metadata.timestamp = record.metadata.timestamp or utcnow()
        self._executions.append(record)
        return ExecutionHandle(record.model_copy(deep=True), persist=self._replace_execution)

    async def _replace_execution(self, execution: ToolExecution) -> ToolExecution:
        for index, existing in enumerate(self._executions):
            if existing.id == execution.id:
                self._executions[index] = execution.model_copy(deep=True)
                break
        return execution

    async def get_executions(self) -> list[ToolExecution]:
        return [e.model_copy(deep=True) for e in self._executions]

    async def get_tool_execution_stats(
        self,
        period: Optional[str] = "day",
        tool_name: Optional[str] = None,
        limit: int = 10
    ) -> ExecutionStats:
        return compute_stats(list(self._executions), period=period, tool_name=tool_name, limit=limit)
