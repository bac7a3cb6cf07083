"""
Persistent Record Store

This module provides:
- The record store contract on top of SQLAlchemy async sessions
- Encrypt-before-write / decrypt-after-read of configuration values
- Execution statistics computed with SQL aggregates

Driver and connectivity failures are raised as StoreUnavailableError so the
DatabaseService can fall back to the in-memory store.
"""

import functools
import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import delete, desc, func, select
from sqlalchemy.exc import SQLAlchemyError

from mcp_gateway.core.crypto import ENCRYPTION_KEY_CONFIG, KeyResolver, SecretStore
from mcp_gateway.core.errors import StoreUnavailableError
from mcp_gateway.db.database import Database
from mcp_gateway.db.models import ConfigurationRecord, ToolDefinitionRecord, ToolExecutionRecord
from mcp_gateway.schemas.tools import (
    ConfigCategory,
    ConfigMetadata,
    Configuration,
    ExecutionStats,
    ExecutionStatus,
    ToolCategory,
    ToolDefinition,
    ToolExecution,
    merge_tool,
    utcnow,
)
from mcp_gateway.services.executions import ExecutionHandle
from mcp_gateway.services.memory_store import infer_config_category, should_encrypt
from mcp_gateway.services.stats import (
    format_success_rate,
    rank_execution_times,
    rank_top_tools,
    resolve_period,
    window_start,
)

logger = structlog.get_logger(__name__)


def translate_errors(func_):
    """Re-raise driver and I/O failures as StoreUnavailableError."""
    @functools.wraps(func_)
    async def wrapper(*args, **kwargs):
        try:
            return await func_(*args, **kwargs)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Database operation failed: {e}") from e
    return wrapper


def _tool_from_record(record: ToolDefinitionRecord) -> ToolDefinition:
    data: dict[str, Any] = dict(record.extra or {})
    data.update(
        name=record.name,
        description=record.description or "",
        version=record.version or "1.0.0",
        category=record.category or ToolCategory.CUSTOM.value,
        tags=record.tags or [],
        parameters=record.parameters or {},
        implementation=record.implementation or "internal",
        implementation_path=record.implementation_path,
        enabled=record.enabled if record.enabled is not None else True,
        security=record.security or {},
        metadata=record.tool_metadata or {},
    )
    return ToolDefinition.model_validate(data)


def _apply_tool(record: ToolDefinitionRecord, definition: ToolDefinition) -> None:
    record.name = definition.name
    record.description = definition.description
    record.version = definition.version
    record.category = definition.category.value
    record.tags = list(definition.tags)
    record.parameters = definition.parameters.to_dict()
    record.implementation = definition.implementation.value
    record.implementation_path = definition.implementation_path
    record.enabled = definition.enabled
    record.security = definition.security.to_dict()
    record.tool_metadata = definition.metadata.to_dict()
    record.extra = dict(definition.model_extra or {})


def _config_from_record(record: ConfigurationRecord) -> Configuration:
    return Configuration(
        key=record.key,
        value=record.value,
        is_encrypted=bool(record.is_encrypted),
        category=record.category or ConfigCategory.SERVER.value,
        description=record.description or "",
        metadata=ConfigMetadata(
            created_at=record.created_at,
            updated_at=record.updated_at,
            last_used=record.last_used,
            expires_at=record.expires_at,
        ),
    )


def _execution_from_record(record: ToolExecutionRecord) -> ToolExecution:
    metadata = dict(record.execution_metadata or {})
    metadata["timestamp"] = record.timestamp
    return ToolExecution(
        id=record.id,
        tool_name=record.tool_name,
        provider=record.provider,
        session_id=record.session_id,
        inputs=record.inputs or {},
        outputs=record.outputs,
        status=record.status,
        error_message=record.error_message,
        execution_time=record.execution_time,
        metadata=metadata,
    )


class SQLRecordStore:
    """Record store persisted through SQLAlchemy."""

    def __init__(self, database: Database, encryption_key: Optional[str] = None):
        self.database = database
        self.secrets = SecretStore(KeyResolver(
            load_key=self._load_encryption_key,
            save_key=self._save_encryption_key,
            env_key=encryption_key,
        ))

    async def _load_encryption_key(self) -> Optional[str]:
        return await self.get_configuration(ENCRYPTION_KEY_CONFIG, decrypt=False)

    async def _save_encryption_key(self, key: str) -> None:
        await self.update_configuration(
            ENCRYPTION_KEY_CONFIG,
            key,
            encrypt=False,
            category=ConfigCategory.SERVER,
            description="Encryption key for sensitive configuration values",
        )

    # Tool definitions

    @translate_errors
    async def get_all_tools(
        self,
        category: Optional[ToolCategory | str] = None,
        enabled_only: bool = False
    ) -> list[ToolDefinition]:
        query = select(ToolDefinitionRecord).order_by(ToolDefinitionRecord.name)
        if category:
            value = category.value if isinstance(category, ToolCategory) else category
            query = query.where(ToolDefinitionRecord.category == value)
        if enabled_only:
            query = query.where(ToolDefinitionRecord.enabled.is_(True))

        async with self.database.session() as session:
            result = await session.execute(query)
            return [_tool_from_record(record) for record in result.scalars().all()]

    @translate_errors
    async def get_tool_by_name(self, name: str) -> Optional[ToolDefinition]:
        async with self.database.session() as session:
            record = await self._find_tool(session, name)
            return _tool_from_record(record) if record else None

    @staticmethod
    async def _find_tool(session, name: str) -> Optional[ToolDefinitionRecord]:
        result = await session.execute(
            select(ToolDefinitionRecord).where(ToolDefinitionRecord.name == name)
        )
        return result.scalar_one_or_none()

    @translate_errors
    async def save_tool_definition(self, definition: ToolDefinition) -> ToolDefinition:
        now = utcnow()
        async with self.database.session() as session:
            record = await self._find_tool(session, definition.name)
            if record is not None:
                saved = merge_tool(_tool_from_record(record), definition)
            else:
                saved = definition.model_copy(deep=True)
                saved.metadata.created_at = saved.metadata.created_at or now
                record = ToolDefinitionRecord()
                session.add(record)

            saved.metadata.updated_at = now
            _apply_tool(record, saved)
            await session.commit()

        logger.debug("Tool definition saved", tool_name=saved.name)
        return saved

    @translate_errors
    async def delete_tool_definition(self, name: str) -> bool:
        async with self.database.session() as session:
            result = await session.execute(
                delete(ToolDefinitionRecord).where(ToolDefinitionRecord.name == name)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    # Configuration

    @staticmethod
    async def _find_config(session, key: str) -> Optional[ConfigurationRecord]:
        result = await session.execute(
            select(ConfigurationRecord).where(ConfigurationRecord.key == key)
        )
        return result.scalar_one_or_none()

    @translate_errors
    async def get_configuration_record(self, key: str) -> Optional[Configuration]:
        async with self.database.session() as session:
            record = await self._find_config(session, key)
            return _config_from_record(record) if record else None

    async def get_configuration(self, key: str, decrypt: bool = True) -> Optional[str]:
        config = await self.get_configuration_record(key)
        if config is None:
            return None
        if decrypt and config.is_encrypted:
            return await self.secrets.decrypt(config.value)
        return config.value

    @translate_errors
    async def update_configuration(
        self,
        key: str,
        value: str,
        encrypt: bool = True,
        category: Optional[ConfigCategory | str] = None,
        description: Optional[str] = None
    ) -> Configuration:
        encrypted = should_encrypt(key, encrypt)
        # Resolve the key before opening a session; resolution may write a row itself
        stored_value = await self.secrets.encrypt(value) if encrypted else value

        async with self.database.session() as session:
            record = await self._find_config(session, key)
            if record is None:
                record = ConfigurationRecord(
                    key=key,
                    category=ConfigCategory(category or infer_config_category(key)).value,
                    description=description or "",
                    created_at=utcnow(),
                )
                session.add(record)
            else:
                if category:
                    record.category = ConfigCategory(category).value
                if description is not None:
                    record.description = description

            record.value = stored_value
            record.is_encrypted = encrypted
            record.updated_at = utcnow()
            await session.commit()
            return _config_from_record(record)

    @translate_errors
    async def get_configurations_by_category(self, category: ConfigCategory | str) -> list[Configuration]:
        async with self.database.session() as session:
            result = await session.execute(
                select(ConfigurationRecord)
                .where(ConfigurationRecord.category == ConfigCategory(category).value)
                .order_by(ConfigurationRecord.key)
            )
            return [_config_from_record(record) for record in result.scalars().all()]

    # Executions

    @translate_errors
    async def log_tool_execution(self, execution: ToolExecution) -> ExecutionHandle:
        record_id = execution.id or uuid.uuid4().hex
        timestamp = execution.metadata.timestamp or utcnow()
        data = execution.model_dump(mode="json", by_alias=True, exclude_none=True)
        metadata = data.get("metadata", {})
        metadata.pop("timestamp", None)

        async with self.database.session() as session:
            session.add(ToolExecutionRecord(
                id=record_id,
                tool_name=execution.tool_name,
                provider=execution.provider.value,
                session_id=execution.session_id,
                inputs=data.get("inputs", {}),
                status=ExecutionStatus.PENDING.value,
                execution_metadata=metadata,
                timestamp=timestamp,
            ))
            await session.commit()

        pending = execution.model_copy(deep=True)
        pending.id = record_id
        pending.status = ExecutionStatus.PENDING
        pending.metadata.timestamp = timestamp
        return ExecutionHandle(pending, persist=self._complete_execution)

    @translate_errors
    async def _complete_execution(self, execution: ToolExecution) -> ToolExecution:
        data = execution.model_dump(mode="json", include={"outputs"})
        async with self.database.session() as session:
            record = await session.get(ToolExecutionRecord, execution.id)
            if record is None:
                raise StoreUnavailableError(f"Execution record {execution.id} is missing")
            record.status = execution.status.value
            record.outputs = data.get("outputs")
            record.error_message = execution.error_message
            record.execution_time = execution.execution_time
            await session.commit()
        return execution

    @translate_errors
    async def get_executions(self) -> list[ToolExecution]:
        async with self.database.session() as session:
            result = await session.execute(
                select(ToolExecutionRecord).order_by(ToolExecutionRecord.timestamp)
            )
            return [_execution_from_record(record) for record in result.scalars().all()]

    @translate_errors
    async def get_tool_execution_stats(
        self,
        period: Optional[str] = "day",
        tool_name: Optional[str] = None,
        limit: int = 10
    ) -> ExecutionStats:
        period = resolve_period(period)
        conditions = [ToolExecutionRecord.timestamp >= window_start(period)]
        if tool_name:
            conditions.append(ToolExecutionRecord.tool_name == tool_name)

        success = ToolExecutionRecord.status == ExecutionStatus.SUCCESS.value
        failure = ToolExecutionRecord.status == ExecutionStatus.FAILURE.value
        count_label = func.count(ToolExecutionRecord.id).label("count")

        async with self.database.session() as session:
            total = await session.scalar(select(func.count(ToolExecutionRecord.id)).where(*conditions)) or 0
            success_count = await session.scalar(
                select(func.count(ToolExecutionRecord.id)).where(*conditions, success)
            ) or 0
            failure_count = await session.scalar(
                select(func.count(ToolExecutionRecord.id)).where(*conditions, failure)
            ) or 0

            top_rows = await session.execute(
                select(ToolExecutionRecord.tool_name, count_label)
                .where(*conditions)
                .group_by(ToolExecutionRecord.tool_name)
                .order_by(desc("count"), ToolExecutionRecord.tool_name)
                .limit(max(limit, 0))
            )
            time_rows = await session.execute(
                select(
                    ToolExecutionRecord.tool_name,
                    func.avg(func.coalesce(ToolExecutionRecord.execution_time, 0)),
                )
                .where(*conditions, success)
                .group_by(ToolExecutionRecord.tool_name)
            )

            counts = {name: count for name, count in top_rows.all()}
            averages = {name: float(avg or 0) for name, avg in time_rows.all()}

        return ExecutionStats(
            period=period,
            total_count=total,
            success_count=success_count,
            failure_count=failure_count,
            success_rate=format_success_rate(success_count, total),
            top_tools=rank_top_tools(counts, limit),
            execution_times=rank_execution_times(averages),
        )
