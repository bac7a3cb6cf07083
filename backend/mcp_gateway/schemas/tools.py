"""
Record schemas for tools, configuration entries and executions.

This module provides:
- ToolDefinition with its JSON-Schema-like parameter description
- Configuration entries (plaintext or encrypted values)
- ToolExecution telemetry records and aggregate statistics
- Helpers for merging tool updates onto existing records

All models serialize with camelCase keys (``to_dict``) and accept either
camelCase or snake_case on input.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Naive UTC timestamp used for every stored record."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ToolCategory(str, Enum):
    """Tool categories."""
    WEB = "web"
    IMAGE = "image"
    FILE = "file"
    DATA = "data"
    UTILITY = "utility"
    CUSTOM = "custom"


class ImplementationType(str, Enum):
    """Where a tool's implementation lives."""
    INTERNAL = "internal"
    EXTERNAL = "external"
    PLUGIN = "plugin"


class ConfigCategory(str, Enum):
    """Configuration entry categories."""
    API_KEY = "api_key"
    CONNECTION = "connection"
    SERVER = "server"
    FEATURE_FLAG = "feature_flag"


class ExecutionProvider(str, Enum):
    """Origin of an execution."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    DIRECT = "direct"
    OTHER = "other"


class ExecutionStatus(str, Enum):
    """Execution lifecycle states."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class ParameterProperty(CamelModel):
    """Schema of one tool parameter."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: str = "string"
    description: Optional[str] = None
    default: Any = None
    enum: Optional[list[Any]] = None
    format: Optional[str] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    items: Optional["ParameterProperty"] = None
    properties: Optional[dict[str, "ParameterProperty"]] = None
    required: Optional[list[str]] = None


class ToolParameters(CamelModel):
    """Object schema describing a tool's input."""
    type: str = "object"
    properties: dict[str, ParameterProperty] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)
    additional_properties: bool = False

    @model_validator(mode="after")
    def _required_are_declared(self) -> "ToolParameters":
        missing = [name for name in self.required if name not in self.properties]
        if missing:
            raise ValueError(f"Required parameters not declared in properties: {', '.join(missing)}")
        return self


class ToolSecurity(CamelModel):
    requires_auth: bool = False
    rate_limit: int = Field(default=0, ge=0, description="Calls per minute, 0 means unlimited")


class ToolMetadata(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    created_by: str = "system"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_used: Optional[datetime] = None
    usage_count: int = 0


class ToolDefinition(CamelModel):
    """An invocable tool."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str = Field(..., min_length=1, description="Unique tool identifier")
    description: str = Field(..., description="What the tool does")
    version: str = "1.0.0"
    category: ToolCategory = ToolCategory.CUSTOM
    tags: list[str] = Field(default_factory=list)
    parameters: ToolParameters = Field(default_factory=ToolParameters)
    implementation: ImplementationType = ImplementationType.INTERNAL
    implementation_path: Optional[str] = None
    enabled: bool = True
    security: ToolSecurity = Field(default_factory=ToolSecurity)
    metadata: ToolMetadata = Field(default_factory=ToolMetadata)

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, tags: list[str]) -> list[str]:
        return list(dict.fromkeys(tags))

    def provider_name(self) -> Optional[str]:
        """Provider declared on the tool itself or in its metadata."""
        extra = self.model_extra or {}
        if isinstance(extra.get("provider"), str):
            return extra["provider"]
        metadata_extra = self.metadata.model_extra or {}
        value = metadata_extra.get("provider")
        return value if isinstance(value, str) else None


class ConfigMetadata(CamelModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_used: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class Configuration(CamelModel):
    """A stored setting. ``value`` holds ciphertext when ``is_encrypted``."""
    key: str = Field(..., min_length=1)
    value: str
    is_encrypted: bool = False
    category: ConfigCategory = ConfigCategory.SERVER
    description: str = ""
    metadata: ConfigMetadata = Field(default_factory=ConfigMetadata)


class ExecutionMetadata(CamelModel):
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    model_name: Optional[str] = None


class ToolExecution(CamelModel):
    """One attempted tool or model invocation."""
    id: Optional[str] = None
    tool_name: str
    provider: ExecutionProvider = ExecutionProvider.OTHER
    session_id: Optional[str] = None
    inputs: dict[str, Any] = Field(default_factory=dict)
    outputs: Any = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    error_message: Optional[str] = None
    execution_time: Optional[int] = None
    metadata: ExecutionMetadata = Field(default_factory=ExecutionMetadata)


class ToolCount(CamelModel):
    name: str
    count: int


class ToolTiming(CamelModel):
    name: str
    avg_time: float


class ExecutionStats(CamelModel):
    """Aggregates over a trailing time window."""
    period: str
    total_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_rate: str = "0%"
    top_tools: list[ToolCount] = Field(default_factory=list)
    execution_times: list[ToolTiming] = Field(default_factory=list)


def merge_tool(existing: ToolDefinition, incoming: ToolDefinition) -> ToolDefinition:
    """
    Merge the explicitly set fields of ``incoming`` onto ``existing``.

    Creation metadata and the usage counters of ``existing`` survive unless
    ``incoming`` sets them.
    """
    data = existing.model_dump()
    updates = incoming.model_dump(exclude_unset=True)
    metadata_updates = updates.pop("metadata", None)
    data.update(updates)

    if metadata_updates:
        data["metadata"].update(metadata_updates)
    data["metadata"]["created_at"] = existing.metadata.created_at or data["metadata"].get("created_at")

    return ToolDefinition.model_validate(data)
