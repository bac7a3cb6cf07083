"""
Database models for the durable record store.

Nested attributes (parameters, tags, security, metadata, inputs, outputs)
are stored as JSON columns.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, JSON

from mcp_gateway.db.database import Base
from mcp_gateway.schemas.tools import utcnow


class ToolDefinitionRecord(Base):
    """Persisted tool definition."""
    __tablename__ = "tool_definitions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    version = Column(String(20), default="1.0.0")
    category = Column(String(20), default="custom", index=True)
    tags = Column(JSON, default=list)
    parameters = Column(JSON, default=dict)
    implementation = Column(String(20), default="internal")
    implementation_path = Column(String(255), nullable=True)
    enabled = Column(Boolean, default=True, index=True)
    security = Column(JSON, default=dict)

    # Creation/usage metadata plus any extra fields (e.g. provider)
    tool_metadata = Column("metadata", JSON, default=dict)
    extra = Column(JSON, default=dict)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ConfigurationRecord(Base):
    """Persisted configuration entry; ``value`` is ciphertext when encrypted."""
    __tablename__ = "configurations"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False, index=True)
    value = Column(Text, nullable=False)
    is_encrypted = Column(Boolean, default=False)
    category = Column(String(20), default="server", index=True)
    description = Column(Text, default="")

    last_used = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ToolExecutionRecord(Base):
    """Log of tool and model executions."""
    __tablename__ = "tool_executions"

    id = Column(String(32), primary_key=True)
    tool_name = Column(String(100), nullable=False, index=True)
    provider = Column(String(20), default="other")
    session_id = Column(String(64), nullable=True, index=True)

    inputs = Column(JSON, default=dict)
    outputs = Column(JSON, nullable=True)
    status = Column(String(20), default="pending", index=True)
    error_message = Column(Text, nullable=True)
    execution_time = Column(Integer, nullable=True)

    execution_metadata = Column("metadata", JSON, default=dict)
    timestamp = Column(DateTime, default=utcnow, index=True)
