"""Request bodies accepted by the HTTP API."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from mcp_gateway.schemas.tools import CamelModel, ConfigCategory


class McpRequest(BaseModel):
    """Chat request dispatched to a model provider."""
    prompt: Optional[str] = Field(default=None, description="Single user prompt")
    messages: Optional[list[dict[str, Any]]] = Field(default=None, description="Full conversation")
    tools: Optional[list[dict[str, Any]]] = Field(default=None, description="Tool schemas offered to the model")
    context: Optional[str] = Field(default=None, description="System instructions")
    model: Optional[str] = Field(default=None, description="Provider model identifier")
    max_tokens: Optional[int] = Field(default=None, gt=0, description="Anthropic response token limit")


class RestoreRequest(CamelModel):
    backup_file: str = Field(..., min_length=1, description="Backup file name or path")


class ConfigUpdateRequest(CamelModel):
    key: str = Field(..., min_length=1)
    value: str
    encrypt: bool = True
    category: Optional[ConfigCategory] = None
    description: Optional[str] = None
