"""
Model dispatch endpoint.

POST /mcp/{provider} forwards a prompt or conversation to Anthropic or OpenAI,
runs any tools the model asks for and returns the final provider response.
"""

from typing import Any

from fastapi import APIRouter, Depends

from mcp_gateway.api.dependencies import get_services, request_metadata
from mcp_gateway.schemas.requests import McpRequest
from mcp_gateway.schemas.tools import ExecutionMetadata
from mcp_gateway.services.container import GatewayServices

router = APIRouter()


@router.post("/{provider}")
async def dispatch(
    provider: str,
    request: McpRequest,
    metadata: ExecutionMetadata = Depends(request_metadata),
    services: GatewayServices = Depends(get_services),
) -> Any:
    """
    Dispatch a request to a model provider.

    Returns the provider's raw response, or the follow-up response when the
    model requested tools. Errors are rendered by the application's
    GatewayError handler (400 for validation, 500 for provider failures).
    """
    return await services.orchestrator.dispatch(provider, request, metadata)
