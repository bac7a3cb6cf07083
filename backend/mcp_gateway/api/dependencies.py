"""FastAPI dependencies."""

from fastapi import Request

from mcp_gateway.schemas.tools import ExecutionMetadata, utcnow
from mcp_gateway.services.container import GatewayServices


def get_services(request: Request) -> GatewayServices:
    """The services container attached to the running application."""
    return request.app.state.services


def request_metadata(request: Request) -> ExecutionMetadata:
    """Caller details recorded on every execution."""
    return ExecutionMetadata(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        user_id=request.headers.get("x-user-id"),
        timestamp=utcnow(),
    )
