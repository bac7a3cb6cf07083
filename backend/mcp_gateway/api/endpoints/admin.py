"""
Admin API endpoints.

Provides endpoints for:
- Gateway status and forced state sync
- Backup creation, listing and restore
- Execution statistics
- Tool registration, update and removal
- Configuration reads and writes
"""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse
import psutil
import pydantic
import structlog

from mcp_gateway.api.dependencies import get_services
from mcp_gateway.core.errors import GatewayError
from mcp_gateway.schemas.requests import ConfigUpdateRequest, RestoreRequest
from mcp_gateway.schemas.tools import ToolDefinition, utcnow
from mcp_gateway.services.container import GatewayServices

logger = structlog.get_logger(__name__)

router = APIRouter()


def _failure(status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "message": message}
    if error is not None:
        content["error"] = error
    return JSONResponse(status_code=status_code, content=content)


def _memory_usage() -> dict[str, str]:
    info = psutil.Process().memory_info()
    return {
        "rss": f"{round(info.rss / 1024 / 1024)} MB",
        "vms": f"{round(info.vms / 1024 / 1024)} MB",
    }


@router.get("/status")
async def get_status(services: GatewayServices = Depends(get_services)) -> dict[str, Any]:
    """State Manager status plus uptime, memory and store mode."""
    status = services.state.get_status()
    status["uptime"] = services.uptime
    status["memory"] = _memory_usage()
    status["database"] = {
        "connected": services.store.is_connected,
        "useFallback": services.store.use_fallback,
        "mode": services.store.mode,
    }
    return status


@router.post("/sync")
async def sync_state(services: GatewayServices = Depends(get_services)) -> Any:
    """Flush cached changes to the durable store now."""
    if await services.state.save_state_to_db():
        return {"success": True, "message": "State synced successfully"}
    return _failure(500, "Failed to sync state")


@router.post("/backup")
async def create_backup(services: GatewayServices = Depends(get_services)) -> Any:
    try:
        path = await services.backups.create_backup()
    except (GatewayError, OSError) as e:
        logger.error("Backup failed", error=str(e))
        return _failure(500, "Error creating backup", str(e))

    return {"success": True, "message": "Backup created successfully", "backupPath": str(path)}


@router.get("/backups")
async def list_backups(services: GatewayServices = Depends(get_services)) -> Any:
    try:
        backups = services.backups.list_backups()
    except OSError as e:
        logger.error("Listing backups failed", error=str(e))
        return _failure(500, "Error listing backups", str(e))

    return {"success": True, "count": len(backups), "backups": backups}


@router.post("/restore")
async def restore_backup(
    payload: dict[str, Any] = Body(default_factory=dict),
    services: GatewayServices = Depends(get_services),
) -> Any:
    try:
        request = RestoreRequest.model_validate(payload)
    except pydantic.ValidationError:
        return _failure(400, "Backup file path is required")

    if await services.backups.restore_from_backup(request.backup_file):
        return {"success": True, "message": "Backup restored successfully"}
    return _failure(500, "Failed to restore from backup")


@router.get("/stats")
async def get_stats(
    period: str = "day",
    tool_name: Optional[str] = Query(default=None, alias="toolName"),
    limit: int = 10,
    services: GatewayServices = Depends(get_services),
) -> dict[str, Any]:
    """Execution statistics over the trailing ``period`` (hour, day, week, month)."""
    stats = await services.state.get_statistics(period, tool_name, limit)
    return stats.to_dict()


@router.post("/tools", status_code=201)
async def register_tool(
    request: Request,
    payload: dict[str, Any] = Body(default_factory=dict),
    services: GatewayServices = Depends(get_services),
) -> Any:
    """Register a tool definition. Name and description are required."""
    if not payload.get("name") or not payload.get("description"):
        return _failure(400, "Tool definition must include name and description")

    now = utcnow()
    metadata = dict(payload.get("metadata") or {})
    metadata.update(createdAt=now, updatedAt=now, createdBy=request.headers.get("x-user-id") or "admin")

    try:
        definition = ToolDefinition.model_validate({**payload, "metadata": metadata})
    except pydantic.ValidationError as e:
        return _failure(400, "Invalid tool definition", str(e))

    saved = await services.state.save_tool(definition)
    return {"success": True, "message": "Tool registered successfully", "tool": saved.to_dict()}


@router.put("/tools/{name}")
async def update_tool(
    name: str,
    payload: dict[str, Any] = Body(default_factory=dict),
    services: GatewayServices = Depends(get_services),
) -> Any:
    """Merge an update onto an existing tool. The name cannot change."""
    existing = await services.state.get_tool(name)
    if existing is None:
        return _failure(404, f'Tool "{name}" not found')

    data = existing.model_dump(by_alias=True)
    metadata = {**data["metadata"], **(payload.get("metadata") or {}), "updatedAt": utcnow()}
    data.update(payload)
    data.update(name=name, metadata=metadata)

    try:
        definition = ToolDefinition.model_validate(data)
    except pydantic.ValidationError as e:
        return _failure(400, "Invalid tool definition", str(e))

    saved = await services.state.save_tool(definition)
    return {"success": True, "message": "Tool updated successfully", "tool": saved.to_dict()}


@router.delete("/tools/{name}")
async def delete_tool(name: str, services: GatewayServices = Depends(get_services)) -> Any:
    if await services.state.delete_tool(name):
        return {"success": True, "message": f'Tool "{name}" deleted successfully'}
    return _failure(404, f'Tool "{name}" not found')


@router.get("/config/{key}")
async def get_config(
    key: str,
    decrypt: str = "true",
    services: GatewayServices = Depends(get_services),
) -> Any:
    value = await services.state.get_config(key, decrypt == "true")
    if value is None:
        return _failure(404, f'Configuration "{key}" not found')
    return {"success": True, "key": key, "value": value}


@router.post("/config")
async def set_config(
    payload: dict[str, Any] = Body(default_factory=dict),
    services: GatewayServices = Depends(get_services),
) -> Any:
    try:
        request = ConfigUpdateRequest.model_validate(payload)
    except pydantic.ValidationError:
        return _failure(400, "Both key and value are required")

    saved = await services.state.set_config(
        request.key,
        request.value,
        request.encrypt,
        request.category,
        request.description,
    )
    if saved:
        return {"success": True, "message": f'Configuration "{request.key}" updated successfully'}
    return _failure(500, f'Failed to update configuration "{request.key}"')
