"""
Tool API endpoints.

Provides endpoints for:
- Raw tool definitions (store first, built-in definitions as fallback)
- The filterable, paginated catalog in json, yaml, table or html
- Direct execution of the built-in web and image tools
"""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import HTMLResponse, JSONResponse, Response
import structlog

from mcp_gateway.api.dependencies import get_services, request_metadata
from mcp_gateway.core.errors import GatewayError
from mcp_gateway.schemas.tools import ExecutionMetadata, ExecutionProvider
from mcp_gateway.services.catalog import CatalogQuery, normalize_format, render_listing, render_summary_html
from mcp_gateway.services.container import GatewayServices
from mcp_gateway.tools.definitions import get_builtin_definition, get_builtin_definitions

logger = structlog.get_logger(__name__)

router = APIRouter()


def _parse_count(value: Optional[str]) -> Optional[int]:
    """Lenient integer query parameter: invalid values are ignored, negatives clamp to 0."""
    if not value:
        return None
    try:
        return max(int(value), 0)
    except ValueError:
        return None


@router.get("")
async def list_tools(
    category: Optional[str] = None,
    enabled_only: Optional[str] = Query(default=None, alias="enabledOnly"),
    services: GatewayServices = Depends(get_services),
) -> list[dict[str, Any]]:
    """All tool definitions, or the built-in set when the store has none."""
    try:
        tools = await services.store.get_all_tools(category or None, enabled_only == "true")
    except GatewayError as e:
        logger.warning("Tool listing failed, serving built-in definitions", error=str(e))
        tools = []

    if not tools:
        tools = get_builtin_definitions()
    return [tool.to_dict() for tool in tools]


@router.get("/available")
async def available_tools(
    format: Optional[str] = "json",
    category: Optional[str] = None,
    enabled: str = "true",
    search: Optional[str] = None,
    provider: Optional[str] = None,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
    services: GatewayServices = Depends(get_services),
) -> Response:
    """
    Discover tools.

    Unknown formats render as json. Zero matches is still a 200.
    """
    query = CatalogQuery(
        format=normalize_format(format),
        category=category,
        enabled_only=enabled != "false",
        search=search,
        provider=provider,
        limit=_parse_count(limit),
        offset=_parse_count(offset) or 0,
    )

    try:
        listing = await services.catalog.list(query)
    except GatewayError as e:
        logger.error("Tool discovery failed", error=str(e))
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    body, media_type = render_listing(listing, query.format)
    if isinstance(body, dict):
        return JSONResponse(content=body)
    return Response(content=body, media_type=media_type)


@router.get("/list/all")
async def list_all_tools(
    format: str = "json",
    services: GatewayServices = Depends(get_services),
) -> Response:
    """Enabled tools grouped by category."""
    try:
        summary = await services.catalog.summary()
    except GatewayError as e:
        logger.error("Tool summary failed", error=str(e))
        return JSONResponse(status_code=500, content={"error": str(e)})

    if format == "html":
        return HTMLResponse(content=render_summary_html(summary))
    return JSONResponse(content=summary)


@router.get("/{tool_name}")
async def get_tool(tool_name: str, services: GatewayServices = Depends(get_services)) -> Any:
    try:
        tool = await services.store.get_tool_by_name(tool_name)
    except GatewayError as e:
        logger.warning("Tool lookup failed, using built-in definition", tool_name=tool_name, error=str(e))
        tool = None

    tool = tool or get_builtin_definition(tool_name)
    if tool is None:
        return JSONResponse(status_code=404, content={"error": f'Tool "{tool_name}" not found'})
    return tool.to_dict()


async def _run_direct(
    services: GatewayServices,
    name: str,
    payload: dict[str, Any],
    metadata: ExecutionMetadata
) -> Any:
    """Run a tool on behalf of an HTTP caller. Tool-reported failures become 500."""
    result = await services.executor.execute(name, payload, ExecutionProvider.DIRECT, metadata=metadata)
    if isinstance(result, dict) and result.get("success") is False:
        return JSONResponse(status_code=500, content={"error": result.get("error")})
    return result


@router.post("/web/search")
async def web_search(
    payload: dict[str, Any] = Body(default_factory=dict),
    metadata: ExecutionMetadata = Depends(request_metadata),
    services: GatewayServices = Depends(get_services),
) -> Any:
    """Search the web. Body: {query, limit?}"""
    return await _run_direct(services, "web_search", payload, metadata)


@router.post("/web/content")
async def web_content(
    payload: dict[str, Any] = Body(default_factory=dict),
    metadata: ExecutionMetadata = Depends(request_metadata),
    services: GatewayServices = Depends(get_services),
) -> Any:
    """Fetch and extract one page. Body: {url, useCache?}"""
    return await _run_direct(services, "web_content", payload, metadata)


@router.post("/web/batch")
async def web_batch(
    payload: dict[str, Any] = Body(default_factory=dict),
    metadata: ExecutionMetadata = Depends(request_metadata),
    services: GatewayServices = Depends(get_services),
) -> Any:
    """Fetch several pages concurrently. Body: {urls, useCache?}"""
    return await _run_direct(services, "web_batch", payload, metadata)


@router.post("/image/generate")
async def image_generate(
    payload: dict[str, Any] = Body(default_factory=dict),
    metadata: ExecutionMetadata = Depends(request_metadata),
    services: GatewayServices = Depends(get_services),
) -> Any:
    """Generate an image. Body: {prompt, provider?, options?}"""
    return await _run_direct(services, "generate_image", payload, metadata)


@router.post("/image/edit")
async def image_edit(
    payload: dict[str, Any] = Body(default_factory=dict),
    metadata: ExecutionMetadata = Depends(request_metadata),
    services: GatewayServices = Depends(get_services),
) -> Any:
    """Edit an image. Body: {imagePath, prompt, maskPath?}"""
    return await _run_direct(services, "edit_image", payload, metadata)


@router.post("/image/variation")
async def image_variation(
    payload: dict[str, Any] = Body(default_factory=dict),
    metadata: ExecutionMetadata = Depends(request_metadata),
    services: GatewayServices = Depends(get_services),
) -> Any:
    """Create a variation of an image. Body: {imagePath}"""
    return await _run_direct(services, "create_image_variation", payload, metadata)
