"""
Tool Catalog Renderer

This module provides:
- Filtering (category, enabled, free-text search, provider) and pagination
- Per-tool usage hints derived from the tool name
- JSON, YAML, ASCII table and HTML renderings of the catalog
- A by-category summary of enabled tools
"""

import html
from dataclasses import dataclass
from typing import Any, Optional

import structlog
import yaml

from mcp_gateway.schemas.tools import ToolDefinition
from mcp_gateway.services.state_manager import StateManager

logger = structlog.get_logger(__name__)

DEFAULT_PROVIDER = "internal"

MEDIA_TYPES = {
    "json": "application/json",
    "yaml": "text/yaml",
    "table": "text/plain",
    "html": "text/html",
}

# Name prefix -> direct endpoint; "web_" keeps its suffix
USAGE_PREFIXES = [
    ("web_", None),
    ("generate_", "/tools/image/generate"),
    ("edit_", "/tools/image/edit"),
    ("create_image_", "/tools/image/variation"),
]

PAGE_STYLE = (
    "body{font-family:sans-serif;max-width:1000px;margin:0 auto;padding:20px}"
    "h1{color:#333}h2{color:#444;margin-top:20px}"
    "table{width:100%;border-collapse:collapse;margin:20px 0}"
    "th{background:#f4f4f4;padding:8px;text-align:left;border:1px solid #ddd}"
    "td{padding:8px;border:1px solid #ddd}tr:nth-child(even){background:#f9f9f9}"
    ".tool-name{font-weight:bold;color:#0066cc}.tool-description{color:#444}"
)


@dataclass
class CatalogQuery:
    """Listing options accepted by /tools/available."""
    format: str = "json"
    category: Optional[str] = None
    enabled_only: bool = True
    search: Optional[str] = None
    provider: Optional[str] = None
    limit: Optional[int] = None
    offset: int = 0


def normalize_format(fmt: Optional[str]) -> str:
    """Unknown formats degrade to json."""
    fmt = (fmt or "json").lower()
    return fmt if fmt in MEDIA_TYPES else "json"


def tool_provider(tool: ToolDefinition) -> str:
    return tool.provider_name() or DEFAULT_PROVIDER


def usage_endpoint(name: str) -> Optional[str]:
    for prefix, endpoint in USAGE_PREFIXES:
        if name.startswith(prefix):
            return endpoint or f"/tools/web/{name[len(prefix):]}"
    return None


def matches_search(tool: ToolDefinition, term: str) -> bool:
    term = term.lower()
    return (
        term in tool.name.lower()
        or term in (tool.description or "").lower()
        or any(term in tag.lower() for tag in tool.tags)
    )


def matches_provider(tool: ToolDefinition, provider: str) -> bool:
    declared = tool.provider_name()
    return declared is not None and declared.lower() == provider.lower()


def format_tool(tool: ToolDefinition) -> dict[str, Any]:
    """Catalog view of one tool."""
    required = set(tool.parameters.required)
    parameters = {}
    for name, schema in tool.parameters.properties.items():
        entry = {
            "type": schema.type,
            "description": schema.description,
            "required": name in required,
            "default": schema.default,
        }
        parameters[name] = {k: v for k, v in entry.items() if v is not None}

    formatted: dict[str, Any] = {
        "name": tool.name,
        "description": tool.description,
        "category": tool.category.value,
        "version": tool.version or "1.0.0",
        "provider": tool_provider(tool),
        "enabled": tool.enabled,
        "tags": list(tool.tags),
        "parameters": parameters,
    }

    endpoint = usage_endpoint(tool.name)
    if endpoint:
        formatted["usage"] = {"endpoint": endpoint, "method": "POST", "parameters": parameters}

    metadata = tool.metadata.to_dict()
    formatted["metadata"] = {
        key: metadata[key] for key in ("createdAt", "updatedAt", "usageCount", "lastUsed") if key in metadata
    }
    return formatted


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


class ToolCatalog:
    """Answers what tools exist and how to call them."""

    def __init__(self, state: StateManager):
        self.state = state

    async def filtered_tools(self, query: CatalogQuery) -> list[ToolDefinition]:
        tools = await self.state.get_all_tools(query.category or None, query.enabled_only)
        if query.search:
            tools = [t for t in tools if matches_search(t, query.search)]
        if query.provider:
            tools = [t for t in tools if matches_provider(t, query.provider)]
        return tools

    async def list(self, query: CatalogQuery) -> dict[str, Any]:
        """
        Filter and paginate the catalog.

        Returns:
            {success, count, metadata: {categories, providers, totalCount, offset, limit}, tools}
        """
        tools = await self.filtered_tools(query)
        total = len(tools)
        offset = max(query.offset or 0, 0)

        page = tools[offset:]
        if query.limit is not None:
            page = page[:max(query.limit, 0)]

        formatted = [format_tool(tool) for tool in page]
        return {
            "success": True,
            "count": len(formatted),
            "metadata": {
                "categories": _unique([t.category.value for t in tools]),
                "providers": _unique([tool_provider(t) for t in tools]),
                "totalCount": total,
                "offset": offset,
                "limit": query.limit if query.limit is not None else total,
            },
            "tools": formatted,
        }

    async def summary(self) -> dict[str, Any]:
        """Enabled tools grouped by category."""
        tools = await self.state.get_all_tools(enabled_only=True)
        by_category: dict[str, list[dict[str, str]]] = {}
        for tool in tools:
            by_category.setdefault(tool.category.value, []).append({
                "name": tool.name,
                "description": tool.description,
                "version": tool.version or "1.0.0",
            })
        return {
            "count": len(tools),
            "categories": list(by_category),
            "toolsByCategory": by_category,
        }


def _cell(value: Any) -> str:
    # Cells hold no raw pipes or newlines
    return str(value).replace("|", "\\|").replace("\n", " ")


def render_table(listing: dict[str, Any]) -> str:
    lines = [
        "| Name | Description | Category | Version |",
        "|------|-------------|----------|---------|",
    ]
    for tool in listing["tools"]:
        cells = [_cell(tool[key]) for key in ("name", "description", "category", "version")]
        lines.append("| " + " | ".join(cells) + " |")
    return "\n".join(lines) + "\n"


def render_html(listing: dict[str, Any]) -> str:
    rows = "".join(
        "<tr>"
        f"<td class=\"tool-name\">{html.escape(tool['name'])}</td>"
        f"<td>{html.escape(tool['description'])}</td>"
        f"<td>{html.escape(tool['category'])}</td>"
        f"<td>{html.escape(tool['version'])}</td>"
        f"<td>{html.escape(tool['provider'])}</td>"
        "</tr>"
        for tool in listing["tools"]
    )
    return (
        "<html><head><title>Available MCP Tools</title>"
        f"<style>{PAGE_STYLE}</style></head><body>"
        "<h1>Available MCP Tools</h1>"
        f"<p>Total tools: {listing['metadata']['totalCount']}</p>"
        "<table><tr><th>Name</th><th>Description</th><th>Category</th><th>Version</th><th>Provider</th></tr>"
        f"{rows}</table></body></html>"
    )


def render_summary_html(summary: dict[str, Any]) -> str:
    sections = []
    for category, tools in summary["toolsByCategory"].items():
        items = "".join(
            f"<li><span class=\"tool-name\">{html.escape(tool['name'])}</span> (v{html.escape(tool['version'])}): "
            f"<span class=\"tool-description\">{html.escape(tool['description'])}</span></li>"
            for tool in tools
        )
        sections.append(f"<h2>{html.escape(category.capitalize())} Tools</h2><ul>{items}</ul>")
    return (
        "<html><head><title>Available MCP Tools</title>"
        f"<style>{PAGE_STYLE}</style></head><body>"
        "<h1>Available MCP Tools</h1>"
        f"{''.join(sections)}</body></html>"
    )


def render_listing(listing: dict[str, Any], fmt: str) -> tuple[Any, str]:
    """
    Render a catalog listing.

    Returns:
        (body, media_type); the body is a dict for json and a string otherwise
    """
    fmt = normalize_format(fmt)
    if fmt == "yaml":
        body = yaml.safe_dump(listing, sort_keys=False, allow_unicode=True)
    elif fmt == "table":
        body = render_table(listing)
    elif fmt == "html":
        body = render_html(listing)
    else:
        body = listing
    return body, MEDIA_TYPES[fmt]
