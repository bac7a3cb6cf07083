"""
Tool Handler Registry

This module provides:
- A registry mapping tool names to async handlers
- Registration of the built-in web and image tools

An unknown tool is a registry lookup miss, reported by callers as
``Unknown tool: <name>``.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

from mcp_gateway.tools.image_generation import ImageGenerationClient
from mcp_gateway.tools.web_search import WebSearchClient

logger = structlog.get_logger(__name__)

HandlerFn = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass
class ToolHandler:
    """An executable tool implementation."""
    name: str
    execute: HandlerFn
    description: str = ""


class ToolHandlerRegistry:
    """Name to handler lookup for executable tools."""

    def __init__(self):
        self._handlers: dict[str, ToolHandler] = {}

    def register(self, name: str, execute: HandlerFn, description: str = "") -> ToolHandler:
        if name in self._handlers:
            logger.warning("Tool handler already registered, replacing", tool_name=name)
        handler = ToolHandler(name=name, execute=execute, description=description)
        self._handlers[name] = handler
        logger.debug("Tool handler registered", tool_name=name)
        return handler

    def unregister(self, name: str) -> bool:
        return self._handlers.pop(name, None) is not None

    def get(self, name: str) -> Optional[ToolHandler]:
        return self._handlers.get(name)

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


def register_builtin_tools(
    registry: ToolHandlerRegistry,
    web: WebSearchClient,
    images: ImageGenerationClient
) -> ToolHandlerRegistry:
    """Register handlers for the six built-in tools. Inputs arrive validated with defaults applied."""

    async def web_search(args: dict[str, Any]) -> Any:
        return await web.search_web(args["query"], args.get("limit", 5))

    async def web_content(args: dict[str, Any]) -> Any:
        return await web.get_webpage_content(args["url"], args.get("useCache", True))

    async def web_batch(args: dict[str, Any]) -> Any:
        return await web.fetch_multiple_urls(args["urls"], args.get("useCache", True))

    async def generate_image(args: dict[str, Any]) -> Any:
        return await images.generate_image(args["prompt"], args.get("provider", "openai"), args.get("options") or {})

    async def edit_image(args: dict[str, Any]) -> Any:
        return await images.edit_image(args["imagePath"], args["prompt"], args.get("maskPath"))

    async def create_image_variation(args: dict[str, Any]) -> Any:
        return await images.create_image_variation(args["imagePath"])

    registry.register("web_search", web_search, "Search the web")
    registry.register("web_content", web_content, "Fetch and extract one webpage")
    registry.register("web_batch", web_batch, "Fetch several webpages concurrently")
    registry.register("generate_image", generate_image, "Generate an image from a prompt")
    registry.register("edit_image", edit_image, "Edit an image with a prompt")
    registry.register("create_image_variation", create_image_variation, "Create an image variation")

    logger.info("Built-in tool handlers registered", count=len(registry))
    return registry
