"""
Tool execution with validation, telemetry and usage tracking.

Used by both the direct tool endpoints and the orchestrator so every tool
run is validated, logged as its own ToolExecution and counted the same way.
"""

from typing import Any, Optional

import structlog

from mcp_gateway.core.errors import GatewayError, NotFoundError, ToolExecutionError, ValidationError
from mcp_gateway.schemas.tools import ExecutionMetadata, ExecutionProvider, ToolDefinition, ToolExecution
from mcp_gateway.services.state_manager import StateManager
from mcp_gateway.tools.definitions import get_builtin_definition
from mcp_gateway.tools.registry import ToolHandlerRegistry
from mcp_gateway.tools.validation import validate_tool_input

logger = structlog.get_logger(__name__)


class ToolExecutor:
    """Runs registered tools by name."""

    def __init__(self, registry: ToolHandlerRegistry, state: StateManager):
        self.registry = registry
        self.state = state

    async def _definition(self, name: str) -> Optional[ToolDefinition]:
        return await self.state.get_tool(name) or get_builtin_definition(name)

    async def execute(
        self,
        name: str,
        arguments: Any,
        provider: ExecutionProvider = ExecutionProvider.DIRECT,
        session_id: Optional[str] = None,
        metadata: Optional[ExecutionMetadata] = None
    ) -> Any:
        """
        Validate, run and log one tool call.

        Raises:
            NotFoundError: No handler is registered under ``name``
            ValidationError: The input does not match the tool's parameters or the tool is disabled
            ToolExecutionError: The handler raised
        """
        handle = await self.state.log_execution(ToolExecution(
            tool_name=name,
            provider=provider,
            session_id=session_id,
            inputs=arguments if isinstance(arguments, dict) else {"value": arguments},
            metadata=metadata or ExecutionMetadata(),
        ))

        handler = self.registry.get(name)
        if handler is None:
            error = NotFoundError(f"Unknown tool: {name}")
            await handle.complete(error=error)
            raise error

        try:
            definition = await self._definition(name)
            if definition is not None and not definition.enabled:
                raise ValidationError(f"Tool '{name}' is disabled")
            validated = validate_tool_input(name, definition.parameters, arguments) if definition else dict(arguments or {})
        except ValidationError as e:
            await handle.complete(error=e)
            raise

        try:
            result = await handler.execute(validated)
        except Exception as e:
            logger.error("Tool execution failed", tool_name=name, provider=provider.value, error=str(e))
            await handle.complete(error=e)
            await self.state.record_tool_usage(name)
            if isinstance(e, GatewayError):
                raise
            raise ToolExecutionError(str(e)) from e

        await self.state.record_tool_usage(name)

        if isinstance(result, dict) and result.get("success") is False:
            await handle.complete(error=result.get("error") or "Tool reported failure")
        else:
            await handle.complete(result=result)

        logger.info("Tool executed", tool_name=name, provider=provider.value)
        return result
