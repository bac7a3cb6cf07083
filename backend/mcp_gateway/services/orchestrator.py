"""
Dispatch & Tool-Execution Orchestrator

Per request: call the provider, detect tool use, run the requested tools,
then call the provider again with the tool outputs appended.

    Dispatched -> Completed
    Dispatched -> AwaitingToolResults -> Dispatched (follow-up) -> Completed

The request is logged as a ToolExecution named "mcp" before the first call
and is always completed, with the error on failure, before anything is
surfaced to the caller. Each tool call is logged as its own execution.
"""

from typing import Any, Optional

import structlog

from mcp_gateway.core.errors import GatewayError, ProviderError, ValidationError
from mcp_gateway.core.logging_config import get_session_id, set_session_id
from mcp_gateway.schemas.requests import McpRequest
from mcp_gateway.schemas.tools import ExecutionMetadata, ExecutionProvider, ToolExecution
from mcp_gateway.services.providers import ProviderAdapter, ToolCall, ToolResult
from mcp_gateway.services.state_manager import StateManager, generate_session_id
from mcp_gateway.services.tool_executor import ToolExecutor

logger = structlog.get_logger(__name__)

DISPATCH_TOOL_NAME = "mcp"


class Orchestrator:
    """Runs the dispatch / tool-use / follow-up cycle for one provider request."""

    def __init__(
        self,
        providers: dict[str, ProviderAdapter],
        executor: ToolExecutor,
        state: StateManager
    ):
        self.providers = providers
        self.executor = executor
        self.state = state

    @property
    def supported_providers(self) -> list[str]:
        return sorted(self.providers)

    async def dispatch(
        self,
        provider_name: str,
        request: McpRequest,
        metadata: Optional[ExecutionMetadata] = None
    ) -> dict[str, Any]:
        """
        Handle one chat request.

        Args:
            provider_name: "anthropic" or "openai"
            request: Prompt or messages, plus optional tools, context and model
            metadata: Caller details recorded on every execution

        Returns:
            The provider response, or the follow-up response when tools ran

        Raises:
            ValidationError: Unsupported provider, or neither prompt nor messages given
            ProviderError: The provider call (or anything else in the cycle) failed
        """
        adapter = self.providers.get(provider_name)
        if adapter is None:
            raise ValidationError(f"Unsupported provider: {provider_name}")
        if not request.messages and not request.prompt:
            raise ValidationError("Either prompt or messages must be provided")

        model = request.model or adapter.default_model
        provider = ExecutionProvider(adapter.name)
        session_id = get_session_id() or generate_session_id()
        metadata = (metadata or ExecutionMetadata()).model_copy(update={"model_name": model})
        set_session_id(session_id)

        handle = await self.state.log_execution(ToolExecution(
            tool_name=DISPATCH_TOOL_NAME,
            provider=provider,
            session_id=session_id,
            inputs={
                "prompt": request.prompt,
                "messageCount": len(request.messages or []),
                "toolCount": len(request.tools or []),
                "hasContext": bool(request.context),
                "model": model,
            },
            metadata=metadata,
        ))

        try:
            messages = adapter.initial_messages(request.prompt, request.messages, request.context)
            logger.info("Dispatching request", provider=adapter.name, model=model, messages=len(messages))
            response = await adapter.complete(model, messages, request.tools, request.context, request.max_tokens)

            calls = adapter.extract_tool_calls(response)
            if not calls:
                await handle.complete(result={"usedTools": [], "followupResponse": False})
                return response

            logger.info("Model requested tools", provider=adapter.name, tools=[c.name for c in calls])
            results = [
                ToolResult(call=call, output=await self._run_tool(call, provider, session_id, metadata))
                for call in calls
            ]

            followup_messages = adapter.append_tool_results(messages, response, results)
            followup = await adapter.complete(
                model, followup_messages, request.tools, request.context, request.max_tokens
            )

            await handle.complete(result={"usedTools": [c.name for c in calls], "followupResponse": True})
            return followup
        except Exception as e:
            await handle.complete(error=e)
            logger.error("Request failed", provider=adapter.name, error=str(e), error_type=type(e).__name__)
            if isinstance(e, GatewayError):
                raise
            raise ProviderError(str(e)) from e

    async def _run_tool(
        self,
        call: ToolCall,
        provider: ExecutionProvider,
        session_id: str,
        metadata: ExecutionMetadata
    ) -> Any:
        """Run one call; failures become an ``{"error": ...}`` payload for the model."""
        if call.error:
            handle = await self.state.log_execution(ToolExecution(
                tool_name=call.name or "unknown",
                provider=provider,
                session_id=session_id,
                metadata=metadata,
            ))
            await handle.complete(error=call.error)
            return {"error": call.error}

        try:
            return await self.executor.execute(call.name, call.input, provider, session_id, metadata)
        except Exception as e:
            logger.warning("Tool call failed", tool_name=call.name, error=str(e))
            return {"error": str(e)}
