"""
Model provider adapters.

This module provides:
- AnthropicProvider (Messages API) and OpenAIProvider (Chat Completions API)
- Normalization of each vendor's tool-use reply into ToolCall objects
- Vendor-specific reconstruction of the conversation after tools ran

Both adapters return the vendor's decoded JSON response unchanged. Keys are
resolved per call so a key stored through the admin API is used immediately.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from mcp_gateway.core.errors import ProviderError

logger = structlog.get_logger(__name__)

KeyLookup = Callable[[str], Awaitable[Optional[str]]]

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"


@dataclass
class ToolCall:
    """One tool invocation requested by a model."""
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    # Set when the call itself was malformed (e.g. undecodable arguments)
    error: Optional[str] = None


@dataclass
class ToolResult:
    call: ToolCall
    output: Any


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    if isinstance(error, str):
        return error
    return f"HTTP {response.status_code}"


class ProviderAdapter(ABC):
    """Common HTTP handling for model providers."""

    name: str = ""
    display_name: str = ""
    api_key_name: str = ""

    def __init__(
        self,
        get_key: KeyLookup,
        default_model: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._get_key = get_key
        self.default_model = default_model
        self.timeout = timeout
        self._transport = transport

    async def _api_key(self) -> str:
        key = await self._get_key(self.api_key_name)
        if not key:
            raise ProviderError(
                f"{self.display_name} client is not initialized. "
                f"Please set {self.api_key_name} in your environment or configuration."
            )
        return key

    async def _post(self, url: str, headers: dict[str, str], payload: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error("Provider request failed", provider=self.name, error=str(e))
            raise ProviderError(f"{self.display_name} request failed: {e}")

        if response.status_code >= 400:
            message = _error_message(response)
            logger.error("Provider returned an error", provider=self.name, status=response.status_code, error=message)
            raise ProviderError(message)

        try:
            return response.json()
        except ValueError:
            raise ProviderError(f"{self.display_name} returned a malformed response")

    @abstractmethod
    def initial_messages(
        self,
        prompt: Optional[str],
        messages: Optional[list[dict[str, Any]]],
        context: Optional[str]
    ) -> list[dict[str, Any]]:
        """Build the conversation sent with the first call."""

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
        context: Optional[str] = None,
        max_tokens: Optional[int] = None
    ) -> dict[str, Any]:
        """Run one completion and return the raw response."""

    @abstractmethod
    def extract_tool_calls(self, response: dict[str, Any]) -> list[ToolCall]:
        """Tool calls requested by the response; empty when the model did not ask for tools."""

    @abstractmethod
    def append_tool_results(
        self,
        messages: list[dict[str, Any]],
        response: dict[str, Any],
        results: list[ToolResult]
    ) -> list[dict[str, Any]]:
        """Conversation for the follow-up call."""


class AnthropicProvider(ProviderAdapter):
    """Anthropic Messages API."""

    name = "anthropic"
    display_name = "Anthropic"
    api_key_name = "ANTHROPIC_API_KEY"

    def __init__(self, get_key: KeyLookup, default_model: str, max_tokens: int = 1000, **kwargs):
        super().__init__(get_key, default_model, **kwargs)
        self.max_tokens = max_tokens

    def initial_messages(self, prompt, messages, context):
        if messages:
            return list(messages)
        return [{"role": "user", "content": prompt}]

    async def complete(self, model, messages, tools=None, context=None, max_tokens=None):
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if tools:
            payload["tools"] = tools
        if context:
            payload["system"] = context

        headers = {
            "x-api-key": await self._api_key(),
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        return await self._post(ANTHROPIC_URL, headers, payload)

    def extract_tool_calls(self, response):
        if response.get("type") != "tool_use" and response.get("stop_reason") != "tool_use":
            return []

        calls = []
        for block in response.get("content") or []:
            if isinstance(block, dict) and block.get("type") == "tool_use":
                calls.append(ToolCall(
                    name=block.get("name", ""),
                    input=block.get("input") or {},
                    id=block.get("id"),
                ))
        return calls

    def append_tool_results(self, messages, response, results):
        # All outputs travel in one tool_result block
        outputs = [
            {"tool_name": result.call.name, "input": result.call.input, "output": result.output}
            for result in results
        ]
        tool_result: dict[str, Any] = {"type": "tool_result", "content": json.dumps(outputs, default=str)}
        if results and results[0].call.id:
            tool_result["tool_use_id"] = results[0].call.id

        return [
            *messages,
            {"role": "assistant", "content": response.get("content")},
            {"role": "user", "content": [tool_result]},
        ]


class OpenAIProvider(ProviderAdapter):
    """OpenAI Chat Completions API."""

    name = "openai"
    display_name = "OpenAI"
    api_key_name = "OPENAI_API_KEY"

    def initial_messages(self, prompt, messages, context):
        if messages:
            conversation = [
                {"role": m["role"], "content": m.get("content")}
                if m.get("role") in ("user", "assistant", "system") and "tool_calls" not in m
                else dict(m)
                for m in messages
            ]
        else:
            conversation = [{"role": "user", "content": prompt}]

        if context and not any(m.get("role") == "system" for m in conversation):
            conversation.insert(0, {"role": "system", "content": context})
        return conversation

    async def complete(self, model, messages, tools=None, context=None, max_tokens=None):
        payload: dict[str, Any] = {"model": model, "messages": messages}
        if tools:
            payload["tools"] = tools
        if max_tokens:
            payload["max_tokens"] = max_tokens

        headers = {
            "Authorization": f"Bearer {await self._api_key()}",
            "Content-Type": "application/json",
        }
        return await self._post(OPENAI_URL, headers, payload)

    @staticmethod
    def _message(response: dict[str, Any]) -> dict[str, Any]:
        choices = response.get("choices") or []
        if not choices:
            return {}
        return choices[0].get("message") or {}

    def extract_tool_calls(self, response):
        calls = []
        for raw in self._message(response).get("tool_calls") or []:
            function = raw.get("function") or {}
            name = function.get("name", "")
            try:
                arguments = json.loads(function.get("arguments") or "{}")
            except json.JSONDecodeError as e:
                calls.append(ToolCall(name=name, id=raw.get("id"), error=f"Invalid tool arguments: {e}"))
                continue
            if not isinstance(arguments, dict):
                calls.append(ToolCall(name=name, id=raw.get("id"), error="Tool arguments must be a JSON object"))
                continue
            calls.append(ToolCall(name=name, input=arguments, id=raw.get("id")))
        return calls

    def append_tool_results(self, messages, response, results):
        message = self._message(response)
        # One tool message per call id
        return [
            *messages,
            {"role": "assistant", "content": message.get("content"), "tool_calls": message.get("tool_calls")},
            *(
                {
                    "role": "tool",
                    "tool_call_id": result.call.id,
                    "content": json.dumps(result.output, default=str),
                }
                for result in results
            ),
        ]
