"""
MCP Gateway

Provides a tool-aware gateway in front of large-language-model providers:
- Dispatch to Anthropic and OpenAI with tool-use detection and follow-up calls
- Tool catalog with filtering, pagination and multiple output formats
- Cached state with durable storage and automatic in-memory fallback
- Encrypted configuration values and execution telemetry
"""

__version__ = "1.0.0"
