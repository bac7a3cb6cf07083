"""
Structured Logging Configuration

This module provides:
- Centralized structlog configuration (console or JSON rendering)
- Request and session id tracking via context variables
- ASGI middleware that tags every HTTP request with a short id
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional, Any

import structlog
from structlog.types import Processor

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_var.get()


def get_session_id() -> Optional[str]:
    """Get the current session ID from context."""
    return session_id_var.get()


def set_session_id(session_id: Optional[str]) -> None:
    """Set the session ID in context."""
    session_id_var.set(session_id)


def generate_request_id() -> str:
    """Generate a new short request ID."""
    return uuid.uuid4().hex[:8]


def add_request_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add request and session ids to log entries."""
    request_id = request_id_var.get()
    session_id = session_id_var.get()

    if request_id:
        event_dict["request_id"] = request_id
    if session_id and "session_id" not in event_dict:
        event_dict["session_id"] = session_id

    return event_dict


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add ISO timestamp to log entries."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def configure_logging(json_format: bool = False, log_level: str = "INFO") -> None:
    """
    Configure structlog for the application.

    Args:
        json_format: If True, output JSON logs (for production)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        add_request_context,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.set_exc_info)
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Keep client libraries quiet unless something goes wrong
    for logger_name in ["httpx", "httpcore", "aiosqlite", "sqlalchemy.engine", "asyncio"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


class RequestContextMiddleware:
    """
    ASGI middleware adding a request id to every log line of a request.

    Also logs request start, completion status and duration.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_token = request_id_var.set(generate_request_id())
        session_token = session_id_var.set(None)

        logger = structlog.get_logger("request")
        started = time.monotonic()
        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "/")

        logger.info("Request started", method=method, path=path)

        response_status = None

        async def send_wrapper(message):
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message.get("status", 0)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            logger.error(
                "Request failed",
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        finally:
            logger.info(
                "Request completed",
                method=method,
                path=path,
                status=response_status,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
            request_id_var.reset(request_token)
            session_id_var.reset(session_token)
