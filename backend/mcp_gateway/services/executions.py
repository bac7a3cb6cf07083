"""
Execution completion handles.

A handle is created together with the pending ToolExecution record and is the
only way to move that record to a terminal status.
"""

import time
from typing import Any, Awaitable, Callable, Optional

import structlog

from mcp_gateway.core.errors import StoreUnavailableError
from mcp_gateway.schemas.tools import ExecutionStatus, ToolExecution

logger = structlog.get_logger(__name__)

PersistFn = Callable[[ToolExecution], Awaitable[ToolExecution]]


class ExecutionHandle:
    """Completes one pending execution exactly once."""

    def __init__(self, execution: ToolExecution, persist: Optional[PersistFn] = None):
        self.execution = execution
        self._persist = persist
        self._started = time.monotonic()
        self._completed = False

    @classmethod
    def noop(cls, execution: ToolExecution) -> "ExecutionHandle":
        """A handle that completes in memory only (used when logging failed)."""
        return cls(execution, persist=None)

    @property
    def completed(self) -> bool:
        return self._completed

    async def complete(self, result: Any = None, error: Optional[BaseException | str] = None) -> ToolExecution:
        """
        Record the outcome of the execution.

        Args:
            result: Outputs stored on success
            error: Exception or message; marks the execution as failed

        Returns:
            The completed ToolExecution
        """
        if self._completed:
            logger.warning(
                "Execution already completed",
                tool_name=self.execution.tool_name,
                execution_id=self.execution.id,
                status=self.execution.status.value,
            )
            return self.execution

        self._completed = True
        updates: dict[str, Any] = {
            "execution_time": int((time.monotonic() - self._started) * 1000),
        }
        if error is not None:
            updates["status"] = ExecutionStatus.FAILURE
            updates["error_message"] = str(error) or type(error).__name__
        else:
            updates["status"] = ExecutionStatus.SUCCESS
            updates["outputs"] = result

        self.execution = self.execution.model_copy(update=updates)

        if self._persist is not None:
            try:
                self.execution = await self._persist(self.execution)
            except StoreUnavailableError as e:
                logger.warning(
                    "Failed to persist execution result",
                    tool_name=self.execution.tool_name,
                    execution_id=self.execution.id,
                    error=str(e),
                )

        return self.execution
