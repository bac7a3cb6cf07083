"""Execution statistics helpers shared by the record stores."""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, Optional

from mcp_gateway.schemas.tools import (
    ExecutionStats,
    ExecutionStatus,
    ToolCount,
    ToolExecution,
    ToolTiming,
    utcnow,
)

PERIOD_WINDOWS = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
}

DEFAULT_PERIOD = "day"


def resolve_period(period: Optional[str]) -> str:
    """Return a known period name; anything else becomes the default."""
    return period if period in PERIOD_WINDOWS else DEFAULT_PERIOD


def window_start(period: str, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - PERIOD_WINDOWS[resolve_period(period)]


def format_success_rate(success_count: int, total_count: int) -> str:
    if total_count <= 0:
        return "0%"
    return f"{success_count / total_count * 100:.2f}%"


def rank_top_tools(counts: dict[str, int], limit: int) -> list[ToolCount]:
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [ToolCount(name=name, count=count) for name, count in ranked[:max(limit, 0)]]


def rank_execution_times(averages: dict[str, float]) -> list[ToolTiming]:
    ranked = sorted(averages.items(), key=lambda item: (item[1], item[0]))
    return [ToolTiming(name=name, avg_time=avg) for name, avg in ranked]


def compute_stats(
    executions: Iterable[ToolExecution],
    period: Optional[str] = DEFAULT_PERIOD,
    tool_name: Optional[str] = None,
    limit: int = 10,
    now: Optional[datetime] = None
) -> ExecutionStats:
    """
    Aggregate executions inside the trailing window of ``period``.

    Args:
        executions: Candidate execution records
        period: hour, day, week or month
        tool_name: Restrict to a single tool
        limit: Maximum entries in ``top_tools``
        now: Reference time (defaults to the current UTC time)

    Returns:
        ExecutionStats for the window
    """
    period = resolve_period(period)
    start = window_start(period, now)

    selected = [
        execution for execution in executions
        if execution.metadata.timestamp is not None
        and execution.metadata.timestamp >= start
        and (not tool_name or execution.tool_name == tool_name)
    ]

    total = len(selected)
    successes = [e for e in selected if e.status == ExecutionStatus.SUCCESS]
    failures = sum(1 for e in selected if e.status == ExecutionStatus.FAILURE)

    counts: dict[str, int] = defaultdict(int)
    for execution in selected:
        counts[execution.tool_name] += 1

    totals: dict[str, list[int]] = defaultdict(list)
    for execution in successes:
        totals[execution.tool_name].append(execution.execution_time or 0)
    averages = {name: sum(times) / len(times) for name, times in totals.items()}

    return ExecutionStats(
        period=period,
        total_count=total,
        success_count=len(successes),
        failure_count=failures,
        success_rate=format_success_rate(len(successes), total),
        top_tools=rank_top_tools(counts, limit),
        execution_times=rank_execution_times(averages),
    )
