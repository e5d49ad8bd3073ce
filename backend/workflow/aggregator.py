"""Execution aggregator: overall outcome and the completion record."""

from typing import Optional

import structlog

from core.constants import ExecutionStatus
from core.utils import error_message
from workflow.hooks import CompletionRecord, ExecutionHook, notify
from workflow.models import ExecutionResult

logger = structlog.get_logger(__name__)


def aggregate(state, fatal_error: Optional[str] = None) -> ExecutionResult:
    """Combine per-node results into the run result.

    Success is the AND over every recorded node result; ``error`` is the
    first failing node's message (or the fatal error, if the run aborted).
    """
    results = dict(state.results)
    first_error = next((r.error for r in results.values() if not r.success), None)
    success = fatal_error is None and all(r.success for r in results.values())
    return ExecutionResult(
        success=success,
        results=results,
        outputs=dict(state.outputs),
        error=fatal_error or first_error,
        statuses=dict(state.statuses),
    )


def build_completion_record(state, result: ExecutionResult) -> CompletionRecord:
    last = next(reversed(result.results.values()), None) if result.results else None
    return CompletionRecord(
        execution_id=state.execution_id,
        status=ExecutionStatus.SUCCESS if result.success else ExecutionStatus.ERROR,
        output=last.data if last else None,
        error=result.error,
        start_time=state.start_time,
    )


async def report_completion(hook: Optional[ExecutionHook], state, result: ExecutionResult) -> None:
    """Hand the completion record to the hook; hook failures are only logged."""
    if not state.execution_id:
        return
    record = build_completion_record(state, result)
    try:
        await notify(hook, record)
    except Exception as e:
        logger.error(
            "completion_hook_failed",
            execution_id=state.execution_id,
            error=error_message(e),
        )
