"""Execution hooks: where the engine reports triggers and final status.

A hook is one callable receiving either a TriggerNotification (a trigger
node fired) or a CompletionRecord (the run finished). Its return value is
ignored; it may be sync or async.
"""

import inspect
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import structlog

from core.constants import ExecutionStatus

logger = structlog.get_logger(__name__)


@dataclass
class TriggerNotification:
    """A trigger node fired with the given payload."""

    execution_id: Optional[str]
    node_id: str
    node_name: str
    trigger_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CompletionRecord:
    """Final run status handed to the persistence collaborator."""

    execution_id: str
    status: ExecutionStatus
    start_time: int
    output: Any = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        record = asdict(self)
        record["status"] = self.status.value
        return record


HookEvent = Union[TriggerNotification, CompletionRecord]
ExecutionHook = Callable[[HookEvent], Union[None, Awaitable[None]]]


async def notify(hook: Optional[ExecutionHook], event: HookEvent) -> None:
    """Deliver an event to a hook, awaiting it when it is a coroutine."""
    if hook is None:
        return
    result = hook(event)
    if inspect.isawaitable(result):
        await result


async def log_execution_hook(event: HookEvent) -> None:
    """Default hook: record events in the structured log only."""
    if isinstance(event, TriggerNotification):
        logger.info(
            "trigger_fired",
            execution_id=event.execution_id,
            node_id=event.node_id,
            node_name=event.node_name,
            payload_keys=sorted(event.trigger_data.keys()),
        )
    else:
        logger.info(
            "execution_completed",
            execution_id=event.execution_id,
            status=event.status.value,
            error=event.error,
            start_time=event.start_time,
        )
