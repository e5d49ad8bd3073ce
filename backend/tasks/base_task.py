"""
Base task interface for all workflow step implementations.

Every step (HTTP request, database query, condition, loop, ...) inherits
from BaseTask and implements execute(). Modules expose the step to the
registry through a plain async function, e.g.::

    async def http_request_step(step_input):
        return await HttpRequestTask().run(step_input)
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import StepExecutionError
from core.utils import error_message
from workflow.models import StepContext

logger = structlog.get_logger(__name__)

CONTEXT_KEY = "_context"


class TaskResult:
    """Standardized result from task execution."""

    def __init__(
        self,
        success: bool,
        output: Any = None,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        duration_ms: float = 0,
    ):
        self.success = success
        self.output = output
        self.error = error
        self.metadata = metadata or {}
        self.duration_ms = duration_ms
        self.timestamp = datetime.now(timezone.utc)

    def to_step_output(self) -> Dict[str, Any]:
        """Render as the standard ``{success, data}`` / ``{success, error}`` envelope."""
        if self.success:
            return {"success": True, "data": self.output}
        return {"success": False, "error": {"message": self.error or "Step failed"}}


class BaseTask(ABC):
    """
    Abstract base class for all step implementations.

    Subclasses must implement:
    - execute(config, context) -> TaskResult
    - action_type / display_name (class attributes)

    Set ``envelope = False`` for system steps whose raw output is read
    directly by the engine (condition, loop); their failures raise
    StepExecutionError instead of returning a failure envelope.
    """

    action_type: str = "base"
    display_name: str = "Base Task"
    description: str = "Abstract base task"
    envelope: bool = True

    @abstractmethod
    async def execute(
        self,
        config: Dict[str, Any],
        context: Optional[StepContext] = None,
    ) -> TaskResult:
        """
        Execute the task with given configuration.

        Args:
            config: Resolved node configuration (templates already substituted)
            context: Step context for observability

        Returns:
            TaskResult with output or error
        """

    async def run(self, step_input: Dict[str, Any]) -> Any:
        """
        Run the task with timing, logging and error capture.

        This is the entry point the step functions delegate to.
        """
        config = {k: v for k, v in step_input.items() if k != CONTEXT_KEY}
        context = _coerce_context(step_input.get(CONTEXT_KEY))
        log = logger.bind(action_type=self.action_type, **(context.to_log_fields() if context else {}))

        start = time.monotonic()
        log.info("step_started")
        try:
            result = await self.execute(config, context)
        except Exception as e:
            result = TaskResult(success=False, error=error_message(e))
        result.duration_ms = (time.monotonic() - start) * 1000

        if result.success:
            log.info("step_completed", duration_ms=round(result.duration_ms, 2))
        else:
            log.error("step_failed", error=result.error, duration_ms=round(result.duration_ms, 2))

        if self.envelope:
            return result.to_step_output()
        if not result.success:
            raise StepExecutionError(result.error or f"{self.display_name} failed")
        return result.output


def _coerce_context(value: Any) -> Optional[StepContext]:
    if isinstance(value, StepContext):
        return value
    if isinstance(value, dict):
        try:
            return StepContext(**value)
        except PydanticValidationError:
            return None
    return None
