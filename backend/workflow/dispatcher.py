"""Step dispatcher: resolves an action type and invokes its step function.

Condition and Loop are system actions with their own pre-processing:
the condition expression is evaluated here (with the raw, unresolved
expression text) and the loop item source is turned into a concrete
list before their step functions run. Every other action type is looked
up in the step registry and invoked with ``{**resolved_config, _context}``.
"""

import json
import re
from typing import Any, Dict, List, Optional

import structlog

from core.constants import LOOP_ARRAY_KEYS, SystemAction
from core.exceptions import StepExportError, UnknownActionError
from tasks.base_task import CONTEXT_KEY
from tasks.registry import StepRegistry
from workflow.conditions import ConditionEvaluator, truthy
from workflow.models import StepContext
from workflow.templates import Outputs

logger = structlog.get_logger(__name__)

_LEADING_INT = re.compile(r"^\s*[+-]?\d+")


def _first_populated(obj: Dict[str, Any]) -> Any:
    for key in LOOP_ARRAY_KEYS:
        value = obj.get(key)
        if truthy(value):
            return value
    return None


def resolve_loop_items(source: Any) -> List[Any]:
    """Turn a loop item source into a list.

    Accepts a list directly, JSON text holding a list or an object, or an
    object; objects contribute the first populated of ``rows``, ``data``,
    ``items``, ``results``. Anything else yields an empty list.
    """
    if isinstance(source, (list, tuple)):
        return list(source)

    if isinstance(source, str):
        text = source.strip()
        if not text.startswith(("[", "{")):
            return []
        try:
            source = json.loads(text)
        except ValueError as e:
            logger.warning("loop_items_parse_failed", error=str(e))
            return []
        if isinstance(source, list):
            return source

    if isinstance(source, dict):
        candidate = _first_populated(source)
        return list(candidate) if isinstance(candidate, list) else []
    return []


def resolve_batch_size(value: Any, default: int = 1) -> int:
    """Batch size from config; non-positive or unparseable values fall back to ``default``."""
    size: Optional[int] = None
    if isinstance(value, bool):
        size = None
    elif isinstance(value, (int, float)):
        size = int(value)
    elif isinstance(value, str):
        match = _LEADING_INT.match(value)
        size = int(match.group(0)) if match else None
    if not size or size < 1:
        return max(default, 1)
    return size


class StepDispatcher:
    """Routes action nodes to their step functions."""

    def __init__(
        self,
        registry: StepRegistry,
        evaluator: Optional[ConditionEvaluator] = None,
        default_batch_size: int = 1,
    ):
        self._registry = registry
        self._evaluator = evaluator or ConditionEvaluator()
        self._default_batch_size = default_batch_size

    @property
    def registry(self) -> StepRegistry:
        return self._registry

    async def execute(
        self,
        action_type: str,
        config: Dict[str, Any],
        outputs: Outputs,
        context: StepContext,
    ) -> Any:
        """Run the step for an action; lookup failures come back as failure results."""
        try:
            return await self.dispatch(action_type, config, outputs, context)
        except (UnknownActionError, StepExportError) as e:
            logger.error("step_dispatch_failed", action_type=action_type, error=e.message)
            return {"success": False, "error": e.message}

    async def dispatch(
        self,
        action_type: str,
        config: Dict[str, Any],
        outputs: Outputs,
        context: StepContext,
    ) -> Any:
        canonical = self._registry.canonical(action_type)
        if canonical == SystemAction.CONDITION.value:
            step_input = self._prepare_condition(config, outputs)
        elif canonical == SystemAction.LOOP.value:
            step_input = self._prepare_loop(config)
        else:
            step_input = dict(config)
        step_input[CONTEXT_KEY] = context

        step_function = self._registry.get_function(action_type)
        return await step_function(step_input)

    def _prepare_condition(self, config: Dict[str, Any], outputs: Outputs) -> Dict[str, Any]:
        expression = config.get("condition")
        evaluated = self._evaluator.evaluate(expression, outputs)
        logger.info("condition_result", result=evaluated.result)
        return {
            "condition": evaluated.result,
            "expression": expression if isinstance(expression, str) else None,
            "values": evaluated.resolved_values or None,
        }

    def _prepare_loop(self, config: Dict[str, Any]) -> Dict[str, Any]:
        source = config.get("items")
        items = resolve_loop_items(source)
        batch_size = resolve_batch_size(config.get("batchSize"), self._default_batch_size)
        logger.info("loop_items_resolved", item_count=len(items), batch_size=batch_size)
        return {
            "items": items,
            "batchSize": batch_size,
            "currentBatchIndex": config.get("currentBatchIndex") or 0,
            "expression": source if isinstance(source, str) else None,
        }
