"""Workflow Execution Engine: walks a node graph from its root triggers.

Takes a workflow definition (nodes + edges) and a trigger payload and
executes it to completion:

- Every root trigger (a trigger node with no incoming edge) starts a
  traversal; traversals and sibling branches run concurrently
- A visited set per traversal keeps cyclic edges from recursing forever
- Action configs are template-resolved against the outputs produced so
  far, then dispatched to the registered step function
- Condition nodes gate their successors; Loop nodes re-run their
  successor subgraph once per batch, strictly one batch at a time
- Failures are isolated per node and never abort the run

Workflow input (as stored by the editor):
{
    "nodes": [
        {"id": "trigger-1", "data": {"type": "trigger", "label": "Start",
                                     "config": {"triggerType": "Manual"}}},
        {"id": "http-1", "data": {"type": "action", "label": "Fetch users",
                                  "config": {"actionType": "HTTP Request",
                                             "endpoint": "https://api.example.com/users"}}},
        {"id": "cond-1", "data": {"type": "action", "label": "Has users",
                                  "config": {"actionType": "Condition",
                                             "condition": "{{@http-1:Fetch users.users.length}} > 0"}}}
    ],
    "edges": [
        {"source": "trigger-1", "target": "http-1"},
        {"source": "http-1", "target": "cond-1"}
    ],
    "triggerInput": {},
    "executionId": "exec-123"
}
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Union

import structlog

from app.config import Settings, get_settings
from core.constants import RESERVED_CONFIG_KEYS, NodeKind, StepStatus, SystemAction
from core.exceptions import ConfigurationError, EngineError, UnknownNodeKindError
from core.utils import epoch_ms, error_message, parse_json_object, sanitize_node_id
from tasks.registry import StepRegistry, create_default_registry
from workflow.aggregator import aggregate, report_completion
from workflow.conditions import ConditionEvaluator
from workflow.dispatcher import StepDispatcher
from workflow.graph import WorkflowGraph, find_sanitized_collisions
from workflow.hooks import ExecutionHook, TriggerNotification, log_execution_hook, notify
from workflow.models import (
    ExecutionInput,
    ExecutionResult,
    Node,
    NodeOutput,
    NodeResult,
    StepContext,
)
from workflow.templates import process_templates

logger = structlog.get_logger(__name__)


# ─── Execution State ──────────────────────────────────────────

@dataclass
class LoopContext:
    """Batch number threaded through a loop body's step contexts."""

    iteration: int


@dataclass
class ExecutionState:
    """Mutable state of one run, shared by every traversal branch.

    ``results`` is keyed by raw node id, ``outputs`` by sanitized node id.
    Each key has exactly one producer per traversal pass, so concurrent
    branches never write the same entry at the same time.
    """

    input: ExecutionInput
    graph: WorkflowGraph
    start_time: int = field(default_factory=epoch_ms)
    results: Dict[str, NodeResult] = field(default_factory=dict)
    outputs: Dict[str, NodeOutput] = field(default_factory=dict)
    statuses: Dict[str, StepStatus] = field(default_factory=dict)

    @property
    def execution_id(self) -> Optional[str]:
        return self.input.execution_id

    def set_output(self, node: Node, data: Any) -> None:
        self.outputs[sanitize_node_id(node.id)] = NodeOutput(label=node.label or node.id, data=data)

    def record(self, node: Node, result: NodeResult) -> None:
        """Store a node's terminal result and expose its data to templates."""
        self.results[node.id] = result
        self.set_output(node, result.data)
        self.statuses[node.id] = StepStatus.SUCCESS if result.success else StepStatus.FAILED

    def fail(self, node_id: str, error: str) -> None:
        """Record a failure without publishing an output."""
        self.results[node_id] = NodeResult.failed(error)
        self.statuses[node_id] = StepStatus.FAILED


def node_display_name(node: Node, registry: StepRegistry) -> str:
    """Human-readable name for logs and step contexts."""
    if node.label:
        return node.label
    if node.kind == NodeKind.ACTION.value:
        if node.action_type:
            label = registry.action_label(node.action_type)
            if label:
                return label
        return "Action"
    if node.kind == NodeKind.TRIGGER.value:
        return node.config.get("triggerType") or "Trigger"
    return node.kind


def step_result_to_node_result(step_result: Any, action_type: str, node: Node) -> NodeResult:
    """Translate whatever a step function returned into a NodeResult.

    Only an explicit ``{"success": False, ...}`` counts as a failure; the
    error may be a string or a ``{"message": ...}`` mapping.
    """
    if isinstance(step_result, dict) and step_result.get("success") is False:
        error = step_result.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        if not error or not isinstance(error, str):
            error = (
                f'Step "{action_type}" in node "{node.label or node.id}" '
                "failed without a specific error message."
            )
        return NodeResult.failed(error)
    return NodeResult.ok(step_result)


# ─── Workflow Engine ──────────────────────────────────────────

class WorkflowEngine:
    """Main workflow execution engine.

    Executes a complete workflow graph from its root triggers to
    completion and returns the aggregated ExecutionResult. The engine
    itself is stateless between runs; everything a run touches lives in
    its ExecutionState.
    """

    def __init__(
        self,
        registry: Optional[StepRegistry] = None,
        hook: Optional[ExecutionHook] = log_execution_hook,
        evaluator: Optional[ConditionEvaluator] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self._registry = registry or create_default_registry()
        self._hook = hook
        self._dispatcher = StepDispatcher(
            self._registry,
            evaluator=evaluator or ConditionEvaluator(max_length=settings.CONDITION_MAX_LENGTH),
            default_batch_size=settings.LOOP_DEFAULT_BATCH_SIZE,
        )

    @property
    def registry(self) -> StepRegistry:
        return self._registry

    async def execute(self, execution_input: Union[ExecutionInput, Dict[str, Any]]) -> ExecutionResult:
        """Execute a workflow.

        Args:
            execution_input: ExecutionInput or its dict form
                (``{nodes, edges, triggerInput?, executionId?, workflowId?}``)

        Returns:
            Aggregated ExecutionResult; never raises for node failures
        """
        if not isinstance(execution_input, ExecutionInput):
            execution_input = ExecutionInput.model_validate(execution_input)

        with structlog.contextvars.bound_contextvars(
            execution_id=execution_input.execution_id,
            workflow_id=execution_input.workflow_id,
        ):
            return await self._execute(execution_input)

    async def _execute(self, execution_input: ExecutionInput) -> ExecutionResult:
        state = ExecutionState(
            input=execution_input,
            graph=WorkflowGraph.build(execution_input.nodes, execution_input.edges),
        )
        logger.info(
            "workflow_started",
            node_count=len(execution_input.nodes),
            edge_count=len(execution_input.edges),
            trigger_count=len(state.graph.roots),
        )
        for key, ids in find_sanitized_collisions(execution_input.nodes).items():
            logger.warning("node_output_key_collision", output_key=key, node_ids=ids)

        try:
            # Each root trigger gets its own visited set
            await asyncio.gather(
                *(self._execute_node(state, root_id, set()) for root_id in state.graph.roots)
            )
            result = aggregate(state)
        except Exception as e:
            logger.error("workflow_failed", error=str(e), exc_info=True)
            result = aggregate(state, fatal_error=error_message(e))

        logger.info(
            "workflow_completed",
            success=result.success,
            result_count=len(result.results),
            duration_ms=epoch_ms() - state.start_time,
        )
        await report_completion(self._hook, state, result)
        return result

    async def _execute_node(
        self,
        state: ExecutionState,
        node_id: str,
        visited: Set[str],
        loop: Optional[LoopContext] = None,
    ) -> None:
        """Execute one node, then whatever its outcome says runs next."""
        if node_id in visited:
            logger.debug("node_already_visited", node_id=node_id)
            return
        visited.add(node_id)

        node = state.graph.nodes.get(node_id)
        if node is None:
            logger.debug("node_not_found", node_id=node_id)
            return

        if not node.enabled:
            # Null output keeps downstream templates resolvable
            logger.info("node_skipped", node_id=node_id, reason="disabled")
            state.set_output(node, None)
            state.statuses[node_id] = StepStatus.SKIPPED
            await self._fan_out(state, node_id, visited, loop)
            return

        state.statuses[node_id] = StepStatus.RUNNING
        logger.info(
            "node_started",
            node_id=node_id,
            kind=node.kind,
            loop_iteration=loop.iteration if loop else None,
        )
        try:
            if node.kind == NodeKind.TRIGGER.value:
                result = await self._run_trigger(state, node)
            elif node.kind == NodeKind.ACTION.value:
                result = await self._run_action(state, node, loop)
            else:
                error = UnknownNodeKindError(node.kind, node.label or node.id)
                logger.error("unknown_node_kind", node_id=node_id, kind=node.kind)
                result = NodeResult.failed(error.message)

            state.record(node, result)
            logger.info("node_completed", node_id=node_id, success=result.success)

            if result.success:
                await self._continue_after(state, node, result, visited, loop)
        except EngineError as e:
            logger.warning("node_failed", node_id=node_id, error=e.message, code=e.code)
            state.fail(node_id, e.message)
        except Exception as e:
            logger.error("node_failed", node_id=node_id, error=str(e), exc_info=True)
            state.fail(node_id, error_message(e))

    async def _run_trigger(self, state: ExecutionState, node: Node) -> NodeResult:
        trigger_data: Dict[str, Any] = {"triggered": True, "timestamp": epoch_ms()}
        trigger_input = state.input.trigger_input or {}
        mock_request = node.config.get("webhookMockRequest")

        if node.config.get("triggerType") == "Webhook" and mock_request and not trigger_input:
            try:
                trigger_data.update(parse_json_object(mock_request, "webhookMockRequest"))
                logger.info("webhook_mock_applied", node_id=node.id)
            except ValueError as e:
                logger.warning("webhook_mock_invalid", node_id=node.id, error=str(e))
        elif trigger_input:
            trigger_data.update(trigger_input)

        await notify(
            self._hook,
            TriggerNotification(
                execution_id=state.execution_id,
                node_id=node.id,
                node_name=node_display_name(node, self._registry),
                trigger_data=trigger_data,
            ),
        )
        return NodeResult.ok(trigger_data)

    async def _run_action(
        self,
        state: ExecutionState,
        node: Node,
        loop: Optional[LoopContext],
    ) -> NodeResult:
        action_type = node.action_type
        if action_type is None:
            raise ConfigurationError(
                f'Action node "{node.label or node.id}" has no action type configured'
            )

        # The condition text is substituted by the evaluator itself
        config = process_templates(node.config, state.outputs)

        # Upstream structured output is visible to the step unless configured explicitly
        for source_id in state.graph.predecessors(node.id):
            upstream = state.outputs.get(sanitize_node_id(source_id))
            if upstream is None or not isinstance(upstream.data, dict):
                continue
            for key, value in upstream.data.items():
                if key not in RESERVED_CONFIG_KEYS:
                    config.setdefault(key, value)

        context = StepContext(
            execution_id=state.execution_id,
            node_id=node.id,
            node_name=node_display_name(node, self._registry),
            node_type=action_type,
            loop_iteration=loop.iteration if loop else None,
        )
        step_result = await self._dispatcher.execute(action_type, config, state.outputs, context)
        return step_result_to_node_result(step_result, action_type, node)

    async def _continue_after(
        self,
        state: ExecutionState,
        node: Node,
        result: NodeResult,
        visited: Set[str],
        loop: Optional[LoopContext],
    ) -> None:
        action = self._registry.canonical(node.action_type) if node.action_type else None
        if node.kind != NodeKind.ACTION.value:
            action = None

        if action == SystemAction.CONDITION.value:
            passed = isinstance(result.data, dict) and result.data.get("condition") is True
            if passed:
                await self._fan_out(state, node.id, visited, loop)
            else:
                logger.info("branch_pruned", node_id=node.id)
        elif action == SystemAction.LOOP.value:
            await self._run_loop_batches(state, node, result.data)
        else:
            await self._fan_out(state, node.id, visited, loop)

    async def _run_loop_batches(self, state: ExecutionState, node: Node, loop_output: Any) -> None:
        """Run the loop body once per batch; batch n+1 starts after batch n resolved."""
        loop_output = loop_output if isinstance(loop_output, dict) else {}
        items = loop_output.get("items") or []
        batch_size = loop_output.get("batchSize") or 1
        total_batches = loop_output.get("totalBatches") or math.ceil(len(items) / batch_size)
        successors = state.graph.successors(node.id)

        logger.info(
            "loop_started",
            node_id=node.id,
            item_count=len(items),
            total_batches=total_batches,
            successor_count=len(successors),
        )
        for batch_index in range(total_batches):
            start = batch_index * batch_size
            batch = items[start:start + batch_size]
            state.set_output(node, {
                **loop_output,
                "currentBatchIndex": batch_index,
                "currentBatch": batch,
                "currentItem": batch[0] if batch else None,
                "currentIndex": start,
                "hasMore": batch_index < total_batches - 1,
            })
            logger.debug("loop_batch_started", node_id=node.id, batch=batch_index + 1, total_batches=total_batches)

            # Fresh visited set so the body may run again for the next batch
            await asyncio.gather(
                *(
                    self._execute_node(state, next_id, {node.id}, LoopContext(iteration=batch_index))
                    for next_id in successors
                )
            )
        logger.info("loop_completed", node_id=node.id, total_batches=total_batches)

    async def _fan_out(
        self,
        state: ExecutionState,
        node_id: str,
        visited: Set[str],
        loop: Optional[LoopContext],
    ) -> None:
        successors = state.graph.successors(node_id)
        if successors:
            await asyncio.gather(
                *(self._execute_node(state, next_id, visited, loop) for next_id in successors)
            )
