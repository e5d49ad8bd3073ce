"""Shared helper to execute a workflow definition directly.

A definition is the editor's JSON document: ``{"nodes": [...], "edges": [...]}``.
This module provides a single entry point that:

1. Builds the execution input from the definition and trigger payload
2. Runs the WorkflowEngine
3. Returns the JSON-safe result dict

Usage from an async context::

    from worker.run_workflow import run_workflow_async
    result = await run_workflow_async(definition, trigger_input={"orderId": 42})

Usage from a synchronous context (thread / script)::

    from worker.run_workflow import run_workflow_sync
    result = run_workflow_sync(definition)

Command line::

    python -m worker.run_workflow workflow.json --trigger-input '{"orderId": 42}'
"""

import asyncio
import json
import sys
import uuid
from typing import Any, Dict, Optional

import click
import structlog

from core.logging_config import setup_logging
from core.utils import parse_json_object
from workflow.engine import WorkflowEngine
from workflow.models import ExecutionInput

logger = structlog.get_logger(__name__)


# ── Serialization helper ────────────────────────────────────────

def _safe_serialize(obj: Any, depth: int = 0) -> Any:
    """Recursively ensure all values are JSON-serializable."""
    if depth > 20:
        return str(obj)
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, dict):
        return {str(k): _safe_serialize(v, depth + 1) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_safe_serialize(v, depth + 1) for v in obj]
    return str(obj)


# ── Core async runner ───────────────────────────────────────────

async def run_workflow_async(
    definition: Dict[str, Any],
    trigger_input: Optional[Dict[str, Any]] = None,
    execution_id: Optional[str] = None,
    workflow_id: Optional[str] = None,
    engine: Optional[WorkflowEngine] = None,
) -> Dict[str, Any]:
    """Run a workflow definition and return the result as a plain dict.

    Values given here take precedence over ``triggerInput``,
    ``executionId`` and ``workflowId`` stored in the definition itself.
    """
    execution_input = ExecutionInput(
        nodes=definition.get("nodes") or [],
        edges=definition.get("edges") or [],
        trigger_input=trigger_input if trigger_input is not None else definition.get("triggerInput"),
        execution_id=execution_id or definition.get("executionId"),
        workflow_id=workflow_id or definition.get("workflowId") or definition.get("id"),
    )
    engine = engine or WorkflowEngine()

    logger.info("run_workflow_started", execution_id=execution_input.execution_id)
    result = await engine.execute(execution_input)
    logger.info(
        "run_workflow_finished",
        execution_id=execution_input.execution_id,
        success=result.success,
    )
    return _safe_serialize(result.to_dict())


# ── Sync wrapper ────────────────────────────────────────────────

def run_workflow_sync(
    definition: Dict[str, Any],
    trigger_input: Optional[Dict[str, Any]] = None,
    execution_id: Optional[str] = None,
    workflow_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Run a workflow synchronously (blocks until done).

    Creates its own event loop, so it is safe to call from worker threads.
    """
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(
            run_workflow_async(
                definition,
                trigger_input=trigger_input,
                execution_id=execution_id,
                workflow_id=workflow_id,
            )
        )
    finally:
        loop.close()


# ── Command line ────────────────────────────────────────────────

@click.command()
@click.argument("definition_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--trigger-input", "-t", help="Trigger payload as a JSON object")
@click.option("--execution-id", "-e", help="Execution id (auto-generated if not provided)")
@click.option("--indent", type=int, default=2, show_default=True, help="JSON indentation of the output")
@click.option("--log-level", help="Overrides LOG_LEVEL for this run")
def main(
    definition_file: str,
    trigger_input: Optional[str],
    execution_id: Optional[str],
    indent: int,
    log_level: Optional[str],
) -> None:
    """Execute a workflow definition file and print the result as JSON.

    Exits with status 1 when any node failed.
    """
    setup_logging(stream=sys.stderr, level=log_level)

    try:
        with open(definition_file, encoding="utf-8") as fh:
            definition = json.load(fh)
    except ValueError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="DEFINITION_FILE")
    if not isinstance(definition, dict):
        raise click.BadParameter("must contain a JSON object", param_hint="DEFINITION_FILE")

    try:
        payload = parse_json_object(trigger_input, "--trigger-input") if trigger_input else None
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--trigger-input")

    result = run_workflow_sync(
        definition,
        trigger_input=payload,
        execution_id=execution_id or str(uuid.uuid4()),
    )
    click.echo(json.dumps(result, indent=indent))
    if not result.get("success"):
        sys.exit(1)


if __name__ == "__main__":
    main()
