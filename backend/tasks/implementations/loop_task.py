"""Loop step: describes how a resolved item list splits into batches.

The engine drives the actual iteration: it reads ``items``, ``batchSize``
and ``totalBatches`` from this step's output and runs the downstream
subgraph once per batch.
"""

import math
from typing import Any, Dict, Optional

from tasks.base_task import BaseTask, TaskResult
from workflow.models import StepContext


class LoopTask(BaseTask):
    """Compute the batch plan for a loop node.

    Config:
        items: Resolved list of items
        batchSize: Positive batch size
        currentBatchIndex: Batch to start from (default 0)
        expression: Original item source text, if any
    """

    action_type = "Loop"
    display_name = "Loop"
    description = "Split data into batches and iterate over each batch"
    envelope = False

    async def execute(self, config: Dict[str, Any], context: Optional[StepContext] = None) -> TaskResult:
        items = config.get("items")
        if not isinstance(items, list):
            return TaskResult(success=False, error="Loop items must resolve to a list")

        batch_size = config.get("batchSize") or 1
        if not isinstance(batch_size, int) or batch_size < 1:
            return TaskResult(success=False, error=f"Invalid batch size: {batch_size!r}")

        output = {
            "items": items,
            "totalItems": len(items),
            "batchSize": batch_size,
            "totalBatches": math.ceil(len(items) / batch_size),
            "currentBatchIndex": config.get("currentBatchIndex") or 0,
        }
        if config.get("expression") is not None:
            output["expression"] = config["expression"]
        return TaskResult(success=True, output=output)


async def loop_step(step_input: Dict[str, Any]) -> Dict[str, Any]:
    return await LoopTask().run(step_input)
