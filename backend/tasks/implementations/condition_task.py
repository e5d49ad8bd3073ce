"""Condition step: gates downstream nodes on an already evaluated expression.

The dispatcher evaluates the expression before this step runs; the step
only reports the outcome so it shows up in the node's output.
"""

from typing import Any, Dict, Optional

from tasks.base_task import BaseTask, TaskResult
from workflow.models import StepContext


class ConditionTask(BaseTask):
    """Report a condition result.

    Config:
        condition: Evaluated boolean
        expression: Original expression text (for logs)
        values: Resolved reference values keyed by reference text
    """

    action_type = "Condition"
    display_name = "Condition"
    description = "Continue only when an expression is true"
    envelope = False

    async def execute(self, config: Dict[str, Any], context: Optional[StepContext] = None) -> TaskResult:
        output: Dict[str, Any] = {"condition": config.get("condition") is True}
        if config.get("expression") is not None:
            output["expression"] = config["expression"]
        if config.get("values"):
            output["values"] = config["values"]
        return TaskResult(success=True, output=output)


async def condition_step(step_input: Dict[str, Any]) -> Dict[str, Any]:
    return await ConditionTask().run(step_input)
