"""Switch step: picks an output index from ordered routing rules.

Rules mode compares ``value`` against each rule in order and reports the
first match; expression mode takes an already resolved ``outputIndex``.
"""

import json
import re
from typing import Any, Dict, List, Optional

from core.utils import to_display_string
from tasks.base_task import BaseTask, TaskResult
from workflow.models import StepContext


def _to_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return float("nan")


def _regex(value: str, pattern: str) -> bool:
    try:
        return re.search(pattern, value) is not None
    except re.error:
        return False


OPERATORS = {
    "equals": lambda v, o: v == o,
    "notEquals": lambda v, o: v != o,
    "contains": lambda v, o: o in v,
    "notContains": lambda v, o: o not in v,
    "greaterThan": lambda v, o: _to_float(v) > _to_float(o),
    "lessThan": lambda v, o: _to_float(v) < _to_float(o),
    "startsWith": lambda v, o: v.startswith(o),
    "endsWith": lambda v, o: v.endswith(o),
    "regex": _regex,
    "isEmpty": lambda v, o: v == "",
    "isNotEmpty": lambda v, o: v != "",
}


def apply_operator(value: str, operator: str, operand: str) -> bool:
    check = OPERATORS.get(operator)
    return check(value, operand) if check else False


def parse_rules(rules: Any) -> List[Dict[str, Any]]:
    """Rules arrive as a list or as JSON text from a template field."""
    if isinstance(rules, str):
        rules = json.loads(rules) if rules.strip() else []
    if not isinstance(rules, list):
        raise ValueError("Switch rules must be a JSON array")
    return [r for r in rules if isinstance(r, dict)]


class SwitchTask(BaseTask):
    """Evaluate routing rules.

    Config:
        mode: "rules" (default) or "expression"
        value: Value compared in rules mode
        rules: [{"output": 0, "operator": "equals", "value": "active", "name": "Active"}]
        outputIndex: Resolved output index in expression mode
    """

    action_type = "Switch"
    display_name = "Switch"
    description = "Evaluate rules or expressions to pick an output"
    envelope = False

    async def execute(self, config: Dict[str, Any], context: Optional[StepContext] = None) -> TaskResult:
        mode = config.get("mode") or "rules"

        if mode == "expression":
            index = config.get("outputIndex")
            if isinstance(index, str) and index.strip().lstrip("-").isdigit():
                index = int(index)
            if not isinstance(index, int) or isinstance(index, bool):
                index = -1
            return TaskResult(success=True, output={
                "matchedOutput": index,
                "matchedRuleIndex": -1,
                "matchedRuleName": "",
                "value": to_display_string(config.get("outputIndex")),
                "outputCount": index + 1 if index >= 0 else 0,
            })

        value = to_display_string(config.get("value"))
        rules = parse_rules(config.get("rules", []))
        output_count = max([int(r.get("output", 0)) for r in rules] + [0]) + 1

        for i, rule in enumerate(rules):
            operand = to_display_string(rule.get("value"))
            if apply_operator(value, rule.get("operator", ""), operand):
                return TaskResult(success=True, output={
                    "matchedOutput": int(rule.get("output", 0)),
                    "matchedRuleIndex": i,
                    "matchedRuleName": rule.get("name") or "",
                    "value": value,
                    "outputCount": output_count,
                })

        return TaskResult(success=True, output={
            "matchedOutput": -1,
            "matchedRuleIndex": -1,
            "matchedRuleName": "",
            "value": value,
            "outputCount": output_count,
        })


async def switch_step(step_input: Dict[str, Any]) -> Dict[str, Any]:
    return await SwitchTask().run(step_input)
