"""Template resolver for cross-step data references.

Resolves tokens of the form ``{{@<nodeId>:<Label>.<field>.<path>}}``
against the per-execution output map:

- ``{{@trigger-1:Webhook}}``            → whole output data of the node
- ``{{@http-1:Fetch users.users.0}}``   → a field inside the output data
- ``{{@http-1:Fetch users.users.length}}`` → size of an array or string
- ``{{@http-1:Fetch users.success}}``   → the envelope flag itself

Outputs shaped like the standard step envelope ``{success, data, error}``
are unwrapped transparently unless the path starts with one of the
envelope keys. Unknown nodes leave the token verbatim; failed field
traversal renders an empty string.
"""

import re
from typing import Any, Dict, Mapping, Optional, Tuple

from core.constants import RESULT_ENVELOPE_KEYS, RESERVED_CONFIG_KEYS
from core.utils import sanitize_node_id, to_display_string
from workflow.models import NodeOutput

TEMPLATE_PATTERN = re.compile(r"\{\{@([^:]+):([^}]+)\}\}")

Outputs = Mapping[str, NodeOutput]


def split_reference(rest: str) -> Tuple[str, Optional[str]]:
    """Split ``Label.field.path`` into (label, field_path or None)."""
    label, dot, field_path = rest.partition(".")
    return label, (field_path if dot else None)


def is_result_envelope(value: Any) -> bool:
    return isinstance(value, dict) and "success" in value and "data" in value


def resolve_field_path(data: Any, field_path: str) -> Any:
    """Walk ``field_path`` through ``data``; None when any segment is missing."""
    fields = field_path.split(".")
    current = data
    if is_result_envelope(current) and fields[0] not in RESULT_ENVELOPE_KEYS:
        current = current["data"]

    for name in fields:
        if isinstance(current, dict):
            current = current.get(name)
        elif isinstance(current, (list, tuple, str)) and name == "length":
            current = len(current)
        elif isinstance(current, (list, tuple)) and name.isdigit():
            index = int(name)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def lookup_reference(node_id: str, rest: str, outputs: Outputs) -> Tuple[bool, Any]:
    """Resolve one reference to its raw value.

    Returns:
        (found, value): found is False when the node has produced no output
    """
    output = outputs.get(sanitize_node_id(node_id))
    if output is None:
        return False, None

    _, field_path = split_reference(rest)
    if field_path is None or output.data is None:
        return True, output.data
    return True, resolve_field_path(output.data, field_path)


def resolve_template(value: Any, outputs: Outputs) -> Any:
    """Substitute every reference token in a string value.

    Non-string values pass through unchanged.
    """
    if not isinstance(value, str) or "{{@" not in value:
        return value

    def _substitute(match: "re.Match[str]") -> str:
        found, resolved = lookup_reference(match.group(1), match.group(2), outputs)
        if not found:
            return match.group(0)
        return to_display_string(resolved)

    return TEMPLATE_PATTERN.sub(_substitute, value)


def process_templates(
    config: Mapping[str, Any],
    outputs: Outputs,
    skip_keys: tuple = RESERVED_CONFIG_KEYS,
) -> Dict[str, Any]:
    """Resolve all top-level string values of a node config.

    Keys in ``skip_keys`` are copied verbatim; the condition evaluator
    performs its own substitution on them.
    """
    processed: Dict[str, Any] = {}
    for key, value in config.items():
        if key in skip_keys:
            processed[key] = value
        else:
            processed[key] = resolve_template(value, outputs)
    return processed
