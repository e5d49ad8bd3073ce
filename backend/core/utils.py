"""
Utility functions for the workflow execution engine.

Includes:
- Node id sanitization
- Value rendering for template substitution
- Epoch time helper
- Exception message extraction
"""

import json
import re
import time
from typing import Any

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def sanitize_node_id(node_id: str) -> str:
    """
    Sanitize a node id for use as an output map key.

    Every character outside [a-zA-Z0-9] becomes an underscore.

    Args:
        node_id: Raw node identifier

    Returns:
        Sanitized identifier
    """
    return _NON_ALNUM.sub("_", str(node_id))


def to_display_string(value: Any) -> str:
    """
    Render a value the way it is substituted into a template.

    None renders as an empty string, mappings and sequences as compact
    JSON, booleans in lowercase, everything else via str().
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def error_message(exc: BaseException) -> str:
    """Return a readable message for an exception, never an empty string."""
    message = str(exc).strip()
    return message or exc.__class__.__name__


def epoch_ms() -> int:
    """Milliseconds since the Unix epoch."""
    return int(time.time() * 1000)


def parse_json_object(value: Any, name: str) -> dict:
    """
    Accept a mapping or JSON object text from a node config field.

    Empty values yield an empty dict.

    Raises:
        ValueError: If the value is not a JSON object
    """
    if value is None or value == "":
        return {}
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be a JSON object")
    return value
