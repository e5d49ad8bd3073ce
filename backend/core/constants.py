"""Constants and enums for the workflow execution engine."""

from enum import Enum


class NodeKind(str, Enum):
    """Kind of a workflow graph node."""

    TRIGGER = "trigger"
    ACTION = "action"


class StepStatus(str, Enum):
    """Status of a single node invocation."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class ExecutionStatus(str, Enum):
    """Overall status handed to the completion hook."""

    SUCCESS = "success"
    ERROR = "error"


class SystemAction(str, Enum):
    """Action types built into the engine."""

    CONDITION = "Condition"
    LOOP = "Loop"
    HTTP_REQUEST = "HTTP Request"
    DATABASE_QUERY = "Database Query"
    SWITCH = "Switch"


# Keys checked, in order, when a loop item source is an object
LOOP_ARRAY_KEYS = ("rows", "data", "items", "results")

# Keys of the standard step result envelope; referencing one disables auto-unwrap
RESULT_ENVELOPE_KEYS = ("success", "data", "error")

# Config keys the engine never merges from upstream outputs
RESERVED_CONFIG_KEYS = ("condition",)
