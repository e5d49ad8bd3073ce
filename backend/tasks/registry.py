"""
Step Registry: maps action types to executable step functions.

Plugins describe their steps with a StepDescriptor and add them through
``register(registry, descriptor)``. The step function is resolved once,
when the descriptor is registered; dispatch never imports anything.
"""

import importlib
from dataclasses import dataclass
from types import ModuleType
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from core.constants import SystemAction
from core.exceptions import StepExportError, UnknownActionError

logger = structlog.get_logger(__name__)

StepFunction = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class StepDescriptor:
    """Declares where the step function for an action type lives."""

    action_type: str
    module: str
    export_name: str
    label: str = ""
    description: str = ""
    loader: Optional[Callable[[], ModuleType]] = None

    def load(self) -> ModuleType:
        if self.loader is not None:
            return self.loader()
        return importlib.import_module(self.module)


@dataclass
class RegisteredStep:
    descriptor: StepDescriptor
    function: Optional[StepFunction]

    @property
    def label(self) -> str:
        return self.descriptor.label or self.descriptor.action_type


class StepRegistry:
    """Central registry for all step implementations of one engine."""

    def __init__(self):
        self._steps: Dict[str, RegisteredStep] = {}
        self._aliases: Dict[str, str] = {}

    def add(self, descriptor: StepDescriptor) -> RegisteredStep:
        """Load the descriptor's module and bind its exported step function."""
        module = descriptor.load()
        function = getattr(module, descriptor.export_name, None)
        if not callable(function):
            logger.warning(
                "step_export_missing",
                action_type=descriptor.action_type,
                export_name=descriptor.export_name,
            )
            function = None

        if descriptor.action_type in self._steps:
            logger.info("step_replaced", action_type=descriptor.action_type)
        entry = RegisteredStep(descriptor=descriptor, function=function)
        self._steps[descriptor.action_type] = entry
        return entry

    def add_alias(self, legacy_name: str, action_type: str) -> None:
        """Map an old action name to its current action type."""
        self._aliases[legacy_name] = action_type

    def canonical(self, action_type: str) -> str:
        return self._aliases.get(action_type, action_type)

    def resolve_step(self, action_type: str) -> Optional[StepDescriptor]:
        """Look up the descriptor for an action type (aliases honored)."""
        entry = self._steps.get(self.canonical(action_type))
        return entry.descriptor if entry else None

    def get_function(self, action_type: str) -> StepFunction:
        """Return the bound step function.

        Raises:
            UnknownActionError: If nothing is registered for the action type
            StepExportError: If the module lacks the declared export
        """
        entry = self._steps.get(self.canonical(action_type))
        if entry is None:
            raise UnknownActionError(action_type, self.available_types)
        if entry.function is None:
            raise StepExportError(action_type, entry.descriptor.export_name)
        return entry.function

    def action_label(self, action_type: str) -> Optional[str]:
        entry = self._steps.get(self.canonical(action_type))
        return entry.label if entry else None

    def list_all(self) -> List[Dict[str, Any]]:
        """List all registered steps with metadata."""
        return [
            {
                "action_type": action_type,
                "label": entry.label,
                "description": entry.descriptor.description,
                "export_name": entry.descriptor.export_name,
                "loaded": entry.function is not None,
            }
            for action_type, entry in self._steps.items()
        ]

    @property
    def available_types(self) -> List[str]:
        return list(self._steps.keys())


def register(registry: StepRegistry, descriptor: StepDescriptor) -> RegisteredStep:
    """Register a step descriptor with a registry."""
    return registry.add(descriptor)


BUILTIN_STEPS = (
    StepDescriptor(
        action_type=SystemAction.HTTP_REQUEST.value,
        module="tasks.implementations.http_task",
        export_name="http_request_step",
        label="HTTP Request",
        description="Make HTTP requests to APIs and web services",
    ),
    StepDescriptor(
        action_type=SystemAction.DATABASE_QUERY.value,
        module="tasks.implementations.database_task",
        export_name="database_query_step",
        label="Database Query",
        description="Run a SQL query and return the rows",
    ),
    StepDescriptor(
        action_type=SystemAction.CONDITION.value,
        module="tasks.implementations.condition_task",
        export_name="condition_step",
        label="Condition",
        description="Continue only when an expression is true",
    ),
    StepDescriptor(
        action_type=SystemAction.LOOP.value,
        module="tasks.implementations.loop_task",
        export_name="loop_step",
        label="Loop",
        description="Split data into batches and iterate over each batch",
    ),
    StepDescriptor(
        action_type=SystemAction.SWITCH.value,
        module="tasks.implementations.switch_task",
        export_name="switch_step",
        label="Switch",
        description="Evaluate rules or expressions to pick an output",
    ),
)


def register_builtin_steps(registry: StepRegistry) -> StepRegistry:
    """Register all built-in step types."""
    for descriptor in BUILTIN_STEPS:
        register(registry, descriptor)
    return registry


def create_default_registry(aliases: Optional[Dict[str, str]] = None) -> StepRegistry:
    """Create a registry populated with the built-in steps.

    Args:
        aliases: Legacy action names mapped to current action types
    """
    registry = register_builtin_steps(StepRegistry())
    for legacy_name, action_type in (aliases or {}).items():
        registry.add_alias(legacy_name, action_type)
    return registry
