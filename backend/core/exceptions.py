"""Custom exceptions for the workflow execution engine.

Every kind below is detected inside a component and converted into a
failed node result at the node boundary; none of them escapes a run.
"""


class EngineError(Exception):
    """Base exception for the workflow execution engine."""

    code: str = "engine_error"

    def __init__(self, message: str, code: str = None):
        """Initialize exception with message and machine-readable code.

        Args:
            message: Exception message
            code: Short error code, defaults to the class code
        """
        self.message = message
        if code:
            self.code = code
        super().__init__(self.message)


class ConfigurationError(EngineError):
    """A node is missing configuration it needs to run (e.g. its action type)."""

    code = "configuration_error"


class ValidationError(EngineError):
    """A condition expression is outside the allowed expression grammar."""

    code = "validation_error"


class ExpressionSyntaxError(ValidationError):
    """Condition expression could not be tokenized or parsed."""

    code = "expression_syntax_error"


class ExpressionEvaluationError(ValidationError):
    """Condition expression parsed but could not be evaluated."""

    code = "expression_evaluation_error"


class UnknownActionError(EngineError):
    """Action type is neither registered nor a system action."""

    code = "unknown_action"

    def __init__(self, action_type: str, available: list = None):
        self.action_type = action_type
        message = (
            f'Unknown action type: "{action_type}". '
            "This action is not registered in the step registry."
        )
        if available:
            message += f" Available actions: {', '.join(available)}."
        super().__init__(message)


class StepExportError(EngineError):
    """A step module was loaded but does not export the declared function."""

    code = "step_export_missing"

    def __init__(self, action_type: str, export_name: str):
        self.action_type = action_type
        self.export_name = export_name
        super().__init__(
            f'Step function "{export_name}" not found in module for action '
            f'"{action_type}". Check that the plugin exports the correct function name.'
        )


class StepExecutionError(EngineError):
    """A step raised, or returned an explicit failure result."""

    code = "step_failed"


class UnknownNodeKindError(EngineError):
    """Node kind is neither trigger nor action."""

    code = "unknown_node_kind"

    def __init__(self, kind: str, node_name: str):
        self.kind = kind
        super().__init__(
            f'Unknown node type "{kind}" in node "{node_name}". '
            'Expected "trigger" or "action".'
        )
