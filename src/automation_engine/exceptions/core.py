class AutomationEngineError(Exception):
    pass


class ConfigurationError(AutomationEngineError):
    """Invalid graph / condition / sensor setup. Fatal for the pass that hit it."""


class OperandEvaluationError(AutomationEngineError):
    """A single condition node failed; contained at that node."""

    def __init__(self, entity_key: str, node_name: str, cause: BaseException):
        self.entity_key = entity_key
        self.node_name = node_name
        self.cause = cause
        super().__init__(f"[{entity_key}] {node_name} raised {type(cause).__name__}: {cause}")


class MissingPriorStateError(AutomationEngineError):
    """No previous-tick record is available; temporal nodes degrade instead of failing."""


class TickAbandonedError(AutomationEngineError):
    """Tick was cancelled before completion; nothing from it may be committed."""


class FatalError(AutomationEngineError):
    """Non-recoverable failure requiring supervised shutdown."""
