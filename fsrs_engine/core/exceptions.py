"""
Error taxonomy for the scheduling engine.

- ParameterError: malformed input that is unsafe to auto-repair (e.g. a rating
  outside 1..4). Never retried.
- VersionError: a card produced by an incompatible engine version.
- ComputationError: an unexpected failure inside the engine, carrying the
  operation name and the inputs that triggered it.
"""
from typing import Any, Dict, Optional


class FSRSError(Exception):
    """Base class for all engine errors"""

    def __init__(self, message: str, code: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.context = context or {}


class ParameterError(FSRSError):
    """Invalid caller-supplied value"""

    def __init__(self, message: str, parameter_name: str, value: Any):
        super().__init__(
            message, "PARAMETER_ERROR", {"parameter_name": parameter_name, "value": value}
        )
        self.parameter_name = parameter_name
        self.value = value


class VersionError(FSRSError):
    """Card version does not match the engine version"""

    def __init__(self, expected: str, actual: Any):
        super().__init__(
            f"Card version mismatch: expected {expected}, got {actual}",
            "VERSION_MISMATCH",
            {"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class ComputationError(FSRSError):
    """Unexpected failure while computing a schedule"""

    def __init__(self, message: str, operation: str, input: Dict[str, Any]):
        super().__init__(message, "COMPUTATION_ERROR", {"operation": operation, "input": input})
        self.operation = operation
        self.input = input
