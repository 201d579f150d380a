"""
Error taxonomy for stepflow
"""

from typing import Any, Dict, List, Optional


class StepflowError(Exception):
    """Base class for all stepflow errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(StepflowError):
    """Configuration file could not be read or validated"""


class PlanConstructionError(StepflowError):
    """Plan could not be built: no steps, unknown dependencies or a cycle"""

    def __init__(self, message: str, step_ids: Optional[List[str]] = None):
        super().__init__(message, {"step_ids": step_ids or []})
        self.step_ids = step_ids or []


class TargetNotResolvedError(StepflowError):
    """No registered tool or LLM function matches the step target"""

    def __init__(self, kind: str, target: str):
        super().__init__(f"target not resolved: {kind} '{target}'", {"kind": kind, "target": target})
        self.kind = kind
        self.target = target


# Transient class: eligible for retry

class TransientError(StepflowError):
    """Failure that may succeed when retried (network blip, 5xx, rate limit)"""


class StepTimeoutError(StepflowError):
    """Operation exceeded its allotted time"""

    def __init__(self, timeout: float):
        super().__init__(f"operation timed out after {timeout}s", {"timeout": timeout})
        self.timeout = timeout


class CircuitBreakerOpenError(StepflowError):
    """Call rejected because the circuit for the target is open"""

    def __init__(self, name: str, retry_after: Optional[float] = None):
        super().__init__(
            f"circuit breaker '{name}' is open",
            {"circuit": name, "retry_after": retry_after}
        )
        self.name = name
        self.retry_after = retry_after


# Terminal step failures

class StepExecutionError(StepflowError):
    """Terminal failure while executing a step"""


class ToolExecutionError(StepExecutionError):
    """Tool reported a non-retryable failure"""


class LLMExecutionError(StepExecutionError):
    """LLM function reported a non-retryable failure"""


class InvalidStepInputError(StepExecutionError):
    """Step payload does not match the shape required by its kind"""


class VariableResolutionError(StepExecutionError):
    """Payload references a variable that is not in the scratch space"""

    def __init__(self, name: str):
        super().__init__(f"variable '{name}' is not defined", {"variable": name})
        self.name = name


# State store

class StateStoreError(StepflowError):
    """Base class for state store failures"""


class StateUnavailableError(StateStoreError):
    """State store could not be reached; carries the in-memory context if any"""

    def __init__(self, message: str, context: Any = None):
        super().__init__(message)
        self.context = context


class StateSerializationError(StateStoreError):
    """Stored value could not be serialised or deserialised"""


class SessionNotFoundError(StateStoreError):
    """No execution context stored for the session"""

    def __init__(self, session_id: str):
        super().__init__(f"session '{session_id}' not found", {"session_id": session_id})
        self.session_id = session_id


class StateTransactionError(StateStoreError):
    """Transaction was used in an invalid state or failed to commit"""

    def __init__(self, message: str, transaction_id: Optional[str] = None):
        super().__init__(message, {"transaction_id": transaction_id})
        self.transaction_id = transaction_id


# Cancellation

class OperationCancelledError(StepflowError):
    """Caller cancelled the operation; never retried"""

    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason or "operation was cancelled")
        self.reason = reason
