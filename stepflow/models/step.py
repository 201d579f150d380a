"""
Models for execution steps
"""

from typing import Any, Dict, List, Optional, Union
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .identifiers import StepId
from ..errors import InvalidStepInputError


class StepKind(str, Enum):
    """Kind of work a step performs"""
    LLM_CALL = "llm_call"
    TOOL_CALL = "tool_call"
    PARALLEL = "parallel"


class StepStatus(str, Enum):
    """Step lifecycle: pending -> running -> completed | failed | skipped"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STEP_STATUSES = (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED)


class BackoffStrategy(str, Enum):
    """Delay growth between retry attempts"""
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


class RetrySettings(BaseModel):
    """Retry configuration attached to a step or to plan settings"""
    max_attempts: int = Field(default=3, ge=1, description="Total attempts including the first")
    initial_delay: float = Field(default=1.0, ge=0, description="Delay before the second attempt, seconds")
    max_delay: float = Field(default=60.0, ge=0, description="Upper bound for any single delay, seconds")
    strategy: BackoffStrategy = Field(default=BackoffStrategy.EXPONENTIAL, description="Backoff strategy")
    retryable_errors: List[str] = Field(
        default_factory=list,
        description="Extra exception type names treated as transient"
    )

    model_config = ConfigDict(use_enum_values=True)


class ExecutionStep(BaseModel):
    """One schedulable unit of a plan"""
    id: StepId = Field(..., description="Unique id within the plan")
    kind: StepKind = Field(..., description="LLM call, tool call or parallel group")
    input: Dict[str, Any] = Field(default_factory=dict, description="Payload interpreted by the executor")
    dependencies: List[StepId] = Field(default_factory=list, description="Ids that must complete first")
    status: StepStatus = Field(default=StepStatus.PENDING, description="Lifecycle status")
    name: Optional[str] = Field(None, description="Human readable name")
    description: Optional[str] = Field(None, description="What the step is for")
    output_variable: Optional[str] = Field(None, description="Scratch space key for the result")
    retry_policy: Optional[RetrySettings] = Field(None, description="Overrides the plan default")
    timeout: Optional[float] = Field(None, gt=0, description="Per-attempt timeout in seconds")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Opaque to the engine")
    output: Any = Field(None, description="Result once completed")
    error: Optional[str] = Field(None, description="Error message once failed")
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)

    @field_validator("dependencies")
    @classmethod
    def _dedupe_dependencies(cls, value: List[StepId]) -> List[StepId]:
        seen = []
        for dep in value:
            if dep not in seen:
                seen.append(dep)
        return seen

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STEP_STATUSES

    def reset(self) -> None:
        """Return the step to pending, clearing run-time fields"""
        self.status = StepStatus.PENDING
        self.output = None
        self.error = None
        self.started_at = None
        self.completed_at = None


# Typed payloads, one per kind

class LlmCallInput(BaseModel):
    """Payload of an llm_call step"""
    prompt: str = Field(..., min_length=1, description="Prompt text, may contain {{variables}}")
    function: Optional[str] = Field(None, description="LLM function name; registry default when omitted")


class ToolCallInput(BaseModel):
    """Payload of a tool_call step"""
    tool: str = Field(..., min_length=1, description="Tool name")
    arguments: Dict[str, Any] = Field(default_factory=dict, description="Tool arguments")


class ParallelInput(BaseModel):
    """Payload of a parallel step: serialised sub-steps"""
    steps: List[Dict[str, Any]] = Field(..., min_length=1, description="Sub-step definitions")

    def sub_steps(self) -> List[ExecutionStep]:
        return [ExecutionStep.model_validate(s) for s in self.steps]


StepInput = Union[LlmCallInput, ToolCallInput, ParallelInput]

_INPUT_MODELS = {
    StepKind.LLM_CALL: LlmCallInput,
    StepKind.TOOL_CALL: ToolCallInput,
    StepKind.PARALLEL: ParallelInput,
}


def parse_step_input(step: ExecutionStep, payload: Optional[Dict[str, Any]] = None) -> StepInput:
    """Validate the payload of ``step`` against the model for its kind"""
    model = _INPUT_MODELS[StepKind(step.kind)]
    try:
        return model.model_validate(step.input if payload is None else payload)
    except ValidationError as e:
        raise InvalidStepInputError(
            f"invalid {step.kind} payload for {step.id}: {e.errors()[0]['msg']}",
            {"step_id": step.id}
        )


def step_target(step: ExecutionStep) -> Optional[str]:
    """Name of the tool or LLM function a step dispatches to, if present"""
    if step.kind == StepKind.TOOL_CALL:
        return step.input.get("tool")
    if step.kind == StepKind.LLM_CALL:
        return step.input.get("function")
    return None
