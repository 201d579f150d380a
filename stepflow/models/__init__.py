"""
Pydantic models for stepflow
"""

from .identifiers import StepId, sort_step_ids
from .step import (
    StepKind,
    StepStatus,
    BackoffStrategy,
    RetrySettings,
    ExecutionStep,
    LlmCallInput,
    ToolCallInput,
    ParallelInput,
    parse_step_input,
    step_target
)
from .plan import Plan, PlanType, PlanStatus, PlanSettings
from .execution import ExecutionContext, HistoryEntry, PlanResult

__all__ = [
    "StepId",
    "sort_step_ids",
    "StepKind",
    "StepStatus",
    "BackoffStrategy",
    "RetrySettings",
    "ExecutionStep",
    "LlmCallInput",
    "ToolCallInput",
    "ParallelInput",
    "parse_step_input",
    "step_target",
    "Plan",
    "PlanType",
    "PlanStatus",
    "PlanSettings",
    "ExecutionContext",
    "HistoryEntry",
    "PlanResult"
]
