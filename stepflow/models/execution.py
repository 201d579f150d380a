"""
Run-time execution state and results
"""

import threading
from typing import Any, Dict, List, Optional, Set
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from .identifiers import StepId
from .plan import PlanStatus
from .step import StepKind, StepStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


class HistoryEntry(BaseModel):
    """Append-only record of one terminal step outcome"""
    step_id: StepId = Field(..., description="Step that ran")
    parent_id: Optional[StepId] = Field(None, description="Enclosing parallel step, if any")
    kind: StepKind = Field(..., description="Step kind")
    target: Optional[str] = Field(None, description="Tool or LLM function name")
    status: StepStatus = Field(..., description="completed or failed")
    input: Dict[str, Any] = Field(default_factory=dict, description="Payload after variable substitution")
    output: Any = Field(None, description="Step output")
    error: Optional[str] = Field(None, description="Error message")
    error_type: Optional[str] = Field(None, description="Exception class name")
    attempts: int = Field(default=1, description="Invocations made by the retry layer")
    started_at: datetime = Field(default_factory=_now)
    finished_at: datetime = Field(default_factory=_now)
    duration_ms: int = Field(default=0, description="Wall-clock duration")

    model_config = ConfigDict(use_enum_values=True)


class ExecutionContext(BaseModel):
    """
    Mutable state of one plan run.

    The completed and failed sets are the source of truth for step
    status when a run is resumed. All mutations go through the methods
    below, which hold a lock so concurrent completions never drop an
    update.
    """
    session_id: str = Field(..., description="Execution session identifier")
    plan_id: str = Field(..., description="Plan being executed")
    status: PlanStatus = Field(default=PlanStatus.READY, description="Run status")
    completed: Set[StepId] = Field(default_factory=set, description="Ids of completed steps")
    failed: Set[StepId] = Field(default_factory=set, description="Ids of failed steps")
    variables: Dict[str, Any] = Field(default_factory=dict, description="Scratch space")
    history: List[HistoryEntry] = Field(default_factory=list, description="Append-only step history")
    error: Optional[str] = Field(None, description="First blocking error of the run")
    started_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    model_config = ConfigDict(use_enum_values=True)

    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    def has_entry(self, step_id: str) -> bool:
        return any(entry.step_id == step_id for entry in self.history)

    def record_success(self, entry: HistoryEntry, output_variable: Optional[str] = None) -> bool:
        """Record a completed step. Returns False when the step already has an entry"""
        with self._lock:
            if self.has_entry(entry.step_id):
                return False
            self.history.append(entry)
            self.completed.add(entry.step_id)
            self.failed.discard(entry.step_id)
            if output_variable:
                self.variables[output_variable] = entry.output
            self.updated_at = _now()
            return True

    def record_failure(self, entry: HistoryEntry) -> bool:
        """Record a failed step. Returns False when the step already has an entry"""
        with self._lock:
            if self.has_entry(entry.step_id):
                return False
            self.history.append(entry)
            self.failed.add(entry.step_id)
            if self.error is None:
                self.error = entry.error
            self.updated_at = _now()
            return True

    def set_status(self, status: PlanStatus, error: Optional[str] = None) -> None:
        with self._lock:
            self.status = status
            if error and self.error is None:
                self.error = error
            self.updated_at = _now()

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready copy taken under the lock"""
        with self._lock:
            return self.model_dump(mode="json")

    def entries_for(self, step_id: str) -> List[HistoryEntry]:
        return [entry for entry in self.history if entry.step_id == step_id]


class PlanResult(BaseModel):
    """Outcome of a plan run"""
    plan_id: str = Field(..., description="Plan identifier")
    session_id: str = Field(..., description="Execution session identifier")
    status: PlanStatus = Field(..., description="Final status")
    completed_steps: int = Field(default=0)
    failed_steps: int = Field(default=0)
    skipped_steps: int = Field(default=0)
    pending_steps: int = Field(default=0)
    duration_ms: int = Field(default=0)
    final_output: Any = Field(None, description="Sink step output, or map of sink outputs")
    error_message: Optional[str] = Field(None, description="First blocking error")

    model_config = ConfigDict(use_enum_values=True)

    @property
    def success(self) -> bool:
        return self.status == PlanStatus.COMPLETED
