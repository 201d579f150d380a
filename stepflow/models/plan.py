"""
Models for orchestration plans
"""

import uuid
from typing import Any, Dict, Iterable, List, Optional, Set
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .identifiers import StepId, sort_step_ids
from .step import ExecutionStep, RetrySettings, StepStatus


class PlanType(str, Enum):
    """How the plan was produced"""
    FIXED = "fixed"         # Built in code or from a document
    PLANNER = "planner"     # Produced by a planner LLM
    REACT = "react"         # Extended step by step while running


class PlanStatus(str, Enum):
    """Plan lifecycle, mutated only by the flow controller"""
    READY = "ready"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PlanSettings(BaseModel):
    """Execution settings for one plan"""
    max_parallel_steps: int = Field(default=5, ge=1, description="Upper bound on concurrently running steps")
    stop_on_first_failure: bool = Field(default=True, description="Stop scheduling after the first terminal failure")
    default_retry_policy: Optional[RetrySettings] = Field(None, description="Used by steps without their own policy")
    max_execution_time: Optional[float] = Field(None, gt=0, description="Whole-plan deadline in seconds")
    log_level: str = Field(default="INFO", description="Informational")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Plan(BaseModel):
    """DAG of steps plus the settings for one run"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Plan identifier")
    type: PlanType = Field(default=PlanType.FIXED, description="How the plan was produced")
    name: str = Field(default="", description="Plan name")
    description: str = Field(default="", description="Plan description")
    version: str = Field(default="1.0.0", description="Plan format version")
    steps: List[ExecutionStep] = Field(default_factory=list, description="Steps in insertion order")
    settings: PlanSettings = Field(default_factory=PlanSettings, description="Execution settings")
    context: Dict[str, Any] = Field(default_factory=dict, description="Initial scratch space variables")
    status: PlanStatus = Field(default=PlanStatus.READY, description="Lifecycle status")
    created_at: datetime = Field(default_factory=_now)

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)

    @property
    def step_ids(self) -> List[StepId]:
        return [step.id for step in self.steps]

    def get_step(self, step_id: str) -> Optional[ExecutionStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def validate_execution_order(self) -> bool:
        """False iff some step references a dependency that is not in the plan"""
        ids = set(self.step_ids)
        return all(dep in ids for step in self.steps for dep in step.dependencies)

    def missing_dependencies(self) -> Dict[str, List[str]]:
        ids = set(self.step_ids)
        missing = {}
        for step in self.steps:
            unknown = [dep for dep in step.dependencies if dep not in ids]
            if unknown:
                missing[step.id] = unknown
        return missing

    def get_executable_steps(self, completed: Iterable[str]) -> List[ExecutionStep]:
        """
        Steps that are pending and whose dependencies have all completed.

        Pure: never mutates the plan. Results are in ascending StepId order.
        """
        done = set(completed)
        ready = [
            step for step in self.steps
            if step.status == StepStatus.PENDING and all(dep in done for dep in step.dependencies)
        ]
        return sorted(ready, key=lambda s: s.id.sort_key)

    def find_cycle(self) -> Optional[List[StepId]]:
        """Return one dependency cycle as a list of ids, or None"""
        graph = {step.id: [d for d in step.dependencies] for step in self.steps}
        visiting: Set[str] = set()
        visited: Set[str] = set()
        path: List[StepId] = []

        def visit(node) -> Optional[List[StepId]]:
            visiting.add(node)
            path.append(node)
            for dep in graph.get(node, []):
                if dep in visiting:
                    return path[path.index(dep):] + [dep]
                if dep not in visited and dep in graph:
                    cycle = visit(dep)
                    if cycle:
                        return cycle
            visiting.discard(node)
            visited.add(node)
            path.pop()
            return None

        for step_id in sort_step_ids(graph):
            if step_id not in visited:
                cycle = visit(step_id)
                if cycle:
                    return cycle
        return None

    def transitive_dependencies(self, step_id: str) -> Set[StepId]:
        """All ids the step depends on, directly or indirectly"""
        result: Set[StepId] = set()
        stack = list(self.get_step(step_id).dependencies) if self.get_step(step_id) else []
        while stack:
            dep = stack.pop()
            if dep in result:
                continue
            result.add(dep)
            step = self.get_step(dep)
            if step:
                stack.extend(step.dependencies)
        return result

    def visible_outputs(self, step_id: str) -> Set[str]:
        """Scratch space keys a step may read: outputs of its transitive dependencies"""
        names = set()
        for dep in self.transitive_dependencies(step_id):
            step = self.get_step(dep)
            if step and step.output_variable:
                names.add(step.output_variable)
        return names

    def sink_steps(self) -> List[ExecutionStep]:
        """Steps no other step depends on"""
        depended_on = {dep for step in self.steps for dep in step.dependencies}
        return [step for step in self.steps if step.id not in depended_on]

    def dependents_of(self, step_id: str) -> List[ExecutionStep]:
        return [step for step in self.steps if step_id in step.dependencies]
