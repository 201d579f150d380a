"""
Fluent builder for orchestration plans
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from ..errors import InvalidStepInputError, PlanConstructionError
from ..logging.config import get_logger
from ..models.identifiers import StepId
from ..models.plan import Plan, PlanSettings, PlanType
from ..models.step import ExecutionStep, RetrySettings, StepKind, parse_step_input

logger = get_logger(__name__)

DependsOn = Optional[Union[str, Iterable[str]]]


def _as_dependency_list(depends_on: DependsOn) -> List[str]:
    if depends_on is None:
        return []
    if isinstance(depends_on, str):
        return [depends_on]
    return list(depends_on)


def _reparent(steps: List[Dict[str, Any]], parent: StepId, start: int = 1) -> List[Dict[str, Any]]:
    """Re-key serialised sub-steps as children of ``parent``, remapping internal dependencies"""
    mapping = {sub["id"]: StepId.child(parent, start + offset) for offset, sub in enumerate(steps)}
    result = []
    for sub in steps:
        dependencies = sub.get("dependencies", [])
        unknown = [dep for dep in dependencies if dep not in mapping]
        if unknown:
            raise PlanConstructionError(
                f"parallel sub-step {sub['id']} depends on steps outside its branch: {unknown}",
                [sub["id"]]
            )
        new = dict(sub, id=mapping[sub["id"]], dependencies=[mapping[dep] for dep in dependencies])
        if sub.get("kind") == StepKind.PARALLEL.value:
            new["input"] = dict(sub["input"], steps=_reparent(sub["input"]["steps"], new["id"]))
        result.append(new)
    return result


def validate_payloads(steps: List[ExecutionStep]) -> None:
    """Check every payload, including those nested in parallel steps"""
    for step in steps:
        try:
            payload = parse_step_input(step)
        except InvalidStepInputError as e:
            raise PlanConstructionError(e.message, [step.id])
        if step.kind == StepKind.PARALLEL:
            try:
                children = payload.sub_steps()
            except ValidationError as e:
                raise PlanConstructionError(f"invalid sub-step in {step.id}: {e.errors()[0]['msg']}", [step.id])
            ids = {child.id for child in children}
            for child in children:
                if child.id.parent != step.id:
                    raise PlanConstructionError(
                        f"sub-step {child.id} is not a child of {step.id}", [child.id]
                    )
                if any(dep not in ids for dep in child.dependencies):
                    raise PlanConstructionError(
                        f"sub-step {child.id} depends on steps outside its group", [child.id]
                    )
            cycle = Plan(steps=children).find_cycle()
            if cycle:
                raise PlanConstructionError(f"dependency cycle: {' -> '.join(cycle)}", list(dict.fromkeys(cycle)))
            validate_payloads(children)


class PlanBuilder:
    """
    Accumulates steps and settings, then validates them into a Plan.

    Step ids come from a counter owned by the builder instance, so two
    builders never share a sequence. A builder is single-use and is not
    safe for concurrent mutation.
    """

    def __init__(self, plan_id: Optional[str] = None, plan_type: PlanType = PlanType.FIXED):
        self._id = plan_id
        self._type = plan_type
        self._name = ""
        self._description = ""
        self._context: Dict[str, Any] = {}
        self._settings: Dict[str, Any] = {}
        self._steps: List[ExecutionStep] = []
        self._sequence = 0
        self._built = False

    @property
    def last_step_id(self) -> Optional[StepId]:
        return self._steps[-1].id if self._steps else None

    @property
    def steps(self) -> List[ExecutionStep]:
        return list(self._steps)

    def _next_id(self) -> StepId:
        self._sequence += 1
        return StepId.new(self._sequence)

    def with_id(self, plan_id: str) -> "PlanBuilder":
        self._id = plan_id
        return self

    def with_type(self, plan_type: PlanType) -> "PlanBuilder":
        self._type = plan_type
        return self

    def with_name(self, name: str) -> "PlanBuilder":
        self._name = name
        return self

    def with_description(self, description: str) -> "PlanBuilder":
        self._description = description
        return self

    def with_context(self, key: str, value: Any) -> "PlanBuilder":
        self._context[key] = value
        return self

    def with_settings(self, settings: Optional[PlanSettings] = None, **overrides) -> "PlanBuilder":
        if settings is not None:
            self._settings.update(settings.model_dump(exclude_unset=True))
        self._settings.update(overrides)
        return self

    def add_step(self, step: ExecutionStep) -> "PlanBuilder":
        """Add a fully formed step; keeps the id counter ahead of explicit ids"""
        sort_key = step.id.sort_key
        if sort_key[0] == 0 and len(sort_key[1]) == 1:
            self._sequence = max(self._sequence, sort_key[1][0])
        self._steps.append(step)
        return self

    def _add(
        self,
        kind: StepKind,
        payload: Dict[str, Any],
        depends_on: DependsOn,
        output_variable: Optional[str],
        name: Optional[str] = None,
        description: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetrySettings] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> "PlanBuilder":
        step = ExecutionStep(
            id=self._next_id(),
            kind=kind,
            input=payload,
            dependencies=_as_dependency_list(depends_on),
            output_variable=output_variable,
            name=name,
            description=description,
            timeout=timeout,
            retry_policy=retry_policy,
            metadata=metadata or {}
        )
        self._steps.append(step)
        return self

    def add_llm_step(
        self,
        prompt: str,
        depends_on: DependsOn = None,
        function: Optional[str] = None,
        output_variable: Optional[str] = None,
        **options
    ) -> "PlanBuilder":
        payload = {"prompt": prompt}
        if function:
            payload["function"] = function
        return self._add(StepKind.LLM_CALL, payload, depends_on, output_variable, **options)

    def add_tool_step(
        self,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        depends_on: DependsOn = None,
        output_variable: Optional[str] = None,
        **options
    ) -> "PlanBuilder":
        payload = {"tool": tool_name, "arguments": dict(arguments or {})}
        return self._add(StepKind.TOOL_CALL, payload, depends_on, output_variable, **options)

    def add_parallel_steps(
        self,
        *configure: Callable[["PlanBuilder"], Any],
        depends_on: DependsOn = None,
        output_variable: Optional[str] = None,
        **options
    ) -> "PlanBuilder":
        """
        Add one parallel step whose sub-steps come from nested builders.

        Each callable receives a fresh builder. The steps of all branches
        are flattened into the composite payload and re-keyed as children
        of the composite id.
        """
        if not configure:
            raise PlanConstructionError("add_parallel_steps needs at least one branch")

        composite_id = self._next_id()
        sub_steps: List[Dict[str, Any]] = []
        for branch in configure:
            nested = PlanBuilder()
            branch(nested)
            if not nested._steps:
                raise PlanConstructionError(f"parallel branch of {composite_id} added no steps", [composite_id])
            serialised = [s.model_dump(mode="json", exclude_none=True) for s in nested._steps]
            sub_steps.extend(_reparent(serialised, composite_id, start=len(sub_steps) + 1))

        step = ExecutionStep(
            id=composite_id,
            kind=StepKind.PARALLEL,
            input={"steps": sub_steps},
            dependencies=_as_dependency_list(depends_on),
            output_variable=output_variable,
            **options
        )
        self._steps.append(step)
        return self

    def build(self) -> Plan:
        """Validate accumulated steps and produce the plan"""
        if self._built:
            raise PlanConstructionError("builder has already produced a plan")
        if not self._steps:
            raise PlanConstructionError("plan must contain at least one step")

        seen = set()
        duplicates = []
        for step in self._steps:
            if step.id in seen:
                duplicates.append(step.id)
            seen.add(step.id)
        if duplicates:
            raise PlanConstructionError(f"duplicate step ids: {duplicates}", duplicates)

        validate_payloads(self._steps)

        plan_kwargs: Dict[str, Any] = {
            "type": self._type,
            "name": self._name,
            "description": self._description,
            "steps": self._steps,
            "settings": PlanSettings(**self._settings),
            "context": dict(self._context),
        }
        if self._id:
            plan_kwargs["id"] = self._id
        plan = Plan(**plan_kwargs)

        missing = plan.missing_dependencies()
        if missing:
            raise PlanConstructionError(
                f"steps reference unknown dependencies: {missing}",
                list(missing.keys())
            )

        cycle = plan.find_cycle()
        if cycle:
            raise PlanConstructionError(
                f"dependency cycle: {' -> '.join(cycle)}",
                list(dict.fromkeys(cycle))
            )

        self._built = True
        logger.debug("Plan built", plan_id=plan.id, plan_type=plan.type, steps=len(plan.steps))
        return plan
