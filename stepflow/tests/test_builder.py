"""
Tests for the plan builder
"""

import pytest

from stepflow.errors import PlanConstructionError
from stepflow.models.identifiers import StepId
from stepflow.models.plan import PlanSettings, PlanType
from stepflow.models.step import ExecutionStep, RetrySettings, StepKind, parse_step_input
from stepflow.planning.builder import PlanBuilder


class TestPlanBuilder:
    """Test fluent plan construction"""

    def test_sequential_ids_and_dependencies(self):
        builder = PlanBuilder(plan_id="plan-1")
        builder.add_tool_step("search", {"q": "python"}, output_variable="results")
        first = builder.last_step_id
        builder.add_llm_step("Summarise {{results}}", depends_on=first)

        plan = builder.build()

        assert plan.id == "plan-1"
        assert plan.type == PlanType.FIXED
        assert plan.step_ids == ["step_0001", "step_0002"]
        assert plan.steps[1].dependencies == ["step_0001"]
        assert plan.steps[0].input == {"tool": "search", "arguments": {"q": "python"}}
        assert plan.steps[1].input == {"prompt": "Summarise {{results}}"}

    def test_last_step_id_empty(self):
        assert PlanBuilder().last_step_id is None

    def test_builders_do_not_share_counters(self):
        a = PlanBuilder().add_tool_step("x")
        b = PlanBuilder().add_tool_step("y")
        assert a.last_step_id == b.last_step_id == "step_0001"

    def test_step_options(self):
        retry = RetrySettings(max_attempts=5, initial_delay=0.1)
        plan = (
            PlanBuilder()
            .add_tool_step("fetch", name="Fetch", description="Fetch data", timeout=2.5, retry_policy=retry)
            .build()
        )
        step = plan.steps[0]
        assert step.name == "Fetch"
        assert step.timeout == 2.5
        assert step.retry_policy.max_attempts == 5

    def test_settings_and_metadata(self):
        plan = (
            PlanBuilder()
            .with_name("report")
            .with_description("weekly report")
            .with_type(PlanType.REACT)
            .with_context("team", "core")
            .with_settings(PlanSettings(max_parallel_steps=2), stop_on_first_failure=False)
            .add_tool_step("x")
            .build()
        )
        assert plan.name == "report"
        assert plan.type == PlanType.REACT
        assert plan.context == {"team": "core"}
        assert plan.settings.max_parallel_steps == 2
        assert plan.settings.stop_on_first_failure is False

    def test_zero_steps_rejected(self):
        with pytest.raises(PlanConstructionError):
            PlanBuilder().build()

    def test_unknown_dependency_rejected(self):
        builder = PlanBuilder().add_tool_step("x", depends_on="step_0042")
        with pytest.raises(PlanConstructionError) as exc_info:
            builder.build()
        assert exc_info.value.step_ids == ["step_0001"]

    def test_cycle_rejected(self):
        builder = PlanBuilder()
        builder.add_tool_step("a", depends_on="step_0002")
        builder.add_tool_step("b", depends_on="step_0001")
        with pytest.raises(PlanConstructionError) as exc_info:
            builder.build()
        assert "cycle" in exc_info.value.message
        assert set(exc_info.value.step_ids) == {"step_0001", "step_0002"}

    def test_duplicate_ids_rejected(self):
        builder = PlanBuilder()
        builder.add_step(ExecutionStep(id="step_0001", kind=StepKind.TOOL_CALL, input={"tool": "a"}))
        builder.add_step(ExecutionStep(id="step_0001", kind=StepKind.TOOL_CALL, input={"tool": "b"}))
        with pytest.raises(PlanConstructionError) as exc_info:
            builder.build()
        assert exc_info.value.step_ids == ["step_0001"]

    def test_invalid_payload_rejected(self):
        builder = PlanBuilder()
        builder.add_step(ExecutionStep(id="step_0001", kind=StepKind.LLM_CALL, input={"tool": "a"}))
        with pytest.raises(PlanConstructionError):
            builder.build()

    def test_explicit_ids_advance_counter(self):
        builder = PlanBuilder()
        builder.add_step(ExecutionStep(id="step_0005", kind=StepKind.TOOL_CALL, input={"tool": "a"}))
        builder.add_tool_step("b")
        assert builder.last_step_id == "step_0006"

    def test_single_use(self):
        builder = PlanBuilder().add_tool_step("x")
        builder.build()
        with pytest.raises(PlanConstructionError):
            builder.build()


class TestParallelSteps:
    """Test parallel step composition"""

    def test_branches_flattened_into_children(self):
        builder = PlanBuilder()
        builder.add_tool_step("prepare")
        builder.add_parallel_steps(
            lambda b: b.add_tool_step("left").add_llm_step("use left", depends_on="step_0001"),
            lambda b: b.add_tool_step("right"),
            depends_on="step_0001",
            output_variable="branches"
        )
        plan = builder.build()

        composite = plan.get_step("step_0002")
        assert composite.kind == StepKind.PARALLEL
        assert composite.dependencies == ["step_0001"]

        children = parse_step_input(composite).sub_steps()
        assert [c.id for c in children] == ["step_0002_01", "step_0002_02", "step_0002_03"]
        assert children[1].dependencies == ["step_0002_01"]
        assert children[2].dependencies == []
        assert all(c.id.parent == composite.id for c in children)

    def test_nested_parallel_steps(self):
        builder = PlanBuilder()
        builder.add_parallel_steps(
            lambda b: b.add_parallel_steps(lambda inner: inner.add_tool_step("deep"))
        )
        plan = builder.build()

        outer = parse_step_input(plan.steps[0]).sub_steps()
        assert outer[0].id == "step_0001_01"
        inner = parse_step_input(outer[0]).sub_steps()
        assert inner[0].id == "step_0001_01_01"

    def test_empty_branch_rejected(self):
        with pytest.raises(PlanConstructionError):
            PlanBuilder().add_parallel_steps(lambda b: None)

    def test_no_branches_rejected(self):
        with pytest.raises(PlanConstructionError):
            PlanBuilder().add_parallel_steps()

    def test_branch_dependency_outside_branch_rejected(self):
        with pytest.raises(PlanConstructionError):
            PlanBuilder().add_parallel_steps(lambda b: b.add_tool_step("x", depends_on="step_0009"))

    def test_cycle_inside_group_rejected(self):
        children = [
            {"id": "step_0001_01", "kind": "tool_call", "input": {"tool": "a"}, "dependencies": ["step_0001_02"]},
            {"id": "step_0001_02", "kind": "tool_call", "input": {"tool": "b"}, "dependencies": ["step_0001_01"]},
        ]
        builder = PlanBuilder()
        builder.add_step(ExecutionStep(id=StepId.new(1), kind=StepKind.PARALLEL, input={"steps": children}))
        with pytest.raises(PlanConstructionError) as exc_info:
            builder.build()
        assert "cycle" in exc_info.value.message
