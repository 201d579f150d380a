"""
Flow controller: schedules plan steps and drives them to completion
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

from .resolver import DispatchTarget, resolve_llm_call, resolve_tool_call, substitute_variables
from ..config import OrchestratorConfig
from ..errors import (
    OperationCancelledError,
    SessionNotFoundError,
    StateStoreError,
    StateUnavailableError,
    StepExecutionError,
    StepflowError
)
from ..logging.config import (
    LogContext,
    generate_session_id,
    get_logger,
    log_plan_execution,
    log_step_execution
)
from ..models.execution import ExecutionContext, HistoryEntry, PlanResult
from ..models.identifiers import StepId
from ..models.plan import Plan, PlanStatus
from ..models.step import ExecutionStep, StepKind, StepStatus, parse_step_input
from ..observability.metrics import metrics
from ..registry.llm import LLMFunctionRegistry
from ..registry.tools import ToolRegistry
from ..resilience.cancellation import CancellationToken
from ..resilience.circuit_breaker import CircuitBreakerRegistry
from ..resilience.pipeline import ResiliencePipeline
from ..resilience.policies import RetryPolicy
from ..storage.base import StateStore

logger = get_logger(__name__)

PLAN_TIMEOUT_REASON = "maximum execution time exceeded"
STATE_FAILURE_REASON = "state store unavailable"
INTERRUPTED_REASON = "plan execution was interrupted"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Run:
    """Bookkeeping for one invocation of FlowController.run"""

    def __init__(self, plan: Plan, context: ExecutionContext, caller_token: CancellationToken):
        self.plan = plan
        self.context = context
        self.caller_token = caller_token
        # Cancelled by the caller, by the plan deadline or by a store failure
        self.token = caller_token.create_linked()
        self.timed_out = False
        self.state_error: Optional[StateUnavailableError] = None
        # Leaf dispatches across the plan and all of its parallel groups
        self.slots = asyncio.Semaphore(plan.settings.max_parallel_steps)

    def outputs(self) -> Dict[str, Any]:
        return {
            entry.step_id: entry.output
            for entry in self.context.history
            if entry.status == StepStatus.COMPLETED
        }


class FlowController:
    """
    Executes plans.

    Each tick selects pending steps whose dependencies have completed,
    in ascending StepId order and up to ``max_parallel_steps`` in
    flight, and dispatches them through a resilience pipeline of retry,
    the target's circuit breaker and the step timeout. The execution
    context is persisted at every step boundary when a state store is
    configured.
    """

    def __init__(
        self,
        tools: ToolRegistry,
        llm_functions: LLMFunctionRegistry,
        state_store: Optional[StateStore] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        config: Optional[OrchestratorConfig] = None
    ):
        self.tools = tools
        self.llm_functions = llm_functions
        self.state_store = state_store
        self.config = config or OrchestratorConfig()
        self.breakers = breakers or CircuitBreakerRegistry(self.config.circuit_breaker)
        self.state_ttl = self.config.execution.state_ttl_seconds

    async def run(
        self,
        plan: Plan,
        context: Optional[ExecutionContext] = None,
        token: Optional[CancellationToken] = None,
        session_id: Optional[str] = None
    ) -> PlanResult:
        """Execute ``plan`` until it completes, fails or is cancelled"""
        token = token or CancellationToken()
        if context is None:
            context = ExecutionContext(
                session_id=session_id or generate_session_id(),
                plan_id=plan.id,
                variables=dict(plan.context)
            )
        elif context.plan_id != plan.id:
            raise StepflowError(
                f"context belongs to plan '{context.plan_id}', not '{plan.id}'",
                {"session_id": context.session_id}
            )

        with LogContext(plan_id=plan.id, session_id=context.session_id):
            return await self._run(plan, context, token)

    async def _run(self, plan: Plan, context: ExecutionContext, token: CancellationToken) -> PlanResult:
        run = _Run(plan, context, token)
        start_time = time.time()

        self._reconcile(plan, context)
        plan.status = PlanStatus.RUNNING
        context.set_status(PlanStatus.RUNNING)
        log_plan_execution(plan.id, PlanStatus.RUNNING.value, session_id=context.session_id, steps=len(plan.steps))

        deadline = None
        if plan.settings.max_execution_time:
            deadline = asyncio.get_running_loop().call_later(
                plan.settings.max_execution_time, self._expire, run
            )

        try:
            await self._persist(run)
            if run.state_error is None:
                await self._drive(run, plan, parent_id=None)
        except asyncio.CancelledError:
            plan.status = PlanStatus.CANCELLED
            context.set_status(PlanStatus.CANCELLED, INTERRUPTED_REASON)
            log_plan_execution(plan.id, PlanStatus.CANCELLED.value, session_id=context.session_id, error=INTERRUPTED_REASON)
            raise
        finally:
            if deadline is not None:
                deadline.cancel()

        if run.state_error is not None:
            plan.status = PlanStatus.FAILED
            context.set_status(PlanStatus.FAILED, STATE_FAILURE_REASON)
            log_plan_execution(plan.id, PlanStatus.FAILED.value, session_id=context.session_id, error=str(run.state_error))
            raise run.state_error

        status, error = self._final_status(run)
        plan.status = status
        context.set_status(status, error)
        await self._persist(run)
        if run.state_error is not None:
            raise run.state_error

        duration = time.time() - start_time
        result = self._result(run, status, int(duration * 1000))
        metrics.record_plan_execution(plan.type, status.value, duration)
        log_plan_execution(
            plan.id,
            status.value,
            session_id=context.session_id,
            duration_ms=result.duration_ms,
            completed=result.completed_steps,
            failed=result.failed_steps,
            error=result.error_message
        )
        return result

    async def resume(
        self,
        plan: Plan,
        session_id: str,
        token: Optional[CancellationToken] = None
    ) -> PlanResult:
        """Continue a persisted run; completed steps are never re-dispatched"""
        if self.state_store is None:
            raise StateUnavailableError("no state store configured")
        try:
            context = await self.state_store.load_context(session_id)
        except StateUnavailableError:
            raise
        except StateStoreError as e:
            raise StateUnavailableError(f"cannot load session '{session_id}': {e}") from e
        if context is None:
            raise SessionNotFoundError(session_id)
        return await self.run(plan, context=context, token=token)

    # Scheduling

    @staticmethod
    def _reconcile(scope: Plan, context: ExecutionContext) -> None:
        """Derive step status from the context; anything not terminal is pending"""
        outputs = {entry.step_id: entry for entry in context.history}
        for step in scope.steps:
            if step.id in context.completed:
                step.status = StepStatus.COMPLETED
                entry = outputs.get(step.id)
                step.output = entry.output if entry else None
            elif step.id in context.failed:
                step.status = StepStatus.FAILED
                entry = outputs.get(step.id)
                step.error = entry.error if entry else None
            elif step.status != StepStatus.PENDING:
                step.reset()

    def _expire(self, run: _Run) -> None:
        if not run.token.is_cancelled:
            run.timed_out = True
            run.token.cancel(PLAN_TIMEOUT_REASON)

    async def _drive(self, run: _Run, scope: Plan, parent_id: Optional[StepId]) -> None:
        """Run the steps of ``scope`` (the plan or a parallel group) to quiescence"""
        limit = scope.settings.max_parallel_steps
        running: Dict[asyncio.Task, ExecutionStep] = {}
        # A failure recorded by an earlier run still halts scheduling on resume
        stopped = scope.settings.stop_on_first_failure and any(
            step.id in run.context.failed for step in scope.steps
        )

        while True:
            if not stopped and not run.token.is_cancelled:
                ready = scope.get_executable_steps(run.context.completed)
                for step in ready[:max(0, limit - len(running))]:
                    step.status = StepStatus.RUNNING
                    step.started_at = _now()
                    logger.debug("Dispatching step", step_id=step.id, kind=step.kind, parent_id=parent_id)
                    task = asyncio.ensure_future(self._execute_step(run, step, parent_id))
                    running[task] = step

            if not running:
                break

            try:
                done, _ = await asyncio.wait(set(running), return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                await self._abandon(run, running)
                raise
            for task in done:
                running.pop(task)
                try:
                    succeeded = task.result()
                except OperationCancelledError:
                    continue
                except StateUnavailableError as e:
                    if run.state_error is None:
                        run.state_error = e
                    run.token.cancel(STATE_FAILURE_REASON)
                    continue
                if not succeeded and scope.settings.stop_on_first_failure:
                    stopped = True

        if not run.token.is_cancelled and not scope.settings.stop_on_first_failure:
            for step in scope.steps:
                if step.status == StepStatus.PENDING:
                    step.status = StepStatus.SKIPPED

    async def _execute_step(self, run: _Run, step: ExecutionStep, parent_id: Optional[StepId]) -> bool:
        """
        Dispatch one step and record its outcome.

        Returns whether the step completed. Raises OperationCancelledError
        after returning the step to pending when the run is cancelled.
        """
        context = run.context
        started_at = step.started_at or _now()
        t0 = time.time()
        attempts = 0
        target: Optional[DispatchTarget] = None
        payload: Dict[str, Any] = dict(step.input)

        try:
            if step.kind == StepKind.PARALLEL:
                output = await self._execute_parallel(run, step)
            else:
                target = self._resolve(step, context.variables)
                payload = target.payload

                async def attempt(token: CancellationToken) -> Any:
                    nonlocal attempts
                    attempts += 1
                    return await target.invoke(token)

                async with self._slot(run):
                    output = await self._pipeline_for(run.plan, step, target).execute(attempt, run.token)
        except OperationCancelledError:
            if run.token.is_cancelled:
                step.reset()
                raise
            output, error = None, OperationCancelledError("step was cancelled")
        except StateUnavailableError:
            step.reset()
            raise
        except Exception as e:
            output, error = None, e
        else:
            error = None

        duration_ms = int((time.time() - t0) * 1000)
        entry = HistoryEntry(
            step_id=step.id,
            parent_id=parent_id,
            kind=step.kind,
            target=target.name if target else None,
            status=StepStatus.COMPLETED if error is None else StepStatus.FAILED,
            input=payload,
            output=output,
            error=str(error) if error is not None else None,
            error_type=type(error).__name__ if error is not None else None,
            attempts=max(attempts, 1),
            started_at=started_at,
            finished_at=_now(),
            duration_ms=duration_ms
        )

        if error is None:
            context.record_success(entry, step.output_variable)
            step.output = output
            step.status = StepStatus.COMPLETED
        else:
            context.record_failure(entry)
            step.error = entry.error
            step.status = StepStatus.FAILED
        step.completed_at = entry.finished_at

        metrics.record_step_execution(step.kind, step.status, duration_ms / 1000)
        log_step_execution(
            step.id,
            step.kind,
            entry.target,
            success=error is None,
            duration_ms=duration_ms,
            session_id=context.session_id,
            attempts=entry.attempts,
            error=entry.error,
            error_type=entry.error_type,
            parent_id=parent_id
        )

        await self._persist(run, raise_errors=True)
        return error is None

    @staticmethod
    async def _abandon(run: _Run, running: Dict[asyncio.Task, ExecutionStep]) -> None:
        """Stop in-flight steps when the task driving the run is itself cancelled"""
        run.token.cancel(INTERRUPTED_REASON)
        for task in running:
            task.cancel()
        await asyncio.gather(*running, return_exceptions=True)
        for step in running.values():
            if step.status == StepStatus.RUNNING:
                step.reset()

    @staticmethod
    @asynccontextmanager
    async def _slot(run: _Run):
        """Hold one of the run-wide leaf dispatch slots"""
        acquire = asyncio.ensure_future(run.slots.acquire())
        try:
            await run.token.guard(acquire)
        except BaseException:
            if not acquire.done():
                acquire.cancel()
            elif not acquire.cancelled():
                run.slots.release()
            raise
        try:
            yield
        finally:
            run.slots.release()

    def _resolve(self, step: ExecutionStep, variables: Dict[str, Any]) -> DispatchTarget:
        payload = parse_step_input(step, substitute_variables(step.input, variables))
        if step.kind == StepKind.TOOL_CALL:
            return resolve_tool_call(step, payload, self.tools)
        return resolve_llm_call(step, payload, self.llm_functions, variables)

    def _pipeline_for(self, plan: Plan, step: ExecutionStep, target: DispatchTarget) -> ResiliencePipeline:
        pipeline = ResiliencePipeline()
        retry_settings = step.retry_policy or plan.settings.default_retry_policy
        if retry_settings is not None:
            pipeline.add_policy(RetryPolicy.from_settings(retry_settings))
        pipeline.add_circuit_breaker(self.breakers.get_circuit_breaker(target.circuit_name))
        if step.timeout:
            pipeline.add_timeout(step.timeout)
        return pipeline

    async def _execute_parallel(self, run: _Run, step: ExecutionStep) -> Dict[str, Any]:
        """Run the sub-steps of a parallel step with the plan's scheduler"""
        children = parse_step_input(step).sub_steps()
        group = Plan(
            id=f"{run.plan.id}/{step.id}",
            steps=children,
            settings=run.plan.settings
        )
        self._reconcile(group, run.context)
        await self._drive(run, group, parent_id=step.id)

        if run.token.is_cancelled:
            raise OperationCancelledError(run.token.reason)

        failed = [child.id for child in children if child.status == StepStatus.FAILED]
        if failed:
            raise StepExecutionError(
                f"parallel step {step.id} failed: sub-steps {', '.join(failed)} did not complete",
                {"failed": failed}
            )

        outputs = run.outputs()
        return {
            child.output_variable or child.id: outputs.get(child.id)
            for child in children
            if child.status == StepStatus.COMPLETED
        }

    # Persistence and results

    async def _persist(self, run: _Run, raise_errors: bool = False) -> None:
        if self.state_store is None or run.state_error is not None:
            return
        try:
            await self.state_store.save_context(run.context, ttl=self.state_ttl)
        except StateStoreError as e:
            error = StateUnavailableError(
                f"cannot persist session '{run.context.session_id}': {e}",
                context=run.context
            )
            if raise_errors:
                raise error from e
            run.state_error = error

    def _final_status(self, run: _Run):
        if run.caller_token.is_cancelled:
            return PlanStatus.CANCELLED, run.caller_token.reason or "plan execution was cancelled"
        if run.timed_out:
            return PlanStatus.FAILED, PLAN_TIMEOUT_REASON
        steps = run.plan.steps
        if all(step.status in (StepStatus.COMPLETED, StepStatus.SKIPPED) for step in steps) and not run.context.failed:
            return PlanStatus.COMPLETED, None
        return PlanStatus.FAILED, run.context.error or "plan did not complete"

    def _result(self, run: _Run, status: PlanStatus, duration_ms: int) -> PlanResult:
        steps = run.plan.steps
        counts = {s: 0 for s in ("completed", "failed", "skipped", "pending")}
        for step in steps:
            key = StepStatus(step.status).value
            counts[key if key in counts else "pending"] += 1

        final_output = None
        if status == PlanStatus.COMPLETED:
            outputs = run.outputs()
            sinks = [s for s in run.plan.sink_steps() if s.id in outputs]
            if len(sinks) == 1:
                final_output = outputs[sinks[0].id]
            elif sinks:
                final_output = {s.id: outputs[s.id] for s in sinks}

        return PlanResult(
            plan_id=run.plan.id,
            session_id=run.context.session_id,
            status=status,
            completed_steps=counts["completed"],
            failed_steps=counts["failed"],
            skipped_steps=counts["skipped"],
            pending_steps=counts["pending"],
            duration_ms=duration_ms,
            final_output=final_output,
            error_message=None if status == PlanStatus.COMPLETED else run.context.error
        )
