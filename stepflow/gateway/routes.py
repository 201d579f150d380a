"""
API routes for stepflow
"""

from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from ..core.controller import FlowController
from ..errors import PlanConstructionError, SessionNotFoundError, StateUnavailableError, StepflowError
from ..logging.config import get_logger
from ..models.execution import PlanResult
from ..models.plan import Plan
from ..planning.parser import parse_plan_document, parse_planner_output
from ..storage.base import StateStore

router = APIRouter()
logger = get_logger(__name__)


class ExecutePlanRequest(BaseModel):
    """Plan document plus optional session information"""
    plan: Dict[str, Any] = Field(..., description="Plan document")
    session_id: Optional[str] = Field(None, description="Session id to use for persistence")


class ExecutePlannerOutputRequest(BaseModel):
    """Planner LLM response to turn into a plan and execute"""
    output: Union[str, Dict[str, Any]] = Field(..., description="Raw planner output")
    plan_id: Optional[str] = Field(None, description="Plan id to assign")
    session_id: Optional[str] = Field(None, description="Session id to use for persistence")


class ResumeRequest(BaseModel):
    plan: Dict[str, Any] = Field(..., description="Plan document the session was started with")


def get_controller(request: Request) -> FlowController:
    """Dependency for getting the flow controller from app state"""
    return request.app.state.controller


def get_state_store(request: Request) -> Optional[StateStore]:
    """Dependency for getting the state store from app state"""
    return request.app.state.state_store


def _with_defaults(document: Dict[str, Any], controller: FlowController) -> Dict[str, Any]:
    defaults = controller.config.execution.defaults.model_dump(exclude_none=True)
    settings = dict(defaults)
    settings.update(document.get("settings") or {})
    return dict(document, settings=settings)


def _build_plan(document: Dict[str, Any], controller: FlowController) -> Plan:
    try:
        return parse_plan_document(_with_defaults(document, controller))
    except PlanConstructionError as e:
        raise HTTPException(status_code=400, detail={"error": e.message, "step_ids": e.step_ids})


async def _execute(controller: FlowController, plan: Plan, session_id: Optional[str]) -> PlanResult:
    try:
        return await controller.run(plan, session_id=session_id)
    except StateUnavailableError as e:
        logger.warning("State store unavailable", plan_id=plan.id, error=e.message)
        raise HTTPException(status_code=503, detail={"error": e.message})
    except StepflowError as e:
        raise HTTPException(status_code=400, detail={"error": e.message})


@router.post("/plans/execute", response_model=PlanResult)
async def execute_plan(
    body: ExecutePlanRequest,
    controller: FlowController = Depends(get_controller)
):
    """Validate a plan document and execute it"""
    plan = _build_plan(body.plan, controller)
    return await _execute(controller, plan, body.session_id)


@router.post("/plans/planner/execute", response_model=PlanResult)
async def execute_planner_output(
    body: ExecutePlannerOutputRequest,
    controller: FlowController = Depends(get_controller)
):
    """Turn planner output into a plan and execute it"""
    try:
        plan = parse_planner_output(body.output, controller.tools, controller.llm_functions, plan_id=body.plan_id)
    except PlanConstructionError as e:
        logger.info("Planner output rejected", error=e.message)
        raise HTTPException(status_code=400, detail={"error": e.message, "step_ids": e.step_ids})
    return await _execute(controller, plan, body.session_id)


@router.get("/sessions/{session_id}")
async def get_session(
    session_id: str,
    state_store: Optional[StateStore] = Depends(get_state_store)
):
    """Persisted execution context of a session"""
    if state_store is None:
        raise HTTPException(status_code=503, detail={"error": "no state store configured"})
    try:
        context = await state_store.load_context(session_id)
    except StepflowError as e:
        raise HTTPException(status_code=503, detail={"error": e.message})
    if context is None:
        raise HTTPException(status_code=404, detail={"error": f"session '{session_id}' not found"})
    return context.snapshot()


@router.post("/sessions/{session_id}/resume", response_model=PlanResult)
async def resume_session(
    session_id: str,
    body: ResumeRequest,
    controller: FlowController = Depends(get_controller)
):
    """Continue a persisted session"""
    document = body.plan
    if not document.get("id") and controller.state_store is not None:
        # Documents without an id resume under the plan id the session was started with
        try:
            context = await controller.state_store.load_context(session_id)
        except StepflowError as e:
            raise HTTPException(status_code=503, detail={"error": e.message})
        if context is not None:
            document = dict(document, id=context.plan_id)
    plan = _build_plan(document, controller)
    try:
        return await controller.resume(plan, session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail={"error": e.message})
    except StateUnavailableError as e:
        logger.warning("State store unavailable", session_id=session_id, error=e.message)
        raise HTTPException(status_code=503, detail={"error": e.message})
    except StepflowError as e:
        raise HTTPException(status_code=400, detail={"error": e.message})


@router.get("/registry")
async def describe_registry(controller: FlowController = Depends(get_controller)):
    """Descriptions of registered tools and LLM functions"""
    return {
        "tools": controller.tools.describe_all(),
        "llm_functions": controller.llm_functions.describe_all(),
        "default_llm_function": controller.llm_functions.default_name
    }


@router.get("/health")
async def health_check(request: Request):
    """Liveness plus state store health"""
    state_store = request.app.state.state_store
    store_healthy = await state_store.is_healthy() if state_store is not None else None
    return {
        "status": "ok" if store_healthy is not False else "degraded",
        "state_store": state_store.backend if state_store is not None else None,
        "state_store_healthy": store_healthy
    }
