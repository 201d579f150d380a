"""
Plan parsers: plan documents and planner LLM output
"""

import json
import re
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from .builder import PlanBuilder
from ..errors import PlanConstructionError
from ..logging.config import get_logger
from ..models.identifiers import StepId
from ..models.plan import Plan, PlanType
from ..models.step import ExecutionStep, StepKind
from ..registry.llm import LLMFunctionRegistry
from ..registry.tools import ToolRegistry

logger = get_logger(__name__)


def extract_json(content: str) -> Dict[str, Any]:
    """Pull the JSON object out of free-form LLM text"""
    content = content.strip()

    json_match = re.search(r'```json\s*(.*?)\s*```', content, re.DOTALL)
    if json_match:
        content = json_match.group(1).strip()
    elif content.startswith("```") and content.endswith("```"):
        content = content[3:-3].strip()

    json_start = content.find('{')
    json_end = content.rfind('}')
    if json_start != -1 and json_end > json_start:
        content = content[json_start:json_end + 1]

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise PlanConstructionError(f"planner output is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise PlanConstructionError("planner output must be a JSON object")
    return data


def _dependency_refs(entry: Dict[str, Any]) -> List[Any]:
    refs = entry.get("dependencies", entry.get("depends_on", []))
    if refs is None:
        return []
    if isinstance(refs, (str, int)):
        return [refs]
    return list(refs)


def _resolve_ref(ref: Any, ids_by_position: List[StepId]) -> str:
    """Map a 1-based position or an explicit id to a step id"""
    if isinstance(ref, int) or (isinstance(ref, str) and ref.isdigit()):
        position = int(ref)
        if 1 <= position <= len(ids_by_position):
            return ids_by_position[position - 1]
        raise PlanConstructionError(f"dependency refers to step {position}, which does not exist")
    return str(ref)


def parse_plan_document(document: Union[str, Dict[str, Any]]) -> Plan:
    """
    Build a plan from a plan document.

    Steps may carry explicit ids; steps without one get the next
    sequential id. Dependencies are ids or 1-based step positions.
    """
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as e:
            raise PlanConstructionError(f"plan document is not valid JSON: {e}")

    entries = document.get("steps") or []
    try:
        plan_type = PlanType(document.get("type", PlanType.FIXED))
    except ValueError:
        raise PlanConstructionError(f"unknown plan type: {document.get('type')!r}")
    builder = PlanBuilder(plan_id=document.get("id"), plan_type=plan_type)
    builder.with_name(document.get("name", "")).with_description(document.get("description", ""))
    for key, value in (document.get("context") or {}).items():
        builder.with_context(key, value)
    builder.with_settings(**(document.get("settings") or {}))

    ids_by_position: List[StepId] = []
    for position, entry in enumerate(entries, start=1):
        step_id = StepId(entry["id"]) if entry.get("id") else StepId.new(position)
        ids_by_position.append(step_id)

    for position, entry in enumerate(entries, start=1):
        data = {key: value for key, value in entry.items() if key not in ("depends_on", "dependencies")}
        data["id"] = ids_by_position[position - 1]
        data["dependencies"] = [_resolve_ref(ref, ids_by_position) for ref in _dependency_refs(entry)]
        try:
            builder.add_step(ExecutionStep.model_validate(data))
        except ValidationError as e:
            error = e.errors()[0]
            location = ".".join(str(part) for part in error["loc"])
            raise PlanConstructionError(
                f"invalid step {position}: {location}: {error['msg']}",
                [data["id"]]
            )

    try:
        return builder.build()
    except ValidationError as e:
        raise PlanConstructionError(f"invalid plan: {e.errors()[0]['msg']}")


def parse_planner_output(
    output: Union[str, Dict[str, Any]],
    tools: ToolRegistry,
    llm_functions: LLMFunctionRegistry,
    plan_id: Optional[str] = None
) -> Plan:
    """
    Convert a planner response into a planner-type plan.

    Accepted shape::

        {"goal": "...", "actions": [
            {"name": "...", "description": "...", "parameters": {...},
             "dependencies": [1], "output_variable": "..."}]}

    Each action's name is looked up in the tool registry first, then in
    the LLM function registry.
    """
    data = extract_json(output) if isinstance(output, str) else output
    actions = data.get("actions", data.get("steps"))
    if not actions:
        raise PlanConstructionError("planner output contains no actions")

    builder = PlanBuilder(plan_id=plan_id, plan_type=PlanType.PLANNER)
    builder.with_name(data.get("goal", "")).with_description(data.get("analysis", data.get("reasoning", "")))

    ids_by_position = [StepId.new(position) for position in range(1, len(actions) + 1)]

    for position, action in enumerate(actions, start=1):
        name = action.get("name") or action.get("tool_name")
        if not name:
            raise PlanConstructionError(f"action {position} has no name", [ids_by_position[position - 1]])

        parameters = dict(action.get("parameters") or {})
        dependencies = [_resolve_ref(ref, ids_by_position) for ref in _dependency_refs(action)]
        options = {
            "name": name,
            "description": action.get("description") or None,
        }

        if name in tools:
            builder.add_tool_step(
                name,
                parameters,
                depends_on=dependencies,
                output_variable=action.get("output_variable"),
                **options
            )
        elif name in llm_functions:
            prompt = parameters.pop("prompt", None) or action.get("description") or ""
            builder.add_llm_step(
                prompt,
                depends_on=dependencies,
                function=name,
                output_variable=action.get("output_variable"),
                metadata={"parameters": parameters} if parameters else None,
                **options
            )
        else:
            raise PlanConstructionError(
                f"action {position} names '{name}', which is neither a registered tool nor an llm function",
                [ids_by_position[position - 1]]
            )

    plan = builder.build()
    logger.info(
        "Planner output parsed",
        plan_id=plan.id,
        steps=len(plan.steps),
        tool_steps=sum(1 for s in plan.steps if s.kind == StepKind.TOOL_CALL)
    )
    return plan
