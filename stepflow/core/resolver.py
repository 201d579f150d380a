"""
Dispatch target resolution and variable substitution
"""

import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..errors import TargetNotResolvedError, VariableResolutionError
from ..models.step import ExecutionStep, LlmCallInput, StepKind, ToolCallInput
from ..registry.base import NotResolved
from ..registry.llm import LLMFunctionRegistry
from ..registry.tools import ToolRegistry
from ..resilience.cancellation import CancellationToken

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.\-]*)\s*\}\}")


def _lookup(path: str, variables: Dict[str, Any]) -> Any:
    head, _, rest = path.partition(".")
    if head not in variables:
        raise VariableResolutionError(head)
    value = variables[head]
    for part in rest.split(".") if rest else []:
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            raise VariableResolutionError(path)
    return value


def substitute_variables(value: Any, variables: Dict[str, Any]) -> Any:
    """
    Replace ``{{name}}`` placeholders from the scratch space.

    A string that is exactly one placeholder takes the variable's value
    with its type; placeholders embedded in longer text are rendered as
    strings. Dotted names index into nested dicts and lists.
    """
    if isinstance(value, str):
        whole = _PLACEHOLDER.fullmatch(value.strip())
        if whole:
            return _lookup(whole.group(1), variables)
        return _PLACEHOLDER.sub(lambda m: str(_lookup(m.group(1), variables)), value)
    if isinstance(value, dict):
        return {key: substitute_variables(item, variables) for key, item in value.items()}
    if isinstance(value, list):
        return [substitute_variables(item, variables) for item in value]
    return value


@dataclass
class DispatchTarget:
    """A resolved executable bound to its substituted payload"""
    kind: StepKind
    name: str
    payload: Dict[str, Any]
    invoke: Callable[[CancellationToken], Awaitable[Any]]

    @property
    def circuit_name(self) -> str:
        return f"{StepKind(self.kind).value}:{self.name}"


def resolve_tool_call(
    step: ExecutionStep,
    payload: ToolCallInput,
    tools: ToolRegistry
) -> DispatchTarget:
    resolution = tools.resolve(payload.tool)
    if isinstance(resolution, NotResolved):
        raise TargetNotResolvedError("tool", payload.tool)
    tool = resolution.executable
    arguments = dict(payload.arguments)

    async def invoke(token: CancellationToken) -> Any:
        return await tool.execute(arguments, token)

    return DispatchTarget(
        kind=StepKind.TOOL_CALL,
        name=resolution.name,
        payload={"tool": payload.tool, "arguments": arguments},
        invoke=invoke
    )


def resolve_llm_call(
    step: ExecutionStep,
    payload: LlmCallInput,
    llm_functions: LLMFunctionRegistry,
    variables: Optional[Dict[str, Any]] = None
) -> DispatchTarget:
    resolution = llm_functions.resolve(payload.function)
    if isinstance(resolution, NotResolved):
        raise TargetNotResolvedError("llm function", payload.function or "<default>")
    function = resolution.executable
    prompt = payload.prompt
    snapshot = dict(variables or {})

    async def invoke(token: CancellationToken) -> Any:
        return await function.execute(prompt, snapshot, token)

    return DispatchTarget(
        kind=StepKind.LLM_CALL,
        name=resolution.name,
        payload={"prompt": prompt, "function": resolution.name},
        invoke=invoke
    )
