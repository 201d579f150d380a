"""
Core components of stepflow
"""

from .controller import FlowController
from .resolver import DispatchTarget, substitute_variables, resolve_llm_call, resolve_tool_call

__all__ = [
    "FlowController",
    "DispatchTarget",
    "substitute_variables",
    "resolve_llm_call",
    "resolve_tool_call"
]
