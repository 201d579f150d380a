"""
Executable registries for stepflow
"""

from .base import Registry, Resolved, NotResolved, Resolution
from .llm import LLMFunction, ProviderLLMFunction, LLMFunctionRegistry
from .tools import Tool, FunctionTool, HttpTool, ToolRegistry

__all__ = [
    "Registry",
    "Resolved",
    "NotResolved",
    "Resolution",
    "LLMFunction",
    "ProviderLLMFunction",
    "LLMFunctionRegistry",
    "Tool",
    "FunctionTool",
    "HttpTool",
    "ToolRegistry"
]
