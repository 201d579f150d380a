"""
LLM provider contracts for stepflow
"""

from .providers import LLMProvider, LLMResponse, MockLLMProvider

__all__ = ["LLMProvider", "LLMResponse", "MockLLMProvider"]
