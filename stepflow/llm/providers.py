"""
Base classes and interfaces for LLM providers
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Union
from pydantic import BaseModel


class LLMResponse(BaseModel):
    """Standardized response from LLM provider"""
    content: str
    model: str
    usage: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None


class LLMProvider(ABC):
    """Abstract base class for LLM providers"""

    def __init__(self, api_key: str, model: str, max_tokens: int = 1000):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None
    ) -> LLMResponse:
        """Generate text completion"""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name of the provider"""
        pass


class MockLLMProvider(LLMProvider):
    """
    Mock LLM provider for tests and local runs.

    ``responses`` is either a fixed string, a list consumed in order
    (the last entry repeats), or a callable receiving the prompt.
    """

    def __init__(
        self,
        responses: Union[str, List[str], Callable[[str], str], None] = None,
        model: str = "mock-model",
        max_tokens: int = 1000
    ):
        super().__init__("mock", model, max_tokens)
        self.responses = responses if responses is not None else "Mock response"
        self.prompts: List[str] = []

    async def generate_text(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None
    ) -> LLMResponse:
        self.prompts.append(prompt)

        if callable(self.responses):
            content = self.responses(prompt)
        elif isinstance(self.responses, list):
            index = min(len(self.prompts), len(self.responses)) - 1
            content = self.responses[index]
        else:
            content = self.responses

        return LLMResponse(
            content=content,
            model=self.model,
            usage={"prompt_tokens": len(prompt.split()), "completion_tokens": len(content.split())}
        )

    @property
    def provider_name(self) -> str:
        return "mock"
