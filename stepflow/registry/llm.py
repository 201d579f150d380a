"""
LLM function contract and registry
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from .base import Registry, Resolution, NotResolved
from ..errors import LLMExecutionError, StepflowError, TransientError
from ..llm.providers import LLMProvider
from ..logging.config import get_logger
from ..resilience.cancellation import CancellationToken

logger = get_logger(__name__)


class LLMFunction(ABC):
    """A named operation backed by a language model"""

    name: str = ""
    description: str = ""

    @abstractmethod
    async def execute(self, prompt: str, variables: Dict[str, Any], token: CancellationToken) -> Any:
        """Run the function on an already substituted prompt"""


class ProviderLLMFunction(LLMFunction):
    """LLM function that sends the prompt to an LLMProvider"""

    def __init__(
        self,
        name: str,
        provider: LLMProvider,
        description: str = "",
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        parse_json: bool = False
    ):
        self.name = name
        self.provider = provider
        self.description = description
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.parse_json = parse_json

    async def execute(self, prompt: str, variables: Dict[str, Any], token: CancellationToken) -> Any:
        try:
            response = await token.guard(self.provider.generate_text(
                prompt,
                system_prompt=self.system_prompt,
                temperature=self.temperature
            ))
        except StepflowError:
            raise
        except (httpx.TransportError, ConnectionError) as e:
            raise TransientError(f"{self.provider.provider_name} request failed: {e}") from e
        except Exception as e:
            raise LLMExecutionError(f"{self.provider.provider_name} request failed: {e}") from e

        logger.debug(
            "LLM function executed",
            function=self.name,
            provider=self.provider.provider_name,
            model=response.model,
            usage=response.usage
        )

        if not self.parse_json:
            return response.content
        try:
            return json.loads(response.content)
        except json.JSONDecodeError as e:
            raise LLMExecutionError(f"function '{self.name}' returned invalid JSON: {e}") from e


class LLMFunctionRegistry(Registry[LLMFunction]):
    """
    Registry of LLM functions.

    An llm_call step without an explicit function name dispatches to
    ``default_name``.
    """

    kind = "llm function"

    def __init__(self, default_name: Optional[str] = None):
        super().__init__()
        self.default_name = default_name

    @staticmethod
    def name_of(item: LLMFunction) -> str:
        return item.name

    def describe(self, item: LLMFunction) -> Dict[str, Any]:
        return {"type": "llm_function", "name": item.name, "description": item.description}

    def register(self, item: LLMFunction, replace: bool = False, default: bool = False) -> None:
        super().register(item, replace=replace)
        if default or self.default_name is None:
            self.default_name = item.name

    def resolve(self, name: Optional[str]) -> Resolution:
        if not name:
            if not self.default_name:
                return NotResolved(name="", reason="no llm function name given and no default registered")
            name = self.default_name
        return super().resolve(name)
