"""
Tool contract, adapters and registry
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .base import Registry
from ..errors import StepflowError, ToolExecutionError, TransientError
from ..logging.config import get_logger
from ..resilience.cancellation import CancellationToken

logger = get_logger(__name__)


class Tool(ABC):
    """A named external capability invoked with JSON arguments"""

    name: str = ""
    description: str = ""
    input_schema: Dict[str, Any] = {}

    @abstractmethod
    async def execute(self, arguments: Dict[str, Any], token: CancellationToken) -> Any:
        """Invoke the tool"""


class FunctionTool(Tool):
    """Tool wrapping an async callable that takes the arguments as keywords"""

    def __init__(
        self,
        name: str,
        func: Callable[..., Awaitable[Any]],
        description: str = "",
        input_schema: Optional[Dict[str, Any]] = None
    ):
        self.name = name
        self.func = func
        self.description = description
        self.input_schema = input_schema or {}

    async def execute(self, arguments: Dict[str, Any], token: CancellationToken) -> Any:
        return await token.guard(self.func(**arguments))


class HttpTool(Tool):
    """
    Tool served over HTTP.

    POSTs ``{"tool_name", "parameters"}`` to ``{base_url}/execute``.
    Transport failures, 429 and 5xx responses are transient; other 4xx
    responses are terminal.
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        description: str = "",
        input_schema: Optional[Dict[str, Any]] = None,
        remote_name: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.description = description
        self.input_schema = input_schema or {}
        self.remote_name = remote_name or name
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def execute(self, arguments: Dict[str, Any], token: CancellationToken) -> Any:
        payload = {
            "tool_name": self.remote_name,
            "parameters": arguments
        }

        try:
            response = await token.guard(self.client.post(
                f"{self.base_url}/execute",
                json=payload,
                timeout=self.timeout
            ))
        except httpx.TransportError as e:
            raise TransientError(f"tool '{self.name}' unreachable: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientError(
                f"tool '{self.name}' returned HTTP {response.status_code}",
                {"status_code": response.status_code}
            )
        if response.status_code >= 400:
            raise ToolExecutionError(
                f"tool '{self.name}' rejected the call: HTTP {response.status_code} {response.text}",
                {"status_code": response.status_code}
            )

        try:
            return response.json()
        except ValueError as e:
            raise ToolExecutionError(f"tool '{self.name}' returned a non-JSON body") from e

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()


class ToolRegistry(Registry[Tool]):
    """Registry of tools"""

    kind = "tool"

    @staticmethod
    def name_of(item: Tool) -> str:
        return item.name

    def describe(self, item: Tool) -> Dict[str, Any]:
        return {
            "type": "tool",
            "name": item.name,
            "description": item.description,
            "input_schema": item.input_schema
        }

    def load_http_tools(self, declarations: List[Dict[str, Any]], client: Optional[httpx.AsyncClient] = None) -> int:
        """Register HTTP tools from configuration entries; returns how many were added"""
        count = 0
        for entry in declarations:
            try:
                tool = HttpTool(
                    name=entry["name"],
                    base_url=entry["base_url"],
                    description=entry.get("description", ""),
                    input_schema=entry.get("input_schema"),
                    remote_name=entry.get("remote_name"),
                    timeout=float(entry.get("timeout", 30.0)),
                    client=client
                )
            except KeyError as e:
                raise StepflowError(f"tool declaration is missing {e}", {"declaration": entry})
            self.register(tool, replace=True)
            count += 1
        logger.info("HTTP tools loaded", count=count)
        return count

    async def close(self) -> None:
        for name in self.names():
            tool = self.resolve(name).executable
            if isinstance(tool, HttpTool):
                await tool.close()
