"""
FastAPI application for stepflow
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from ..config import OrchestratorConfig, load_config
from ..core.controller import FlowController
from ..logging.config import configure_logging, log_system
from ..logging.middleware import RequestLoggingMiddleware
from ..registry.llm import LLMFunctionRegistry
from ..registry.tools import ToolRegistry
from ..resilience.circuit_breaker import CircuitBreakerRegistry
from ..storage.base import StateStore
from ..storage.memory import InMemoryStateStore
from ..storage.sqlite import SQLiteStateStore
from .routes import router


def create_state_store(config: OrchestratorConfig) -> StateStore:
    """State store selected by configuration"""
    if config.storage.backend == "sqlite":
        return SQLiteStateStore(config.storage.path, default_ttl=config.execution.state_ttl_seconds)
    return InMemoryStateStore(default_ttl=config.execution.state_ttl_seconds)


def create_app(
    config: Optional[OrchestratorConfig] = None,
    tools: Optional[ToolRegistry] = None,
    llm_functions: Optional[LLMFunctionRegistry] = None,
    state_store: Optional[StateStore] = None
) -> FastAPI:
    """Create FastAPI application"""
    config = config or load_config()
    configure_logging(log_level=config.logging.level, json_format=config.logging.json_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifecycle management"""
        tool_registry = tools if tools is not None else ToolRegistry()
        if config.tools:
            tool_registry.load_http_tools([t.model_dump() for t in config.tools])

        store = state_store if state_store is not None else create_state_store(config)
        app.state.state_store = store
        app.state.controller = FlowController(
            tool_registry,
            llm_functions if llm_functions is not None else LLMFunctionRegistry(),
            state_store=store,
            breakers=CircuitBreakerRegistry(config.circuit_breaker),
            config=config
        )
        log_system(
            "app",
            "stepflow_started",
            state_store=store.backend,
            tools=len(tool_registry),
            llm_functions=len(app.state.controller.llm_functions)
        )

        yield

        await tool_registry.close()
        await store.close()
        log_system("app", "stepflow_stopped")

    app = FastAPI(
        title="stepflow",
        description="Agent task orchestrator",
        version="0.1.0",
        lifespan=lifespan
    )

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(router)
    app.mount("/metrics", make_asgi_app())

    return app
