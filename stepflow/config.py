"""
Configuration loading for stepflow
"""

import os
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError
from .models.plan import PlanSettings
from .resilience.circuit_breaker import CircuitBreakerConfig

CONFIG_ENV_VAR = "STEPFLOW_CONFIG"
DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Root log level")
    json_format: bool = Field(default=True, description="Render logs as JSON")


class ExecutionSettings(BaseModel):
    defaults: PlanSettings = Field(default_factory=PlanSettings, description="Settings for plans that give none")
    state_ttl_seconds: Optional[float] = Field(None, gt=0, description="TTL of persisted execution contexts")


class StorageSettings(BaseModel):
    backend: Literal["memory", "sqlite"] = Field(default="memory", description="State store implementation")
    path: str = Field(default="stepflow_state.db", description="SQLite file for the sqlite backend")


class HttpToolSettings(BaseModel):
    name: str
    base_url: str
    description: str = ""
    remote_name: Optional[str] = None
    timeout: float = 30.0
    input_schema: Dict[str, Any] = Field(default_factory=dict)


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class OrchestratorConfig(BaseModel):
    """Validated stepflow configuration"""
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    tools: List[HttpToolSettings] = Field(default_factory=list)
    server: ServerSettings = Field(default_factory=ServerSettings)


def load_config(path: Optional[str] = None) -> OrchestratorConfig:
    """
    Load configuration from YAML.

    The path comes from the argument, then the STEPFLOW_CONFIG
    environment variable, then the packaged config.yaml. Environment
    variables in the file are expanded. A missing file yields the
    defaults; malformed YAML or invalid values raise ConfigurationError.
    """
    config_path = path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            content = os.path.expandvars(f.read())
    except FileNotFoundError:
        return OrchestratorConfig()

    try:
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping")

    try:
        return OrchestratorConfig.model_validate(data)
    except ValidationError as e:
        error = e.errors()[0]
        location = ".".join(str(part) for part in error["loc"])
        raise ConfigurationError(f"invalid configuration at {location}: {error['msg']}")
