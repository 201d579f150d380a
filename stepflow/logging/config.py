"""
Structured logging configuration for stepflow
"""

import sys
import json
import uuid
import logging
from typing import Any, Dict, Optional
from datetime import datetime, timezone

import structlog
from structlog.stdlib import LoggerFactory


SERVICE_NAME = "stepflow"
SERVICE_VERSION = "0.1.0"


class StepflowJSONRenderer:
    """JSON renderer that stamps every event with service and version"""

    def __call__(self, logger, name, event_dict):
        if "timestamp" not in event_dict:
            event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

        event_dict["service"] = SERVICE_NAME
        event_dict["version"] = SERVICE_VERSION

        if "event" not in event_dict:
            event_dict["event"] = event_dict.get("msg", "log_event")
        event_dict.pop("msg", None)

        return json.dumps(event_dict, ensure_ascii=False, separators=(',', ':'), default=str)


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    include_timestamps: bool = True
) -> None:
    """
    Configure structured logging for stepflow

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Whether to use JSON format
        include_timestamps: Whether to include timestamps
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamps:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        processors.append(StepflowJSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.reset_defaults()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(message)s",
        stream=sys.stderr,
        force=True
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structured logger
    """
    return structlog.get_logger(name)


class LogContext:
    """
    Bind structured fields to every event logged inside the block.

    Fields live in structlog's context variables, so they follow the
    current asyncio task and the tasks it spawns.
    """

    def __init__(self, **context):
        self.context = {key: value for key, value in context.items() if value is not None}
        self._bound = structlog.contextvars.bound_contextvars(**self.context)

    def __enter__(self):
        self._bound.__enter__()
        return structlog.get_logger()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._bound.__exit__(exc_type, exc_val, exc_tb)
        return False


def log_request_start(method: str, path: str, request_id: str, **kwargs) -> None:
    """Log the start of an HTTP request"""
    logger = structlog.get_logger("stepflow.request")
    logger.info("Request started", method=method, path=path, request_id=request_id, **kwargs)


def log_request_end(
    method: str,
    path: str,
    request_id: str,
    status_code: int,
    duration_ms: float,
    **kwargs
) -> None:
    """Log the end of an HTTP request"""
    logger = structlog.get_logger("stepflow.request")
    logger.info(
        "Request completed",
        method=method,
        path=path,
        request_id=request_id,
        status_code=status_code,
        duration_ms=duration_ms,
        **kwargs
    )


def log_step_execution(
    step_id: str,
    kind: str,
    target: Optional[str],
    success: bool,
    duration_ms: float,
    session_id: Optional[str] = None,
    attempts: int = 1,
    error: Optional[str] = None,
    **kwargs
) -> None:
    """Log the terminal outcome of one step"""
    logger = structlog.get_logger("stepflow.step")
    level = "info" if success else "error"

    log_data = {
        "step_id": step_id,
        "kind": kind,
        "target": target,
        "success": success,
        "duration_ms": duration_ms,
        "session_id": session_id,
        "attempts": attempts,
        **kwargs
    }

    if error:
        log_data["error"] = error

    getattr(logger, level)("Step execution", **log_data)


def log_plan_execution(
    plan_id: str,
    status: str,
    session_id: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> None:
    """Log plan lifecycle events"""
    logger = structlog.get_logger("stepflow.plan")
    level = "warning" if status in ("failed", "cancelled") else "info"
    getattr(logger, level)(
        "Plan execution",
        plan_id=plan_id,
        status=status,
        session_id=session_id,
        duration_ms=duration_ms,
        **kwargs
    )


def log_circuit_breaker(name: str, state: str, action: str, **kwargs) -> None:
    """Log circuit breaker transitions and rejections"""
    logger = structlog.get_logger("stepflow.circuit_breaker")
    logger.info("Circuit breaker activity", circuit=name, state=state, action=action, **kwargs)


def log_state_operation(
    operation: str,
    session_id: Optional[str],
    success: bool = True,
    **kwargs
) -> None:
    """Log state store reads and writes"""
    logger = structlog.get_logger("stepflow.state")
    level = "debug" if success else "error"

    log_data: Dict[str, Any] = {
        "operation": operation,
        "session_id": session_id,
        "success": success,
        **kwargs
    }

    getattr(logger, level)("State operation", **log_data)


def log_system(component: str, event: str, level: str = "info", **kwargs) -> None:
    """Log system-level events"""
    logger = structlog.get_logger("stepflow.system")
    getattr(logger, level)(event, component=component, **kwargs)


def generate_request_id() -> str:
    """Generate a unique request ID"""
    return str(uuid.uuid4())


def generate_session_id() -> str:
    """Generate a unique execution session ID"""
    return f"session_{uuid.uuid4().hex}"
