"""
Structured logging for stepflow
"""

from .config import (
    configure_logging,
    get_logger,
    log_step_execution,
    log_plan_execution,
    log_circuit_breaker,
    log_state_operation,
    log_system,
    generate_request_id,
    generate_session_id,
    LogContext
)

__all__ = [
    "configure_logging",
    "get_logger",
    "log_step_execution",
    "log_plan_execution",
    "log_circuit_breaker",
    "log_state_operation",
    "log_system",
    "generate_request_id",
    "generate_session_id",
    "LogContext"
]
