"""
Resilience policies for stepflow
"""

from .cancellation import CancellationToken
from .policies import (
    ResiliencePolicy,
    RetryPolicy,
    TimeoutPolicy,
    FallbackPolicy,
    is_transient
)
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitBreakerStats,
    CircuitState
)
from .pipeline import ResiliencePipeline

__all__ = [
    "CancellationToken",
    "ResiliencePolicy",
    "RetryPolicy",
    "TimeoutPolicy",
    "FallbackPolicy",
    "is_transient",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitBreakerStats",
    "CircuitState",
    "ResiliencePipeline"
]
