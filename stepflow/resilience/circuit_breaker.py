"""
Circuit Breaker pattern implementation for stepflow
"""

import asyncio
import threading
import time
from typing import Any, Callable, Dict, Optional
from enum import Enum
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field

from .cancellation import CancellationToken
from .policies import Operation, ResiliencePolicy
from ..errors import CircuitBreakerOpenError, OperationCancelledError
from ..logging.config import log_circuit_breaker
from ..observability.metrics import metrics


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CircuitState(str, Enum):
    """Circuit breaker states"""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Calls fail fast
    HALF_OPEN = "half_open"  # One trial call decides


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker configuration"""
    failure_threshold: int = Field(default=5, ge=1, description="Consecutive failures before opening")
    open_duration: float = Field(default=60.0, ge=0, description="Seconds before a trial call is admitted")


class CircuitBreakerStats(BaseModel):
    """Circuit breaker statistics"""
    name: str = Field(..., description="Circuit identifier, usually the target name")
    state: CircuitState = Field(..., description="Current circuit state")
    failure_count: int = Field(default=0, description="Consecutive failures")
    last_failure_time: Optional[datetime] = Field(None, description="Last failure timestamp")
    last_success_time: Optional[datetime] = Field(None, description="Last success timestamp")
    opened_at: Optional[datetime] = Field(None, description="When the circuit last opened")
    total_requests: int = Field(default=0, description="Calls that reached the operation")
    total_failures: int = Field(default=0, description="Total failures")
    total_successes: int = Field(default=0, description="Total successes")
    total_rejections: int = Field(default=0, description="Calls rejected while open")

    model_config = ConfigDict(use_enum_values=True)


class CircuitBreaker(ResiliencePolicy):
    """
    Circuit breaker for one target, shared by every run that calls it.

    closed -> open after ``failure_threshold`` consecutive failures;
    open -> half_open once ``open_duration`` has elapsed, admitting
    exactly one trial call; the trial closes the circuit on success and
    reopens it on failure. Cancelled calls count as neither.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self.stats = CircuitBreakerStats(name=name, state=CircuitState.CLOSED)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return CircuitState(self.stats.state)

    def _refresh(self) -> None:
        if self.stats.state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.config.open_duration:
                self._transition(CircuitState.HALF_OPEN, "half_opened")

    def _transition(self, state: CircuitState, action: str) -> None:
        self.stats.state = state
        if state == CircuitState.OPEN:
            self._opened_at = self._clock()
            self.stats.opened_at = _now()
        metrics.update_circuit_breaker_state(self.name, state.value)
        log_circuit_breaker(self.name, state.value, action, failure_count=self.stats.failure_count)

    def retry_after(self) -> Optional[float]:
        if self._opened_at is None:
            return None
        return max(0.0, self.config.open_duration - (self._clock() - self._opened_at))

    def can_execute(self) -> bool:
        """Admit a call, claiming the single trial slot when half-open"""
        with self._lock:
            self._refresh()
            if self.stats.state == CircuitState.CLOSED:
                return True
            if self.stats.state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            self.stats.total_rejections += 1
            return False

    def record_success(self) -> None:
        with self._lock:
            self.stats.total_requests += 1
            self.stats.total_successes += 1
            self.stats.last_success_time = _now()
            self._trial_in_flight = False
            if self.stats.state != CircuitState.CLOSED:
                self.stats.failure_count = 0
                self._opened_at = None
                self._transition(CircuitState.CLOSED, "closed")
            else:
                self.stats.failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self.stats.total_requests += 1
            self.stats.total_failures += 1
            self.stats.failure_count += 1
            self.stats.last_failure_time = _now()
            self._trial_in_flight = False

            if self.stats.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, "reopened")
            elif self.stats.state == CircuitState.CLOSED:
                if self.stats.failure_count >= self.config.failure_threshold:
                    self._transition(CircuitState.OPEN, "opened")

    def release(self) -> None:
        """Give back a claimed trial slot without recording an outcome"""
        with self._lock:
            self._trial_in_flight = False

    def reset(self) -> None:
        """Force the circuit closed and clear the failure count"""
        with self._lock:
            self.stats.failure_count = 0
            self._opened_at = None
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED, "reset")

    def get_stats(self) -> CircuitBreakerStats:
        with self._lock:
            self._refresh()
            return self.stats.model_copy()

    async def execute(self, operation: Operation, token: CancellationToken) -> Any:
        token.raise_if_cancelled()
        if not self.can_execute():
            metrics.record_circuit_breaker_rejection(self.name)
            log_circuit_breaker(self.name, CircuitState.OPEN.value, "rejected")
            raise CircuitBreakerOpenError(self.name, self.retry_after())

        try:
            result = await operation(token)
        except (OperationCancelledError, asyncio.CancelledError):
            self.release()
            raise
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result


class CircuitBreakerRegistry:
    """Get-or-create circuit breakers keyed by target name"""

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}

    def get_circuit_breaker(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        with self._lock:
            if name not in self.circuit_breakers:
                self.circuit_breakers[name] = CircuitBreaker(name, config or self.config, self._clock)
            return self.circuit_breakers[name]

    def get_all_stats(self) -> Dict[str, CircuitBreakerStats]:
        with self._lock:
            breakers = list(self.circuit_breakers.items())
        return {name: cb.get_stats() for name, cb in breakers}

    def reset_circuit_breaker(self, name: str) -> bool:
        with self._lock:
            breaker = self.circuit_breakers.get(name)
        if breaker is None:
            return False
        breaker.reset()
        return True
