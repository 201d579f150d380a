"""
Retry, timeout and fallback policies
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx

from .cancellation import CancellationToken
from ..errors import (
    CircuitBreakerOpenError,
    OperationCancelledError,
    StepTimeoutError,
    TransientError
)
from ..logging.config import get_logger
from ..models.step import BackoffStrategy, RetrySettings
from ..observability.metrics import metrics

logger = get_logger(__name__)

Operation = Callable[[CancellationToken], Awaitable[Any]]

TRANSIENT_ERRORS = (
    TransientError,
    StepTimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
    httpx.TransportError,
)


def is_transient(error: BaseException) -> bool:
    """Default retry predicate: transient errors, directly or as the cause"""
    seen = set()
    while error is not None and id(error) not in seen:
        if isinstance(error, (OperationCancelledError, CircuitBreakerOpenError)):
            return False
        if isinstance(error, TRANSIENT_ERRORS):
            return True
        seen.add(id(error))
        error = error.__cause__
    return False


def matches_error_names(error: BaseException, names: Iterable[str]) -> bool:
    """True if the error class or one of its bases has one of the given names"""
    wanted = set(names)
    return any(cls.__name__ in wanted for cls in type(error).__mro__)


class ResiliencePolicy(ABC):
    """A wrapper around one asynchronous operation"""

    @abstractmethod
    async def execute(self, operation: Operation, token: CancellationToken) -> Any:
        """Run ``operation`` under this policy"""


class RetryPolicy(ResiliencePolicy):
    """
    Re-invoke a failing operation with growing delays.

    ``max_retries`` is the total number of attempts. The last attempt
    propagates whatever it raises. Cancellation is never retried and
    interrupts a pending backoff.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        should_retry: Optional[Callable[[BaseException], bool]] = None,
        backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.should_retry = should_retry or is_transient
        self.backoff = BackoffStrategy(backoff)

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        extra = list(settings.retryable_errors)

        def should_retry(error: BaseException) -> bool:
            if isinstance(error, OperationCancelledError):
                return False
            return is_transient(error) or (bool(extra) and matches_error_names(error, extra))

        return cls(
            max_retries=settings.max_attempts,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            should_retry=should_retry,
            backoff=settings.strategy
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)"""
        if self.backoff == BackoffStrategy.FIXED:
            delay = self.initial_delay
        else:
            delay = self.initial_delay * (2 ** (attempt - 1))
        return min(delay, self.max_delay)

    async def execute(self, operation: Operation, token: CancellationToken) -> Any:
        attempt = 0
        while True:
            attempt += 1
            token.raise_if_cancelled()
            try:
                return await operation(token)
            except OperationCancelledError:
                raise
            except Exception as e:
                if attempt >= self.max_retries or not self.should_retry(e):
                    raise
                delay = self.delay_for(attempt)
                metrics.record_retry_attempt(type(e).__name__)
                logger.warning(
                    "Retrying operation",
                    attempt=attempt,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=str(e),
                    error_type=type(e).__name__
                )
                await token.sleep(delay)


class TimeoutPolicy(ResiliencePolicy):
    """Bound one invocation of the operation in time"""

    def __init__(self, timeout: float):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = timeout

    async def execute(self, operation: Operation, token: CancellationToken) -> Any:
        token.raise_if_cancelled()
        linked = token.create_linked()
        try:
            return await asyncio.wait_for(operation(linked), timeout=self.timeout)
        except asyncio.TimeoutError:
            if token.is_cancelled:
                raise OperationCancelledError(token.reason)
            linked.cancel("timeout")
            raise StepTimeoutError(self.timeout)


class FallbackPolicy(ResiliencePolicy):
    """Substitute a fallback result when the operation fails"""

    def __init__(
        self,
        fallback: Callable[[BaseException, CancellationToken], Awaitable[Any]],
        should_handle: Optional[Callable[[BaseException], bool]] = None
    ):
        self.fallback = fallback
        self.should_handle = should_handle or (lambda error: True)

    async def execute(self, operation: Operation, token: CancellationToken) -> Any:
        try:
            return await operation(token)
        except OperationCancelledError:
            raise
        except Exception as e:
            if not self.should_handle(e):
                raise
            logger.info("Using fallback", error=str(e), error_type=type(e).__name__)
            return await self.fallback(e, token)
