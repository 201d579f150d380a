"""
Composable resilience pipeline
"""

from functools import reduce
from typing import Any, Awaitable, Callable, List, Optional

from .cancellation import CancellationToken
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from .policies import (
    FallbackPolicy,
    Operation,
    ResiliencePolicy,
    RetryPolicy,
    TimeoutPolicy
)


class ResiliencePipeline:
    """
    Ordered list of policies around one operation.

    The first policy added is the outermost: for
    ``add_retry().add_circuit_breaker().add_timeout()`` every retry
    attempt passes through the breaker, and every breaker admission is
    bounded by the timeout.
    """

    def __init__(self, policies: Optional[List[ResiliencePolicy]] = None):
        self.policies: List[ResiliencePolicy] = list(policies or [])

    def add_policy(self, policy: ResiliencePolicy) -> "ResiliencePipeline":
        self.policies.append(policy)
        return self

    def add_retry(self, max_retries: int = 3, initial_delay: float = 1.0, **kwargs) -> "ResiliencePipeline":
        return self.add_policy(RetryPolicy(max_retries=max_retries, initial_delay=initial_delay, **kwargs))

    def add_circuit_breaker(
        self,
        breaker: Optional[CircuitBreaker] = None,
        name: str = "default",
        config: Optional[CircuitBreakerConfig] = None
    ) -> "ResiliencePipeline":
        return self.add_policy(breaker or CircuitBreaker(name, config))

    def add_timeout(self, timeout: float) -> "ResiliencePipeline":
        return self.add_policy(TimeoutPolicy(timeout))

    def add_fallback(
        self,
        fallback: Callable[[BaseException, CancellationToken], Awaitable[Any]],
        should_handle: Optional[Callable[[BaseException], bool]] = None
    ) -> "ResiliencePipeline":
        return self.add_policy(FallbackPolicy(fallback, should_handle))

    def compose(self, operation: Operation) -> Operation:
        """Fold the policies right-to-left into a single operation"""
        def wrap(inner: Operation, policy: ResiliencePolicy) -> Operation:
            async def wrapped(token: CancellationToken) -> Any:
                return await policy.execute(inner, token)
            return wrapped

        return reduce(wrap, reversed(self.policies), operation)

    async def execute(self, operation: Operation, token: Optional[CancellationToken] = None) -> Any:
        token = token or CancellationToken()
        return await self.compose(operation)(token)
