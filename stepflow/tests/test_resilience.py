"""
Tests for retry, timeout, fallback, pipelines and cancellation
"""

import asyncio

import pytest

from stepflow.errors import (
    CircuitBreakerOpenError,
    OperationCancelledError,
    StepTimeoutError,
    ToolExecutionError,
    TransientError
)
from stepflow.models.step import BackoffStrategy, RetrySettings
from stepflow.resilience.cancellation import CancellationToken
from stepflow.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from stepflow.resilience.pipeline import ResiliencePipeline
from stepflow.resilience.policies import (
    FallbackPolicy,
    ResiliencePolicy,
    RetryPolicy,
    TimeoutPolicy,
    is_transient
)


class FlakyOperation:
    """Fails ``failures`` times with ``error`` and then returns ``result``"""

    def __init__(self, failures, error=None, result="ok"):
        self.failures = failures
        self.error = error or TransientError("temporary")
        self.result = result
        self.calls = 0

    async def __call__(self, token):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


class TestTransientClassification:
    """Test the default retry predicate"""

    def test_transient_errors(self):
        assert is_transient(TransientError("x"))
        assert is_transient(StepTimeoutError(1.0))
        assert is_transient(ConnectionError())
        assert not is_transient(ToolExecutionError("bad input"))
        assert not is_transient(ValueError())

    def test_cause_chain(self):
        error = ToolExecutionError("wrapped")
        error.__cause__ = ConnectionError()
        assert is_transient(error)

    def test_cancellation_and_open_circuit_never_transient(self):
        assert not is_transient(OperationCancelledError())
        assert not is_transient(CircuitBreakerOpenError("tool:x"))


class TestRetryPolicy:
    """Test retry behaviour"""

    @pytest.mark.asyncio
    async def test_succeeds_on_third_attempt(self):
        operation = FlakyOperation(failures=2)
        policy = RetryPolicy(max_retries=3, initial_delay=0)

        result = await policy.execute(operation, CancellationToken())

        assert result == "ok"
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_last_error(self):
        operation = FlakyOperation(failures=10)
        policy = RetryPolicy(max_retries=3, initial_delay=0)

        with pytest.raises(TransientError):
            await policy.execute(operation, CancellationToken())
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_non_transient_not_retried(self):
        operation = FlakyOperation(failures=1, error=ToolExecutionError("bad input"))
        policy = RetryPolicy(max_retries=3, initial_delay=0)

        with pytest.raises(ToolExecutionError):
            await policy.execute(operation, CancellationToken())
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_cancellation_not_retried(self):
        operation = FlakyOperation(failures=1, error=OperationCancelledError("stop"))
        policy = RetryPolicy(max_retries=3, initial_delay=0, should_retry=lambda e: True)

        with pytest.raises(OperationCancelledError):
            await policy.execute(operation, CancellationToken())
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_during_backoff(self):
        token = CancellationToken()
        operation = FlakyOperation(failures=10)
        policy = RetryPolicy(max_retries=5, initial_delay=30)

        task = asyncio.ensure_future(policy.execute(operation, token))
        await asyncio.sleep(0.01)
        token.cancel("shutdown")

        with pytest.raises(OperationCancelledError):
            await asyncio.wait_for(task, timeout=1)
        assert operation.calls == 1

    def test_delays(self):
        policy = RetryPolicy(initial_delay=1.0, max_delay=5.0)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

        fixed = RetryPolicy(initial_delay=2.0, backoff=BackoffStrategy.FIXED)
        assert fixed.delay_for(3) == 2.0

    @pytest.mark.asyncio
    async def test_from_settings_with_named_errors(self):
        settings = RetrySettings(max_attempts=2, initial_delay=0, retryable_errors=["KeyError"])
        operation = FlakyOperation(failures=1, error=KeyError("missing"))

        result = await RetryPolicy.from_settings(settings).execute(operation, CancellationToken())

        assert result == "ok"
        assert operation.calls == 2

    def test_invalid_max_retries(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=0)


class TestTimeoutPolicy:
    """Test per-attempt timeouts"""

    @pytest.mark.asyncio
    async def test_timeout(self):
        seen = {}

        async def slow(token):
            seen["token"] = token
            await asyncio.sleep(10)

        with pytest.raises(StepTimeoutError):
            await TimeoutPolicy(0.05).execute(slow, CancellationToken())
        assert seen["token"].is_cancelled

    @pytest.mark.asyncio
    async def test_fast_operation(self):
        async def fast(token):
            return 42

        assert await TimeoutPolicy(1).execute(fast, CancellationToken()) == 42

    @pytest.mark.asyncio
    async def test_caller_cancellation_is_not_a_timeout(self):
        token = CancellationToken()

        async def waits_for_token(inner):
            await inner.sleep(10)

        task = asyncio.ensure_future(TimeoutPolicy(5).execute(waits_for_token, token))
        await asyncio.sleep(0.01)
        token.cancel("caller")

        with pytest.raises(OperationCancelledError):
            await task


class TestFallbackPolicy:
    """Test fallback substitution"""

    @pytest.mark.asyncio
    async def test_fallback_result(self):
        async def fallback(error, token):
            return f"fallback: {error}"

        policy = FallbackPolicy(fallback)
        result = await policy.execute(FlakyOperation(failures=1, error=ValueError("boom")), CancellationToken())
        assert result == "fallback: boom"

    @pytest.mark.asyncio
    async def test_should_handle_filter(self):
        async def fallback(error, token):
            return "unused"

        policy = FallbackPolicy(fallback, should_handle=lambda e: isinstance(e, TransientError))
        with pytest.raises(ValueError):
            await policy.execute(FlakyOperation(failures=1, error=ValueError("boom")), CancellationToken())


class TestResiliencePipeline:
    """Test policy composition"""

    @pytest.mark.asyncio
    async def test_first_policy_is_outermost(self):
        order = []

        class Recording(ResiliencePolicy):
            def __init__(self, label):
                self.label = label

            async def execute(self, operation, token):
                order.append(f"enter {self.label}")
                try:
                    return await operation(token)
                finally:
                    order.append(f"exit {self.label}")

        async def operation(token):
            order.append("operation")
            return "done"

        pipeline = ResiliencePipeline().add_policy(Recording("outer")).add_policy(Recording("inner"))
        assert await pipeline.execute(operation) == "done"
        assert order == ["enter outer", "enter inner", "operation", "exit inner", "exit outer"]

    @pytest.mark.asyncio
    async def test_retry_around_timeout(self):
        calls = []

        async def slow_then_fast(token):
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(10)
            return "fast"

        pipeline = ResiliencePipeline().add_retry(max_retries=2, initial_delay=0).add_timeout(0.05)
        assert await pipeline.execute(slow_then_fast) == "fast"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_retry_through_open_breaker(self):
        breaker = CircuitBreaker("tool:flaky", CircuitBreakerConfig(failure_threshold=2, open_duration=60))
        operation = FlakyOperation(failures=10)
        pipeline = ResiliencePipeline().add_retry(max_retries=5, initial_delay=0).add_circuit_breaker(breaker)

        with pytest.raises(CircuitBreakerOpenError):
            await pipeline.execute(operation)
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_empty_pipeline(self):
        async def operation(token):
            return "plain"

        assert await ResiliencePipeline().execute(operation) == "plain"


class TestCancellationToken:
    """Test cancellation tokens"""

    def test_linked_token_follows_parent(self):
        parent = CancellationToken()
        child = parent.create_linked()
        parent.cancel("stop")
        assert child.is_cancelled
        assert child.reason == "stop"

    def test_child_cancel_does_not_affect_parent(self):
        parent = CancellationToken()
        child = parent.create_linked()
        child.cancel()
        assert not parent.is_cancelled

    def test_linked_to_cancelled_parent(self):
        parent = CancellationToken()
        parent.cancel("already")
        assert parent.create_linked().is_cancelled

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel("done")
        with pytest.raises(OperationCancelledError):
            token.raise_if_cancelled()

    @pytest.mark.asyncio
    async def test_guard_returns_result(self):
        async def value():
            return 7

        assert await CancellationToken().guard(value()) == 7

    @pytest.mark.asyncio
    async def test_guard_interrupted(self):
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, token.cancel, "interrupted")

        with pytest.raises(OperationCancelledError) as exc_info:
            await token.guard(asyncio.sleep(10))
        assert exc_info.value.reason == "interrupted"
