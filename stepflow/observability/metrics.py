"""
Prometheus metrics definitions for stepflow
"""

from prometheus_client import Counter, Gauge, Histogram, Info


class StepflowMetrics:
    """stepflow Prometheus metrics collection"""

    def __init__(self, registry=None):
        kwargs = {"registry": registry} if registry is not None else {}

        # Plan metrics
        self.plan_executions_total = Counter(
            'stepflow_plan_executions_total',
            'Total number of plan executions by final status',
            ['plan_type', 'status'],
            **kwargs
        )

        self.plan_duration_seconds = Histogram(
            'stepflow_plan_duration_seconds',
            'Wall-clock time of plan executions',
            ['plan_type'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0],
            **kwargs
        )

        # Step metrics
        self.step_executions_total = Counter(
            'stepflow_step_executions_total',
            'Total number of step executions by kind and status',
            ['kind', 'status'],
            **kwargs
        )

        self.step_duration_seconds = Histogram(
            'stepflow_step_duration_seconds',
            'Time spent executing steps',
            ['kind'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
            **kwargs
        )

        self.retry_attempts_total = Counter(
            'stepflow_retry_attempts_total',
            'Total number of retried attempts',
            ['error_type'],
            **kwargs
        )

        # Circuit breaker metrics
        self.circuit_breaker_state = Gauge(
            'stepflow_circuit_breaker_state',
            'Circuit breaker state (0=closed, 1=open, 2=half_open)',
            ['circuit'],
            **kwargs
        )

        self.circuit_breaker_rejections_total = Counter(
            'stepflow_circuit_breaker_rejections_total',
            'Calls rejected by an open circuit',
            ['circuit'],
            **kwargs
        )

        # State store metrics
        self.state_operations_total = Counter(
            'stepflow_state_operations_total',
            'State store operations by outcome',
            ['backend', 'operation', 'status'],
            **kwargs
        )

        self.system_info = Info(
            'stepflow_system_info',
            'stepflow system information',
            **kwargs
        )
        self._initialize_system_info()

    def _initialize_system_info(self):
        import platform
        import sys

        self.system_info.info({
            'version': '0.1.0',
            'python_version': sys.version.split()[0],
            'platform': platform.platform()
        })

    def record_plan_execution(self, plan_type: str, status: str, duration: float = None):
        """Record a finished plan execution"""
        self.plan_executions_total.labels(plan_type=plan_type, status=status).inc()
        if duration is not None:
            self.plan_duration_seconds.labels(plan_type=plan_type).observe(duration)

    def record_step_execution(self, kind: str, status: str, duration: float = None):
        """Record a terminal step outcome"""
        self.step_executions_total.labels(kind=kind, status=status).inc()
        if duration is not None:
            self.step_duration_seconds.labels(kind=kind).observe(duration)

    def record_retry_attempt(self, error_type: str):
        """Record one retried attempt"""
        self.retry_attempts_total.labels(error_type=error_type).inc()

    def update_circuit_breaker_state(self, circuit: str, state: str):
        """Update circuit breaker state"""
        state_value = {'closed': 0, 'open': 1, 'half_open': 2}.get(state, 0)
        self.circuit_breaker_state.labels(circuit=circuit).set(state_value)

    def record_circuit_breaker_rejection(self, circuit: str):
        """Record a fast-fail rejection"""
        self.circuit_breaker_rejections_total.labels(circuit=circuit).inc()

    def record_state_operation(self, backend: str, operation: str, status: str):
        """Record a state store operation"""
        self.state_operations_total.labels(
            backend=backend,
            operation=operation,
            status=status
        ).inc()


# Global metrics instance
metrics = StepflowMetrics()
