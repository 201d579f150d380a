"""
Observability for stepflow
"""

from .metrics import StepflowMetrics, metrics

__all__ = ["StepflowMetrics", "metrics"]
