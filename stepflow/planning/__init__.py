"""
Plan construction for stepflow
"""

from .builder import PlanBuilder, validate_payloads
from .parser import parse_plan_document, parse_planner_output, extract_json

__all__ = [
    "PlanBuilder",
    "validate_payloads",
    "parse_plan_document",
    "parse_planner_output",
    "extract_json"
]
