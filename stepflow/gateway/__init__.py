"""
HTTP gateway for stepflow
"""

from .app import create_app, create_state_store

__all__ = ["create_app", "create_state_store"]
