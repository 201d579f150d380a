"""
Execution state storage for stepflow
"""

from .base import StateStore, StateTransaction, TransactionState, context_key
from .memory import InMemoryStateStore
from .sqlite import SQLiteStateStore
from .schema import init_database

__all__ = [
    "StateStore",
    "StateTransaction",
    "TransactionState",
    "context_key",
    "InMemoryStateStore",
    "SQLiteStateStore",
    "init_database"
]
