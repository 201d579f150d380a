"""
State store and transaction contracts
"""

import copy
import json
import time
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ValidationError

from ..errors import StateSerializationError, StateStoreError, StateTransactionError
from ..logging.config import get_logger
from ..models.execution import ExecutionContext

logger = get_logger(__name__)

# Marker for keys deleted inside a transaction
DELETED = object()


def context_key(session_id: str) -> str:
    return f"session:{session_id}"


def encode_value(value: Any) -> str:
    """Serialise a value to JSON text; pydantic models are dumped first"""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    try:
        return json.dumps(value, ensure_ascii=False, separators=(',', ':'))
    except (TypeError, ValueError) as e:
        raise StateSerializationError(f"value is not JSON serialisable: {e}")


def decode_value(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise StateSerializationError(f"stored value is not valid JSON: {e}")


class TransactionState(str, Enum):
    """Transaction lifecycle"""
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class StateStore(ABC):
    """
    Key/value store for execution state.

    Values are JSON documents. Implementations must make ``apply_batch``
    atomic: a committed transaction's writes land together or not at
    all.
    """

    backend = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Value for ``key``, or None if missing or expired"""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store ``value``; ``ttl`` is in seconds"""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether a live value is stored"""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``; True if something was removed"""

    @abstractmethod
    async def apply_batch(self, writes: Dict[str, Tuple[Any, Optional[float]]]) -> None:
        """Atomically apply encoded writes; DELETED values remove the key"""

    @abstractmethod
    async def is_healthy(self) -> bool:
        """Cheap liveness check"""

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """Drop expired entries; returns how many were removed"""

    @abstractmethod
    async def get_statistics(self) -> Dict[str, Any]:
        """Counters describing store usage"""

    def begin_transaction(self, timeout: Optional[float] = 30.0) -> "StateTransaction":
        return StateTransaction(self, timeout=timeout)

    async def save_context(self, context: ExecutionContext, ttl: Optional[float] = None) -> None:
        await self.set(context_key(context.session_id), context.snapshot(), ttl)

    async def load_context(self, session_id: str) -> Optional[ExecutionContext]:
        data = await self.get(context_key(session_id))
        if data is None:
            return None
        try:
            return ExecutionContext.model_validate(data)
        except ValidationError as e:
            raise StateSerializationError(f"stored context for '{session_id}' is invalid: {e.errors()[0]['msg']}")

    async def close(self) -> None:
        """Release resources held by the store"""


class StateTransaction:
    """
    Buffered set of writes committed atomically.

    Reads see the transaction's own writes first. Savepoints capture
    the buffer so part of the work can be undone. Used as an async
    context manager it commits on a clean exit and rolls back when the
    block raises.
    """

    def __init__(self, store: StateStore, timeout: Optional[float] = 30.0):
        self.store = store
        self.transaction_id = uuid.uuid4().hex
        self.start_time = datetime.now(timezone.utc)
        self.timeout = timeout
        self.state = TransactionState.ACTIVE
        self._started = time.monotonic()
        self._writes: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._savepoints: "OrderedDict[str, Dict[str, Tuple[Any, Optional[float]]]]" = OrderedDict()

    @property
    def keys(self):
        return set(self._writes)

    def _ensure_active(self) -> None:
        if (
            self.state == TransactionState.ACTIVE
            and self.timeout is not None
            and time.monotonic() - self._started > self.timeout
        ):
            self.state = TransactionState.TIMED_OUT
        if self.state != TransactionState.ACTIVE:
            raise StateTransactionError(
                f"transaction {self.transaction_id} is {self.state.value}",
                self.transaction_id
            )

    async def get(self, key: str) -> Optional[Any]:
        self._ensure_active()
        if key in self._writes:
            value = self._writes[key][0]
            return None if value is DELETED else decode_value(value)
        return await self.store.get(key)

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._ensure_active()
        self._writes[key] = (encode_value(value), ttl)

    async def delete(self, key: str) -> None:
        self._ensure_active()
        self._writes[key] = (DELETED, None)

    def create_savepoint(self, name: str) -> None:
        self._ensure_active()
        self._savepoints.pop(name, None)
        self._savepoints[name] = copy.copy(self._writes)

    def rollback_to_savepoint(self, name: str) -> None:
        self._ensure_active()
        if name not in self._savepoints:
            raise StateTransactionError(f"unknown savepoint '{name}'", self.transaction_id)
        self._writes = copy.copy(self._savepoints[name])
        # Savepoints taken after this one no longer apply
        names = list(self._savepoints)
        for later in names[names.index(name) + 1:]:
            del self._savepoints[later]

    async def commit(self) -> None:
        self._ensure_active()
        try:
            await self.store.apply_batch(dict(self._writes))
        except StateStoreError:
            self.state = TransactionState.FAILED
            raise
        self.state = TransactionState.COMMITTED
        logger.debug(
            "Transaction committed",
            transaction_id=self.transaction_id,
            keys=len(self._writes),
            backend=self.store.backend
        )

    async def rollback(self) -> None:
        if self.state == TransactionState.COMMITTED:
            raise StateTransactionError("cannot roll back a committed transaction", self.transaction_id)
        if self.state == TransactionState.ACTIVE:
            self.state = TransactionState.ROLLED_BACK
        self._writes.clear()
        self._savepoints.clear()

    async def __aenter__(self) -> "StateTransaction":
        self._ensure_active()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            if self.state != TransactionState.COMMITTED:
                await self.rollback()
            return False
        if self.state == TransactionState.ACTIVE:
            await self.commit()
        return False
