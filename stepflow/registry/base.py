"""
Name-keyed registry shared by tools and LLM functions
"""

import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from ..logging.config import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass(frozen=True)
class Resolved(Generic[T]):
    """Successful lookup"""
    name: str
    executable: T


@dataclass(frozen=True)
class NotResolved:
    """Failed lookup"""
    name: str
    reason: str


Resolution = Union[Resolved, NotResolved]


class Registry(ABC, Generic[T]):
    """Thread-safe name -> executable map"""

    kind = "executable"

    def __init__(self):
        self._items: Dict[str, T] = {}
        self._lock = threading.Lock()

    @staticmethod
    @abstractmethod
    def name_of(item: T) -> str:
        """Registry key for an item"""

    @abstractmethod
    def describe(self, item: T) -> Dict[str, Any]:
        """Machine-readable description used for planner prompts"""

    def register(self, item: T, replace: bool = False) -> None:
        name = self.name_of(item)
        if not name:
            raise ValueError(f"{self.kind} must have a non-empty name")
        with self._lock:
            if name in self._items and not replace:
                raise ValueError(f"{self.kind} '{name}' is already registered")
            self._items[name] = item
        logger.debug("Registered executable", kind=self.kind, name=name)

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._items.pop(name, None) is not None

    def resolve(self, name: Optional[str]) -> Resolution:
        if not name:
            return NotResolved(name="", reason=f"no {self.kind} name given")
        with self._lock:
            item = self._items.get(name)
        if item is None:
            return NotResolved(name=name, reason=f"{self.kind} '{name}' is not registered")
        return Resolved(name=name, executable=item)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._items)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def describe_all(self) -> List[Dict[str, Any]]:
        with self._lock:
            items = [self._items[name] for name in sorted(self._items)]
        return [self.describe(item) for item in items]

    def describe_all_for_prompting(self) -> str:
        """JSON list of descriptions, sorted by name"""
        return json.dumps(self.describe_all(), ensure_ascii=False, indent=2)
