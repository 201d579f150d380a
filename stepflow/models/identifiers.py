"""
Step identifiers
"""

import re
from typing import Any, Tuple

from pydantic_core import core_schema


_STEP_ID_PATTERN = re.compile(r"^step_(\d+)((?:_\d+)*)$")


class StepId(str):
    """
    Sequential step identifier.

    Top-level steps are ``step_0001``, ``step_0002``...; children of a
    parallel step append a two digit index: ``step_0003_01``. Ordering
    compares the embedded numbers, so ``step_10000`` sorts after
    ``step_9999`` and children sort right after their parent.
    """

    @classmethod
    def new(cls, sequence: int) -> "StepId":
        if sequence < 1:
            raise ValueError("step sequence numbers start at 1")
        return cls(f"step_{sequence:04d}")

    @classmethod
    def child(cls, parent: str, index: int) -> "StepId":
        if index < 1:
            raise ValueError("child indexes start at 1")
        return cls(f"{parent}_{index:02d}")

    @property
    def sort_key(self) -> Tuple[Any, ...]:
        match = _STEP_ID_PATTERN.match(self)
        if not match:
            # Caller supplied ids sort after generated ones, lexically
            return (1, str(self))
        parts = [int(match.group(1))]
        if match.group(2):
            parts.extend(int(p) for p in match.group(2).strip("_").split("_"))
        return (0, tuple(parts))

    @property
    def parent(self) -> "StepId":
        """Parent id for a child step, or the id itself"""
        match = _STEP_ID_PATTERN.match(self)
        if not match or not match.group(2):
            return self
        return StepId(self.rsplit("_", 1)[0])

    def __lt__(self, other):
        if isinstance(other, StepId):
            return self.sort_key < other.sort_key
        return str.__lt__(self, other)

    def __gt__(self, other):
        if isinstance(other, StepId):
            return self.sort_key > other.sort_key
        return str.__gt__(self, other)

    def __le__(self, other):
        return self == other or self < other

    def __ge__(self, other):
        return self == other or self > other

    __hash__ = str.__hash__

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type, handler):
        return core_schema.no_info_after_validator_function(
            cls,
            core_schema.str_schema(min_length=1),
            serialization=core_schema.plain_serializer_function_ser_schema(str)
        )


def sort_step_ids(step_ids) -> list:
    """Sort ids in ascending StepId order"""
    return sorted((StepId(s) for s in step_ids), key=lambda s: s.sort_key)
