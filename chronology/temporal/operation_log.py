"""
Operation Log
=============

Append-only operation storage for one capture session.

INVARIANTS:
- Operations are never mutated after append
- After sort(), the sequence is non-decreasing in (timestamp, sequence_number)
- clear() forgets the session only; flushed durable copies are untouched

Capture order across several listeners is not guaranteed to be monotone,
so the log is sorted right before it is written.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple

from ..contracts.operations import Operation, operation_sort_key


@dataclass(frozen=True)
class LogState:
    """Immutable snapshot of log state."""
    entry_count: int
    first_time: Optional[int]
    last_time: Optional[int]
    is_sorted: bool

    @staticmethod
    def empty() -> 'LogState':
        return LogState(entry_count=0, first_time=None, last_time=None, is_sorted=True)


class OperationLog:
    """
    Ordered, appendable container of Operations.

    GUARANTEES:
    ===========
    1. append is O(1) and only ever adds to the tail
    2. sort is stable: operations with equal keys keep arrival order
    3. drain_sorted is one critical section (sort + snapshot + clear)

    append is not meant for several concurrent writers; the lock only keeps
    a late append from slipping between the sort and the clear of a flush.
    """

    def __init__(self, operations: Optional[Iterable[Operation]] = None):
        self._operations: List[Operation] = list(operations or ())
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def state(self) -> LogState:
        with self._lock:
            if not self._operations:
                return LogState.empty()
            return LogState(
                entry_count=len(self._operations),
                first_time=min(op.timestamp for op in self._operations),
                last_time=max(op.timestamp for op in self._operations),
                is_sorted=self.is_sorted()
            )

    def append(self, op: Operation) -> None:
        with self._lock:
            self._operations.append(op)

    def extend(self, ops: Iterable[Operation]) -> None:
        with self._lock:
            self._operations.extend(ops)

    def sort(self) -> None:
        with self._lock:
            self._operations.sort(key=operation_sort_key)

    def clear(self) -> None:
        with self._lock:
            self._operations.clear()

    def drain_sorted(self) -> Tuple[Operation, ...]:
        """Sort, take a snapshot and clear, without letting appends in between."""
        with self._lock:
            self._operations.sort(key=operation_sort_key)
            drained = tuple(self._operations)
            self._operations.clear()
            return drained

    def size(self) -> int:
        return len(self._operations)

    def get(self, index: int) -> Operation:
        return self._operations[index]

    def last(self) -> Optional[Operation]:
        """Most recently appended operation, or None if empty."""
        with self._lock:
            return self._operations[-1] if self._operations else None

    def operations(self) -> Tuple[Operation, ...]:
        with self._lock:
            return tuple(self._operations)

    def is_sorted(self) -> bool:
        ops = self._operations
        return all(
            ops[i].order_key <= ops[i + 1].order_key
            for i in range(len(ops) - 1)
        )

    def __len__(self) -> int:
        return len(self._operations)

    def __getitem__(self, index: int) -> Operation:
        return self._operations[index]

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OperationLog):
            return NotImplemented
        return self.operations() == other.operations()

    def __repr__(self) -> str:
        return f"OperationLog(size={len(self._operations)})"
