"""
Replay Engine
=============

Reconstruction of file text and navigation over one file's timeline.

INVARIANT: Replay is deterministic.
Same operation sequence at same index = same text.

RECONSTRUCTION:
1. Start from the snapshot of the latest Open/Save at or before the index
2. Apply each TextEdit / Compound after it, up to and including the index
3. Everything else (copy, command, activate, close, resource) is a no-op
4. Undo/Redo are replayed literally, like any other edit

All functions here expect the sequence sorted by (timestamp, sequence).
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence
import logging

from ..contracts.base import (
    ErrorCode, Error, NoBaseStateError, ReconstructionError, TextMismatchError
)
from ..contracts.events import FocalChangedEvent
from ..contracts.operations import (
    Compound, Operation, TextEdit, is_base_state, operation_sort_key
)

logger = logging.getLogger(__name__)


@dataclass
class ReplayConfig:
    """Replay behaviour for cursors created by the engine."""
    strict: bool = True
    use_lineage: bool = False


# =============================================================================
# NEAREST-TIME QUERIES (binary search)
# =============================================================================

def latest_operation_before(ops: Sequence[Operation], t: int) -> Optional[int]:
    """Highest index whose timestamp is <= t, or None."""
    lo, hi = 0, len(ops)
    while lo < hi:
        mid = (lo + hi) // 2
        if ops[mid].timestamp <= t:
            lo = mid + 1
        else:
            hi = mid
    return lo - 1 if lo > 0 else None


def earliest_operation_after(ops: Sequence[Operation], t: int) -> Optional[int]:
    """Lowest index whose timestamp is >= t, or None."""
    lo, hi = 0, len(ops)
    while lo < hi:
        mid = (lo + hi) // 2
        if ops[mid].timestamp < t:
            lo = mid + 1
        else:
            hi = mid
    return lo if lo < len(ops) else None


def find_focal_index(ops: Sequence[Operation], t: int) -> Optional[int]:
    """
    Index of the operation nearest in time to t.

    Equal distances favour the earlier operation. None when the
    sequence is empty.
    """
    before = latest_operation_before(ops, t)
    after = earliest_operation_after(ops, t)
    if before is None:
        return after
    if after is None:
        return before
    if t - ops[before].timestamp <= ops[after].timestamp - t:
        return before
    return after


# =============================================================================
# RECONSTRUCTION
# =============================================================================

def apply_edit(text: str, edit: TextEdit, index: int, strict: bool = True) -> str:
    """Remove deleted_text at start_offset, then insert inserted_text there."""
    offset = edit.start_offset
    end = offset + len(edit.deleted_text)
    if end > len(text):
        raise TextMismatchError(
            index,
            f"edit at offset {offset} spans past end of text (length {len(text)})"
        )
    if strict and text[offset:end] != edit.deleted_text:
        raise TextMismatchError(
            index,
            f"expected {edit.deleted_text!r} at offset {offset}, "
            f"found {text[offset:end]!r}"
        )
    return text[:offset] + edit.inserted_text + text[end:]


def apply_operation(text: str, op: Operation, index: int, strict: bool = True) -> str:
    """Text after replaying one operation. Compounds apply as one unit."""
    payload = op.payload
    if isinstance(payload, TextEdit):
        return apply_edit(text, payload, index, strict)
    if isinstance(payload, Compound):
        working = text
        for child in payload.children:
            working = apply_edit(working, child, index, strict)
        return working
    return text


def find_base_index(ops: Sequence[Operation], index: int) -> Optional[int]:
    """Latest Open/Save with a snapshot at or before index."""
    for i in range(index, -1, -1):
        if is_base_state(ops[i]):
            return i
    return None


def _check_index(ops: Sequence[Operation], index: int) -> None:
    if not 0 <= index < len(ops):
        raise IndexError(f"index {index} out of range for {len(ops)} operations")


def reconstruct(ops: Sequence[Operation], index: int, strict: bool = True) -> str:
    """
    Text of the file right after ops[index] is applied.

    Raises:
        IndexError: index outside the sequence
        NoBaseStateError: no Open/Save snapshot at or before index
        TextMismatchError: an edit does not fit the text (strict mode checks
            deleted text too)
    """
    _check_index(ops, index)
    base = find_base_index(ops, index)
    if base is None:
        raise NoBaseStateError("no base state available")

    text = ops[base].payload.snapshot
    for i in range(base + 1, index + 1):
        text = apply_operation(text, ops[i], i, strict)
    return text


class ReplayEngine:
    """
    Checkpointing reconstructor for one operation sequence.

    GUARANTEES:
    ===========
    1. reconstruct(i) == module-level reconstruct(ops, i) for every i
    2. Each successful reconstruction is cached as a checkpoint
    3. Later requests resume from the nearest checkpoint sharing their base
    """

    def __init__(self, ops: Sequence[Operation], strict: bool = True):
        self._ops = tuple(ops)
        self._strict = strict
        self._bases: List[int] = [i for i, op in enumerate(self._ops) if is_base_state(op)]
        self._checkpoints: Dict[int, str] = {}
        self._checkpoint_indices: List[int] = []
        for b in self._bases:
            self._store(b, self._ops[b].payload.snapshot)

    @property
    def operations(self):
        return self._ops

    @property
    def checkpoint_count(self) -> int:
        return len(self._checkpoint_indices)

    def base_index(self, index: int) -> Optional[int]:
        pos = bisect_right(self._bases, index)
        return self._bases[pos - 1] if pos > 0 else None

    def reconstruct(self, index: int) -> str:
        _check_index(self._ops, index)
        if index in self._checkpoints:
            return self._checkpoints[index]

        base = self.base_index(index)
        if base is None:
            raise NoBaseStateError("no base state available")

        # Nearest checkpoint at or after the base (the base itself is one).
        pos = bisect_right(self._checkpoint_indices, index)
        start = self._checkpoint_indices[pos - 1]
        if start < base:
            start = base

        text = self._checkpoints[start]
        for i in range(start + 1, index + 1):
            text = apply_operation(text, self._ops[i], i, self._strict)
        self._store(index, text)
        return text

    def try_reconstruct(self, index: int):
        """(text, None) on success, (None, Error) on any failure."""
        try:
            return self.reconstruct(index), None
        except ReconstructionError as e:
            return None, e.to_error(index=str(index))
        except IndexError:
            return None, invalid_index_error(index, len(self._ops))

    def _store(self, index: int, text: str) -> None:
        if index not in self._checkpoints:
            pos = bisect_right(self._checkpoint_indices, index)
            self._checkpoint_indices.insert(pos, index)
        self._checkpoints[index] = text


# =============================================================================
# TIMELINE CURSOR
# =============================================================================

FocalListener = Callable[[FocalChangedEvent], None]


class TimelineCursor:
    """
    Focal position on one file's timeline.

    Accepts either a file node from the hierarchical index or a plain
    operation sequence. With use_lineage, a node is replayed across its
    rename/move ancestors.
    """

    def __init__(self, source, strict: bool = True, use_lineage: bool = False):
        if hasattr(source, 'full_history'):
            ops = source.full_history() if use_lineage else source.operations
        else:
            ops = source
        self._ops = tuple(sorted(ops, key=operation_sort_key))
        self._engine = ReplayEngine(self._ops, strict=strict)
        self._focal_index: Optional[int] = None
        self._focal_time: Optional[int] = None
        self._listeners: List[FocalListener] = []

    @property
    def operations(self):
        return self._ops

    @property
    def size(self) -> int:
        return len(self._ops)

    @property
    def focal_index(self) -> Optional[int]:
        return self._focal_index

    @property
    def focal_time(self) -> Optional[int]:
        return self._focal_time

    def add_listener(self, listener: FocalListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: FocalListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def go_to(self, index: int) -> FocalChangedEvent:
        """Move the focal point to index and notify listeners."""
        if not 0 <= index < len(self._ops):
            raise IndexError(f"index {index} out of range for {len(self._ops)} operations")

        self._focal_index = index
        self._focal_time = self._ops[index].timestamp
        text, error = self._engine.try_reconstruct(index)
        event = FocalChangedEvent(index=index, time=self._focal_time, text=text, error=error)
        logger.debug("Focal moved to %d (t=%d)", index, self._focal_time)
        for listener in list(self._listeners):
            listener(event)
        return event

    def find_focal_time(self, t: int) -> Optional[FocalChangedEvent]:
        """Move to the operation nearest t; no-op when there is none."""
        index = find_focal_index(self._ops, t)
        if index is None:
            return None
        return self.go_to(index)

    def next(self) -> Optional[FocalChangedEvent]:
        if not self._ops:
            return None
        if self._focal_index is None:
            return self.go_to(0)
        if self._focal_index + 1 >= len(self._ops):
            return None
        return self.go_to(self._focal_index + 1)

    def previous(self) -> Optional[FocalChangedEvent]:
        if not self._ops or self._focal_index is None or self._focal_index == 0:
            return None
        return self.go_to(self._focal_index - 1)

    def current_text(self) -> Optional[str]:
        """Reconstruction at the focal index; None before the first move."""
        if self._focal_index is None:
            return None
        return self._engine.reconstruct(self._focal_index)

    def text_at(self, index: int) -> str:
        return self._engine.reconstruct(index)


def invalid_index_error(index: int, size: int) -> Error:
    return Error.create(
        ErrorCode.INVALID_INDEX, f"index {index} out of range", index=str(index), size=str(size)
    )
