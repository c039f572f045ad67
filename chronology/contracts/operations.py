"""
Operation Contracts
===================

The record type for every recordable editing action.

An Operation is a fixed header (time, sequence, path, author) plus exactly
one payload drawn from a CLOSED set of variants. Replay and routing dispatch
exhaustively on the payload kind.

INVARIANTS:
- Operations are immutable once created
- Total order is (timestamp, sequence_number)
- Identity is (file_path, timestamp, sequence_number, author); two records
  with the same identity are the same operation, whatever log they came from
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
from typing import ClassVar, Optional, Tuple, Union


# =============================================================================
# DISCRIMINANTS
# =============================================================================

class OperationKind(Enum):
    """Variant discriminant. Values are the durable element tags."""
    TEXT_EDIT = "edit"
    COPY = "copy"
    COMPOUND = "compound"
    FILE = "file"
    COMMAND = "command"
    RESOURCE = "resource"


class EditSubtype(Enum):
    EDIT = "Edit"
    CUT = "Cut"
    PASTE = "Paste"
    UNDO = "Undo"
    REDO = "Redo"


class FileAction(Enum):
    OPEN = "Open"
    ACTIVATE = "Activate"
    SAVE = "Save"
    CLOSE = "Close"


class ResourceTarget(Enum):
    PROJECT = "Project"
    PACKAGE = "Package"
    FILE = "File"


class ResourceChangeKind(Enum):
    ADDED = "Added"
    REMOVED = "Removed"
    MOVED = "Moved"
    RENAMED = "Renamed"
    CHANGED = "Changed"


class ResourceSide(Enum):
    """
    Which end of a move/rename a record was emitted at.

    ORIGIN:      file_path is the old location, identical_path the new one
    DESTINATION: file_path is the new location, identical_path the old one
    """
    ORIGIN = "Origin"
    DESTINATION = "Destination"


SNAPSHOT_ACTIONS = frozenset({FileAction.OPEN, FileAction.SAVE, FileAction.CLOSE})
BASE_STATE_ACTIONS = frozenset({FileAction.OPEN, FileAction.SAVE})
MOVE_KINDS = frozenset({ResourceChangeKind.MOVED, ResourceChangeKind.RENAMED})


# =============================================================================
# PAYLOADS (Closed variant set)
# =============================================================================

@dataclass(frozen=True)
class TextEdit:
    """Positional text change: remove deleted_text, insert inserted_text."""
    start_offset: int
    inserted_text: str = ""
    deleted_text: str = ""
    subtype: EditSubtype = EditSubtype.EDIT

    kind: ClassVar[OperationKind] = OperationKind.TEXT_EDIT

    def __post_init__(self):
        if self.start_offset < 0:
            raise ValueError("start_offset must be non-negative")


@dataclass(frozen=True)
class Copy:
    """Clipboard snapshot. Does not change the text."""
    start_offset: int
    copied_text: str = ""

    kind: ClassVar[OperationKind] = OperationKind.COPY

    def __post_init__(self):
        if self.start_offset < 0:
            raise ValueError("start_offset must be non-negative")


@dataclass(frozen=True)
class Compound:
    """Several edits forming one logical action, replayed atomically."""
    children: Tuple[TextEdit, ...]
    group_type: str = ""

    kind: ClassVar[OperationKind] = OperationKind.COMPOUND

    def __post_init__(self):
        if not isinstance(self.children, tuple):
            object.__setattr__(self, 'children', tuple(self.children))


@dataclass(frozen=True)
class FileLifecycle:
    """Open/Activate/Save/Close of an editor on the file."""
    action: FileAction
    snapshot: Optional[str] = None

    kind: ClassVar[OperationKind] = OperationKind.FILE

    def __post_init__(self):
        if self.action in SNAPSHOT_ACTIONS and self.snapshot is None:
            raise ValueError(f"{self.action.value} requires a snapshot")
        if self.action == FileAction.ACTIVATE and self.snapshot is not None:
            raise ValueError("Activate must not carry a snapshot")


@dataclass(frozen=True)
class Command:
    """Menu or tool invocation with no direct text effect."""
    command_id: str

    kind: ClassVar[OperationKind] = OperationKind.COMMAND


@dataclass(frozen=True)
class ResourceChange:
    """Project/package/file added, removed, moved, renamed or changed."""
    target: ResourceTarget
    change_kind: ResourceChangeKind
    identical_path: Optional[str] = None
    snapshot: Optional[str] = None
    side: ResourceSide = ResourceSide.DESTINATION

    kind: ClassVar[OperationKind] = OperationKind.RESOURCE

    def __post_init__(self):
        if self.change_kind not in MOVE_KINDS and self.identical_path is not None:
            raise ValueError(f"{self.change_kind.value} must not carry an identical path")

    @property
    def is_move(self) -> bool:
        return self.change_kind in MOVE_KINDS


Payload = Union[TextEdit, Copy, Compound, FileLifecycle, Command, ResourceChange]

PAYLOAD_TYPES = (TextEdit, Copy, Compound, FileLifecycle, Command, ResourceChange)


# =============================================================================
# OPERATION
# =============================================================================

@dataclass(frozen=True)
class Operation:
    """
    One normalized record of an edit or lifecycle event.

    Equality (==) compares every field including the payload.
    Use `same_as` for the identity comparison used to merge logs.
    """
    timestamp: int
    file_path: Optional[str]
    payload: Payload
    sequence_number: int = 0
    author: str = ""

    def __post_init__(self):
        if not isinstance(self.payload, PAYLOAD_TYPES):
            raise TypeError(f"Unsupported payload type: {type(self.payload).__name__}")

    @property
    def kind(self) -> OperationKind:
        return self.payload.kind

    @property
    def order_key(self) -> Tuple[int, int]:
        return (self.timestamp, self.sequence_number)

    @property
    def identity(self) -> Tuple[Optional[str], int, int, str]:
        return (self.file_path, self.timestamp, self.sequence_number, self.author)

    def same_as(self, other: Operation) -> bool:
        return self.identity == other.identity

    def with_sequence(self, sequence_number: int) -> Operation:
        return replace(self, sequence_number=sequence_number)

    def identity_string(self) -> str:
        """Stable textual identity, used as a graph node id."""
        path, ts, seq, author = self.identity
        return f"{path or ''}|{ts}|{seq}|{author}"

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @staticmethod
    def text_edit(
        timestamp: int,
        file_path: Optional[str],
        start_offset: int,
        inserted_text: str = "",
        deleted_text: str = "",
        subtype: EditSubtype = EditSubtype.EDIT,
        sequence_number: int = 0,
        author: str = ""
    ) -> Operation:
        return Operation(
            timestamp=timestamp,
            file_path=file_path,
            payload=TextEdit(start_offset, inserted_text, deleted_text, subtype),
            sequence_number=sequence_number,
            author=author
        )

    @staticmethod
    def copy(
        timestamp: int,
        file_path: Optional[str],
        start_offset: int,
        copied_text: str,
        sequence_number: int = 0,
        author: str = ""
    ) -> Operation:
        return Operation(timestamp, file_path, Copy(start_offset, copied_text),
                         sequence_number, author)

    @staticmethod
    def compound(
        timestamp: int,
        file_path: Optional[str],
        children: Tuple[TextEdit, ...],
        group_type: str = "",
        sequence_number: int = 0,
        author: str = ""
    ) -> Operation:
        return Operation(timestamp, file_path, Compound(tuple(children), group_type),
                         sequence_number, author)

    @staticmethod
    def file_event(
        timestamp: int,
        file_path: Optional[str],
        action: FileAction,
        snapshot: Optional[str] = None,
        sequence_number: int = 0,
        author: str = ""
    ) -> Operation:
        return Operation(timestamp, file_path, FileLifecycle(action, snapshot),
                         sequence_number, author)

    @staticmethod
    def command(
        timestamp: int,
        file_path: Optional[str],
        command_id: str,
        sequence_number: int = 0,
        author: str = ""
    ) -> Operation:
        return Operation(timestamp, file_path, Command(command_id),
                         sequence_number, author)

    @staticmethod
    def resource_change(
        timestamp: int,
        file_path: Optional[str],
        change_kind: ResourceChangeKind,
        target: ResourceTarget = ResourceTarget.FILE,
        identical_path: Optional[str] = None,
        snapshot: Optional[str] = None,
        side: ResourceSide = ResourceSide.DESTINATION,
        sequence_number: int = 0,
        author: str = ""
    ) -> Operation:
        return Operation(
            timestamp=timestamp,
            file_path=file_path,
            payload=ResourceChange(target, change_kind, identical_path, snapshot, side),
            sequence_number=sequence_number,
            author=author
        )


# =============================================================================
# CLASSIFIERS
# =============================================================================

def operation_sort_key(op: Operation) -> Tuple[int, int]:
    return op.order_key


def is_text_operation(op: Operation) -> bool:
    """True for operations that change text when replayed."""
    return op.kind in (OperationKind.TEXT_EDIT, OperationKind.COMPOUND)


def carries_snapshot(op: Operation) -> bool:
    payload = op.payload
    if isinstance(payload, (FileLifecycle, ResourceChange)):
        return payload.snapshot is not None
    return False


def is_base_state(op: Operation) -> bool:
    """True for an Open/Save record whose snapshot can seed reconstruction."""
    payload = op.payload
    return (
        isinstance(payload, FileLifecycle)
        and payload.action in BASE_STATE_ACTIONS
        and payload.snapshot is not None
    )


def is_file_resource_change(op: Operation) -> bool:
    payload = op.payload
    return isinstance(payload, ResourceChange) and payload.target == ResourceTarget.FILE
