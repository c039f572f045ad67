"""
Test Fixtures

Explicit, deterministic builders for operations, logs and history
directories. No random generation here; property tests bring their own
strategies.
"""

from pathlib import Path
from typing import Iterable, List

from chronology.contracts.operations import (
    EditSubtype, FileAction, Operation, ResourceChangeKind, ResourceSide,
    ResourceTarget, TextEdit,
)
from chronology.storage import HistoryStore
from chronology.temporal.operation_log import OperationLog


# =============================================================================
# FIXED PATHS AND TIMES
# =============================================================================

AUTHOR = "alice"

PATH_B = "/Proj/src/a/B.java"
KEY_B = "Proj%a%B.java"
PATH_C = "/Proj/src/a/C.java"
KEY_C = "Proj%a%C.java"
PATH_D = "/Proj/src/b/D.java"
KEY_D = "Proj%b%D.java"

T0 = 1_700_000_000_000


# =============================================================================
# OPERATION BUILDERS
# =============================================================================

def open_op(ts: int, snapshot: str, path: str = PATH_B, seq: int = 0) -> Operation:
    return Operation.file_event(ts, path, FileAction.OPEN, snapshot, seq, AUTHOR)


def save_op(ts: int, snapshot: str, path: str = PATH_B, seq: int = 0) -> Operation:
    return Operation.file_event(ts, path, FileAction.SAVE, snapshot, seq, AUTHOR)


def close_op(ts: int, snapshot: str, path: str = PATH_B, seq: int = 0) -> Operation:
    return Operation.file_event(ts, path, FileAction.CLOSE, snapshot, seq, AUTHOR)


def activate_op(ts: int, path: str = PATH_B, seq: int = 0) -> Operation:
    return Operation.file_event(ts, path, FileAction.ACTIVATE, None, seq, AUTHOR)


def edit_op(
    ts: int,
    offset: int,
    inserted: str = "",
    deleted: str = "",
    path: str = PATH_B,
    subtype: EditSubtype = EditSubtype.EDIT,
    seq: int = 0
) -> Operation:
    return Operation.text_edit(ts, path, offset, inserted, deleted, subtype, seq, AUTHOR)


def copy_op(ts: int, offset: int, text: str, path: str = PATH_B, seq: int = 0) -> Operation:
    return Operation.copy(ts, path, offset, text, seq, AUTHOR)


def compound_op(ts: int, children: Iterable[TextEdit], path: str = PATH_B, seq: int = 0) -> Operation:
    return Operation.compound(ts, path, tuple(children), "refactor", seq, AUTHOR)


def rename_op(
    ts: int,
    new_path: str,
    old_path: str,
    side: ResourceSide = ResourceSide.DESTINATION,
    snapshot: str = None,
    seq: int = 0
) -> Operation:
    """Rename record as emitted at the given side."""
    if side == ResourceSide.DESTINATION:
        file_path, identical = new_path, old_path
    else:
        file_path, identical = old_path, new_path
    return Operation.resource_change(
        ts, file_path, ResourceChangeKind.RENAMED, ResourceTarget.FILE,
        identical_path=identical, snapshot=snapshot, side=side,
        sequence_number=seq, author=AUTHOR
    )


def removed_op(ts: int, path: str = PATH_B, seq: int = 0) -> Operation:
    return Operation.resource_change(
        ts, path, ResourceChangeKind.REMOVED, sequence_number=seq, author=AUTHOR
    )


def every_variant() -> List[Operation]:
    """One operation of each kind, including optional fields both ways."""
    return [
        open_op(T0, "abc\n"),
        activate_op(T0 + 1),
        edit_op(T0 + 2, 1, "X", "b"),
        edit_op(T0 + 2, 0, "", "", subtype=EditSubtype.UNDO, seq=1),
        copy_op(T0 + 3, 0, "aX"),
        compound_op(T0 + 4, (TextEdit(0, "//", ""), TextEdit(5, "", "\n", EditSubtype.CUT))),
        Operation.command(T0 + 5, None, "org.example.format", 0, AUTHOR),
        save_op(T0 + 6, "line1\r\nline2\n"),
        rename_op(T0 + 7, PATH_C, PATH_B, snapshot="//aXc"),
        rename_op(T0 + 8, PATH_D, PATH_C, side=ResourceSide.ORIGIN),
        Operation.resource_change(T0 + 9, "/Proj/src/b", ResourceChangeKind.ADDED,
                                  ResourceTarget.PACKAGE, author=AUTHOR),
        close_op(T0 + 10, "", path=PATH_D),
    ]


# =============================================================================
# HISTORY DIRECTORY BUILDERS
# =============================================================================

def make_log(ops: Iterable[Operation]) -> OperationLog:
    return OperationLog(ops)


def write_log(store: HistoryStore, ops: Iterable[Operation], flush_time: int) -> Path:
    result = store.write(make_log(ops), flush_time=flush_time)
    assert result.is_success, result.error
    return result.value


def write_corrupt(directory: Path, name: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(b"<history version='1.0'><edit time='oops'")
    return path


def rename_history(store: HistoryStore) -> None:
    """B opened and edited in one session, renamed to C and edited in the next."""
    write_log(store, [
        open_op(T0, "abc"),
        edit_op(T0 + 10, 1, "X", "b"),
        save_op(T0 + 20, "aXc"),
    ], flush_time=T0 + 20)
    write_log(store, [
        rename_op(T0 + 30, PATH_C, PATH_B),
        edit_op(T0 + 40, 3, "!", "", path=PATH_C),
        save_op(T0 + 50, "aXc!", path=PATH_C),
    ], flush_time=T0 + 50)
