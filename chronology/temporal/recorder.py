"""
Capture Session
===============

Turns the editor's boundary events into stamped Operations and flushes
them to the history store.

INVARIANTS:
- Sequence numbers count per timestamp for the whole session, also when a
  timestamp recurs out of order or after a flush, so identities never collide
- A flush is one critical section: drain sorted, write, restore on failure
- A failed write keeps the session log; nothing is dropped
- Consecutive Activate records for the same file collapse into one
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, Iterable, Optional
import logging

from ..contracts.base import ChronologyError, ErrorCode
from ..contracts.events import AuditEventType
from ..contracts.operations import (
    EditSubtype, FileAction, FileLifecycle, Operation, ResourceChangeKind,
    ResourceSide, ResourceTarget, TextEdit,
)
from .clock import LogicalClock
from .operation_log import OperationLog

logger = logging.getLogger(__name__)


class FlushFailed(ChronologyError):
    """The session log could not be written; it is kept for a later flush."""
    code = ErrorCode.WRITE_FAILED


class CaptureSession:
    """
    One recording session over a workspace.

    Usage:
        session = CaptureSession(store, author="alice")
        session.file_opened("/Proj/src/a/B.java", "abc")
        session.text_edited("/Proj/src/a/B.java", 1, "X", "b")
        session.file_saved("/Proj/src/a/B.java", "aXc")   # flushes
    """

    def __init__(
        self,
        store,
        clock: Optional[LogicalClock] = None,
        author: str = "",
        default_charset: Optional[str] = None,
        audit=None
    ):
        self._store = store
        self._clock = clock or LogicalClock.live()
        self._author = author
        self._default_charset = default_charset
        self._audit = audit
        self._log = OperationLog()
        self._next_sequence: Dict[int, int] = {}
        self._last_operation: Optional[Operation] = None

    @property
    def log(self) -> OperationLog:
        return self._log

    @property
    def author(self) -> str:
        return self._author

    # -------------------------------------------------------------------------
    # Boundary events
    # -------------------------------------------------------------------------

    def operation_produced(self, op: Operation) -> Operation:
        """Stamp and append an operation produced by an edit listener."""
        with self._log.lock:
            sequence = self._next_sequence.get(op.timestamp, 0)
            self._next_sequence[op.timestamp] = sequence + 1
            stamped = op.with_sequence(sequence)
            self._log.append(stamped)
            self._last_operation = stamped
        return stamped

    def file_opened(self, path: str, snapshot: str) -> Operation:
        return self._file_event(path, FileAction.OPEN, snapshot)

    def file_activated(self, path: str) -> Optional[Operation]:
        """Record editor activation unless the previous record already was one."""
        last = self._last_operation
        if (
            last is not None
            and last.file_path == path
            and isinstance(last.payload, FileLifecycle)
            and last.payload.action == FileAction.ACTIVATE
        ):
            return None
        return self._file_event(path, FileAction.ACTIVATE, None)

    def file_saved(self, path: str, snapshot: str, charset: Optional[str] = None) -> Operation:
        op = self._file_event(path, FileAction.SAVE, snapshot)
        self.flush(charset)
        return op

    def file_closed(self, path: str, snapshot: str, charset: Optional[str] = None) -> Operation:
        op = self._file_event(path, FileAction.CLOSE, snapshot)
        self.flush(charset)
        return op

    def resource_changed(
        self,
        change_kind: ResourceChangeKind,
        path: Optional[str],
        target: ResourceTarget = ResourceTarget.FILE,
        identical_path: Optional[str] = None,
        snapshot: Optional[str] = None,
        side: ResourceSide = ResourceSide.DESTINATION
    ) -> Operation:
        return self.operation_produced(Operation.resource_change(
            self._clock.now(), path, change_kind, target=target,
            identical_path=identical_path, snapshot=snapshot, side=side,
            author=self._author
        ))

    # Helpers for the edit listeners

    def text_edited(
        self,
        path: str,
        start_offset: int,
        inserted_text: str = "",
        deleted_text: str = "",
        subtype: EditSubtype = EditSubtype.EDIT
    ) -> Operation:
        return self.operation_produced(Operation.text_edit(
            self._clock.now(), path, start_offset, inserted_text, deleted_text,
            subtype, author=self._author
        ))

    def copied(self, path: str, start_offset: int, copied_text: str) -> Operation:
        return self.operation_produced(Operation.copy(
            self._clock.now(), path, start_offset, copied_text, author=self._author
        ))

    def command_executed(self, path: Optional[str], command_id: str) -> Operation:
        return self.operation_produced(Operation.command(
            self._clock.now(), path, command_id, author=self._author
        ))

    def compound_edited(
        self,
        path: str,
        children: Iterable[TextEdit],
        group_type: str = ""
    ) -> Operation:
        return self.operation_produced(Operation.compound(
            self._clock.now(), path, tuple(children), group_type, author=self._author
        ))

    # -------------------------------------------------------------------------
    # Flush
    # -------------------------------------------------------------------------

    def flush(self, charset: Optional[str] = None) -> Optional[Path]:
        """
        Write the session log as one durable file and clear it.

        Returns the written path, or None when there was nothing to write.
        Raises FlushFailed if the store rejects the write.
        """
        with self._log.lock:
            if len(self._log) == 0:
                return None
            drained = self._log.drain_sorted()
            count = len(drained)
            result = self._store.write(
                OperationLog(drained), charset=charset or self._default_charset
            )
            if result.is_failure:
                self._log.extend(drained)
                logger.error("Flush failed, keeping %d operations: %s", count, result.error.message)
                self._record("flush_failed", None, reason=result.error.message)
                raise FlushFailed(result.error.message)

        path = result.value
        logger.info("Flushed %d operations to %s", count, path)
        self._record("log_flushed", str(path), operations=str(count))
        return path

    def _file_event(self, path: str, action: FileAction, snapshot: Optional[str]) -> Operation:
        return self.operation_produced(Operation.file_event(
            self._clock.now(), path, action, snapshot, author=self._author
        ))

    def _record(self, action: str, entity_id: Optional[str], **metadata: str) -> None:
        if self._audit is not None:
            self._audit.record(AuditEventType.CAPTURE, action, entity_id, **metadata)
