"""
Repository Aggregator
=====================

Merges every durable log under a directory into one HierarchicalIndex.

GUARANTEES:
===========
1. A corrupt or unreadable log is skipped, counted and reported; the
   rebuild continues with the rest
2. Duplicate operations (same identity) coming from several logs are
   merged: the first copy wins
3. Rename/move continuity: the origin node is evicted from lookup and
   linked to its destination; the destination exists before any link
4. Atomic: the new index is built aside and swapped in only on success;
   on cancellation or failure the live index is reset to empty
5. Rebuilding an unchanged directory yields an identical index
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Set, Tuple
import logging
import threading
import time

from ..contracts.base import ChronologyError, Error, RebuildCancelled
from ..contracts.events import (
    AuditEventType, RepositoryChangedEvent, RepositoryChangeType
)
from ..contracts.operations import (
    Operation, ResourceChange, ResourceChangeKind, ResourceSide, ResourceTarget
)
from .index import FileNode, HierarchicalIndex, file_key

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
RepositoryListener = Callable[[RepositoryChangedEvent], None]


@dataclass
class AggregatorConfig:
    """Configuration for the repository aggregator."""
    dedupe_operations: bool = True
    # Resource targets whose changes drive eviction and move bridging
    eviction_targets: Tuple[ResourceTarget, ...] = (ResourceTarget.FILE,)


class CancellationToken:
    """Cooperative cancellation flag polled by the rebuild loop."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RebuildCancelled("rebuild cancelled")


@dataclass(frozen=True)
class RebuildReport:
    """Outcome and counters of one rebuild."""
    success: bool
    files_scanned: int = 0
    files_decoded: int = 0
    skipped_files: Tuple[str, ...] = field(default_factory=tuple)
    operations_routed: int = 0
    duplicate_operations: int = 0
    repairs: int = 0
    duration_ms: float = 0.0
    error: Optional[Error] = None

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_files)


class RepositoryAggregator:
    """
    Sole writer of the hierarchical index.

    Readers keep seeing the previous index until a rebuild succeeds.
    """

    def __init__(self, store, config: Optional[AggregatorConfig] = None, audit=None):
        self._store = store
        self._config = config or AggregatorConfig()
        self._audit = audit
        self._index = HierarchicalIndex()
        self._built = False
        self._last_update: Optional[float] = None
        self._last_report: Optional[RebuildReport] = None
        self._listeners: List[RepositoryListener] = []

    @property
    def index(self) -> HierarchicalIndex:
        return self._index

    @property
    def is_built(self) -> bool:
        return self._built

    @property
    def last_report(self) -> Optional[RebuildReport]:
        return self._last_report

    @property
    def last_update(self) -> Optional[float]:
        return self._last_update

    def add_listener(self, listener: RepositoryListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: RepositoryListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def refresh(
        self,
        directory: Optional[Path] = None,
        cancel_token: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None
    ) -> Optional[RebuildReport]:
        """Rebuild only if never built or a log file changed since the last build."""
        if self._built and self._last_update is not None:
            latest = self._store.latest_modification(directory)
            if latest is None or latest <= self._last_update:
                logger.debug("Repository up to date, skipping rebuild")
                return None
        return self.rebuild(directory, cancel_token, progress)

    def rebuild(
        self,
        directory: Optional[Path] = None,
        cancel_token: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None
    ) -> RebuildReport:
        token = cancel_token or CancellationToken()
        update_time = time.time()
        started = time.monotonic()
        staging = HierarchicalIndex()
        self._record(AuditEventType.AGGREGATION, "rebuild_started",
                     str(directory or self._store.history_dir))

        files_scanned = 0
        files_decoded = 0
        skipped: List[str] = []
        routed = 0
        duplicates = 0
        try:
            paths = self._store.list_log_files(directory)
            files_scanned = len(paths)
            total = 2 * files_scanned
            worked = 0

            chunks: List[Tuple[Operation, ...]] = []
            for path in paths:
                token.raise_if_cancelled()
                stored = self._store.read(path)
                if stored.log is None:
                    logger.warning("Skipping unreadable log %s: %s", path, stored.error.message)
                    self._record(AuditEventType.ERROR, "decode_skipped", str(path),
                                 reason=stored.error.message)
                    skipped.append(str(path))
                    chunks.append(())
                else:
                    files_decoded += 1
                    chunks.append(stored.log.operations())
                worked += 1
                self._report_progress(progress, worked, total)

            seen: Set[Tuple] = set()
            for chunk in chunks:
                for op in chunk:
                    token.raise_if_cancelled()
                    if self._config.dedupe_operations:
                        if op.identity in seen:
                            duplicates += 1
                            continue
                        seen.add(op.identity)
                    self._route(staging, op)
                    routed += 1
                worked += 1
                self._report_progress(progress, worked, total)

            staging.finalize()
            repairs = staging.repair_consistency()
        except RebuildCancelled as e:
            return self._abort(e, started, files_scanned, files_decoded, skipped)
        except Exception as e:
            logger.warning("Rebuild failed", exc_info=True)
            failure = ChronologyError(f"rebuild failed: {e}")
            return self._abort(failure, started, files_scanned, files_decoded, skipped)

        self._index = staging
        self._built = True
        self._last_update = update_time
        report = RebuildReport(
            success=True,
            files_scanned=files_scanned,
            files_decoded=files_decoded,
            skipped_files=tuple(skipped),
            operations_routed=routed,
            duplicate_operations=duplicates,
            repairs=repairs,
            duration_ms=(time.monotonic() - started) * 1000
        )
        self._last_report = report
        logger.info(
            "Rebuilt repository: %d files (%d skipped), %d operations, %d duplicates",
            files_scanned, len(skipped), routed, duplicates
        )
        self._record(AuditEventType.AGGREGATION, "rebuild_completed", None,
                     files=str(files_scanned), skipped=str(len(skipped)),
                     operations=str(routed))
        self._notify(RepositoryChangedEvent(
            RepositoryChangeType.UPDATE, staging.file_count, staging.operation_count
        ))
        return report

    def clear(self) -> None:
        """Empty the index and tell listeners."""
        self._index = HierarchicalIndex()
        self._built = False
        self._last_update = None
        self._record(AuditEventType.AGGREGATION, "index_cleared", None)
        self._notify(RepositoryChangedEvent(RepositoryChangeType.CLEAR))

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    def _route(self, index: HierarchicalIndex, op: Operation) -> None:
        payload = op.payload
        if (
            not isinstance(payload, ResourceChange)
            or payload.target not in self._config.eviction_targets
        ):
            index.get_or_create_file(op.file_path).append(op)
            return

        if payload.change_kind == ResourceChangeKind.REMOVED:
            node = index.get_or_create_file(op.file_path)
            node.append(op)
            index.evict(node)
        elif payload.is_move:
            self._route_move(index, op, payload)
        else:
            index.get_or_create_file(op.file_path).append(op)

    def _route_move(self, index: HierarchicalIndex, op: Operation, payload: ResourceChange) -> None:
        if payload.side == ResourceSide.DESTINATION:
            destination = index.get_or_create_file(op.file_path)
            destination.append(op)
            origin = index.find_file(payload.identical_path) if payload.identical_path else None
        else:
            linked = self._linked_origin(index, op.file_path, payload.identical_path)
            if linked is not None:
                # Twin of a destination record already routed
                linked.append(op)
                return
            origin = index.get_or_create_file(op.file_path)
            origin.append(op)
            if payload.identical_path is None:
                logger.debug("Move origin %s has no destination path", op.file_path)
                return
            destination = index.get_or_create_file(payload.identical_path)
        self._bridge(index, origin, destination)

    @staticmethod
    def _linked_origin(
        index: HierarchicalIndex,
        origin_path: Optional[str],
        destination_path: Optional[str]
    ) -> Optional[FileNode]:
        """Evicted node already linked into destination_path for origin_path."""
        if destination_path is None or index.find_file(origin_path) is not None:
            return None
        destination = index.find_file(destination_path)
        if destination is None:
            return None
        predecessor = destination.predecessor()
        if predecessor is not None and predecessor.key == file_key(origin_path):
            return predecessor
        return None

    @staticmethod
    def _bridge(
        index: HierarchicalIndex,
        origin: Optional[FileNode],
        destination: FileNode
    ) -> None:
        if origin is None:
            logger.debug("No live origin for %s, nothing to link", destination.key)
            return
        if origin is destination:
            return
        index.evict(origin)
        if destination.moved_from is not None:
            logger.debug("%s already has a predecessor, %s left unlinked",
                         destination.key, origin.key)
            return
        index.link(origin, destination)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _abort(
        self,
        error: ChronologyError,
        started: float,
        files_scanned: int,
        files_decoded: int,
        skipped: List[str]
    ) -> RebuildReport:
        logger.warning("Rebuild aborted, index reset: %s", error)
        self._record(AuditEventType.ERROR, "rebuild_failed", None,
                     code=error.code.name, reason=str(error))
        self._index = HierarchicalIndex()
        self._built = False
        self._last_update = None
        report = RebuildReport(
            success=False,
            files_scanned=files_scanned,
            files_decoded=files_decoded,
            skipped_files=tuple(skipped),
            duration_ms=(time.monotonic() - started) * 1000,
            error=error.to_error()
        )
        self._last_report = report
        self._notify(RepositoryChangedEvent(RepositoryChangeType.CLEAR))
        return report

    @staticmethod
    def _report_progress(progress: Optional[ProgressCallback], worked: int, total: int) -> None:
        if progress is not None:
            progress(worked, total)

    def _notify(self, event: RepositoryChangedEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _record(
        self,
        event_type: AuditEventType,
        action: str,
        entity_id: Optional[str],
        **metadata: str
    ) -> None:
        if self._audit is not None:
            self._audit.record(event_type, action, entity_id, **metadata)
