"""
Engine Orchestration Module

This module provides the unified interface for coordinating the
capture, storage, repository and replay layers.

DESIGN PRINCIPLES:
==================
1. Layers communicate ONLY through contracts
2. The engine owns one index object; there are no process globals
3. All rebuilds and flushes are traceable through the audit trail
4. Display consumers get read-only views
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple
import os

from .contracts.base import UnknownFileError
from .contracts.events import FocalChangedEvent
from .contracts.operations import Operation
from .core import DependencyGraphBuilder, OperationDependencyGraph
from .observability import AuditTrail
from .repository import (
    AggregatorConfig, CancellationToken, FileNode, HierarchicalIndex,
    PackageNode, ProjectNode, RebuildReport, RepositoryAggregator,
)
from .storage import HistoryStore, StoreConfig
from .temporal import CaptureSession, LogicalClock, TimelineCursor
from .temporal.replay import ReplayConfig

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class ChronologyConfig:
    """Unified configuration for the whole engine."""
    store: StoreConfig = None
    aggregator: AggregatorConfig = None
    replay: ReplayConfig = None
    log_level: str = "INFO"

    def __post_init__(self):
        self.store = self.store or StoreConfig()
        self.aggregator = self.aggregator or AggregatorConfig()
        self.replay = self.replay or ReplayConfig()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ChronologyConfig':
        """
        Build a config from CHRONOLOGY_* environment variables.

        CHRONOLOGY_HISTORY_DIR, CHRONOLOGY_CHARSET, CHRONOLOGY_STRICT_REPLAY,
        CHRONOLOGY_USE_LINEAGE, CHRONOLOGY_LOG_LEVEL; unset variables keep
        their defaults.
        """
        env = os.environ if environ is None else environ
        store = StoreConfig()
        if env.get("CHRONOLOGY_HISTORY_DIR"):
            store.history_dir = Path(env["CHRONOLOGY_HISTORY_DIR"])
        if env.get("CHRONOLOGY_CHARSET"):
            store.default_charset = env["CHRONOLOGY_CHARSET"]

        replay = ReplayConfig()
        if env.get("CHRONOLOGY_STRICT_REPLAY"):
            replay.strict = env["CHRONOLOGY_STRICT_REPLAY"].strip().lower() in _TRUE_VALUES
        if env.get("CHRONOLOGY_USE_LINEAGE"):
            replay.use_lineage = env["CHRONOLOGY_USE_LINEAGE"].strip().lower() in _TRUE_VALUES

        return cls(
            store=store,
            replay=replay,
            log_level=env.get("CHRONOLOGY_LOG_LEVEL", "INFO").upper()
        )


class ChronologyEngine:
    """
    Unified facade over capture, aggregation and replay.

    LAYER FLOW:
    ===========
    1. Capture: boundary events → OperationLog → durable log file
    2. Repository: durable logs → HierarchicalIndex
    3. Replay: one file's operations → text at any recorded moment
    4. Observability: records rebuilds, skips and flushes
    """

    def __init__(self, config: Optional[ChronologyConfig] = None):
        self._config = config or ChronologyConfig()
        self._audit = AuditTrail()
        self._store = HistoryStore.from_config(self._config.store)
        self._aggregator = RepositoryAggregator(
            self._store,
            self._config.aggregator,
            audit=self._audit.collector('aggregation')
        )
        self._graph_builder = DependencyGraphBuilder()

    @property
    def config(self) -> ChronologyConfig:
        return self._config

    @property
    def store(self) -> HistoryStore:
        return self._store

    @property
    def aggregator(self) -> RepositoryAggregator:
        return self._aggregator

    @property
    def index(self) -> HierarchicalIndex:
        return self._aggregator.index

    @property
    def audit(self) -> AuditTrail:
        return self._audit

    # =========================================================================
    # CAPTURE INTERFACE
    # =========================================================================

    def capture_session(
        self,
        author: str = "",
        clock: Optional[LogicalClock] = None
    ) -> CaptureSession:
        return CaptureSession(
            self._store,
            clock=clock,
            author=author,
            default_charset=self._config.store.default_charset,
            audit=self._audit.collector('capture')
        )

    # =========================================================================
    # REPOSITORY INTERFACE
    # =========================================================================

    def rebuild(
        self,
        cancel_token: Optional[CancellationToken] = None,
        progress=None
    ) -> RebuildReport:
        return self._aggregator.rebuild(None, cancel_token, progress)

    def refresh(
        self,
        cancel_token: Optional[CancellationToken] = None,
        progress=None
    ) -> Optional[RebuildReport]:
        return self._aggregator.refresh(None, cancel_token, progress)

    def list_projects(self) -> List[ProjectNode]:
        return self.index.list_projects()

    def list_packages(self, project: str) -> List[PackageNode]:
        return self.index.list_packages(project)

    def list_files(self, project: str, package: str) -> List[FileNode]:
        return self.index.list_files(project, package)

    def get_file(self, file_key: str) -> FileNode:
        node = self.index.get_file(file_key)
        if node is None:
            raise UnknownFileError(f"no file with key {file_key!r}")
        return node

    def operations(self, file_key: str, use_lineage: Optional[bool] = None) -> Tuple[Operation, ...]:
        node = self.get_file(file_key)
        if self._lineage(use_lineage):
            return node.full_history()
        return node.operations

    def lineage(self, file_key: str) -> List[FileNode]:
        return self.get_file(file_key).lineage()

    # =========================================================================
    # REPLAY INTERFACE
    # =========================================================================

    def cursor(
        self,
        file_key: str,
        use_lineage: Optional[bool] = None,
        strict: Optional[bool] = None
    ) -> TimelineCursor:
        return TimelineCursor(
            self.get_file(file_key),
            strict=self._config.replay.strict if strict is None else strict,
            use_lineage=self._lineage(use_lineage)
        )

    def reconstruct(self, file_key: str, index: int, use_lineage: Optional[bool] = None) -> str:
        return self.cursor(file_key, use_lineage).text_at(index)

    def focal(
        self,
        file_key: str,
        time: int,
        use_lineage: Optional[bool] = None
    ) -> Optional[FocalChangedEvent]:
        return self.cursor(file_key, use_lineage).find_focal_time(time)

    def dependency_graph(self, file_key: str, use_lineage: Optional[bool] = None) -> OperationDependencyGraph:
        return self._graph_builder.build(self.operations(file_key, use_lineage))

    def get_audit_report(self) -> Dict:
        return self._audit.generate_report()

    def _lineage(self, use_lineage: Optional[bool]) -> bool:
        return self._config.replay.use_lineage if use_lineage is None else use_lineage
