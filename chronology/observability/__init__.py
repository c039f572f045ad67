"""
Observability & Audit Layer

RESPONSIBILITY: Logging setup and append-only audit trails
ALLOWED INPUTS: Audit records from any layer
OUTPUTS: AuditLogEntry lists, unified audit reports

WHAT THIS LAYER MUST NOT DO:
============================
- Modify system behavior
- Filter or interpret events (only record them)
- Make decisions based on logged data

Library modules only ever call logging.getLogger(__name__); handlers are
installed by the entry points (CLI, API server) through configure_logging.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union
import hashlib
import itertools
import logging
import sys

from ..contracts.events import AuditEventType, AuditLogEntry

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_handler: Optional[logging.Handler] = None


def configure_logging(level: Union[int, str] = "INFO") -> logging.Logger:
    """
    Install one stream handler on the package logger.

    Safe to call repeatedly; later calls only change the level.
    """
    global _handler
    root = logging.getLogger("chronology")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)
    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(_handler)
    return root


# =============================================================================
# LOG COLLECTORS (One per layer)
# =============================================================================

class AuditCollector:
    """
    Append-only audit collector for one layer.

    No modification of collected data; entries can only be added and read.
    """

    _ids = itertools.count(1)

    def __init__(self, layer_name: str):
        self._layer_name = layer_name
        self._entries: List[AuditLogEntry] = []

    def collect(self, entry: AuditLogEntry):
        """Collect an audit entry (append-only)."""
        self._entries.append(entry)

    def record(
        self,
        event_type: AuditEventType,
        action: str,
        entity_id: Optional[str] = None,
        **metadata: str
    ) -> AuditLogEntry:
        """Build and collect an entry in one step."""
        now = datetime.now(timezone.utc)
        digest = hashlib.sha256(
            f"{self._layer_name}_{action}|{now.timestamp()}|{next(self._ids)}".encode()
        ).hexdigest()[:16]
        entry = AuditLogEntry(
            entry_id=f"audit_{digest}",
            event_type=event_type,
            timestamp=now,
            layer=self._layer_name,
            action=action,
            entity_id=entity_id,
            metadata=tuple((k, str(v)) for k, v in sorted(metadata.items()))
        )
        self.collect(entry)
        return entry

    def get_entries(
        self,
        event_type: Optional[AuditEventType] = None,
        action: Optional[str] = None
    ) -> List[AuditLogEntry]:
        """Get entries, optionally filtered."""
        entries = self._entries
        if event_type:
            entries = [e for e in entries if e.event_type == event_type]
        if action:
            entries = [e for e in entries if e.action == action]
        return list(entries)

    @property
    def layer_name(self) -> str:
        return self._layer_name

    @property
    def entry_count(self) -> int:
        return len(self._entries)


class AuditTrail:
    """Per-layer collectors with a unified, time-ordered view."""

    LAYERS = ('capture', 'storage', 'aggregation', 'replay')

    def __init__(self):
        self._collectors: Dict[str, AuditCollector] = {
            name: AuditCollector(name) for name in self.LAYERS
        }

    def collector(self, layer: str) -> AuditCollector:
        if layer not in self._collectors:
            self._collectors[layer] = AuditCollector(layer)
        return self._collectors[layer]

    def get_unified_log(self, layers: Optional[List[str]] = None) -> List[AuditLogEntry]:
        target_layers = layers or list(self._collectors.keys())
        all_entries: List[AuditLogEntry] = []
        for name in target_layers:
            collector = self._collectors.get(name)
            if collector:
                all_entries.extend(collector.get_entries())
        all_entries.sort(key=lambda e: e.timestamp)
        return all_entries

    def generate_report(self) -> Dict:
        entries = self.get_unified_log()
        by_layer: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        for entry in entries:
            by_layer[entry.layer] = by_layer.get(entry.layer, 0) + 1
            by_type[entry.event_type.value] = by_type.get(entry.event_type.value, 0) + 1
        return {
            'total_entries': len(entries),
            'by_layer': by_layer,
            'by_event_type': by_type,
        }


__all__ = [
    'LOG_FORMAT',
    'AuditCollector',
    'AuditTrail',
    'configure_logging',
]
