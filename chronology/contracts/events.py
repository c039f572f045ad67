"""
Event Contracts

Immutable notifications passed from the writing layers (capture, storage,
aggregation) to read-only consumers (display, audit).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from .base import Error


# =============================================================================
# AUDIT CONTRACTS
# =============================================================================

class AuditEventType(Enum):
    """Explicit audit event types."""
    CAPTURE = "capture"
    STORAGE = "storage"
    AGGREGATION = "aggregation"
    REPLAY = "replay"
    ERROR = "error"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit log entry."""
    entry_id: str
    event_type: AuditEventType
    timestamp: datetime
    layer: str  # Which layer generated this
    action: str
    entity_id: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def get(self, key: str) -> Optional[str]:
        for k, v in self.metadata:
            if k == key:
                return v
        return None


# =============================================================================
# REPOSITORY / VIEW NOTIFICATIONS
# =============================================================================

class RepositoryChangeType(Enum):
    UPDATE = "update"
    CLEAR = "clear"


@dataclass(frozen=True)
class RepositoryChangedEvent:
    """Fired whenever the hierarchical index is rebuilt or cleared."""
    kind: RepositoryChangeType
    file_count: int = 0
    operation_count: int = 0


@dataclass(frozen=True)
class FocalChangedEvent:
    """
    Fired when a timeline cursor moves.

    Carries the reconstructed text for the new focal index, or the error
    explaining why no text is available there.
    """
    index: int
    time: int
    text: Optional[str] = None
    error: Optional[Error] = None
