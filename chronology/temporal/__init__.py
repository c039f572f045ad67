"""
Temporal Layer
==============

Capture and replay of a file's edit timeline.

INVARIANTS:
- Operation logs are append-only; operations are never mutated
- After sorting, a log is ordered by (timestamp, sequence_number)
- Same operation sequence at same index = same reconstructed text

Modules:
- operation_log: Append-only operation container
- clock: Injectable millisecond clock
- recorder: Capture session and flush to the history store
- replay: Reconstruction, nearest-time queries, timeline cursor
"""

from .operation_log import LogState, OperationLog
from .clock import ClockExhausted, LogicalClock
from .replay import (
    ReplayEngine,
    TimelineCursor,
    earliest_operation_after,
    find_focal_index,
    latest_operation_before,
    reconstruct,
)
from .recorder import CaptureSession, FlushFailed

__all__ = [
    'LogState',
    'OperationLog',
    'ClockExhausted',
    'LogicalClock',
    'ReplayEngine',
    'TimelineCursor',
    'earliest_operation_after',
    'find_focal_index',
    'latest_operation_before',
    'reconstruct',
    'CaptureSession',
    'FlushFailed',
]
