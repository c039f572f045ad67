"""
Contracts Module

Explicit interfaces and data transfer objects shared between layers.
No layer may import implementation details from another layer; they
exchange only these types.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. Recoverable failures are explicit Error values, never silent
3. Timestamps are epoch milliseconds (UTC)
4. Operation identity is (path, timestamp, sequence, author)
"""

from .base import (
    ChronologyError,
    Error,
    ErrorCode,
    NoBaseStateError,
    RebuildCancelled,
    ReconstructionError,
    Result,
    TextMismatchError,
    TimeRange,
    UnknownFileError,
)
from .operations import (
    Command,
    Compound,
    Copy,
    EditSubtype,
    FileAction,
    FileLifecycle,
    Operation,
    OperationKind,
    ResourceChange,
    ResourceChangeKind,
    ResourceSide,
    ResourceTarget,
    TextEdit,
    operation_sort_key,
)

__all__ = [
    'ChronologyError',
    'Error',
    'ErrorCode',
    'NoBaseStateError',
    'RebuildCancelled',
    'ReconstructionError',
    'Result',
    'TextMismatchError',
    'TimeRange',
    'UnknownFileError',
    'Command',
    'Compound',
    'Copy',
    'EditSubtype',
    'FileAction',
    'FileLifecycle',
    'Operation',
    'OperationKind',
    'ResourceChange',
    'ResourceChangeKind',
    'ResourceSide',
    'ResourceTarget',
    'TextEdit',
    'operation_sort_key',
]
