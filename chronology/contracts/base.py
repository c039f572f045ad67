"""
Shared Contracts

Error values, the exception hierarchy and millisecond time helpers used
by capture, storage, aggregation and replay alike.

BOUNDARY ENFORCEMENT:
=====================
- Imports nothing from the rest of the package
- Value types are frozen dataclasses
- Every exception carries the ErrorCode it maps to
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Tuple
from enum import Enum, auto


# =============================================================================
# ERROR RECORDS
# =============================================================================

class ErrorCode(Enum):
    """
    Every failure a caller can observe, raised or returned, maps to
    exactly one of these.
    """
    # Storage / codec errors
    DECODE_FAILED = auto()
    ENCODE_FAILED = auto()
    WRITE_FAILED = auto()

    # Aggregation errors
    REBUILD_FAILED = auto()
    REBUILD_CANCELLED = auto()
    FILE_NOT_FOUND = auto()

    # Replay errors
    NO_BASE_STATE = auto()
    TEXT_MISMATCH = auto()
    INVALID_INDEX = auto()


@dataclass(frozen=True)
class Error:
    """A failure as data: kept in reports, audit entries and API responses."""
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @staticmethod
    def create(code: ErrorCode, message: str, **context: str) -> Error:
        return Error(
            code=code,
            message=message,
            timestamp=datetime.now(timezone.utc),
            context=tuple((k, str(v)) for k, v in sorted(context.items())),
        )


@dataclass(frozen=True)
class Result:
    """Outcome of a write that may fail without raising (value XOR error)."""
    value: Optional[object] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: object) -> Result:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: Error) -> Result:
        return Result(value=None, error=error)


# =============================================================================
# EXCEPTIONS (Control flow for single-call failures)
# =============================================================================

class ChronologyError(Exception):
    """Base class for errors raised by this package."""

    code: ErrorCode = ErrorCode.REBUILD_FAILED

    def to_error(self, **context: str) -> Error:
        return Error.create(self.code, str(self), **context)


class ReconstructionError(ChronologyError):
    """Text state could not be reconstructed at the requested index."""
    code = ErrorCode.TEXT_MISMATCH


class NoBaseStateError(ReconstructionError):
    """No snapshot-bearing Open/Save operation at or before the index."""
    code = ErrorCode.NO_BASE_STATE


class TextMismatchError(ReconstructionError):
    """A recorded edit does not fit the text it is applied to."""
    code = ErrorCode.TEXT_MISMATCH

    def __init__(self, index: int, message: str):
        super().__init__(f"operation {index}: {message}")
        self.index = index


class UnknownFileError(ChronologyError):
    """No live file in the index has the requested key."""
    code = ErrorCode.FILE_NOT_FOUND


class RebuildCancelled(ChronologyError):
    """Raised from a cancellation checkpoint during repository rebuild."""
    code = ErrorCode.REBUILD_CANCELLED


# =============================================================================
# TEMPORAL TYPES
# =============================================================================

def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def millis_to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)


def format_millis(value: Optional[int]) -> str:
    """Human readable UTC rendering used by the CLI and API."""
    if value is None:
        return "-"
    return millis_to_datetime(value).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


@dataclass(frozen=True)
class TimeRange:
    """Immutable closed time range in epoch milliseconds."""
    start: int
    end: int

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError("TimeRange start must be before or equal to end")

    def contains(self, timestamp: int) -> bool:
        return self.start <= timestamp <= self.end

    def union(self, other: Optional[TimeRange]) -> TimeRange:
        if other is None:
            return self
        return TimeRange(min(self.start, other.start), max(self.end, other.end))

    @staticmethod
    def covering(timestamps: Iterable[int]) -> Optional[TimeRange]:
        """Smallest range covering all timestamps, or None if there are none."""
        values = list(timestamps)
        if not values:
            return None
        return TimeRange(min(values), max(values))
