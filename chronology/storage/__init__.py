"""
History Storage Layer

RESPONSIBILITY: Durable, append-only persistence of flushed operation logs
ALLOWED INPUTS: OperationLog snapshots from the capture session
OUTPUTS: Durable log files, decoded logs for aggregation

WHAT THIS LAYER MUST NOT DO:
============================
- Interpret operations (routing and replay belong to other layers)
- Rewrite or delete existing log files (append-only)
- Raise on a single unreadable log; the aggregator decides what to skip

BOUNDARY ENFORCEMENT:
=====================
- One file per flush, named by the flush time in epoch milliseconds
- Files are encoded by the log codec and nothing else
- Directory scans are recursive and sorted by path for determinism
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional
import logging
import os

from ..contracts.base import Error, ErrorCode, Result, now_millis
from ..temporal.operation_log import OperationLog
from . import codec

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".xml"
DEFAULT_CHARSET = "utf-8"
HISTORY_DIR_NAME = ".history"


@dataclass
class StoreConfig:
    """Where and how durable logs are written."""
    history_dir: Path = field(default_factory=lambda: Path.cwd() / HISTORY_DIR_NAME)
    extension: str = DEFAULT_EXTENSION
    default_charset: str = DEFAULT_CHARSET

    @staticmethod
    def for_workspace(workspace: Path) -> 'StoreConfig':
        return StoreConfig(history_dir=Path(workspace) / HISTORY_DIR_NAME)


@dataclass(frozen=True)
class StoredLog:
    """One durable log file together with its decode outcome."""
    path: Path
    log: Optional[OperationLog]
    error: Optional[Error] = None

    @property
    def is_readable(self) -> bool:
        return self.log is not None


class HistoryStore:
    """
    File-backed store of flushed operation logs.

    Layout:
        <history_dir>/<flush-ms>.xml
    Nested directories are scanned too, so several workspaces' histories
    can be aggregated from a common root.
    """

    def __init__(
        self,
        history_dir: Path,
        extension: str = DEFAULT_EXTENSION,
        default_charset: str = DEFAULT_CHARSET
    ):
        self._history_dir = Path(history_dir)
        self._extension = extension
        self._default_charset = default_charset

    @classmethod
    def from_config(cls, config: StoreConfig) -> 'HistoryStore':
        return cls(config.history_dir, config.extension, config.default_charset)

    @property
    def history_dir(self) -> Path:
        return self._history_dir

    @property
    def extension(self) -> str:
        return self._extension

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def write(
        self,
        log: OperationLog,
        charset: Optional[str] = None,
        flush_time: Optional[int] = None
    ) -> Result:
        """
        Write one log as a new durable file.

        Returns Result.success(path) or Result.failure(Error). An existing
        file of the same name is never overwritten; the flush time is bumped
        by one millisecond until the name is free.
        """
        encoding = charset or self._default_charset
        try:
            data = codec.to_bytes(log, encoding=encoding)
        except (LookupError, ValueError) as e:
            return Result.failure(Error.create(
                ErrorCode.ENCODE_FAILED, f"Cannot encode log: {e}", charset=encoding
            ))

        stamp = flush_time if flush_time is not None else now_millis()
        try:
            self._history_dir.mkdir(parents=True, exist_ok=True)
            while True:
                target = self._history_dir / f"{stamp}{self._extension}"
                try:
                    with open(target, 'xb') as f:
                        f.write(data)
                    break
                except FileExistsError:
                    stamp += 1
        except OSError as e:
            return Result.failure(Error.create(
                ErrorCode.WRITE_FAILED, f"Cannot write log: {e}",
                directory=str(self._history_dir)
            ))

        logger.debug("Wrote %d operations to %s", len(log), target)
        return Result.success(target)

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def list_log_files(self, directory: Optional[Path] = None) -> List[Path]:
        """
        All durable log files under a directory, recursively, sorted by path.

        Unreadable directories and files with other extensions are skipped
        silently. A missing directory yields an empty list.
        """
        root = Path(directory) if directory is not None else self._history_dir
        if not root.is_dir():
            return []

        found: List[Path] = []
        for dirpath, _dirnames, filenames in os.walk(root, onerror=self._skip_unreadable):
            for name in filenames:
                if name.endswith(self._extension):
                    found.append(Path(dirpath) / name)
        found.sort()
        return found

    def read(self, path: Path) -> StoredLog:
        """Read and decode one file. Never raises for bad content or I/O."""
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            return StoredLog(path=path, log=None, error=Error.create(
                ErrorCode.DECODE_FAILED, f"Cannot read log file: {e}", path=str(path)
            ))

        log = codec.from_bytes(data)
        if log is None:
            return StoredLog(path=path, log=None, error=Error.create(
                ErrorCode.DECODE_FAILED, "Malformed log document", path=str(path)
            ))
        return StoredLog(path=path, log=log)

    def iter_logs(self, directory: Optional[Path] = None) -> Iterator[StoredLog]:
        for path in self.list_log_files(directory):
            yield self.read(path)

    def latest_modification(self, directory: Optional[Path] = None) -> Optional[float]:
        """Newest mtime among log files, in seconds, or None if there are none."""
        latest: Optional[float] = None
        for path in self.list_log_files(directory):
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if latest is None or mtime > latest:
                latest = mtime
        return latest

    @staticmethod
    def _skip_unreadable(error: OSError) -> None:
        logger.debug("Skipping unreadable directory: %s", error)


__all__ = [
    'DEFAULT_CHARSET',
    'DEFAULT_EXTENSION',
    'HISTORY_DIR_NAME',
    'StoreConfig',
    'HistoryStore',
    'StoredLog',
    'codec',
]
