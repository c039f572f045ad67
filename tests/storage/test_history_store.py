"""
History Store Tests
===================

INVARIANTS TESTED:
1. One file per flush, named by the flush time
2. Existing files are never overwritten
3. Scans are recursive, filtered by extension and sorted
4. Unreadable files are reported, never raised
"""

import os

import pytest

from chronology.contracts.base import ErrorCode
from chronology.storage import HistoryStore, StoreConfig
from chronology.temporal.operation_log import OperationLog
from tests.fixtures import T0, open_op, save_op, write_corrupt, write_log


@pytest.fixture
def store(tmp_path):
    return HistoryStore(tmp_path / ".history")


class TestWrite:

    def test_file_named_by_flush_time(self, store):
        path = write_log(store, [open_op(T0, "abc")], flush_time=T0)
        assert path.name == f"{T0}.xml"
        assert path.parent == store.history_dir

    def test_name_collision_bumps_stamp(self, store):
        first = write_log(store, [open_op(T0, "one")], flush_time=T0)
        second = write_log(store, [open_op(T0, "two")], flush_time=T0)

        assert first.name == f"{T0}.xml"
        assert second.name == f"{T0 + 1}.xml"
        assert store.read(first).log.operations()[0].payload.snapshot == "one"

    def test_written_log_reads_back(self, store):
        ops = [open_op(T0, "abc"), save_op(T0 + 1, "abcd")]
        path = write_log(store, ops, flush_time=T0 + 1)

        stored = store.read(path)
        assert stored.is_readable
        assert list(stored.log) == ops

    def test_unknown_charset_is_encode_failure(self, store):
        result = store.write(OperationLog([open_op(T0, "abc")]), charset="no-such-charset")
        assert result.is_failure
        assert result.error.code == ErrorCode.ENCODE_FAILED
        assert store.list_log_files() == []

    def test_unwritable_directory_is_write_failure(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = HistoryStore(blocker / ".history")

        result = store.write(OperationLog([open_op(T0, "abc")]), flush_time=T0)

        assert result.is_failure
        assert result.error.code == ErrorCode.WRITE_FAILED

    def test_store_from_config(self, tmp_path):
        config = StoreConfig.for_workspace(tmp_path)
        store = HistoryStore.from_config(config)
        assert store.history_dir == tmp_path / ".history"
        assert store.extension == ".xml"


class TestScan:

    def test_missing_directory_is_empty(self, tmp_path):
        store = HistoryStore(tmp_path / "absent")
        assert store.list_log_files() == []
        assert store.latest_modification() is None

    def test_recursive_sorted_and_filtered(self, store):
        write_log(store, [open_op(T0, "b")], flush_time=T0 + 5)
        write_log(store, [open_op(T0, "a")], flush_time=T0)
        nested = HistoryStore(store.history_dir / "other-workspace")
        write_log(nested, [open_op(T0, "c")], flush_time=T0 + 1)
        (store.history_dir / "notes.txt").write_text("ignored")

        files = store.list_log_files()

        assert [p.name for p in files] == [f"{T0}.xml", f"{T0 + 5}.xml", f"{T0 + 1}.xml"]
        assert files == sorted(files)

    def test_scan_of_explicit_directory(self, store, tmp_path):
        elsewhere = HistoryStore(tmp_path / "elsewhere")
        write_log(elsewhere, [open_op(T0, "x")], flush_time=T0)
        assert len(store.list_log_files(tmp_path / "elsewhere")) == 1

    def test_latest_modification(self, store):
        first = write_log(store, [open_op(T0, "a")], flush_time=T0)
        second = write_log(store, [open_op(T0, "b")], flush_time=T0 + 1)
        os.utime(first, (1_000_000, 1_000_000))
        os.utime(second, (2_000_000, 2_000_000))

        assert store.latest_modification() == 2_000_000


class TestRead:

    def test_corrupt_file_reports_decode_failure(self, store):
        path = write_corrupt(store.history_dir, f"{T0}.xml")
        stored = store.read(path)

        assert not stored.is_readable
        assert stored.error.code == ErrorCode.DECODE_FAILED

    def test_missing_file_reports_decode_failure(self, store):
        stored = store.read(store.history_dir / "gone.xml")
        assert stored.log is None
        assert stored.error.code == ErrorCode.DECODE_FAILED

    def test_iter_logs_yields_every_file(self, store):
        write_log(store, [open_op(T0, "a")], flush_time=T0)
        write_corrupt(store.history_dir, f"{T0 + 1}.xml")

        readable = [stored.is_readable for stored in store.iter_logs()]
        assert readable == [True, False]
