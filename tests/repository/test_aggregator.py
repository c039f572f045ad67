"""
Repository Aggregator Tests
===========================

INVARIANTS TESTED:
1. Rename continuity: origin evicted, linked to destination, history replays
2. Corrupt logs are skipped and counted; the rest still load
3. Duplicates across logs are merged
4. Rebuilding an unchanged directory gives an identical index
5. Cancellation and failure leave an empty index and notify CLEAR
6. refresh() only rebuilds when a log changed
"""

import os
import time

import pytest

from chronology.contracts.base import ErrorCode
from chronology.contracts.events import AuditEventType, RepositoryChangeType
from chronology.contracts.operations import (
    Operation, ResourceChangeKind, ResourceSide, ResourceTarget,
)
from chronology.observability import AuditCollector
from chronology.repository import (
    AggregatorConfig, CancellationToken, RepositoryAggregator,
)
from chronology.storage import HistoryStore
from chronology.temporal.replay import reconstruct
from tests.fixtures import (
    KEY_B, KEY_C, PATH_B, PATH_C, T0, edit_op, open_op, removed_op,
    rename_history, rename_op, save_op, write_corrupt, write_log,
)


@pytest.fixture
def store(tmp_path):
    return HistoryStore(tmp_path / ".history")


@pytest.fixture
def aggregator(store):
    return RepositoryAggregator(store)


class TestRenameContinuity:

    def test_destination_side_rename(self, store, aggregator):
        rename_history(store)
        report = aggregator.rebuild()
        index = aggregator.index

        assert report.success
        assert index.get_file(KEY_B) is None
        c = index.get_file(KEY_C)
        assert c is not None
        assert c.predecessor().key == KEY_B
        assert c.predecessor().evicted
        assert c.predecessor().successor() is c

        history = c.full_history()
        assert reconstruct(history, len(history) - 1) == "aXc!"

    def test_origin_side_move(self, store, aggregator):
        write_log(store, [
            open_op(T0, "abc"),
            rename_op(T0 + 1, PATH_C, PATH_B, side=ResourceSide.ORIGIN),
        ], flush_time=T0 + 1)

        aggregator.rebuild()
        index = aggregator.index

        assert index.get_file(KEY_B) is None
        c = index.get_file(KEY_C)
        assert c.operation_count == 0
        assert [n.key for n in c.lineage()] == [KEY_B, KEY_C]

    def test_rename_recorded_at_both_ends_destination_first(self, store, aggregator):
        write_log(store, [
            open_op(T0, "abc"),
            edit_op(T0 + 10, 1, "X", "b"),
            rename_op(T0 + 20, PATH_C, PATH_B, seq=0),
            rename_op(T0 + 20, PATH_C, PATH_B, side=ResourceSide.ORIGIN, seq=1),
            edit_op(T0 + 30, 3, "!", "", path=PATH_C),
        ], flush_time=T0 + 30)

        report = aggregator.rebuild()
        index = aggregator.index
        c = index.get_file(KEY_C)

        assert report.success
        assert index.get_file(KEY_B) is None
        assert [n.key for n in c.lineage()] == [KEY_B, KEY_C]
        b = c.predecessor()
        assert b.operation_count == 3
        assert b.successor() is c
        assert len(index.all_files()) == 2

        history = c.full_history()
        assert reconstruct(history, len(history) - 1) == "aXc!"

    def test_rename_recorded_at_both_ends_origin_first(self, store, aggregator):
        write_log(store, [
            open_op(T0, "abc"),
            rename_op(T0 + 20, PATH_C, PATH_B, side=ResourceSide.ORIGIN, seq=0),
            rename_op(T0 + 20, PATH_C, PATH_B, seq=1),
        ], flush_time=T0 + 20)

        aggregator.rebuild()
        c = aggregator.index.get_file(KEY_C)

        assert [n.key for n in c.lineage()] == [KEY_B, KEY_C]
        assert c.predecessor().operation_count == 2
        assert c.operation_count == 1

    def test_existing_predecessor_is_not_overwritten(self, store, aggregator):
        other = "/Proj/src/a/A.java"
        write_log(store, [
            open_op(T0, "abc"),
            open_op(T0 + 1, "zzz", path=other),
            rename_op(T0 + 10, PATH_C, PATH_B),
            rename_op(T0 + 20, PATH_C, other),
        ], flush_time=T0 + 20)

        aggregator.rebuild()
        index = aggregator.index
        c = index.get_file(KEY_C)

        assert c.predecessor().key == KEY_B
        assert index.find_file(other) is None

    def test_rename_without_live_origin_is_not_linked(self, store, aggregator):
        write_log(store, [rename_op(T0, PATH_C, "/Proj/src/a/Gone.java")], flush_time=T0)

        report = aggregator.rebuild()

        c = aggregator.index.get_file(KEY_C)
        assert report.success
        assert c.moved_from is None
        assert c.operation_count == 1
        assert aggregator.index.file_count == 1

    def test_rename_onto_itself_is_ignored(self, store, aggregator):
        write_log(store, [open_op(T0, "x"), rename_op(T0 + 1, PATH_B, PATH_B)], flush_time=T0)

        aggregator.rebuild()

        b = aggregator.index.get_file(KEY_B)
        assert b is not None
        assert b.moved_from is None and b.moved_to is None
        assert b.operation_count == 2


class TestRouting:

    def test_removed_file_is_evicted(self, store, aggregator):
        write_log(store, [open_op(T0, "x"), removed_op(T0 + 1)], flush_time=T0)

        aggregator.rebuild()

        assert aggregator.index.get_file(KEY_B) is None
        evicted = aggregator.index.all_files()[0]
        assert evicted.evicted
        assert evicted.operation_count == 2

    def test_package_changes_are_plain_appends(self, store, aggregator):
        write_log(store, [
            Operation.resource_change(T0, "/Proj/src/b", ResourceChangeKind.REMOVED,
                                      ResourceTarget.PACKAGE),
        ], flush_time=T0)

        aggregator.rebuild()

        node = aggregator.index.find_file("/Proj/src/b")
        assert node is not None
        assert not node.evicted

    def test_configured_eviction_targets(self, store):
        write_log(store, [
            Operation.resource_change(T0, "/Proj/src/b", ResourceChangeKind.REMOVED,
                                      ResourceTarget.PACKAGE),
        ], flush_time=T0)
        config = AggregatorConfig(eviction_targets=(ResourceTarget.FILE, ResourceTarget.PACKAGE))
        aggregator = RepositoryAggregator(store, config)

        aggregator.rebuild()

        assert aggregator.index.find_file("/Proj/src/b") is None

    def test_out_of_order_logs_are_repaired(self, store, aggregator):
        write_log(store, [edit_op(T0 + 10, 0, "x")], flush_time=T0)
        write_log(store, [open_op(T0, "")], flush_time=T0 + 10)

        report = aggregator.rebuild()
        b = aggregator.index.get_file(KEY_B)

        assert report.repairs >= 1
        assert b.is_sorted()
        assert reconstruct(b.operations, 1) == "x"


class TestRobustness:

    def test_corrupt_log_is_skipped(self, store):
        audit = AuditCollector("aggregation")
        aggregator = RepositoryAggregator(store, audit=audit)
        for i in range(9):
            write_log(store, [open_op(T0 + i, str(i), seq=i)], flush_time=T0 + i)
        write_corrupt(store.history_dir, f"{T0 + 100}.xml")

        report = aggregator.rebuild()

        assert report.success
        assert report.files_scanned == 10
        assert report.files_decoded == 9
        assert report.skipped_count == 1
        assert aggregator.index.get_file(KEY_B).operation_count == 9
        skipped = audit.get_entries(event_type=AuditEventType.ERROR, action="decode_skipped")
        assert len(skipped) == 1

    def test_duplicates_are_merged(self, store, aggregator):
        ops = [open_op(T0, "a"), edit_op(T0 + 1, 1, "b"), save_op(T0 + 2, "ab")]
        write_log(store, ops, flush_time=T0)
        write_log(store, ops, flush_time=T0 + 1)

        report = aggregator.rebuild()

        assert report.duplicate_operations == 3
        assert report.operations_routed == 3
        assert aggregator.index.get_file(KEY_B).operations == tuple(ops)

    def test_rebuild_is_idempotent(self, store, aggregator):
        rename_history(store)
        aggregator.rebuild()
        first = aggregator.index.content_digest()
        aggregator.rebuild()
        assert aggregator.index.content_digest() == first

    def test_empty_directory(self, aggregator):
        report = aggregator.rebuild()
        assert report.success
        assert report.files_scanned == 0
        assert aggregator.index.is_empty()
        assert aggregator.is_built


class TestCancellation:

    def test_cancelled_rebuild_leaves_empty_index(self, store, aggregator):
        rename_history(store)
        aggregator.rebuild()
        events = []
        aggregator.add_listener(events.append)

        token = CancellationToken()
        token.cancel()
        assert token.is_cancelled
        report = aggregator.rebuild(cancel_token=token)

        assert not report.success
        assert report.error.code == ErrorCode.REBUILD_CANCELLED
        assert aggregator.index.is_empty()
        assert not aggregator.is_built
        assert events[-1].kind == RepositoryChangeType.CLEAR

    def test_cancel_from_progress_callback(self, store, aggregator):
        rename_history(store)
        token = CancellationToken()

        report = aggregator.rebuild(cancel_token=token, progress=lambda done, total: token.cancel())

        assert not report.success
        assert aggregator.index.is_empty()

    def test_unexpected_failure_resets_index(self, store):
        class BrokenStore:
            history_dir = store.history_dir

            def list_log_files(self, directory=None):
                raise RuntimeError("disk vanished")

        aggregator = RepositoryAggregator(BrokenStore())
        report = aggregator.rebuild()

        assert not report.success
        assert report.error.code == ErrorCode.REBUILD_FAILED
        assert "disk vanished" in report.error.message


class TestRefreshAndEvents:

    def test_update_event_after_rebuild(self, store, aggregator):
        rename_history(store)
        events = []
        aggregator.add_listener(events.append)

        aggregator.rebuild()

        assert events[-1].kind == RepositoryChangeType.UPDATE
        assert events[-1].file_count == 2
        assert events[-1].operation_count == 6

    def test_clear_notifies(self, aggregator):
        events = []
        aggregator.add_listener(events.append)
        aggregator.clear()
        assert [e.kind for e in events] == [RepositoryChangeType.CLEAR]

    def test_removed_listener_not_called(self, aggregator):
        events = []
        aggregator.add_listener(events.append)
        aggregator.remove_listener(events.append)
        aggregator.rebuild()
        assert events == []

    def test_refresh_skips_unchanged_directory(self, store, aggregator):
        rename_history(store)
        assert aggregator.refresh() is not None
        assert aggregator.refresh() is None

    def test_refresh_rebuilds_after_change(self, store, aggregator):
        rename_history(store)
        aggregator.refresh()
        path = write_log(store, [open_op(T0 + 99, "new", path="/Proj/src/a/E.java")], flush_time=T0 + 99)
        future = time.time() + 100
        os.utime(path, (future, future))

        report = aggregator.refresh()

        assert report is not None
        assert aggregator.last_update is not None
        assert aggregator.index.get_file("Proj%a%E.java") is not None

    def test_progress_reaches_total(self, store, aggregator):
        rename_history(store)
        calls = []

        aggregator.rebuild(progress=lambda done, total: calls.append((done, total)))

        assert calls[-1] == (4, 4)
        assert [done for done, _ in calls] == [1, 2, 3, 4]
