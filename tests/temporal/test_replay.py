"""
Replay Engine Tests
===================

INVARIANTS TESTED:
1. Nearest-time queries by binary search
2. Focal resolution favours the earlier operation on a tie
3. Reconstruction starts from the latest Open/Save snapshot
4. Compound edits apply as one unit; non-text operations are no-ops
5. The checkpointing engine agrees with plain reconstruction
"""

import pytest
from hypothesis import given, strategies as st

from chronology.contracts.base import ErrorCode, NoBaseStateError, TextMismatchError
from chronology.contracts.operations import EditSubtype, Operation, TextEdit
from chronology.temporal.replay import (
    ReplayEngine, TimelineCursor, earliest_operation_after, find_focal_index,
    latest_operation_before, reconstruct,
)
from tests.fixtures import (
    PATH_B, activate_op, close_op, compound_op, copy_op, edit_op, open_op, save_op,
)


def cmd(ts):
    return Operation.command(ts, PATH_B, "noop")


class TestNearestTime:

    def test_latest_before_and_earliest_after(self):
        ops = [cmd(100), cmd(200), cmd(200), cmd(300)]

        assert latest_operation_before(ops, 99) is None
        assert latest_operation_before(ops, 100) == 0
        assert latest_operation_before(ops, 250) == 2
        assert latest_operation_before(ops, 1000) == 3

        assert earliest_operation_after(ops, 50) == 0
        assert earliest_operation_after(ops, 200) == 1
        assert earliest_operation_after(ops, 201) == 3
        assert earliest_operation_after(ops, 301) is None

    def test_focal_tie_favours_earlier(self):
        ops = [cmd(100), cmd(200)]
        assert ops[find_focal_index(ops, 150)].timestamp == 100

    def test_focal_picks_closer(self):
        ops = [cmd(100), cmd(200)]
        assert ops[find_focal_index(ops, 160)].timestamp == 200
        assert ops[find_focal_index(ops, 120)].timestamp == 100

    def test_focal_outside_range_uses_only_neighbour(self):
        ops = [cmd(100), cmd(200)]
        assert find_focal_index(ops, 10) == 0
        assert find_focal_index(ops, 999) == 1

    def test_focal_on_empty_sequence(self):
        assert find_focal_index([], 100) is None

    @given(
        st.lists(st.integers(min_value=0, max_value=1000), max_size=30),
        st.integers(min_value=-10, max_value=1010)
    )
    def test_binary_search_matches_linear_scan(self, stamps, t):
        ops = [cmd(ts) for ts in sorted(stamps)]
        before = [i for i, op in enumerate(ops) if op.timestamp <= t]
        after = [i for i, op in enumerate(ops) if op.timestamp >= t]

        assert latest_operation_before(ops, t) == (before[-1] if before else None)
        assert earliest_operation_after(ops, t) == (after[0] if after else None)


class TestReconstruct:

    def test_single_replacement(self):
        ops = [open_op(1, "abc"), edit_op(2, 1, "X", "b")]
        assert reconstruct(ops, 1) == "aXc"
        assert reconstruct(ops, 0) == "abc"

    def test_no_base_state(self):
        ops = [edit_op(1, 0, "x"), open_op(2, "abc")]
        with pytest.raises(NoBaseStateError, match="no base state available"):
            reconstruct(ops, 0)

    def test_close_is_not_a_base_state(self):
        ops = [close_op(1, "abc"), edit_op(2, 0, "x")]
        with pytest.raises(NoBaseStateError):
            reconstruct(ops, 1)

    def test_latest_save_resets_base(self):
        ops = [
            open_op(1, "abc"),
            edit_op(2, 0, "Z"),
            save_op(3, "fresh"),
            edit_op(4, 5, "!"),
        ]
        assert reconstruct(ops, 3) == "fresh!"

    def test_non_text_operations_are_noops(self):
        ops = [
            open_op(1, "abc"),
            activate_op(2),
            copy_op(3, 0, "ab"),
            Operation.command(4, PATH_B, "format"),
            close_op(5, "ignored"),
            edit_op(6, 3, "d"),
        ]
        assert reconstruct(ops, 5) == "abcd"

    def test_compound_applies_children_in_order(self):
        ops = [
            open_op(1, "hello"),
            compound_op(2, (TextEdit(0, "", "h"), TextEdit(0, "J", ""))),
        ]
        assert reconstruct(ops, 1) == "Jello"

    def test_undo_redo_replayed_literally(self):
        ops = [
            open_op(1, "abc"),
            edit_op(2, 3, "d"),
            edit_op(3, 3, "", "d", subtype=EditSubtype.UNDO),
            edit_op(4, 3, "d", "", subtype=EditSubtype.REDO),
        ]
        assert reconstruct(ops, 2) == "abc"
        assert reconstruct(ops, 3) == "abcd"

    def test_deleted_text_mismatch_names_index(self):
        ops = [open_op(1, "abc"), edit_op(2, 0, "", "zz")]
        with pytest.raises(TextMismatchError) as excinfo:
            reconstruct(ops, 1)
        assert excinfo.value.index == 1
        assert "operation 1" in str(excinfo.value)

    def test_lenient_mode_skips_deleted_text_check(self):
        ops = [open_op(1, "abc"), edit_op(2, 0, "X", "zz")]
        assert reconstruct(ops, 1, strict=False) == "Xc"

    def test_offset_past_end_always_fails(self):
        ops = [open_op(1, "abc"), edit_op(2, 7, "x")]
        with pytest.raises(TextMismatchError):
            reconstruct(ops, 1, strict=False)

    def test_index_out_of_range(self):
        with pytest.raises(IndexError):
            reconstruct([open_op(1, "a")], 1)
        with pytest.raises(IndexError):
            reconstruct([open_op(1, "a")], -1)


class TestReplayEngine:

    def test_engine_matches_reconstruct_at_every_index(self):
        ops = [
            open_op(1, "abc"),
            edit_op(2, 3, "d"),
            edit_op(3, 0, "", "a"),
            save_op(4, "bcd"),
            edit_op(5, 1, "Q", "c"),
            edit_op(6, 0, ">"),
        ]
        engine = ReplayEngine(ops)
        for i in reversed(range(len(ops))):
            assert engine.reconstruct(i) == reconstruct(ops, i)
        for i in range(len(ops)):
            assert engine.reconstruct(i) == reconstruct(ops, i)

    def test_successful_reconstructions_become_checkpoints(self):
        ops = [open_op(1, "a"), edit_op(2, 1, "b"), edit_op(3, 2, "c")]
        engine = ReplayEngine(ops)
        assert engine.checkpoint_count == 1
        engine.reconstruct(2)
        assert engine.checkpoint_count == 2

    def test_try_reconstruct_reports_error(self):
        engine = ReplayEngine([edit_op(1, 0, "x")])
        text, error = engine.try_reconstruct(0)
        assert text is None
        assert error.code == ErrorCode.NO_BASE_STATE

    @given(st.lists(
        st.tuples(st.integers(min_value=0, max_value=20), st.text(max_size=3), st.integers(0, 2)),
        max_size=15
    ))
    def test_engine_agrees_with_reconstruct(self, steps):
        text = "seed"
        ops = [open_op(0, text)]
        for i, (pos, inserted, delete_len) in enumerate(steps, start=1):
            offset = min(pos, len(text))
            deleted = text[offset:offset + delete_len]
            ops.append(edit_op(i, offset, inserted, deleted))
            text = text[:offset] + inserted + text[offset + len(deleted):]

        engine = ReplayEngine(ops)
        assert engine.reconstruct(len(ops) - 1) == text
        for i in range(len(ops)):
            assert engine.reconstruct(i) == reconstruct(ops, i)


class TestTimelineCursor:

    def make_cursor(self):
        return TimelineCursor([open_op(100, "abc"), edit_op(200, 1, "X", "b")])

    def test_go_to_notifies_listeners_with_text(self):
        cursor = self.make_cursor()
        events = []
        cursor.add_listener(events.append)

        cursor.go_to(1)

        assert cursor.focal_index == 1
        assert cursor.focal_time == 200
        assert len(events) == 1
        assert events[0].text == "aXc"
        assert events[0].error is None

    def test_go_to_out_of_range(self):
        cursor = self.make_cursor()
        with pytest.raises(IndexError):
            cursor.go_to(2)
        assert cursor.focal_index is None

    def test_find_focal_time(self):
        cursor = self.make_cursor()
        assert cursor.find_focal_time(150).index == 0
        assert cursor.find_focal_time(160).index == 1

    def test_find_focal_time_on_empty_timeline_is_noop(self):
        cursor = TimelineCursor([])
        assert cursor.find_focal_time(5) is None
        assert cursor.focal_index is None

    def test_next_and_previous(self):
        cursor = self.make_cursor()
        assert cursor.current_text() is None
        assert cursor.next().index == 0
        assert cursor.next().index == 1
        assert cursor.next() is None
        assert cursor.previous().index == 0
        assert cursor.previous() is None
        assert cursor.current_text() == "abc"

    def test_failed_reconstruction_is_reported_in_event(self):
        cursor = TimelineCursor([edit_op(1, 0, "x")])
        event = cursor.go_to(0)
        assert event.text is None
        assert event.error.code == ErrorCode.NO_BASE_STATE

    def test_removed_listener_is_not_called(self):
        cursor = self.make_cursor()
        events = []
        cursor.add_listener(events.append)
        cursor.remove_listener(events.append)
        cursor.go_to(0)
        assert events == []

    def test_try_reconstruct_reports_invalid_index(self):
        engine = ReplayEngine([open_op(1, "a")])
        text, error = engine.try_reconstruct(5)
        assert text is None
        assert error.code == ErrorCode.INVALID_INDEX
