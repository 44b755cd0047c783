"""Tests for pollsource.lib.checkpoint."""

from datetime import datetime, timedelta, timezone

from pollsource.lib.checkpoint import CheckpointState, utc_now

T0 = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class TestCheckpointRecord:
    def test_starts_empty(self):
        state = CheckpointState()

        assert state.is_empty
        assert state.last_emitted_tuple is None
        assert state.last_emitted_timestamp is None
        assert state.emitted_count == 0

    def test_record_sets_tuple_and_timestamp_together(self):
        state = CheckpointState()

        state.record({"id": 1}, T0)

        assert not state.is_empty
        assert state.last_emitted_tuple == {"id": 1}
        assert state.last_emitted_timestamp == T0
        assert state.emitted_count == 1

    def test_timestamp_never_moves_backwards(self):
        """A clock step backwards keeps the previous timestamp."""
        state = CheckpointState()
        state.record("a", T0)

        state.record("b", T0 - timedelta(seconds=5))

        assert state.last_emitted_tuple == "b"
        assert state.last_emitted_timestamp == T0

    def test_equal_timestamps_allowed(self):
        state = CheckpointState()
        state.record(1, T0)
        state.record(2, T0)

        assert state.last_emitted_tuple == 2
        assert state.last_emitted_timestamp == T0
        assert state.emitted_count == 2

    def test_none_tuple_still_counts_as_emitted(self):
        """A converter may legitimately produce None."""
        state = CheckpointState()
        state.record(None, T0)

        assert not state.is_empty

    def test_copy_is_independent(self):
        state = CheckpointState()
        state.record(1, T0)

        snapshot = state.copy()
        state.record(2, T0 + timedelta(seconds=1))

        assert snapshot.last_emitted_tuple == 1
        assert snapshot.emitted_count == 1


class TestCheckpointSerialization:
    def test_to_dict(self):
        state = CheckpointState()
        state.record({"id": 3}, T0)

        assert state.to_dict() == {
            "last_tuple": {"id": 3},
            "last_timestamp": "2025-01-15T12:00:00+00:00",
            "emitted_count": 1,
        }

    def test_from_dict_round_trip(self):
        state = CheckpointState()
        state.record([1, "x"], T0)

        restored = CheckpointState.from_dict(state.to_dict())

        assert restored == state

    def test_from_dict_accepts_z_suffix_and_naive(self):
        restored = CheckpointState.from_dict(
            {"last_tuple": 1, "last_timestamp": "2025-01-15T12:00:00Z"}
        )
        naive = CheckpointState.from_dict(
            {"last_tuple": 1, "last_timestamp": "2025-01-15T12:00:00"}
        )

        assert restored.last_emitted_timestamp == T0
        assert naive.last_emitted_timestamp == T0

    def test_from_dict_without_timestamp_is_empty(self):
        restored = CheckpointState.from_dict({"last_tuple": 5, "emitted_count": 2})

        assert restored.is_empty
        assert restored.last_emitted_tuple is None
        assert restored.emitted_count == 2


def test_utc_now_is_timezone_aware():
    assert utc_now().tzinfo is not None
