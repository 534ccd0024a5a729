"""Tests for leakcheck data models."""

import pytest

from leakcheck.models import (
    UNKNOWN,
    AllowlistRule,
    Category,
    Diff,
    Snapshot,
    Verdict,
    total,
)


def make_snapshot(**kwargs) -> Snapshot:
    fields = dict(
        used_system_memory=1000,
        system_threads={"main": 1, "worker": 2},
        used_managed_memory=500,
        managed_threads={"MainThread": 1},
        open_files={"/dev/null": 2, "/tmp/a": 1},
    )
    fields.update(kwargs)
    return Snapshot(**fields)


class TestSnapshot:
    """Tests for the Snapshot dataclass."""

    def test_snapshot_creation(self):
        """Test Snapshot can be created with all fields."""
        snapshot = make_snapshot()
        assert snapshot.used_system_memory == 1000
        assert snapshot.system_threads == {"main": 1, "worker": 2}
        assert snapshot.open_files["/dev/null"] == 2

    def test_snapshot_is_frozen(self):
        """Test that Snapshot is immutable (frozen)."""
        snapshot = make_snapshot()
        with pytest.raises(AttributeError):
            snapshot.used_system_memory = 0

    def test_snapshot_mappings_are_read_only(self):
        """Test that the grouped counts cannot be mutated."""
        snapshot = make_snapshot()
        with pytest.raises(TypeError):
            snapshot.system_threads["new"] = 1

    def test_snapshot_copies_input(self):
        """Test that mutating the dict passed in does not change the snapshot."""
        threads = {"main": 1}
        snapshot = make_snapshot(system_threads=threads)
        threads["main"] = 5
        assert snapshot.system_threads == {"main": 1}

    def test_snapshot_rejects_negative_counts(self):
        with pytest.raises(ValueError):
            make_snapshot(open_files={"/tmp/a": -1})

    def test_snapshot_uses_slots(self):
        """Test that Snapshot uses __slots__ for memory efficiency."""
        assert not hasattr(make_snapshot(), "__dict__")


class TestDiff:
    """Tests for diffing snapshots."""

    def test_diff_of_identical_snapshots_is_empty(self):
        a = make_snapshot()
        diff = Snapshot.diff(a, a)
        assert diff.used_system_memory == 0
        assert diff.used_managed_memory == 0
        assert diff.system_threads == {}
        assert diff.managed_threads == {}
        assert diff.open_files == {}
        assert diff.is_empty

    def test_diff_is_antisymmetric(self):
        a = make_snapshot()
        b = make_snapshot(
            used_system_memory=4000,
            system_threads={"main": 1, "render": 1},
            used_managed_memory=100,
            open_files={"/dev/null": 1, "/tmp/b": 3},
        )
        assert -Snapshot.diff(a, b) == Snapshot.diff(b, a)

    def test_diff_covers_union_of_keys(self):
        before = make_snapshot(system_threads={"A": 1, "gone": 1})
        after = make_snapshot(system_threads={"A": 1, "B": 2})
        diff = Snapshot.diff(before, after)
        assert diff.system_threads == {"B": 2, "gone": -1}

    def test_subtract_matches_diff(self):
        before = make_snapshot()
        after = make_snapshot(used_system_memory=1500)
        assert after.subtract(before) == Snapshot.diff(before, after)
        assert after.subtract(before).used_system_memory == 500

    def test_diff_drops_zero_entries_passed_in(self):
        diff = Diff(system_threads={"A": 0, "B": 1})
        assert diff.system_threads == {"B": 1}

    def test_unknown_memory_on_both_sides_diffs_to_zero(self):
        a = make_snapshot(used_system_memory=UNKNOWN)
        b = make_snapshot(used_system_memory=UNKNOWN)
        assert Snapshot.diff(a, b).used_system_memory == 0


def test_total():
    assert total({"a": 2, "b": -3, "c": 1}) == 0
    assert total({}) == 0


class TestAllowlistRule:
    """Tests for AllowlistRule."""

    def test_full_match_required(self):
        rule = AllowlistRule.of(r"gmain", 10)
        assert rule.matches("gmain", 1)
        assert not rule.matches("gmain2", 1)

    def test_quota_is_exclusive(self):
        rule = AllowlistRule.of(r"pool-.*", 2)
        assert rule.matches("pool-1", 1)
        assert not rule.matches("pool-1", 2)


class TestVerdict:
    """Tests for Verdict."""

    def test_from_failures(self):
        assert Verdict.from_failures([]).passed
        verdict = Verdict.from_failures([Category.OS_THREADS])
        assert not verdict.passed
        assert verdict.failed_categories == {Category.OS_THREADS}

    def test_ignoring(self):
        verdict = Verdict.from_failures([Category.OS_THREADS, Category.OPEN_FILES])
        assert not verdict.ignoring([Category.OS_THREADS]).passed
        assert verdict.ignoring([Category.OS_THREADS, Category.OPEN_FILES]).passed
