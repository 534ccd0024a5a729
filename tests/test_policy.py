"""Tests for the tolerance and allow-list policies."""

import pytest

from leakcheck.models import AllowlistRule, Category, Diff
from leakcheck.policy import DEFAULT_ALLOWED_THREADS, AllowlistPolicy, ToleranceEvaluator


class TestToleranceEvaluator:
    """Tests for ToleranceEvaluator."""

    def test_empty_diff_passes(self):
        verdict = ToleranceEvaluator().evaluate(Diff())
        assert verdict.passed
        assert verdict.failed_categories == frozenset()

    def test_memory_threshold_is_exclusive(self):
        evaluator = ToleranceEvaluator()
        assert evaluator.evaluate(Diff(used_system_memory=99_999)).passed
        verdict = evaluator.evaluate(Diff(used_system_memory=100_000))
        assert verdict.failed_categories == {Category.SYSTEM_MEMORY}

    def test_managed_memory_uses_same_threshold(self):
        evaluator = ToleranceEvaluator()
        assert evaluator.evaluate(Diff(used_managed_memory=99_999)).passed
        verdict = evaluator.evaluate(Diff(used_managed_memory=100_000))
        assert verdict.failed_categories == {Category.MANAGED_MEMORY}

    def test_memory_shrinking_passes(self):
        assert ToleranceEvaluator().evaluate(Diff(used_system_memory=-5_000_000)).passed

    def test_custom_threshold(self):
        evaluator = ToleranceEvaluator(memory_threshold=10)
        assert not evaluator.evaluate(Diff(used_system_memory=10)).passed

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValueError):
            ToleranceEvaluator(memory_threshold=-1)

    def test_thread_swap_passes(self):
        """Test one thread gone and another started is net zero."""
        diff = Diff(system_threads={"A": 1, "B": -1})
        assert ToleranceEvaluator().evaluate(diff).passed

    def test_any_net_thread_growth_fails(self):
        diff = Diff(system_threads={"A": 2, "B": -1})
        verdict = ToleranceEvaluator().evaluate(diff)
        assert verdict.failed_categories == {Category.OS_THREADS}

    def test_managed_thread_growth_fails(self):
        verdict = ToleranceEvaluator().evaluate(Diff(managed_threads={"Thread-1": 1}))
        assert verdict.failed_categories == {Category.MANAGED_THREADS}

    def test_open_file_growth_fails(self):
        verdict = ToleranceEvaluator().evaluate(Diff(open_files={"/tmp/x": 1}))
        assert verdict.failed_categories == {Category.OPEN_FILES}

    def test_all_failures_reported(self):
        diff = Diff(
            used_system_memory=1_000_000,
            system_threads={"A": 1},
            used_managed_memory=1_000_000,
            managed_threads={"A": 1},
            open_files={"/tmp/x": 1},
        )
        verdict = ToleranceEvaluator().evaluate(diff)
        assert not verdict.passed
        assert verdict.failed_categories == set(Category)


class TestAllowlistPolicy:
    """Tests for AllowlistPolicy."""

    def test_default_rules(self):
        policy = AllowlistPolicy()
        assert policy.rules == DEFAULT_ALLOWED_THREADS
        assert policy.is_exempt("asyncio_0", 1)
        assert policy.is_exempt("ThreadPoolExecutor-0_0", 3)
        assert policy.is_exempt("gmain", 1)
        assert not policy.is_exempt("leaky-worker", 1)

    def test_quota(self):
        policy = AllowlistPolicy([AllowlistRule.of(r"worker-\d+", 2)])
        assert policy.is_exempt("worker-1", 1)
        assert not policy.is_exempt("worker-1", 2)

    def test_any_rule_with_quota_left_wins(self):
        policy = AllowlistPolicy([AllowlistRule.of(r"w.*", 1), AllowlistRule.of(r"worker", 5)])
        assert policy.is_exempt("worker", 3)

    def test_filter_strips_exempt_threads(self):
        policy = AllowlistPolicy([AllowlistRule.of(r"gmain", 10)])
        diff = Diff(
            used_system_memory=42,
            system_threads={"gmain": 1, "leaky": 1},
            managed_threads={"gmain": 1},
            open_files={"/tmp/x": 1},
        )
        filtered = policy.filter(diff)
        assert filtered.system_threads == {"leaky": 1}
        assert filtered.managed_threads == {}
        assert filtered.open_files == {"/tmp/x": 1}
        assert filtered.used_system_memory == 42

    def test_filter_does_not_change_verdict(self):
        """Test allow-listed threads still fail the tolerance check."""
        diff = Diff(system_threads={"gmain": 1})
        assert not ToleranceEvaluator().evaluate(diff).passed
        assert AllowlistPolicy().filter(diff).system_threads == {}
