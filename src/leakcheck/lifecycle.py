"""Snapshot capture and checking at test lifecycle boundaries."""

from __future__ import annotations

import gc
import logging
from collections.abc import Iterable

from leakcheck.config import Config
from leakcheck.introspect import SystemIntrospector
from leakcheck.models import Category, Snapshot, Verdict
from leakcheck.policy import AllowlistPolicy, ToleranceEvaluator
from leakcheck.reconcile import ReconciliationLoop, ReconciliationOutcome
from leakcheck.report import LeakReport, format_snapshot
from leakcheck.ui_loop import NoUILoop, UILoop

logger = logging.getLogger(__name__)


class LeakError(AssertionError):
    """Raised when resources are still leaked after reconciliation."""

    def __init__(self, report: LeakReport) -> None:
        self.report = report
        super().__init__(report.render())


class LifecycleController:
    """
    Holds the baseline snapshot and checks against it at test boundaries.

    One controller is created per test run. The baseline is replaced at
    suite start, at test start and after every failed check, so a leak in
    one test does not fail the tests that follow it.
    """

    def __init__(
        self,
        config: Config | None = None,
        introspector: SystemIntrospector | None = None,
        ui_loop: UILoop | None = None,
        evaluator: ToleranceEvaluator | None = None,
        allowlist: AllowlistPolicy | None = None,
    ) -> None:
        self.config = config or Config()
        self.introspector = introspector or SystemIntrospector(
            exclude_patterns=self.config.exclude_patterns,
            quiesce=gc.collect if self.config.quiesce else None,
        )
        self.ui_loop = ui_loop or NoUILoop()
        self.evaluator = evaluator or ToleranceEvaluator(self.config.memory_threshold)
        self.allowlist = allowlist or AllowlistPolicy()
        self.baseline: Snapshot | None = None
        self.suite_baseline: Snapshot | None = None
        self.last_report: LeakReport | None = None
        self._allowed: frozenset[Category] = frozenset()
        self._latest: Snapshot | None = None

    def collect(self) -> Snapshot:
        return Snapshot.collect(self.introspector)

    def reset_baseline(self) -> Snapshot:
        """Replace the baseline with a fresh snapshot."""
        self.baseline = self.collect()
        return self.baseline

    def _log_stats(self, message: str, *args) -> None:
        level = logging.INFO if self.config.verbose else logging.DEBUG
        if logger.isEnabledFor(level):
            logger.log(level, message, *args)

    def on_suite_start(self, name: str) -> None:
        self.suite_baseline = self.reset_baseline()
        self._log_stats(">>> Starting suite %s\n%s", name, format_snapshot(self.suite_baseline))

    def on_suite_end(self, name: str) -> None:
        suite_baseline = self.suite_baseline
        if suite_baseline is None:
            return
        if self.config.check_each_test:
            stats = self.collect()
            self._log_stats(
                "<<< Finished suite %s\n%s\n%s",
                name,
                format_snapshot(stats),
                format_snapshot(stats.subtract(suite_baseline), "Diff"),
            )
            self.suite_baseline = None
            return
        self.baseline = suite_baseline
        self._allowed = frozenset()
        try:
            self._raise_on_failure(name)
        finally:
            self.suite_baseline = None

    def on_test_start(self, name: str, allowed_leak_categories: Iterable[Category] = ()) -> None:
        self._allowed = frozenset(allowed_leak_categories)
        if self.config.check_each_test:
            stats = self.reset_baseline()
            self._log_stats(">>> Starting test %s\n%s", name, format_snapshot(stats))

    def on_shared_setup(self, name: str) -> None:
        """
        A resource outliving the current test was just set up.

        It is not the test's leak, so the per-test baseline is taken again.
        """
        if self.config.check_each_test and self.baseline is not None:
            stats = self.reset_baseline()
            self._log_stats("=== Shared setup %s\n%s", name, format_snapshot(stats))

    def on_test_end(self, name: str) -> None:
        try:
            if self.config.check_each_test:
                self._raise_on_failure(name)
        finally:
            self._allowed = frozenset()

    def _raise_on_failure(self, name: str) -> None:
        outcome = self.verify(name)
        if not outcome.passed:
            raise LeakError(self.last_report)

    def check(self) -> Verdict:
        """Collect, diff against the baseline and evaluate once."""
        if self.baseline is None:
            self.reset_baseline()
        self._latest = self.collect()
        diff = self._latest.subtract(self.baseline)
        return self.evaluator.evaluate(diff).ignoring(self._allowed)

    def verify(self, name: str) -> ReconciliationOutcome:
        """
        Check against the baseline, pumping the UI loop while it fails.

        On failure ``last_report`` describes the leak and the baseline is
        reset before returning.
        """
        loop = ReconciliationLoop(
            self.ui_loop,
            max_iterations=self.config.max_pump_iterations,
            max_seconds=self.config.max_pump_seconds,
        )
        outcome = loop.run(self.check)
        if outcome.passed:
            return outcome

        self.last_report = self._build_report(name, outcome)
        logger.warning("Leak check failed for %s\n%s", name, self.last_report.render())
        self.reset_baseline()
        return outcome

    def _build_report(self, name: str, outcome: ReconciliationOutcome) -> LeakReport:
        before, after = self.baseline, self._latest
        diff = after.subtract(before)
        initial = self.suite_baseline
        return LeakReport(
            test_name=name,
            verdict=outcome.verdict,
            before=before,
            after=after,
            diff=diff,
            filtered_diff=self.allowlist.filter(diff),
            diff_from_initial=after.subtract(initial) if initial is not None else None,
            pumps=outcome.pumps,
        )
