"""Tolerance and allow-list policies applied to snapshot diffs."""

from __future__ import annotations

import sys
from collections.abc import Iterable, Mapping

from leakcheck.models import AllowlistRule, Category, Diff, Verdict, total

DEFAULT_MEMORY_THRESHOLD = 100_000

# Threads the Python runtime and common GUI stacks start on their own.
DEFAULT_ALLOWED_THREADS: tuple[AllowlistRule, ...] = (
    AllowlistRule.of(r"asyncio_\d+", sys.maxsize),
    AllowlistRule.of(r"ThreadPoolExecutor-.*", sys.maxsize),
    AllowlistRule.of(r"pydevd\..*", sys.maxsize),
    AllowlistRule.of(r"Dummy-\d+", sys.maxsize),
    AllowlistRule.of(r"gmain", sys.maxsize),
    AllowlistRule.of(r"gdbus", sys.maxsize),
    AllowlistRule.of(r"dconf worker", sys.maxsize),
    AllowlistRule.of(r"pool-.*", sys.maxsize),
    AllowlistRule.of(r"QDBusConnection", sys.maxsize),
    AllowlistRule.of(r"QXcbEventQueue", sys.maxsize),
)


class AllowlistPolicy:
    """
    Pattern-keyed rules for threads known to be benign.

    The policy only shapes what a report shows. It is never consulted when
    deciding whether a check passed.
    """

    def __init__(self, rules: Iterable[AllowlistRule] = DEFAULT_ALLOWED_THREADS) -> None:
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[AllowlistRule, ...]:
        return self._rules

    def is_exempt(self, name: str, count: int) -> bool:
        """True if some rule matches ``name`` and its quota exceeds ``count``."""
        return any(rule.matches(name, count) for rule in self._rules)

    def _filter_threads(self, threads: Mapping[str, int]) -> dict[str, int]:
        return {name: count for name, count in threads.items() if not self.is_exempt(name, count)}

    def filter(self, diff: Diff) -> Diff:
        """Copy of ``diff`` without the exempt thread entries."""
        return Diff(
            used_system_memory=diff.used_system_memory,
            system_threads=self._filter_threads(diff.system_threads),
            used_managed_memory=diff.used_managed_memory,
            managed_threads=self._filter_threads(diff.managed_threads),
            open_files=diff.open_files,
        )


class ToleranceEvaluator:
    """
    Decides whether a diff is within tolerance.

    Memory may grow by less than ``memory_threshold`` bytes. The threshold
    is absolute because baselines close to zero make a percentage useless.
    Thread and descriptor totals may not grow at all.
    """

    def __init__(self, memory_threshold: int = DEFAULT_MEMORY_THRESHOLD) -> None:
        if memory_threshold < 0:
            raise ValueError("memory_threshold must be >= 0")
        self.memory_threshold = memory_threshold

    def evaluate(self, diff: Diff) -> Verdict:
        checks = {
            Category.SYSTEM_MEMORY: diff.used_system_memory < self.memory_threshold,
            Category.MANAGED_MEMORY: diff.used_managed_memory < self.memory_threshold,
            Category.OS_THREADS: total(diff.system_threads) <= 0,
            Category.MANAGED_THREADS: total(diff.managed_threads) <= 0,
            Category.OPEN_FILES: total(diff.open_files) <= 0,
        }
        return Verdict.from_failures(category for category, ok in checks.items() if not ok)
