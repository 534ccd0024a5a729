"""Human-readable rendering of snapshots, diffs and leak reports."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from leakcheck.models import UNKNOWN, Diff, Snapshot, Verdict, total


def format_bytes(size: int) -> str:
    """Format bytes as human-readable string."""
    sign = "-" if size < 0 else ""
    size = abs(size)
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{sign}{size:.1f}{unit}" if unit != "B" else f"{sign}{size:d}{unit}"
        size = size / 1024
    return f"{sign}{size:.1f}P"


def _as_mb(size: int) -> float:
    return size / 1024.0 / 1024.0


def _memory(size: int) -> str:
    if size == UNKNOWN:
        return "unknown"
    return f"{size:,d} bytes ({_as_mb(size):.2f} MB)"


def format_counts(counts: Mapping[str, int]) -> str:
    """One ``  <key> x <count>`` line per entry."""
    return "\n".join(f"  {name} x {count}" for name, count in counts.items())


def _block(header: str, counts: Mapping[str, int]) -> list[str]:
    lines = [header]
    if counts:
        lines.append(format_counts(counts))
    return lines


def format_snapshot(stats: Snapshot | Diff, title: str = "ProcessStats") -> str:
    """Render a snapshot or a diff."""
    open_total = total(stats.open_files)
    lines = [title]
    lines += _block(
        f"UsedMem={_memory(stats.used_system_memory)}, Threads={total(stats.system_threads)}",
        stats.system_threads,
    )
    lines += _block(
        f"UsedManaged={_memory(stats.used_managed_memory)}, "
        f"Managed Threads={total(stats.managed_threads)}",
        stats.managed_threads,
    )
    lines += _block(
        f"Open files: (count: {open_total}, unique count: {len(stats.open_files)})",
        stats.open_files,
    )
    return "\n".join(lines)


@dataclass(slots=True, frozen=True)
class LeakReport:
    """Everything known about a failed check."""

    test_name: str
    verdict: Verdict
    before: Snapshot
    after: Snapshot
    diff: Diff
    filtered_diff: Diff
    diff_from_initial: Diff | None = None
    pumps: int = 0

    @property
    def failed(self) -> list[str]:
        return sorted(category.value for category in self.verdict.failed_categories)

    def render(self) -> str:
        sections = [
            f"Process stats of {self.test_name} had unexpected growth "
            f"in {', '.join(self.failed) or 'nothing'} "
            f"(after pumping the UI loop {self.pumps} times)",
            "DIFF:",
            format_snapshot(self.diff, "Diff"),
            "DIFF WITHOUT ALLOWED THREADS:",
            format_snapshot(self.filtered_diff, "Diff"),
        ]
        if self.diff_from_initial is not None:
            sections += ["DIFF FROM INITIAL:", format_snapshot(self.diff_from_initial, "Diff")]
        sections += [
            "BEFORE:",
            format_snapshot(self.before),
            "AFTER:",
            format_snapshot(self.after),
        ]
        return "\n".join(sections)

    def __str__(self) -> str:
        return self.render()
