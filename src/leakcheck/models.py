"""Data models for leakcheck."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from leakcheck.introspect import SystemIntrospector

# Sentinel for a figure the introspection backend could not provide.
UNKNOWN = -1


class Category(Enum):
    """Resource categories checked by the tolerance evaluator."""

    SYSTEM_MEMORY = "system_memory"
    OS_THREADS = "os_threads"
    MANAGED_MEMORY = "managed_memory"
    MANAGED_THREADS = "managed_threads"
    OPEN_FILES = "open_files"


def total(counts: Mapping[str, int]) -> int:
    """Sum of all counts in a grouped mapping."""
    return sum(counts.values())


def _frozen(counts: Mapping[str, int]) -> Mapping[str, int]:
    return MappingProxyType(dict(counts))


def _subtract(left: Mapping[str, int], right: Mapping[str, int]) -> dict[str, int]:
    result = dict(left)
    for name, count in right.items():
        result[name] = result.get(name, 0) - count
    return {name: count for name, count in sorted(result.items()) if count != 0}


@dataclass(slots=True, frozen=True)
class Diff:
    """Signed delta between two snapshots. Zero entries are never stored."""

    used_system_memory: int = 0
    system_threads: Mapping[str, int] = field(default_factory=dict)
    used_managed_memory: int = 0
    managed_threads: Mapping[str, int] = field(default_factory=dict)
    open_files: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("system_threads", "managed_threads", "open_files"):
            counts = {k: v for k, v in getattr(self, name).items() if v != 0}
            object.__setattr__(self, name, _frozen(counts))

    def __neg__(self) -> Diff:
        return Diff(
            used_system_memory=-self.used_system_memory,
            system_threads={k: -v for k, v in self.system_threads.items()},
            used_managed_memory=-self.used_managed_memory,
            managed_threads={k: -v for k, v in self.managed_threads.items()},
            open_files={k: -v for k, v in self.open_files.items()},
        )

    @property
    def is_empty(self) -> bool:
        """True when nothing changed at all."""
        return (
            self.used_system_memory == 0
            and self.used_managed_memory == 0
            and not self.system_threads
            and not self.managed_threads
            and not self.open_files
        )


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Immutable record of process resource usage at one instant."""

    used_system_memory: int = 0
    # OS thread name -> number of threads with that name. Most names are
    # unique, but several threads may share one.
    system_threads: Mapping[str, int] = field(default_factory=dict)
    used_managed_memory: int = 0
    managed_threads: Mapping[str, int] = field(default_factory=dict)
    # Resolved descriptor target -> number of times it is open. Devices
    # such as the video card are commonly open several times.
    open_files: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("system_threads", "managed_threads", "open_files"):
            counts = getattr(self, name)
            if any(count < 0 for count in counts.values()):
                raise ValueError(f"{name} counts must be non-negative")
            object.__setattr__(self, name, _frozen(counts))

    @classmethod
    def collect(cls, introspector: SystemIntrospector | None = None) -> Snapshot:
        """
        Collect a snapshot of the process.

        Runs the introspector's quiesce hook first, then reads memory,
        OS threads, managed memory, managed threads and descriptors in
        that order.
        """
        from leakcheck.introspect import SystemIntrospector, group_by_name

        if introspector is None:
            introspector = SystemIntrospector()
        introspector.quiesce()

        used_system_memory = introspector.resident_memory()
        system_threads = group_by_name(introspector.os_thread_names())
        used_managed_memory = introspector.managed_memory()
        managed_threads = group_by_name(introspector.managed_thread_names())
        open_files = group_by_name(introspector.open_descriptor_paths())
        return cls(
            used_system_memory=used_system_memory,
            system_threads=system_threads,
            used_managed_memory=used_managed_memory,
            managed_threads=managed_threads,
            open_files=open_files,
        )

    @staticmethod
    def diff(before: Snapshot, after: Snapshot) -> Diff:
        """Compute ``after - before`` with zero entries dropped."""
        return after.subtract(before)

    def subtract(self, other: Snapshot) -> Diff:
        """Return the delta of this snapshot relative to ``other``."""
        return Diff(
            used_system_memory=self.used_system_memory - other.used_system_memory,
            system_threads=_subtract(self.system_threads, other.system_threads),
            used_managed_memory=self.used_managed_memory - other.used_managed_memory,
            managed_threads=_subtract(self.managed_threads, other.managed_threads),
            open_files=_subtract(self.open_files, other.open_files),
        )


@dataclass(slots=True, frozen=True)
class AllowlistRule:
    """Thread names matching ``pattern`` are exempt below ``quota`` threads."""

    pattern: re.Pattern[str]
    quota: int

    @classmethod
    def of(cls, pattern: str, quota: int) -> AllowlistRule:
        return cls(re.compile(pattern), quota)

    def matches(self, name: str, count: int) -> bool:
        return self.pattern.fullmatch(name) is not None and count < self.quota


@dataclass(slots=True, frozen=True)
class Verdict:
    """Outcome of a tolerance check."""

    passed: bool
    failed_categories: frozenset[Category] = frozenset()

    @classmethod
    def from_failures(cls, failed: Iterable[Category]) -> Verdict:
        failed = frozenset(failed)
        return cls(passed=not failed, failed_categories=failed)

    def ignoring(self, categories: Iterable[Category]) -> Verdict:
        """Verdict after excusing the given categories."""
        return Verdict.from_failures(self.failed_categories - frozenset(categories))
