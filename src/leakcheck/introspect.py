"""Process introspection for leakcheck."""

from __future__ import annotations

import fnmatch
import gc
import logging
import os
import threading
import tracemalloc
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

import psutil

from leakcheck.models import UNKNOWN

logger = logging.getLogger(__name__)


def group_by_name(names: Iterable[str | None]) -> dict[str, int]:
    """
    Count how many times each name occurs.

    ``None`` entries (descriptors whose target could not be resolved) are
    not counted. The result is ordered by name.
    """
    counts = Counter(name for name in names if name is not None)
    return dict(sorted(counts.items()))


def _status_field(text: str, key: str) -> int:
    """Parse the numeric value of a ``Key:  123 kB`` line."""
    for line in text.splitlines():
        if line.startswith(key):
            digits = "".join(ch for ch in line[len(key) :] if ch.isdigit())
            return int(digits)
    raise ValueError(f"{key} not present")


class SystemIntrospector:
    """
    Reads raw resource usage of a process from ``/proc``.

    Every reader fails soft: errors are logged and turned into the
    ``UNKNOWN`` sentinel or an empty list, so a snapshot can always be
    built. Where ``/proc`` is not available, psutil primitives are used
    instead.
    """

    def __init__(
        self,
        pid: int | None = None,
        proc_root: str | os.PathLike[str] = "/proc",
        exclude_patterns: Sequence[str] = (),
        quiesce: Callable[[], object] | None = gc.collect,
    ) -> None:
        """
        Initialize the SystemIntrospector.

        Args:
            pid: Process to inspect. None means the current process.
            proc_root: Mount point of the proc filesystem.
            exclude_patterns: Glob patterns of descriptor targets to ignore.
            quiesce: Called before memory is measured to reduce noise from
                unreclaimed objects. None disables it.
        """
        self._pid = pid
        self._proc_root = Path(proc_root)
        self._exclude_patterns = tuple(exclude_patterns)
        self._quiesce = quiesce

    @property
    def pid(self) -> int:
        """Process id being inspected."""
        return os.getpid() if self._pid is None else self._pid

    @property
    def is_self(self) -> bool:
        """True when inspecting the current process."""
        return self._pid is None or self._pid == os.getpid()

    @property
    def proc_dir(self) -> Path:
        """Per-process directory inside the proc filesystem."""
        return self._proc_root / ("self" if self._pid is None else str(self._pid))

    @property
    def has_procfs(self) -> bool:
        return self._proc_root.is_dir()

    def quiesce(self) -> None:
        """Best-effort garbage collection before measuring."""
        if self._quiesce is None:
            return
        try:
            self._quiesce()
        except Exception:
            logger.warning("Quiesce hook failed", exc_info=True)

    def _read_status(self) -> str:
        return (self.proc_dir / "status").read_text()

    def resident_memory(self) -> int:
        """Resident set size in bytes, or UNKNOWN."""
        if not self.has_procfs:
            return self._psutil_value(lambda proc: proc.memory_info().rss)
        try:
            # VmRSS is always reported in kB
            return _status_field(self._read_status(), "VmRSS:") * 1024
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read resident memory: %s", exc)
            return UNKNOWN

    def os_thread_count(self) -> int:
        """Number of OS threads as reported by the kernel, or UNKNOWN."""
        if not self.has_procfs:
            return self._psutil_value(lambda proc: proc.num_threads())
        try:
            return _status_field(self._read_status(), "Threads:")
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read thread count: %s", exc)
            return UNKNOWN

    def managed_memory(self) -> int:
        """
        Bytes allocated and not yet freed by the Python runtime.

        Uses tracemalloc when it is tracing, otherwise the C heap figures
        psutil exposes. Other processes always report 0.
        """
        if not self.is_self:
            return 0
        if tracemalloc.is_tracing():
            current, _peak = tracemalloc.get_traced_memory()
            return current
        try:
            return psutil.heap_info().heap_used
        except (AttributeError, OSError, psutil.Error) as exc:
            # heap_info exists on Linux, macOS and Windows only
            logger.warning("Failed to read managed memory: %s", exc)
            return 0

    def os_thread_names(self) -> list[str]:
        """Names of all live OS threads of the process."""
        if not self.has_procfs:
            return self._psutil_thread_names()
        names: list[str] = []
        try:
            tasks = sorted((self.proc_dir / "task").iterdir())
        except OSError as exc:
            logger.warning("Failed to list threads: %s", exc)
            return names
        for task in tasks:
            try:
                names.append((task / "comm").read_text().strip())
            except OSError:
                continue  # thread exited
        return names

    def managed_thread_names(self) -> list[str]:
        """Names of the threads the Python runtime knows about."""
        if not self.is_self:
            return []
        return [thread.name for thread in threading.enumerate()]

    def open_descriptor_paths(self) -> list[str | None]:
        """
        Resolved targets of every open descriptor of the process.

        Descriptors whose link cannot be read are reported as None.
        """
        if not self.has_procfs:
            return self._psutil_open_files()
        paths: list[str | None] = []
        try:
            fds = list((self.proc_dir / "fd").iterdir())
        except OSError as exc:
            logger.warning("Failed to list open file descriptors: %s", exc)
            return paths
        for fd in fds:
            target = self._resolve(fd)
            if target is None or not self._is_excluded(target):
                paths.append(target)
        return sorted(paths, key=lambda p: (p is None, p or ""))

    def _resolve(self, path: Path) -> str | None:
        try:
            return os.readlink(path)
        except FileNotFoundError:
            # closed since the directory was listed, e.g. the listing's own fd
            return None
        except OSError as exc:
            if not path.is_symlink() and path.exists():
                return str(path)
            logger.warning("Failed to resolve descriptor %s: %s", path.name, exc)
            return None

    def _is_excluded(self, target: str) -> bool:
        return any(fnmatch.fnmatch(target, pattern) for pattern in self._exclude_patterns)

    def _process(self) -> psutil.Process:
        return psutil.Process(self.pid)

    def _psutil_value(self, getter: Callable[[psutil.Process], int]) -> int:
        try:
            return getter(self._process())
        except (psutil.Error, OSError) as exc:
            logger.warning("Failed to query process %d: %s", self.pid, exc)
            return UNKNOWN

    def _psutil_thread_names(self) -> list[str]:
        # psutil exposes thread ids only
        try:
            return [f"tid-{thread.id}" for thread in self._process().threads()]
        except (psutil.Error, OSError) as exc:
            logger.warning("Failed to list threads of %d: %s", self.pid, exc)
            return []

    def _psutil_open_files(self) -> list[str | None]:
        try:
            paths = [f.path for f in self._process().open_files()]
        except (psutil.Error, OSError) as exc:
            logger.warning("Failed to list open files of %d: %s", self.pid, exc)
            return []
        return sorted(p for p in paths if not self._is_excluded(p))
