"""Shared fixtures for leakcheck tests."""

import os
from pathlib import Path

import pytest

pytest_plugins = ["pytester"]


class FakeIntrospector:
    """Introspector whose readings are set by the test."""

    def __init__(self, memory=1000, threads=(), managed_memory=0, managed_threads=(), files=()):
        self.memory = memory
        self.threads = list(threads)
        self.managed = managed_memory
        self.managed_threads = list(managed_threads)
        self.files = list(files)
        self.calls: list[str] = []
        self.pid = os.getpid()

    def quiesce(self):
        self.calls.append("quiesce")

    def resident_memory(self):
        self.calls.append("resident_memory")
        return self.memory

    def os_thread_count(self):
        return len(self.threads)

    def os_thread_names(self):
        self.calls.append("os_thread_names")
        return list(self.threads)

    def managed_memory(self):
        self.calls.append("managed_memory")
        return self.managed

    def managed_thread_names(self):
        self.calls.append("managed_thread_names")
        return list(self.managed_threads)

    def open_descriptor_paths(self):
        self.calls.append("open_descriptor_paths")
        return list(self.files)


@pytest.fixture
def fake_introspector():
    return FakeIntrospector(memory=1000, threads=["A"])


@pytest.fixture
def fake_proc(tmp_path: Path) -> Path:
    """A /proc-like tree for the "self" process."""
    proc = tmp_path / "proc"
    me = proc / "self"
    me.mkdir(parents=True)
    (me / "status").write_text("Name:\tpython\nVmRSS:\t    2048 kB\nThreads:\t3\n")

    for tid, name in ((100, "python"), (101, "worker"), (102, "worker")):
        task = me / "task" / str(tid)
        task.mkdir(parents=True)
        (task / "comm").write_text(name + "\n")
    # a thread that exited between listing and reading
    (me / "task" / "103").mkdir()

    data = tmp_path / "data.txt"
    data.write_text("data")
    fd = me / "fd"
    fd.mkdir()
    os.symlink("/dev/null", fd / "0")
    os.symlink("/dev/null", fd / "1")
    os.symlink(str(data), fd / "2")
    os.symlink("socket:[1234]", fd / "3")
    os.symlink("/usr/lib/python3/cache.pyc", fd / "4")
    return proc
