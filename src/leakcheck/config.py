"""Configuration for leakcheck."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace

from leakcheck.policy import DEFAULT_MEMORY_THRESHOLD
from leakcheck.reconcile import DEFAULT_MAX_ITERATIONS

ENV_PREFIX = "LEAKCHECK_"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return default
    try:
        return int(value.replace("_", ""))
    except ValueError:
        return default


def _env_float(name: str, default: float | None) -> float | None:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_patterns(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return default
    return tuple(p for p in value.split(os.pathsep) if p)


@dataclass(frozen=True)
class Config:
    """
    Runtime configuration of the leak checker.

    Defaults check every test, allow less than 100 kB memory growth and no
    thread or descriptor growth, and pump the UI loop up to 1000 times.
    """

    memory_threshold: int = DEFAULT_MEMORY_THRESHOLD
    max_pump_iterations: int = DEFAULT_MAX_ITERATIONS
    max_pump_seconds: float | None = None
    # Check around each test. When off, only whole suites are checked.
    check_each_test: bool = True
    # Log every collected snapshot at INFO instead of DEBUG.
    verbose: bool = False
    # Run garbage collection before measuring memory.
    quiesce: bool = True
    # Glob patterns of descriptor targets to ignore, e.g. "*.pyc".
    exclude_patterns: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.memory_threshold < 0:
            raise ValueError(f"memory_threshold must be >= 0 (got {self.memory_threshold})")
        if self.max_pump_iterations < 0:
            raise ValueError(f"max_pump_iterations must be >= 0 (got {self.max_pump_iterations})")
        if self.max_pump_seconds is not None and self.max_pump_seconds < 0:
            raise ValueError(f"max_pump_seconds must be >= 0 (got {self.max_pump_seconds})")
        object.__setattr__(self, "exclude_patterns", tuple(self.exclude_patterns))

    @classmethod
    def from_env(cls, **overrides) -> Config:
        """Build a config from ``LEAKCHECK_*`` environment variables."""
        defaults = cls()
        config = cls(
            memory_threshold=_env_int("MEMORY_THRESHOLD", defaults.memory_threshold),
            max_pump_iterations=_env_int("MAX_PUMPS", defaults.max_pump_iterations),
            max_pump_seconds=_env_float("MAX_PUMP_SECONDS", defaults.max_pump_seconds),
            check_each_test=_env_bool("EACH_TEST", defaults.check_each_test),
            verbose=_env_bool("VERBOSE", defaults.verbose),
            quiesce=_env_bool("QUIESCE", defaults.quiesce),
            exclude_patterns=_env_patterns("EXCLUDE", defaults.exclude_patterns),
        )
        return config.with_overrides(**overrides)

    def with_overrides(self, **overrides) -> Config:
        """Copy with the given fields replaced. None values are ignored."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self
