"""Tests for leakcheck configuration."""

import os

import pytest

from leakcheck.config import Config


def test_defaults():
    config = Config()
    assert config.memory_threshold == 100_000
    assert config.max_pump_iterations == 1000
    assert config.max_pump_seconds is None
    assert config.check_each_test
    assert not config.verbose
    assert config.quiesce
    assert config.exclude_patterns == ()


def test_is_frozen():
    with pytest.raises(AttributeError):
        Config().verbose = True


@pytest.mark.parametrize(
    "field, value",
    [("memory_threshold", -1), ("max_pump_iterations", -1), ("max_pump_seconds", -0.5)],
)
def test_rejects_negative_values(field, value):
    with pytest.raises(ValueError):
        Config(**{field: value})


def test_from_env(monkeypatch):
    monkeypatch.setenv("LEAKCHECK_MEMORY_THRESHOLD", "1_000_000")
    monkeypatch.setenv("LEAKCHECK_MAX_PUMPS", "50")
    monkeypatch.setenv("LEAKCHECK_MAX_PUMP_SECONDS", "2.5")
    monkeypatch.setenv("LEAKCHECK_EACH_TEST", "no")
    monkeypatch.setenv("LEAKCHECK_VERBOSE", "yes")
    monkeypatch.setenv("LEAKCHECK_QUIESCE", "0")
    monkeypatch.setenv("LEAKCHECK_EXCLUDE", os.pathsep.join(["*.pyc", "*/site-packages/*"]))

    config = Config.from_env()

    assert config.memory_threshold == 1_000_000
    assert config.max_pump_iterations == 50
    assert config.max_pump_seconds == 2.5
    assert not config.check_each_test
    assert config.verbose
    assert not config.quiesce
    assert config.exclude_patterns == ("*.pyc", "*/site-packages/*")


def test_from_env_ignores_garbage(monkeypatch):
    monkeypatch.setenv("LEAKCHECK_MEMORY_THRESHOLD", "lots")
    monkeypatch.setenv("LEAKCHECK_MAX_PUMP_SECONDS", "soon")
    config = Config.from_env()
    assert config.memory_threshold == 100_000
    assert config.max_pump_seconds is None


def test_overrides_win_over_env(monkeypatch):
    monkeypatch.setenv("LEAKCHECK_MAX_PUMPS", "50")
    assert Config.from_env(max_pump_iterations=7).max_pump_iterations == 7
    assert Config.from_env(max_pump_iterations=None).max_pump_iterations == 50


def test_with_overrides_returns_copy():
    config = Config()
    changed = config.with_overrides(verbose=True)
    assert changed.verbose
    assert not config.verbose
    assert config.with_overrides() is config
