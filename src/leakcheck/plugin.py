"""
pytest plugin that fails tests leaking memory, threads or descriptors.

Enable it with ``-p leakcheck.plugin --leakcheck`` (or ``leakcheck = true``
in the ini file). Each test module is a suite. A test's baseline is taken
before its fixtures are set up and compared after they are torn down, so
leaks show up as errors in teardown. Fixtures with a wider scope than
``function`` belong to the module or session, so the baseline is taken
again after each of them is set up.

GUI suites provide the event loop to pump through the
``pytest_leakcheck_ui_loop`` hook, see ``leakcheck.hookspecs``.
"""

from __future__ import annotations

import pytest

from leakcheck.config import Config
from leakcheck.lifecycle import LifecycleController
from leakcheck.models import Category

controller_key = pytest.StashKey[LifecycleController]()
suite_key = pytest.StashKey[str]()


def pytest_addhooks(pluginmanager: pytest.PytestPluginManager) -> None:
    from leakcheck import hookspecs

    pluginmanager.add_hookspecs(hookspecs)


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("leakcheck", "resource leak detection")
    group.addoption(
        "--leakcheck",
        action="store_true",
        default=None,
        help="fail tests that leak memory, threads or file descriptors",
    )
    group.addoption(
        "--leakcheck-memory-threshold",
        type=int,
        default=None,
        help="memory growth in bytes tolerated per test (default 100000)",
    )
    parser.addini("leakcheck", "enable leak checking", type="bool", default=False)
    parser.addini("leakcheck_memory_threshold", "memory growth in bytes tolerated", default=None)
    parser.addini("leakcheck_max_pumps", "UI loop pumps before a leak is final", default=None)
    parser.addini("leakcheck_each_test", "check each test, not only modules", type="bool", default=True)
    parser.addini("leakcheck_exclude", "descriptor target globs to ignore", type="linelist", default=[])


def _int_or_none(value) -> int | None:
    return int(value) if value not in (None, "") else None


def _config_from_pytest(config: pytest.Config) -> Config:
    threshold = config.getoption("leakcheck_memory_threshold")
    if threshold is None:
        threshold = _int_or_none(config.getini("leakcheck_memory_threshold"))
    return Config.from_env(
        memory_threshold=threshold,
        max_pump_iterations=_int_or_none(config.getini("leakcheck_max_pumps")),
        check_each_test=config.getini("leakcheck_each_test"),
        exclude_patterns=tuple(config.getini("leakcheck_exclude")) or None,
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "allow_leaks(*categories): tolerate growth in the given categories "
        f"({', '.join(c.value for c in Category)}); all of them if none given",
    )
    enabled = config.getoption("leakcheck")
    if enabled is None:
        enabled = config.getini("leakcheck")
    if enabled:
        ui_loop = config.hook.pytest_leakcheck_ui_loop(config=config)
        config.stash[controller_key] = LifecycleController(
            _config_from_pytest(config), ui_loop=ui_loop
        )


def allowed_categories(item: pytest.Item) -> frozenset[Category]:
    """Categories excused by ``allow_leaks`` markers on the item."""
    allowed: set[Category] = set()
    for marker in item.iter_markers("allow_leaks"):
        if not marker.args:
            return frozenset(Category)
        allowed.update(Category(arg) for arg in marker.args)
    return frozenset(allowed)


def _suite_name(item: pytest.Item) -> str:
    return item.nodeid.split("::", 1)[0]


@pytest.hookimpl(wrapper=True)
def pytest_runtest_setup(item: pytest.Item):
    controller = item.config.stash.get(controller_key, None)
    if controller is not None:
        suite = _suite_name(item)
        if item.config.stash.get(suite_key, None) != suite:
            controller.on_suite_start(suite)
            item.config.stash[suite_key] = suite
        controller.on_test_start(item.nodeid, allowed_categories(item))
    return (yield)


@pytest.hookimpl(wrapper=True)
def pytest_runtest_teardown(item: pytest.Item, nextitem: pytest.Item | None):
    result = yield
    controller = item.config.stash.get(controller_key, None)
    if controller is None:
        return result
    try:
        controller.on_test_end(item.nodeid)
    finally:
        if nextitem is None or _suite_name(nextitem) != _suite_name(item):
            item.config.stash[suite_key] = ""
            controller.on_suite_end(_suite_name(item))
    return result


@pytest.hookimpl(wrapper=True)
def pytest_fixture_setup(fixturedef: pytest.FixtureDef, request: pytest.FixtureRequest):
    result = yield
    controller = request.config.stash.get(controller_key, None)
    if controller is not None and fixturedef.scope != "function":
        controller.on_shared_setup(fixturedef.argname)
    return result
