"""Hooks the leakcheck pytest plugin adds to pytest."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from leakcheck.ui_loop import UILoop


@pytest.hookspec(firstresult=True)
def pytest_leakcheck_ui_loop(config: pytest.Config) -> UILoop | None:
    """
    Return the UI loop pumped while a failing leak check is retried.

    Implement it in a ``conftest.py`` of a GUI test suite, for example by
    returning an ``AsyncioUILoop`` for the suite's event loop. The first
    non-None result wins. Without an implementation failures are final
    right away.
    """
