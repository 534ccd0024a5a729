"""Bounded retry loop that lets asynchronous UI teardown finish."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from leakcheck.models import Verdict
from leakcheck.ui_loop import UILoop

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 1000


class State(Enum):
    """States of a reconciliation run."""

    CHECKING = "checking"
    PUMPING = "pumping"
    PASSED = "passed"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class ReconciliationOutcome:
    """Final state of a reconciliation run."""

    state: State
    verdict: Verdict
    pumps: int = 0
    idle_pumps: int = 0

    @property
    def passed(self) -> bool:
        return self.state is State.PASSED


class ReconciliationLoop:
    """
    Re-runs a failing check while pumping the UI loop.

    Native window destruction and compositor round-trips complete after
    the dispose call returns, so a failing check is retried until it
    passes or the budget is spent. Without a live UI loop on the calling
    thread there is nothing to wait for and the failure is final.
    """

    def __init__(
        self,
        ui_loop: UILoop,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_seconds: float | None = None,
        idle_sleep: float = 0.001,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_iterations < 0:
            raise ValueError("max_iterations must be >= 0")
        self._ui_loop = ui_loop
        self._max_iterations = max_iterations
        self._max_seconds = max_seconds
        self._idle_sleep = idle_sleep
        self._clock = clock
        self.state = State.CHECKING

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    def _budget_left(self, pumps: int, started: float) -> bool:
        if pumps >= self._max_iterations:
            return False
        if self._max_seconds is not None and self._clock() - started >= self._max_seconds:
            return False
        return True

    def run(self, check: Callable[[], Verdict]) -> ReconciliationOutcome:
        """Evaluate ``check`` until it passes or the budget is exhausted."""
        self.state = State.CHECKING
        verdict = check()
        if verdict.passed:
            self.state = State.PASSED
            return ReconciliationOutcome(self.state, verdict)

        if not self._ui_loop.has_live_loop():
            # nothing to pump, the failure is final
            self.state = State.FAILED
            return ReconciliationOutcome(self.state, verdict)

        pumps = idle = 0
        started = self._clock()
        while self._budget_left(pumps, started):
            self.state = State.PUMPING
            processed = self._ui_loop.pump_once()
            pumps += 1
            if not processed:
                idle += 1
                if self._idle_sleep:
                    time.sleep(self._idle_sleep)
            self.state = State.CHECKING
            verdict = check()
            if verdict.passed:
                logger.debug("Check passed after %d pumps", pumps)
                self.state = State.PASSED
                return ReconciliationOutcome(self.state, verdict, pumps, idle)

        logger.debug("Check still failing after %d pumps", pumps)
        self.state = State.FAILED
        return ReconciliationOutcome(self.state, verdict, pumps, idle)
