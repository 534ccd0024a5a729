"""Background leak monitor for a running process."""

import logging
import threading
from dataclasses import dataclass
from queue import Queue

from leakcheck.introspect import SystemIntrospector
from leakcheck.models import Diff, Snapshot, Verdict
from leakcheck.policy import AllowlistPolicy, ToleranceEvaluator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MonitorUpdate:
    """One poll of the monitored process."""

    snapshot: Snapshot
    baseline: Snapshot
    diff: Diff
    filtered_diff: Diff
    verdict: Verdict
    os_thread_count: int


class LeakMonitor:
    """
    Periodically snapshots a process and compares it with a baseline.

    Runs in a separate daemon thread and pushes updates to a thread-safe Queue.
    The baseline is taken on the first poll and can be replaced at any time
    with rebaseline().
    """

    def __init__(
        self,
        update_queue: Queue[MonitorUpdate],
        introspector: SystemIntrospector | None = None,
        poll_rate: float = 2.0,
        evaluator: ToleranceEvaluator | None = None,
        allowlist: AllowlistPolicy | None = None,
    ) -> None:
        """
        Initialize the LeakMonitor.

        Args:
            update_queue: Thread-safe queue to push updates to.
            introspector: Introspector of the process to watch.
            poll_rate: How often to poll the process (in seconds). Default 2.0s.
            evaluator: Tolerance evaluator applied to each diff.
            allowlist: Allow-list used for the filtered diff.
        """
        self._queue = update_queue
        self._introspector = introspector or SystemIntrospector()
        self._poll_rate = poll_rate
        self._evaluator = evaluator or ToleranceEvaluator()
        self._allowlist = allowlist or AllowlistPolicy()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._baseline: Snapshot | None = None

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def baseline(self) -> Snapshot | None:
        with self._lock:
            return self._baseline

    def rebaseline(self) -> None:
        """Use the next collected snapshot as the new baseline."""
        with self._lock:
            self._baseline = None

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="LeakMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self._queue.put(self.poll())
            except Exception:
                # keep polling, the next snapshot may succeed
                logger.exception("Leak monitor poll failed")

            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)

    def poll(self) -> MonitorUpdate:
        """Collect one snapshot and compare it with the baseline."""
        snapshot = Snapshot.collect(self._introspector)
        with self._lock:
            if self._baseline is None:
                self._baseline = snapshot
            baseline = self._baseline

        diff = snapshot.subtract(baseline)
        return MonitorUpdate(
            snapshot=snapshot,
            baseline=baseline,
            diff=diff,
            filtered_diff=self._allowlist.filter(diff),
            verdict=self._evaluator.evaluate(diff),
            os_thread_count=self._introspector.os_thread_count(),
        )
