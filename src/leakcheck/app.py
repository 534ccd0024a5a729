"""leakcheck - Textual viewer for a watched process."""

from enum import Enum
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import DataTable, Footer, Static

from leakcheck.introspect import SystemIntrospector
from leakcheck.models import UNKNOWN, Category, Diff, total
from leakcheck.monitor import LeakMonitor, MonitorUpdate
from leakcheck.policy import ToleranceEvaluator
from leakcheck.report import format_bytes


class SortKey(Enum):
    """Sort keys for the diff table."""

    CATEGORY = "category"
    NAME = "name"
    DELTA = "delta"


def diff_rows(diff: Diff) -> list[tuple[Category, str, int]]:
    """Flatten a diff into (category, name, delta) rows."""
    rows = []
    if diff.used_system_memory:
        rows.append((Category.SYSTEM_MEMORY, "resident", diff.used_system_memory))
    if diff.used_managed_memory:
        rows.append((Category.MANAGED_MEMORY, "heap", diff.used_managed_memory))
    for category, counts in (
        (Category.OS_THREADS, diff.system_threads),
        (Category.MANAGED_THREADS, diff.managed_threads),
        (Category.OPEN_FILES, diff.open_files),
    ):
        rows.extend((category, name, count) for name, count in counts.items())
    return rows


def format_delta(category: Category, delta: int) -> str:
    if category in (Category.SYSTEM_MEMORY, Category.MANAGED_MEMORY):
        return ("+" if delta > 0 else "") + format_bytes(delta)
    return f"{delta:+d}"


class HeaderStats(Static):
    """Header widget showing totals of the watched process and the verdict."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._update: MonitorUpdate | None = None

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_usage_info(), id="usage-info"),
            Static(self._get_verdict_info(), id="verdict-info"),
        )

    def update_stats(self, update: MonitorUpdate) -> None:
        """Update the statistics from a monitor update."""
        self._update = update
        self._refresh_display()

    def _refresh_display(self) -> None:
        """Refresh the display with current data."""
        if not self.is_mounted:
            return
        self.query_one("#usage-info", Static).update(self._get_usage_info())
        self.query_one("#verdict-info", Static).update(self._get_verdict_info())

    def _get_usage_info(self) -> str:
        """Get resource usage display."""
        if self._update is None:
            return "Collecting..."
        stats = self._update.snapshot
        rss = stats.used_system_memory
        rss_text = "unknown" if rss == UNKNOWN else format_bytes(rss)
        return (
            f"Mem      {rss_text}\n"
            f"Managed  {format_bytes(stats.used_managed_memory)}\n"
            f"Threads  {total(stats.system_threads)} "
            f"(kernel: {self._update.os_thread_count}, "
            f"python: {total(stats.managed_threads)})\n"
            f"Files    {total(stats.open_files)} ({len(stats.open_files)} unique)"
        )

    def _get_verdict_info(self) -> str:
        """Get verdict display."""
        if self._update is None:
            return ""
        verdict = self._update.verdict
        if verdict.passed:
            return "[green]No growth since baseline[/green]"
        failed = ", ".join(sorted(c.value for c in verdict.failed_categories))
        return f"[red]Growth since baseline[/red]\n{failed}"


class DiffTable(Container):
    """Container for the table of non-zero diff entries."""

    DEFAULT_CSS = """
    DiffTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize DiffTable."""
        super().__init__(*args, **kwargs)
        self._order: list[str] = []
        self._sort_key: SortKey = SortKey.CATEGORY
        self.show_allowed: bool = False

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        current_index = keys.index(self._sort_key)
        self._sort_key = keys[(current_index + 1) % len(keys)]
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the diff table."""
        yield DataTable(id="diff-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#diff-table", DataTable)
        table.cursor_type = "row"
        table.add_column("Category", key="category", width=16)
        table.add_column("Delta", key="delta", width=10)
        table.add_column("Name", key="name")

    def _sort_rows(self, rows: list[tuple[Category, str, int]]) -> list[tuple[Category, str, int]]:
        """Sort rows based on the current sort key."""
        key_func = {
            SortKey.CATEGORY: lambda r: (r[0].value, r[1]),
            SortKey.NAME: lambda r: r[1],
            SortKey.DELTA: lambda r: -r[2],
        }
        return sorted(rows, key=key_func[self._sort_key])

    def update_diff(self, update: MonitorUpdate) -> None:
        """
        Update the table from a monitor update.

        Uses update_cell while the rows stay the same, and rebuilds the table
        when rows appear, disappear or change order.
        """
        table = self.query_one("#diff-table", DataTable)
        diff = update.diff if self.show_allowed else update.filtered_diff
        rows = self._sort_rows(diff_rows(diff))
        order = [f"{category.value}:{name}" for category, name, _ in rows]

        if order != self._order:
            table.clear()
            for key, (category, name, delta) in zip(order, rows):
                table.add_row(category.value, format_delta(category, delta), name, key=key)
        else:
            for key, (category, _name, delta) in zip(order, rows):
                table.update_cell(key, "delta", format_delta(category, delta))

        self._order = order

    @property
    def row_keys(self) -> list[str]:
        """Keys of the displayed rows, in display order."""
        return list(self._order)


class LeakcheckApp(App):
    """Main leakcheck watch application."""

    TITLE = "leakcheck"
    SUB_TITLE = "Resource Leak Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 6;
    }

    Horizontal {
        height: auto;
    }

    #usage-info {
        width: 1fr;
        padding-right: 2;
    }

    #verdict-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "rebaseline", "Rebaseline"),
        ("a", "toggle_allowed", "Allowed threads"),
        ("f6", "sort", "Sort"),
    ]

    def __init__(
        self,
        introspector: SystemIntrospector | None = None,
        poll_rate: float = 2.0,
        evaluator: ToleranceEvaluator | None = None,
    ) -> None:
        """Initialize the LeakcheckApp."""
        super().__init__()
        self._update_queue: Queue[MonitorUpdate] = Queue()
        self._monitor = LeakMonitor(
            self._update_queue,
            introspector=introspector,
            poll_rate=poll_rate,
            evaluator=evaluator,
        )
        if introspector is not None:
            self.sub_title = f"Resource Leak Monitor - pid {introspector.pid}"

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield DiffTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the monitor when the app is mounted."""
        self._monitor.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Check the queue for updates and refresh the UI."""
        # Drain the queue to get the most recent update
        update = None
        while True:
            try:
                update = self._update_queue.get_nowait()
            except Empty:
                break

        if update is not None:
            self.show_update(update)

    def show_update(self, update: MonitorUpdate) -> None:
        """Render a monitor update."""
        self.query_one("#header-stats", HeaderStats).update_stats(update)
        self.query_one(DiffTable).update_diff(update)

    def action_rebaseline(self) -> None:
        """Take the next snapshot as the new baseline."""
        self._monitor.rebaseline()
        self.notify("Baseline reset")

    def action_toggle_allowed(self) -> None:
        """Show or hide allow-listed threads."""
        diff_table = self.query_one(DiffTable)
        diff_table.show_allowed = not diff_table.show_allowed
        self.notify("Showing allowed threads" if diff_table.show_allowed else "Hiding allowed threads")

    def action_sort(self) -> None:
        """Cycle through sort keys."""
        new_sort_key = self.query_one(DiffTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()
