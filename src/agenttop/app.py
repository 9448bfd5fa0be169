"""agenttop - Textual instance viewer."""

from enum import Enum
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.coordinate import Coordinate
from textual.widgets import DataTable, Footer, Static

from agenttop.engine import Engine, create_engine
from agenttop.models import Instance, InstanceType
from agenttop.registry import InstanceSnapshot


class SortKey(Enum):
    """Sort keys for the instance table."""

    INDEX = "index"
    CPU = "cpu"
    MEM = "mem"
    PID = "pid"


def format_memory(kilobytes: int) -> str:
    """Format a size in kilobytes as a human-readable string."""
    size = float(kilobytes)
    for unit in ["K", "M", "G"]:
        if size < 1024:
            return f"{size:5.1f}{unit}"
        size = size / 1024
    return f"{size:.1f}T"


class SummaryStats(Static):
    """Header widget summarising the current snapshot."""

    DEFAULT_CSS = """
    SummaryStats {
        height: auto;
        padding: 0 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__("Scanning for agent sessions...", *args, **kwargs)

    def update_stats(self, snapshot: InstanceSnapshot) -> None:
        """Update the summary from a snapshot."""
        self.update(self.describe(snapshot))

    @staticmethod
    def describe(snapshot: InstanceSnapshot) -> str:
        if not snapshot.instances:
            return "No agent sessions running"
        counts = {kind: 0 for kind in InstanceType}
        for instance in snapshot.instances:
            counts[instance.type] += 1
        remote = sum(1 for instance in snapshot.instances if instance.is_remote)
        total_cpu = sum(instance.cpu_percent for instance in snapshot.instances)
        total_mem = sum(instance.memory_kb for instance in snapshot.instances)
        breakdown = "  ".join(f"{kind.value}: {count}" for kind, count in counts.items() if count)
        return (
            f"Sessions: {len(snapshot)}  ({breakdown})  ssh: {remote}\n"
            f"CPU: {total_cpu:.1f}%  Memory: {format_memory(total_mem).strip()}  "
            f"Updated: {snapshot.taken_at:%H:%M:%S}"
        )


class InstanceTable(Container):
    """Container for the instance data table."""

    DEFAULT_CSS = """
    InstanceTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._current_pids: set[int] = set()
        self._instances: dict[int, Instance] = {}
        self._sort_key: SortKey = SortKey.INDEX
        self._sort_reverse: bool = False

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        self._sort_reverse = self._sort_key in (SortKey.CPU, SortKey.MEM)
        return self._sort_key

    def compose(self) -> ComposeResult:
        yield DataTable(id="instance-table")

    def on_mount(self) -> None:
        table = self.query_one("#instance-table", DataTable)
        table.cursor_type = "row"

        table.add_column("#", key="index", width=3)
        table.add_column("PID", key="pid", width=8)
        table.add_column("TYPE", key="type", width=12)
        table.add_column("CPU%", key="cpu", width=6)
        table.add_column("RES", key="mem", width=8)
        table.add_column("TIME", key="elapsed", width=11)
        table.add_column("BRANCH", key="branch", width=14)
        table.add_column("FOLDER", key="folder", width=28)
        table.add_column("SESSION", key="label")

    def selected_instance(self) -> Instance | None:
        """The instance under the cursor, if any."""
        table = self.query_one("#instance-table", DataTable)
        if table.row_count == 0:
            return None
        try:
            row_key = table.coordinate_to_cell_key(Coordinate(table.cursor_row, 0)).row_key
        except Exception:
            return None
        if row_key.value is None:
            return None
        return self._instances.get(int(row_key.value))

    def update_instances(self, instances: tuple[Instance, ...]) -> None:
        """
        Update the table with a new snapshot.

        Existing rows are updated cell by cell, rows of exited instances are
        removed and new instances are appended.
        """
        table = self.query_one("#instance-table", DataTable)
        ordered = self._sort_instances(instances)
        new_pids = {instance.pid for instance in ordered}

        for pid in self._current_pids - new_pids:
            try:
                table.remove_row(str(pid))
            except Exception:
                pass  # Row may not exist

        for instance in ordered:
            row_key = str(instance.pid)
            if instance.pid in self._current_pids:
                self._update_row(table, row_key, instance)
            else:
                self._add_row(table, row_key, instance)

        self._current_pids = new_pids
        self._instances = {instance.pid: instance for instance in ordered}

    def rebuild(self, instances: tuple[Instance, ...]) -> None:
        """Clear the table and re-add every row in the current sort order."""
        self.query_one("#instance-table", DataTable).clear()
        self._current_pids = set()
        self.update_instances(instances)

    def _sort_instances(self, instances: tuple[Instance, ...]) -> list[Instance]:
        key_func = {
            SortKey.INDEX: lambda i: i.index,
            SortKey.CPU: lambda i: i.cpu_percent,
            SortKey.MEM: lambda i: i.memory_kb,
            SortKey.PID: lambda i: i.pid,
        }
        return sorted(instances, key=key_func[self._sort_key], reverse=self._sort_reverse)

    @staticmethod
    def _cells(instance: Instance) -> tuple[str, ...]:
        kind = instance.type.value + (" ssh" if instance.is_remote else "")
        return (
            str(instance.index),
            str(instance.pid),
            kind,
            f"{instance.cpu_percent:5.1f}",
            format_memory(instance.memory_kb),
            instance.elapsed,
            (instance.git_branch or "")[:14],
            (instance.folder or "")[-28:],
            instance.label[:60],
        )

    def _update_row(self, table: DataTable, row_key: str, instance: Instance) -> None:
        columns = ("index", "pid", "type", "cpu", "mem", "elapsed", "branch", "folder", "label")
        try:
            for column, value in zip(columns, self._cells(instance)):
                table.update_cell(row_key, column, value)
        except Exception:
            pass  # Row may have been removed

    def _add_row(self, table: DataTable, row_key: str, instance: Instance) -> None:
        try:
            table.add_row(*self._cells(instance), key=row_key)
        except Exception:
            pass  # Row may already exist


class AgentTopApp(App):
    """Main agenttop application."""

    TITLE = "agenttop"
    SUB_TITLE = "Running agent sessions"

    CSS = """
    Screen {
        layout: vertical;
    }

    #summary {
        dock: top;
        height: auto;
        min-height: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("k", "terminate", "Stop"),
        ("K", "kill", "Kill"),
        ("x", "terminate_all", "Stop all"),
        ("c", "copy_command", "Copy cmd"),
        ("f6", "sort", "Sort"),
    ]

    def __init__(self, engine: Engine | None = None) -> None:
        super().__init__()
        self._engine = engine or create_engine()
        self._update_queue: Queue[InstanceSnapshot] = self._engine.registry.subscribe()

    def compose(self) -> ComposeResult:
        yield SummaryStats(id="summary")
        yield InstanceTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the monitor when the app is mounted."""
        self._engine.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain the snapshot queue and show the newest snapshot."""
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break

        if snapshot is not None:
            self._update_ui(snapshot)

    def _update_ui(self, snapshot: InstanceSnapshot) -> None:
        self.query_one("#summary", SummaryStats).update_stats(snapshot)
        self.query_one(InstanceTable).update_instances(snapshot.instances)

    def _selected(self) -> Instance | None:
        instance = self.query_one(InstanceTable).selected_instance()
        if instance is None:
            self.notify("No session selected")
        return instance

    def action_refresh(self) -> None:
        self._engine.monitor.force_refresh()

    def action_terminate(self) -> None:
        instance = self._selected()
        if instance is not None:
            self._engine.lifecycle.terminate(instance.pid)
            self.notify(f"Sent SIGTERM to {instance.pid}")

    def action_kill(self) -> None:
        instance = self._selected()
        if instance is not None:
            self._engine.lifecycle.terminate(instance.pid, force=True)
            self.notify(f"Sent SIGKILL to {instance.pid}")

    def action_terminate_all(self) -> None:
        count = len(self._engine.registry.snapshot)
        self._engine.lifecycle.terminate_all()
        self.notify(f"Sent SIGTERM to {count} session(s)")

    def action_copy_command(self) -> None:
        instance = self._selected()
        if instance is not None:
            self.copy_to_clipboard(instance.launch_command)
            self.notify(instance.launch_command, title="Copied")

    def action_sort(self) -> None:
        table = self.query_one(InstanceTable)
        new_sort_key = table.cycle_sort()
        table.rebuild(self._engine.registry.snapshot.instances)
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._engine.registry.unsubscribe(self._update_queue)
        self._engine.stop()
        self.exit()
