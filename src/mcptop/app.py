"""mcptop - Main Textual application."""

import argparse
import functools
import logging
from collections.abc import Callable
from dataclasses import replace
from enum import Enum
from pathlib import Path
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Grid
from textual.logging import TextualHandler
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Footer, Label, Static

from mcptop.controller import failure_hint, terminate, terminate_all
from mcptop.metrics import ResourceLevel, cpu_level, format_ram, ram_level
from mcptop.models import ClassifiedProcess, DiscoverySnapshot, Source
from mcptop.monitor import ServerMonitor, discover
from mcptop.settings import Settings, normalize_log_level, resolve_candidate_paths


class SortKey(Enum):
    """Sort keys for the server table."""

    CPU = "cpu"
    RAM = "ram"
    PID = "pid"
    NAME = "name"


LEVEL_STYLES = {
    ResourceLevel.HIGH: "red",
    ResourceLevel.MEDIUM: "dark_orange",
    ResourceLevel.MODERATE: "yellow",
    ResourceLevel.LOW: "green",
}


def styled_ram(ram_mb: int) -> str:
    """RAM cell coloured by its level."""
    style = LEVEL_STYLES[ram_level(ram_mb)]
    return f"[{style}]{format_ram(ram_mb)}[/{style}]"


def styled_cpu(cpu_percent: float) -> str:
    """CPU cell coloured by its level; low usage is dimmed."""
    level = cpu_level(cpu_percent)
    style = "dim" if level is ResourceLevel.LOW else LEVEL_STYLES[level]
    return f"[{style}]{cpu_percent:5.1f}[/{style}]"


class SummaryBar(Static):
    """Header widget with server count, total RAM and config count."""

    DEFAULT_CSS = """
    SummaryBar {
        height: auto;
        padding: 0 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize SummaryBar."""
        super().__init__("Scanning for MCP servers...", *args, **kwargs)
        self._server_count: int = 0
        self._total_ram_mb: int = 0
        self._config_count: int = 0
        self._scan_ok: bool = True
        self._source_filter: Source | None = None

    def update_summary(self, snapshot: DiscoverySnapshot, source_filter: Source | None) -> None:
        """Update the summary from a discovery snapshot."""
        self._server_count = len(snapshot.processes)
        self._total_ram_mb = snapshot.total_ram_mb
        self._config_count = len(snapshot.configs)
        self._scan_ok = snapshot.scan_ok
        self._source_filter = source_filter
        self.update(self.render_summary())

    def render_summary(self) -> str:
        """Build the summary line."""
        plural = "" if self._server_count == 1 else "s"
        parts = [
            f"[b]{self._server_count}[/b] MCP server{plural} running",
            f"Total RAM: {format_ram(self._total_ram_mb)}",
            f"Configs: {self._config_count}",
            f"Source: {self._source_filter.display_name if self._source_filter else 'All'}",
        ]
        if not self._scan_ok:
            parts.append("[red]process listing unavailable[/red]")
        return "  |  ".join(parts)


class ServerTable(Container):
    """Container for the server data table."""

    DEFAULT_CSS = """
    ServerTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ServerTable."""
        super().__init__(*args, **kwargs)
        self._current_pids: set[int] = set()
        self._rows: list[ClassifiedProcess] = []
        self._sort_key: SortKey = SortKey.CPU
        self._sort_reverse: bool = True  # Default: descending for CPU

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    @property
    def rows(self) -> list[ClassifiedProcess]:
        """Servers in display order."""
        return list(self._rows)

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        current_index = keys.index(self._sort_key)
        self._sort_key = keys[(current_index + 1) % len(keys)]
        self._sort_reverse = self._sort_key in (SortKey.CPU, SortKey.RAM)
        self.update_processes(self._rows)
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the server table."""
        yield DataTable(id="server-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#server-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("NAME", key="name", width=24)
        table.add_column("SOURCE", key="source", width=15)
        table.add_column("CPU%", key="cpu", width=7)
        table.add_column("RAM", key="ram", width=9)
        table.add_column("STARTED", key="started", width=14)
        table.add_column("Command", key="command")

    def update_processes(self, processes: list[ClassifiedProcess]) -> None:
        """
        Replace the table contents with new data.

        The cursor stays on the previously selected server when it is
        still running.
        """
        table = self.query_one("#server-table", DataTable)
        selected = self.selected()

        self._rows = self._sort_processes(processes)
        self._current_pids = {proc.pid for proc in self._rows}

        table.clear()
        for proc in self._rows:
            table.add_row(
                str(proc.pid),
                proc.display_name[:24],
                proc.source.display_name,
                styled_cpu(proc.cpu_percentage),
                styled_ram(proc.ram_usage_mb),
                proc.start_time or "-",
                proc.command_line[:80],
                key=str(proc.pid),
            )

        if selected is not None and selected.pid in self._current_pids:
            index = next(i for i, proc in enumerate(self._rows) if proc.pid == selected.pid)
            table.move_cursor(row=index)

    def selected(self) -> ClassifiedProcess | None:
        """Server under the cursor, if any."""
        table = self.query_one("#server-table", DataTable)
        if not self._rows or table.row_count == 0:
            return None
        row = table.cursor_row
        if 0 <= row < len(self._rows):
            return self._rows[row]
        return None

    def _sort_processes(self, processes: list[ClassifiedProcess]) -> list[ClassifiedProcess]:
        """Sort servers based on the current sort key."""
        key_func = {
            SortKey.CPU: lambda p: p.cpu_percentage,
            SortKey.RAM: lambda p: p.ram_usage_mb,
            SortKey.PID: lambda p: p.pid,
            SortKey.NAME: lambda p: p.display_name.lower(),
        }
        return sorted(processes, key=key_func[self._sort_key], reverse=self._sort_reverse)


class ConfirmScreen(ModalScreen[bool]):
    """Yes/no confirmation before killing servers."""

    DEFAULT_CSS = """
    ConfirmScreen {
        align: center middle;
    }

    #dialog {
        grid-size: 2;
        grid-gutter: 1 2;
        grid-rows: 1fr 3;
        padding: 0 1;
        width: 60;
        height: 11;
        border: thick $background 80%;
        background: $surface;
    }

    #question {
        column-span: 2;
        height: 1fr;
        width: 1fr;
        content-align: center middle;
    }

    Button {
        width: 100%;
    }
    """

    def __init__(self, question: str, confirm_label: str = "Kill") -> None:
        super().__init__()
        self._question = question
        self._confirm_label = confirm_label

    def compose(self) -> ComposeResult:
        yield Grid(
            Label(self._question, id="question"),
            Button(self._confirm_label, variant="error", id="confirm"),
            Button("Cancel", variant="primary", id="cancel"),
            id="dialog",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "confirm")


class McpTopApp(App):
    """Main mcptop application."""

    TITLE = "mcptop"
    SUB_TITLE = "MCP Server Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #summary {
        dock: top;
        height: auto;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("s", "cycle_source", "Source"),
        ("r", "refresh", "Refresh"),
        ("k", "kill", "Kill"),
        ("K", "force_kill", "Force kill"),
        ("a", "kill_all", "Kill all"),
    ]

    def __init__(
        self,
        settings: Settings | None = None,
        discover_fn: Callable[[], DiscoverySnapshot] | None = None,
    ) -> None:
        """Initialize the McpTopApp."""
        super().__init__()
        self._settings = settings if settings is not None else Settings.from_environment()
        if discover_fn is None:
            discover_fn = functools.partial(discover, self._settings)
        self._update_queue: Queue[DiscoverySnapshot] = Queue()
        self._monitor = ServerMonitor(
            self._update_queue,
            poll_rate=self._settings.poll_rate,
            discover_fn=discover_fn,
        )
        self._snapshot: DiscoverySnapshot | None = None
        self._source_filter: Source | None = None

    @property
    def source_filter(self) -> Source | None:
        """Source currently shown, or None for all."""
        return self._source_filter

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield SummaryBar(id="summary")
        yield ServerTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the monitor when the app is mounted."""
        self._monitor.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain the queue and show the most recent snapshot."""
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break

        if snapshot is not None:
            self.show_snapshot(snapshot)

    def show_snapshot(self, snapshot: DiscoverySnapshot) -> None:
        """Update the UI with a discovery snapshot."""
        self._snapshot = snapshot
        self.query_one("#summary", SummaryBar).update_summary(snapshot, self._source_filter)
        self.query_one(ServerTable).update_processes(self._visible(snapshot))

    def _visible(self, snapshot: DiscoverySnapshot) -> list[ClassifiedProcess]:
        if self._source_filter is None:
            return list(snapshot.processes)
        return [proc for proc in snapshot.processes if proc.source is self._source_filter]

    def action_sort(self) -> None:
        """Cycle through sort keys."""
        new_sort_key = self.query_one(ServerTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_cycle_source(self) -> None:
        """Cycle the source filter through the sources currently seen."""
        seen = []
        if self._snapshot is not None:
            for proc in self._snapshot.processes:
                if proc.source not in seen:
                    seen.append(proc.source)
        choices: list[Source | None] = [None, *seen]
        index = choices.index(self._source_filter) if self._source_filter in choices else 0
        self._source_filter = choices[(index + 1) % len(choices)]

        if self._snapshot is not None:
            self.show_snapshot(self._snapshot)
        label = self._source_filter.display_name if self._source_filter else "All"
        self.notify(f"Source: {label}")

    def action_refresh(self) -> None:
        """Run a discovery cycle now."""
        self._monitor.refresh()

    def action_kill(self) -> None:
        """Gracefully kill the selected server."""
        self._confirm_kill(force=False)

    def action_force_kill(self) -> None:
        """Forcefully kill the selected server."""
        self._confirm_kill(force=True)

    def _confirm_kill(self, force: bool) -> None:
        proc = self.query_one(ServerTable).selected()
        if proc is None:
            self.notify("No server selected", severity="warning")
            return

        verb = "Force kill" if force else "Kill"
        question = f'{verb} "{proc.display_name}" (PID: {proc.pid})?'

        def _on_answer(confirmed: bool | None) -> None:
            if confirmed:
                self._kill(proc, force)

        self.push_screen(ConfirmScreen(question, verb), _on_answer)

    def _kill(self, proc: ClassifiedProcess, force: bool) -> None:
        elevate = force and self._settings.sudo_force_kill
        if terminate(proc.pid, force, elevate=elevate):
            self.notify(f"{proc.display_name} (PID: {proc.pid}) has been terminated")
        else:
            self.notify(failure_hint(force), title="Failed to kill process", severity="error")
        self._monitor.refresh()

    def action_kill_all(self) -> None:
        """Kill every visible server after confirmation."""
        targets = self.query_one(ServerTable).rows
        if not targets:
            self.notify("No servers to kill", severity="warning")
            return

        plural = "" if len(targets) == 1 else "s"
        question = f"This will terminate {len(targets)} MCP server{plural}. Are you sure?"

        def _on_answer(confirmed: bool | None) -> None:
            if not confirmed:
                return
            summary = terminate_all(proc.pid for proc in targets)
            self.notify(
                f"Killed: {summary.killed}, Failed: {summary.failed}",
                severity="information" if summary.all_succeeded else "error",
            )
            self._monitor.refresh()

        self.push_screen(ConfirmScreen(question, "Kill all"), _on_answer)

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mcptop", description="Monitor and kill running MCP servers.")
    parser.add_argument("--poll-rate", type=float, help="seconds between scans")
    parser.add_argument("--home", type=Path, help="home directory to read tool configs from")
    parser.add_argument("--log-level", help="logging level (default from MCPTOP_LOG_LEVEL)")
    parser.add_argument(
        "--sudo",
        action="store_true",
        help="force kills use sudo kill -9 on macOS (also MCPTOP_SUDO_KILL=1)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for the mcptop application."""
    args = build_parser().parse_args(argv)
    settings = Settings.from_environment()

    if args.home is not None:
        settings = replace(
            settings,
            home=args.home.expanduser(),
            candidate_paths=resolve_candidate_paths(args.home.expanduser()),
        )
    if args.poll_rate is not None and args.poll_rate > 0:
        settings = replace(settings, poll_rate=args.poll_rate)
    if args.log_level:
        settings = replace(settings, log_level=normalize_log_level(args.log_level))
    if args.sudo:
        settings = replace(settings, sudo_force_kill=True)

    logging.basicConfig(level=settings.log_level, handlers=[TextualHandler()])
    app = McpTopApp(settings)
    app.run()


if __name__ == "__main__":
    main()
