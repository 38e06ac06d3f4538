"""tidytop - Main Textual application."""

import argparse
from dataclasses import replace
from pathlib import Path
from queue import Empty, Queue

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import DataTable, Footer, Static

from tidytop.config import Config, load_config
from tidytop.logging_setup import logger, setup_logging
from tidytop.models import CategoryStatus, Finding, FindingKind, ProcessSample, ResourceSnapshot
from tidytop.monitor import MetricSampler
from tidytop.session import (
    Cancel,
    Confirm,
    Navigate,
    Quit,
    RequestScan,
    Select,
    SessionController,
    SessionView,
    State,
    Tick,
    build_session,
)

CATEGORY_TITLES = {
    FindingKind.DEPENDENCY_DIR: "Dependency dirs",
    FindingKind.CONTAINER_IMAGE: "Container images",
    FindingKind.PACKAGE_CACHE: "Package caches",
    FindingKind.HEAVY_PROCESS: "Heavy processes",
}


def format_bytes(size: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{size:5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def usage_bar(percent: float, color: str, width: int = 20) -> str:
    """Render a markup bar for a 0-100 percentage."""
    filled = min(int(percent / (100 / width)), width)
    return f"[{color}]█[/{color}]" * filled + "[dim]░[/dim]" * (width - filled)


def status_color(percent: float) -> str:
    if percent >= 80.0:
        return "red"
    if percent >= 60.0:
        return "yellow"
    return "green"


class HeaderStats(Static):
    """Header widget showing CPU, memory, swap and disk usage."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 0 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._snapshot: ResourceSnapshot | None = None

    def compose(self) -> ComposeResult:
        yield Horizontal(
            Static(self._get_cpu_info(), id="cpu-info"),
            Static(self._get_mem_info(), id="mem-info"),
        )

    @property
    def snapshot(self) -> ResourceSnapshot | None:
        return self._snapshot

    def update_stats(self, snapshot: ResourceSnapshot) -> None:
        """Update the statistics from a resource snapshot."""
        self._snapshot = snapshot
        try:
            self.query_one("#cpu-info", Static).update(self._get_cpu_info())
            self.query_one("#mem-info", Static).update(self._get_mem_info())
        except Exception:
            pass  # Widget not mounted yet

    def _get_cpu_info(self) -> str:
        snap = self._snapshot
        if snap is None:
            return "Loading CPU info..."
        cpu = snap.cpu_percent
        disk_pct = (snap.disk_used / snap.disk_total) * 100.0 if snap.disk_total else 0.0
        lines = [
            f"CPU \\[{usage_bar(cpu, status_color(cpu))}] {cpu:5.1f}% avg",
            f"Disk\\[{usage_bar(disk_pct, status_color(disk_pct))}] "
            f"{snap.disk_used / 1024**3:.1f}G/{snap.disk_total / 1024**3:.1f}G",
        ]
        if snap.degraded:
            lines.append("[yellow]metrics stale (query failed)[/yellow]")
        return "\n".join(lines)

    def _get_mem_info(self) -> str:
        snap = self._snapshot
        if snap is None or snap.memory_total == 0:
            return "Loading memory info..."
        mem = snap.memory_percent
        swap = snap.swap_percent
        return (
            f"Mem\\[{usage_bar(mem, 'cyan')}] "
            f"{snap.memory_used / 1024**3:.1f}G/{snap.memory_total / 1024**3:.1f}G\n"
            f"Swp\\[{usage_bar(swap, 'yellow')}] "
            f"{snap.swap_used / 1024**3:.1f}G/{snap.swap_total / 1024**3:.1f}G"
        )


class ProcessTable(Container):
    """Container for the top-process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._current_pids: list[int] = []

    def compose(self) -> ComposeResult:
        table = DataTable(id="process-table", cursor_type="none")
        # Keys belong to the session, not the table
        table.can_focus = False
        yield table

    def on_mount(self) -> None:
        table = self.query_one("#process-table", DataTable)

        table.add_column("PID", key="pid", width=8)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("RES", key="rss", width=8)
        table.add_column("Name", key="name")

    def update_processes(self, processes: tuple[ProcessSample, ...] | list[ProcessSample]) -> None:
        """Replace the rows with the ranked processes, keeping their order."""
        table = self.query_one("#process-table", DataTable)
        pids = [proc.pid for proc in processes]
        if pids == self._current_pids:
            for proc in processes:
                self._update_row(table, str(proc.pid), proc)
            return

        table.clear()
        for proc in processes:
            table.add_row(
                str(proc.pid),
                f"{proc.cpu_percent:5.1f}",
                format_bytes(proc.memory_rss),
                proc.name[:40],
                key=str(proc.pid),
            )
        self._current_pids = pids

    def _update_row(self, table: DataTable, row_key: str, proc: ProcessSample) -> None:
        """Update an existing row using update_cell for performance."""
        try:
            table.update_cell(row_key, "cpu", f"{proc.cpu_percent:5.1f}")
            table.update_cell(row_key, "rss", format_bytes(proc.memory_rss))
        except Exception:
            pass  # Row may have been removed


def finding_size(finding: Finding) -> str:
    if finding.size is None:
        return f"RAM {format_bytes(finding.memory_rss or 0).strip()}"
    text = format_bytes(finding.size).strip()
    return f"{text}+" if finding.size_is_lower_bound else text


class IssuePanel(Static):
    """The scan results with the navigation cursor."""

    DEFAULT_CSS = """
    IssuePanel {
        height: auto;
        max-height: 50%;
        border: solid $secondary;
        padding: 0 1;
    }
    """

    def show(self, view: SessionView) -> None:
        self.update(self.render_view(view))

    @staticmethod
    def render_view(view: SessionView) -> str:
        if view.scanning and not view.scanned:
            return "[yellow]Scanning filesystem...[/yellow]"
        if not view.scanned:
            return "[dim]Press s to scan for reclaimable space[/dim]"
        if view.state is State.MONITORING:
            return f"{len(view.findings)} issues found. [dim]Enter to review, s to rescan[/dim]"

        lines = []
        for kind, title in CATEGORY_TITLES.items():
            status = view.statuses.get(kind, CategoryStatus.OK)
            if status is not CategoryStatus.OK:
                lines.append(f"[yellow]{title}: {status.value}[/yellow]")
        if not view.findings:
            lines.append("[green]No issues found![/green]")

        for index, finding in enumerate(view.findings):
            label = escape(finding.label)
            if finding.kind is FindingKind.HEAVY_PROCESS:
                label = f"{label} (pid {finding.target})"
            text = f"{CATEGORY_TITLES[finding.kind]:<17} {finding_size(finding):>10}  {label}"
            if view.is_stale(finding):
                text = f"[dim strike]{text}[/dim strike]"
            if index == view.cursor:
                text = f"[reverse]> {text}[/reverse]"
            else:
                text = f"  {text}"
            lines.append(text)
        if view.scanning:
            lines.append("[yellow]Rescanning...[/yellow]")
        return "\n".join(lines)


class StatusBar(Static):
    """Prompt, progress and last result line."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $panel;
    }
    """

    def show(self, view: SessionView) -> None:
        text = escape(view.message)
        if view.state is State.ACTION_CONFIRM:
            text = f"[bold red]{text}[/bold red]"
        elif view.last_result is not None and not view.last_result.success:
            text = f"[red]{text}[/red]"
        self.update(text)


class TidytopApp(App):
    """Main tidytop application."""

    TITLE = "tidytop"
    SUB_TITLE = "System Monitor & Cleanup"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 4;
    }

    Horizontal {
        height: auto;
    }

    #cpu-info {
        width: 1fr;
        padding-right: 2;
    }

    #mem-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("s", "scan", "Scan"),
        ("up,k", "move(-1)", "Up"),
        ("down,j", "move(1)", "Down"),
        ("enter", "pick", "Select"),
        ("y", "confirm", "Confirm"),
        ("escape", "back", "Back"),
    ]

    def __init__(self, config: Config | None = None) -> None:
        super().__init__()
        self._config = config or load_config()
        monitor = self._config.monitor
        self._update_queue: Queue[ResourceSnapshot] = Queue()
        self._sampler = MetricSampler(
            self._update_queue,
            poll_rate=monitor.poll_rate,
            sample_timeout=monitor.sample_timeout,
            history_size=monitor.history_size,
        )
        self._session: SessionController = build_session(self._config, self._sampler)

    @property
    def session(self) -> SessionController:
        return self._session

    def compose(self) -> ComposeResult:
        yield HeaderStats(id="header-stats")
        yield ProcessTable()
        yield IssuePanel(id="issue-panel")
        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start the sampler and an initial scan when the app is mounted."""
        self._sampler.start()
        self.set_interval(0.25, self._check_for_updates)
        self._dispatch(RequestScan())

    def on_unmount(self) -> None:
        self._sampler.stop()

    def _check_for_updates(self) -> None:
        """Feed the latest snapshot and any background completions to the session."""
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break

        if snapshot is not None:
            self._session.handle(Tick(snapshot))
        self._session.pump()
        self._render_view()

    def _render_view(self) -> None:
        view = self._session.view()
        try:
            if view.snapshot is not None:
                self.query_one("#header-stats", HeaderStats).update_stats(view.snapshot)
                self.query_one(ProcessTable).update_processes(view.top_processes)
            self.query_one("#issue-panel", IssuePanel).show(view)
            self.query_one("#status-bar", StatusBar).show(view)
        except Exception:
            # Rendering must never take the session down
            logger.debug("Render skipped", exc_info=True)

    def _dispatch(self, event) -> None:
        self._session.handle(event)
        self._render_view()

    def action_scan(self) -> None:
        self._dispatch(RequestScan())

    def action_move(self, delta: int) -> None:
        self._dispatch(Navigate(delta))

    def action_pick(self) -> None:
        self._dispatch(Select())

    def action_confirm(self) -> None:
        self._dispatch(Confirm())

    def action_back(self) -> None:
        self._dispatch(Cancel())

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._session.handle(Quit())
        self.exit()


def main() -> None:
    """Entry point for tidytop."""
    parser = argparse.ArgumentParser(prog="tidytop", description="System monitor and cleanup TUI")
    parser.add_argument("--config", type=Path, help="Path to config.toml")
    parser.add_argument("--root", action="append", type=Path, help="Project root to scan (repeatable)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", help="Write logs to this file")
    args = parser.parse_args()

    setup_logging(verbose=args.verbose, log_file=args.log_file)
    config = load_config(args.config)
    if args.root:
        config = replace(config, scan=replace(config.scan, roots=tuple(r.expanduser() for r in args.root)))

    TidytopApp(config).run()


if __name__ == "__main__":
    main()
