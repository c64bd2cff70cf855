"""Interactive process dashboard for proc-sentinel.

The sampling engine runs on its own thread and posts one SampleReady message
per cycle. Textual's message queue keeps them in order; the app only ever
holds immutable snapshots.
"""

from typing import Any

from rich.markup import escape
from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.css.query import NoMatches
from textual.message import Message
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Footer, Input, Label, Static

from proc_sentinel.collector import ProcessSnapshot
from proc_sentinel.config import Config
from proc_sentinel.control import ControlError, clamp_niceness, force_kill, set_niceness, terminate
from proc_sentinel.engine import Sample, SamplingEngine, SourceUnavailableError
from proc_sentinel.export import exporter_from_env
from proc_sentinel.formatting import (
    format_kb,
    format_loads,
    format_time_ticks,
    format_uptime,
    program_and_args,
)
from proc_sentinel.procfs import ProcReader, detect_clock_ticks
from proc_sentinel.sorter import SortColumn, Sorter, filter_records

# (label, sort column or None if the column isn't sortable)
COLUMNS: list[tuple[str, SortColumn | None]] = [
    ("PID", SortColumn.PID),
    ("USER", SortColumn.USER),
    ("PROGRAM", None),
    ("%CPU", SortColumn.CPU),
    ("%MEM", SortColumn.MEM),
    ("VSIZE", SortColumn.VSIZE),
    ("RSS", SortColumn.RSS),
    ("S", None),
    ("TIME+", SortColumn.TIME),
    ("COMMAND", None),
]


def usage_style(value: float, medium: float, high: float) -> str:
    """Rich style for a utilization percentage."""
    if value > high:
        return "bold red"
    elif value > medium:
        return "yellow"
    return ""


def build_row(record: ProcessSnapshot, hz: int) -> list[Text]:
    """Build styled row cells for one process."""
    program, args = program_and_args(record.cmd, record.comm)
    return [
        Text(str(record.pid), style="dim"),
        Text(record.user),
        Text(program, style="cyan"),
        Text(f"{record.cpu_percent:.1f}", style=usage_style(record.cpu_percent, 20, 50)),
        Text(f"{record.mem_percent:.1f}", style=usage_style(record.mem_percent, 5, 10)),
        Text(format_kb(record.vsize_kb)),
        Text(format_kb(record.rss_kb)),
        Text(record.state, style="green" if record.state == "R" else ""),
        Text(format_time_ticks(record.cpu_ticks, hz)),
        Text(args, style="dim"),
    ]


def column_labels(sorter: Sorter) -> list[str]:
    """Column headers with the sort arrow on the active column."""
    labels = []
    for label, column in COLUMNS:
        arrow = sorter.indicator(column) if column is not None else ""
        labels.append(f"{label} {arrow}" if arrow else label)
    return labels


class SampleReady(Message):
    """A new sample was published by the engine thread."""

    def __init__(self, sample: Sample) -> None:
        super().__init__()
        self.sample = sample


# ─────────────────────────────────────────────────────────────────────────────
# Widgets
# ─────────────────────────────────────────────────────────────────────────────


class HeaderBar(Static):
    """Header with task counts, load averages, uptime and view state."""

    DEFAULT_CSS = """
    HeaderBar {
        height: 3;
        padding: 0 1;
        border: solid green;
        border-title-align: left;
    }
    """

    def compose(self) -> ComposeResult:
        yield Label("Waiting for first sample...", id="summary")

    def on_mount(self) -> None:
        self.border_title = "PROC-SENTINEL"

    def update_summary(self, sample: Sample, sorter: Sorter, filter_text: str) -> None:
        arrow = "↓" if sorter.descending else "↑"
        text = (
            f"Tasks: [bold]{sample.total}[/] total, [green]{sample.running}[/] running"
            f" | Load: {format_loads(sample.loads)}"
            f" | Uptime: {format_uptime(sample.uptime)}"
            f" | Sort: [cyan]{sorter.column.label} {arrow}[/]"
        )
        if filter_text:
            text += f" | Filter: [green]{escape(filter_text)}[/]"
        try:
            self.query_one("#summary", Label).update(text)
        except NoMatches:
            pass


class ProcessTable(Static):
    """Ranked process list."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
        border-title-align: left;
    }

    ProcessTable DataTable {
        width: 100%;
        height: 100%;
    }
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._table: DataTable | None = None
        self._row_pids: list[int] = []

    def compose(self) -> ComposeResult:
        yield DataTable(id="process-table", zebra_stripes=True, cursor_type="row")

    def on_mount(self) -> None:
        self.border_title = "PROCESSES"
        self._table = self.query_one("#process-table", DataTable)

    @property
    def selected_pid(self) -> int | None:
        if not self._table or not self._row_pids:
            return None
        row = self._table.cursor_row
        if 0 <= row < len(self._row_pids):
            return self._row_pids[row]
        return None

    def update_records(
        self, records: list[ProcessSnapshot], sorter: Sorter, hz: int, max_rows: int
    ) -> None:
        """Replace table contents, keeping the cursor on the same PID."""
        if not self._table:
            return

        previous = self.selected_pid
        shown = records[:max_rows]

        self._table.clear(columns=True)
        self._table.add_columns(*column_labels(sorter))
        for record in shown:
            self._table.add_row(*build_row(record, hz), key=str(record.pid))
        self._row_pids = [r.pid for r in shown]

        self.border_title = f"PROCESSES ({len(shown)}/{len(records)})"
        if previous in self._row_pids:
            self._table.move_cursor(row=self._row_pids.index(previous))


# ─────────────────────────────────────────────────────────────────────────────
# Modal screens
# ─────────────────────────────────────────────────────────────────────────────


class ConfirmScreen(ModalScreen[bool]):
    """Yes/no confirmation for destructive actions."""

    DEFAULT_CSS = """
    ConfirmScreen {
        align: center middle;
    }

    ConfirmScreen > Vertical {
        width: 60;
        height: auto;
        padding: 1 2;
        border: thick $warning;
        background: $surface;
    }
    """

    BINDINGS = [
        ("y", "answer(True)", "Yes"),
        ("n", "answer(False)", "No"),
        ("escape", "answer(False)", "Cancel"),
    ]

    def __init__(self, prompt: str) -> None:
        super().__init__()
        self.prompt = prompt

    def compose(self) -> ComposeResult:
        yield Vertical(
            Label(Text(f"⚠ {self.prompt}")),
            Label("[dim](y/n)[/]"),
        )

    def action_answer(self, confirmed: bool) -> None:
        self.dismiss(confirmed)


class HelpScreen(ModalScreen[None]):
    """Key reference."""

    DEFAULT_CSS = """
    HelpScreen {
        align: center middle;
    }

    HelpScreen > Vertical {
        width: 64;
        height: auto;
        padding: 1 2;
        border: thick $primary;
        background: $surface;
    }
    """

    BINDINGS = [("escape", "close", "Close"), ("question_mark", "close", "Close")]

    HELP = """[bold]Sorting[/]
  c %CPU   m %MEM   p PID   u USER
  v VSIZE  r RSS    t TIME+
  (same key again flips the direction)

[bold]Filtering[/]
  /  filter by command, user or name
  esc  clear filter

[bold]Actions[/] (on the selected row)
  k  terminate (SIGTERM)    K  kill (SIGKILL)
  n  raise priority (nice -5)
  N  lower priority (nice +5)

[bold]Other[/]
  s  alert settings   ?  help   q  quit"""

    def compose(self) -> ComposeResult:
        yield Vertical(Label(self.HELP))

    def action_close(self) -> None:
        self.dismiss(None)


class SettingsScreen(ModalScreen[Config | None]):
    """Edit alert thresholds and webhooks."""

    AUTO_FOCUS = "#cpu-input"

    DEFAULT_CSS = """
    SettingsScreen {
        align: center middle;
    }

    SettingsScreen > Vertical {
        width: 72;
        height: auto;
        padding: 1 2;
        border: thick $primary;
        background: $surface;
    }

    SettingsScreen Input {
        margin-bottom: 1;
    }

    SettingsScreen #settings-error {
        color: $error;
    }
    """

    BINDINGS = [("escape", "cancel", "Cancel")]

    def __init__(self, config: Config) -> None:
        super().__init__()
        self.config = config

    def compose(self) -> ComposeResult:
        alerts = self.config.alerts
        hooks = ", ".join(h.name for h in self.config.webhooks) or "none"
        yield Vertical(
            Label("CPU threshold (%)"),
            Input(value=f"{alerts.cpu_threshold:g}", id="cpu-input"),
            Label("Memory threshold (%)"),
            Input(value=f"{alerts.mem_threshold:g}", id="mem-input"),
            Label(f"Active webhook [dim](known: {hooks})[/]"),
            Input(value=alerts.active_webhook, id="active-input"),
            Label("Add webhook: name and URL"),
            Input(placeholder="name", id="hook-name-input"),
            Input(placeholder="https://...", id="hook-url-input"),
            Label("", id="settings-error"),
            Horizontal(
                Button("Save", id="save", variant="primary"),
                Button("Cancel", id="cancel"),
            ),
        )

    def _value(self, widget_id: str) -> str:
        return self.query_one(f"#{widget_id}", Input).value.strip()

    def build_config(self) -> Config:
        """Apply the form to the current config.

        Raises:
            ValueError: If a field is invalid.
        """
        try:
            cpu = float(self._value("cpu-input"))
            mem = float(self._value("mem-input"))
        except ValueError as e:
            raise ValueError("Thresholds must be numbers") from e

        config = self.config.with_thresholds(cpu=cpu, mem=mem)
        name = self._value("hook-name-input")
        url = self._value("hook-url-input")
        if name or url:
            if not (name and url):
                raise ValueError("A webhook needs both a name and a URL")
            config = config.with_webhook(name, url)
        return config.with_active_webhook(self._value("active-input"))

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel":
            self.dismiss(None)
            return
        try:
            config = self.build_config()
        except ValueError as e:
            self.query_one("#settings-error", Label).update(str(e))
            return
        self.dismiss(config)

    def action_cancel(self) -> None:
        self.dismiss(None)


# ─────────────────────────────────────────────────────────────────────────────
# App
# ─────────────────────────────────────────────────────────────────────────────


class SentinelApp(App):
    """Real-time process dashboard."""

    AUTO_FOCUS = "#process-table"

    CSS = """
    Screen {
        layout: vertical;
    }

    #filter-input {
        display: none;
        height: 3;
    }

    #filter-input.visible {
        display: block;
    }

    #status {
        height: 1;
        padding: 0 1;
    }

    #status.error {
        color: $error;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("c", "sort('cpu')", "CPU", show=False),
        Binding("m", "sort('mem')", "MEM", show=False),
        Binding("p", "sort('pid')", "PID", show=False),
        Binding("u", "sort('user')", "User", show=False),
        Binding("v", "sort('vsize')", "VSize", show=False),
        Binding("r", "sort('rss')", "RSS", show=False),
        Binding("t", "sort('time')", "Time", show=False),
        Binding("slash", "start_filter", "Filter"),
        Binding("escape", "clear_filter", "Clear filter", show=False),
        Binding("k", "terminate", "Kill"),
        Binding("K", "force_kill", "Force kill", show=False),
        Binding("n", "renice(-5)", "Nice -5", show=False),
        Binding("N", "renice(5)", "Nice +5", show=False),
        Binding("s", "settings", "Settings"),
        Binding("question_mark", "help", "Help"),
    ]

    def __init__(
        self,
        config: Config | None = None,
        reader: ProcReader | None = None,
        start_engine: bool = True,
    ):
        super().__init__()
        self.config = config or Config.load_or_default()
        self.reader = reader or ProcReader()
        self.hz = self.config.sampling.clock_ticks or detect_clock_ticks()
        self.sorter = Sorter()
        self.filter_text = ""
        self.sample: Sample | None = None
        self._start_engine = start_engine
        self.engine = SamplingEngine(
            self.reader,
            self._publish,
            interval=self.config.sampling.interval,
            exporter=exporter_from_env(self.config.sampling.export_csv, self.hz),
        )

    def _publish(self, sample: Sample) -> None:
        # Called on the engine thread; post_message is thread-safe
        self.post_message(SampleReady(sample))

    def compose(self) -> ComposeResult:
        yield HeaderBar(id="header")
        # Disabled while hidden so it never takes focus from the table
        yield Input(
            placeholder="Filter (Enter to apply, Esc to cancel)", id="filter-input", disabled=True
        )
        yield ProcessTable(id="main-area")
        yield Label("", id="status")
        yield Footer()

    def on_mount(self) -> None:
        self.title = "proc-sentinel"
        self.sub_title = "Process Monitor"
        self.query_one("#process-table", DataTable).focus()
        if not self._start_engine:
            return
        try:
            self.engine.start()
        except SourceUnavailableError as e:
            self.exit(message=str(e))

    def on_unmount(self) -> None:
        # Joins the sampling thread so no publish races the shutdown
        self.engine.stop()

    # Data flow

    def on_sample_ready(self, message: SampleReady) -> None:
        self.sample = message.sample
        self.refresh_view()

    def visible_records(self) -> list[ProcessSnapshot]:
        """Filtered and sorted view of the latest sample."""
        if self.sample is None:
            return []
        return self.sorter.sort(filter_records(self.sample.records, self.filter_text))

    def refresh_view(self) -> None:
        if self.sample is None:
            return
        try:
            self.query_one("#header", HeaderBar).update_summary(
                self.sample, self.sorter, self.filter_text
            )
            self.query_one("#main-area", ProcessTable).update_records(
                self.visible_records(), self.sorter, self.hz, self.config.sampling.max_rows
            )
        except NoMatches:
            pass

    def set_status(self, text: str, error: bool = False) -> None:
        try:
            status = self.query_one("#status", Label)
        except NoMatches:
            return
        status.update(text)
        status.set_class(error, "error")

    def selected_record(self) -> ProcessSnapshot | None:
        try:
            pid = self.query_one("#main-area", ProcessTable).selected_pid
        except NoMatches:
            return None
        if pid is None or self.sample is None:
            return None
        for record in self.sample.records:
            if record.pid == pid:
                return record
        return None

    # Sorting and filtering

    def action_sort(self, key: str) -> None:
        self.sorter.toggle(SortColumn(key))
        self.refresh_view()

    def action_start_filter(self) -> None:
        filter_input = self.query_one("#filter-input", Input)
        filter_input.disabled = False
        filter_input.value = self.filter_text
        filter_input.add_class("visible")
        filter_input.focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "filter-input":
            return
        self.filter_text = event.value.strip()
        event.input.remove_class("visible")
        event.input.disabled = True
        self.query_one("#process-table", DataTable).focus()
        self.refresh_view()

    def action_clear_filter(self) -> None:
        self.filter_text = ""
        filter_input = self.query_one("#filter-input", Input)
        filter_input.value = ""
        filter_input.remove_class("visible")
        filter_input.disabled = True
        self.query_one("#process-table", DataTable).focus()
        self.refresh_view()

    # Process control

    def _confirm_signal(self, force: bool) -> None:
        record = self.selected_record()
        if record is None:
            self.set_status("No process selected", error=True)
            return
        signame = "SIGKILL" if force else "SIGTERM"
        action = force_kill if force else terminate

        def done(confirmed: bool | None) -> None:
            if not confirmed:
                self.set_status("Cancelled")
                return
            try:
                action(record.pid)
            except ControlError as e:
                self.set_status(str(e), error=True)
                return
            self.set_status(f"Sent {signame} to PID {record.pid}")

        self.push_screen(
            ConfirmScreen(f"Send {signame} to {record.comm} (PID {record.pid})?"), done
        )

    def action_terminate(self) -> None:
        self._confirm_signal(force=False)

    def action_force_kill(self) -> None:
        self._confirm_signal(force=True)

    def action_renice(self, delta: int) -> None:
        record = self.selected_record()
        if record is None:
            self.set_status("No process selected", error=True)
            return
        target = clamp_niceness(record.nice + delta)
        if target == record.nice:
            self.set_status(f"PID {record.pid} already at niceness {target}")
            return

        def done(confirmed: bool | None) -> None:
            if not confirmed:
                self.set_status("Cancelled")
                return
            try:
                set_niceness(record.pid, target)
            except ControlError as e:
                self.set_status(str(e), error=True)
                return
            self.set_status(f"PID {record.pid} niceness {record.nice} → {target}")

        verb = "Raise" if delta < 0 else "Lower"
        self.push_screen(
            ConfirmScreen(
                f"{verb} priority of PID {record.pid} (nice {record.nice} → {target})?"
            ),
            done,
        )

    # Settings and help

    def action_settings(self) -> None:
        def done(config: Config | None) -> None:
            if config is None:
                return
            try:
                config.save(self.config.config_path)
            except OSError as e:
                self.set_status(f"Could not save settings: {e}", error=True)
                return
            self.config = config
            self.set_status("Settings saved")

        self.push_screen(SettingsScreen(self.config), done)

    def action_help(self) -> None:
        self.push_screen(HelpScreen())


def run_tui(config: Config | None = None) -> None:
    """Run the TUI application."""
    app = SentinelApp(config)
    app.run()
