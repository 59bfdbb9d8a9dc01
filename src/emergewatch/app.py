"""emergewatch - Textual application showing active Portage jobs."""

import logging
import time
from enum import Enum
from queue import Empty

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Static

from emergewatch.channel import JobTableChannel
from emergewatch.config import WatcherSettings
from emergewatch.errors import VersionProbeError
from emergewatch.models import UNGROUPED, ActiveJobTable, BuildJob
from emergewatch.summary import JobSummary, summarize
from emergewatch.tracker import JobTracker
from emergewatch.version import portage_version

logger = logging.getLogger(__name__)


class SortKey(Enum):
    """Sort keys for the job table."""

    STARTED = "started"
    PACKAGE = "package"
    PHASE = "phase"


def format_elapsed(seconds: float) -> str:
    """Format a duration as [d days, ]HH:MM:SS."""
    seconds = max(0, int(seconds))
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if days > 0:
        return f"{days} days, {hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


class JobHeader(Static):
    """Header widget showing the job summary."""

    DEFAULT_CSS = """
    JobHeader {
        height: auto;
        min-height: 4;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize JobHeader."""
        super().__init__(*args, **kwargs)
        self._summary: JobSummary = summarize({})
        self._version: str | None = None

    @property
    def summary(self) -> JobSummary:
        """Get the summary currently shown."""
        return self._summary

    @property
    def version(self) -> str | None:
        """Get the Portage version shown."""
        return self._version

    def on_mount(self) -> None:
        """Render the initial summary."""
        self.update(self._render_summary())

    def update_summary(self, summary: JobSummary) -> None:
        """Show a new summary."""
        self._summary = summary
        self.update(self._render_summary())

    def set_version(self, version: str | None) -> None:
        """Show the Portage version next to the summary."""
        self._version = version
        self.update(self._render_summary())

    def _render_summary(self) -> str:
        """Build the header markup."""
        summary = self._summary
        lines = [f"[b]{summary.details}[/b]"]
        if summary.state:
            lines.append(summary.state)
        if summary.start_time is not None:
            lines.append(f"Elapsed: {format_elapsed(time.time() - summary.start_time)}")
        if self._version:
            lines.append(f"[dim]{self._version}[/dim]")
        return "\n".join(lines)


class JobTable(Container):
    """Container for the job data table."""

    DEFAULT_CSS = """
    JobTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize JobTable."""
        super().__init__(*args, **kwargs)
        self._current_pids: set[int] = set()
        self._sort_key: SortKey = SortKey.STARTED

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    @property
    def row_count(self) -> int:
        """Number of jobs shown."""
        return len(self._current_pids)

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        current_index = keys.index(self._sort_key)
        self._sort_key = keys[(current_index + 1) % len(keys)]
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the job table."""
        yield DataTable(id="job-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#job-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("EMERGE", key="emerge", width=8)
        table.add_column("PHASE", key="phase", width=12)
        table.add_column("STARTED", key="started", width=20)
        table.add_column("Package", key="package")

    def update_jobs(self, jobs: ActiveJobTable) -> None:
        """
        Update the table with a new job table.

        Existing rows are updated in place, finished jobs are removed.
        Rows are kept sorted by the current sort key.
        """
        table = self.query_one("#job-table", DataTable)

        rows = [(invocation, job) for invocation, group in jobs.items() for job in group.values()]
        new_pids = {job.pid for _, job in rows}

        for pid in self._current_pids - new_pids:
            table.remove_row(str(pid))

        for invocation, job in rows:
            cells = self._cells(invocation, job)
            row_key = str(job.pid)
            if job.pid in self._current_pids:
                for column, value in cells.items():
                    table.update_cell(row_key, column, value)
            else:
                table.add_row(*cells.values(), key=row_key)

        self._current_pids = new_pids
        table.sort(self._sort_key.value)

    @staticmethod
    def _cells(invocation: int, job: BuildJob) -> dict[str, str]:
        """Cell values of one row, in column order."""
        return {
            "pid": str(job.pid),
            "emerge": "-" if invocation == UNGROUPED else str(invocation),
            "phase": job.phase,
            "started": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(job.create_time)),
            "package": job.atom,
        }


class EmergeWatchApp(App):
    """Main emergewatch application."""

    TITLE = "emergewatch"
    SUB_TITLE = "Portage Build Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #job-header {
        dock: top;
        height: auto;
        min-height: 4;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
    ]

    def __init__(
        self,
        settings: WatcherSettings | None = None,
        tracker: JobTracker | None = None,
        channel: JobTableChannel | None = None,
    ) -> None:
        """
        Initialize the EmergeWatchApp.

        Args:
            settings: Watcher configuration, read from the environment by default.
            tracker: Job tracker to run; built from ``settings`` by default.
            channel: Channel the tracker publishes to.
        """
        super().__init__()
        self._settings = settings if settings is not None else WatcherSettings()
        self._channel = channel if channel is not None else JobTableChannel()
        self._tracker = tracker if tracker is not None else JobTracker.from_settings(
            self._channel, self._settings
        )
        self._jobs: ActiveJobTable = {}
        self._cleared = True

    @property
    def jobs(self) -> ActiveJobTable:
        """Get the last job table received."""
        return self._jobs

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield JobHeader(id="job-header")
        yield JobTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the job tracker when the app is mounted."""
        self._tracker.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Check the channel for a new job table and refresh the UI."""
        try:
            jobs = self._channel.get_nowait()
        except Empty:
            jobs = None

        if jobs is not None:
            self.apply_jobs(jobs)
        else:
            # Keep the elapsed time ticking
            self.query_one(JobHeader).update_summary(summarize(self._jobs))

        error = self._tracker.exit_error
        if error is not None and not self._tracker.is_running:
            self.exit(return_code=1, message=f"Job tracker stopped: {error}")

    def apply_jobs(self, jobs: ActiveJobTable) -> None:
        """Show a job table received from the tracker."""
        has_jobs = any(jobs.values())

        # Only clear once
        if not has_jobs and self._cleared:
            self._jobs = jobs
            return

        if has_jobs and self._cleared:
            # New session, the version may have changed since the last one
            self.run_worker(self._probe_version, thread=True, exclusive=True)
        self._cleared = not has_jobs

        self._jobs = jobs
        self.query_one(JobHeader).update_summary(summarize(jobs))
        self.query_one(JobTable).update_jobs(jobs)

    def _probe_version(self) -> None:
        """Look up the Portage version in a worker thread."""
        try:
            version: str | None = portage_version()
        except VersionProbeError as exc:
            logger.warning("Error getting ebuild version: %s", exc)
            version = None
        self.call_from_thread(self._set_version, version)

    def _set_version(self, version: str | None) -> None:
        try:
            self.query_one(JobHeader).set_version(version)
        except NoMatches:
            pass  # Shutting down

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        job_table = self.query_one(JobTable)
        new_sort_key = job_table.cycle_sort()
        job_table.update_jobs(self._jobs)
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._channel.close()
        self._tracker.stop()
        self.exit()
