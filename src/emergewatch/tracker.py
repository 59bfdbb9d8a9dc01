"""Build job tracking engine for emergewatch."""

import logging
import threading
from collections.abc import Iterator

from emergewatch.channel import JobTableChannel
from emergewatch.config import WatcherSettings
from emergewatch.errors import ChannelClosedError, ScanError
from emergewatch.matching import (
    PHASE_RUNNER,
    SANDBOX_MARKER,
    TOOL_NAME,
    SandboxMatch,
    is_build_tool,
    is_phase_runner,
    match_sandbox,
    parse_atom,
)
from emergewatch.models import (
    UNGROUPED,
    ActiveJobTable,
    BuildJob,
    ProcessInfo,
    ProcessSnapshot,
    copy_table,
)
from emergewatch.scanner import ProcessScanner

logger = logging.getLogger(__name__)


class JobTracker:
    """
    Tracks running ebuild phases and publishes the active job table.

    Runs in a separate daemon thread. Every tick it scans the process table,
    updates its job table and, if anything changed, sends a copy of the table
    through the channel. The table is only ever touched by that thread.

    With ``grouped`` set, jobs are keyed by the emerge invocation that owns
    them and jobs without one are ignored. Otherwise all jobs live under the
    single ``UNGROUPED`` key.
    """

    def __init__(
        self,
        channel: JobTableChannel,
        scanner: ProcessScanner | None = None,
        poll_interval: float = 5.0,
        grouped: bool = True,
        tool_name: str = TOOL_NAME,
        phase_runner: str = PHASE_RUNNER,
        sandbox_marker: str = SANDBOX_MARKER,
    ) -> None:
        """
        Initialize the JobTracker.

        Args:
            channel: Channel to publish job tables to.
            scanner: Process scanner; a psutil based one by default.
            poll_interval: Seconds between scans.
            grouped: Group jobs by their build tool invocation.
            tool_name: Executable name of the build tool.
            phase_runner: Script name of the phase runner.
            sandbox_marker: Literal token naming the sandbox wrapper.
        """
        self._channel = channel
        self._scanner = scanner if scanner is not None else ProcessScanner()
        self._poll_interval = poll_interval
        self._grouped = grouped
        self._tool_name = tool_name
        self._phase_runner = phase_runner
        self._sandbox_marker = sandbox_marker

        self._active: ActiveJobTable = {} if grouped else {UNGROUPED: {}}
        # Wall-clock creation time per invocation, to notice recycled pids
        self._invocation_started: dict[int, int] = {}

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._exit_error: Exception | None = None

    @classmethod
    def from_settings(cls, channel: JobTableChannel, settings: WatcherSettings) -> "JobTracker":
        """Create a tracker configured from WatcherSettings."""
        return cls(
            channel,
            poll_interval=settings.poll_interval,
            grouped=settings.grouped,
            tool_name=settings.tool_name,
            phase_runner=settings.phase_runner,
            sandbox_marker=settings.sandbox_marker,
        )

    @property
    def poll_interval(self) -> float:
        """Get the poll interval in seconds."""
        return self._poll_interval

    @property
    def grouped(self) -> bool:
        """Check if jobs are grouped by invocation."""
        return self._grouped

    @property
    def table(self) -> ActiveJobTable:
        """Get a copy of the current job table."""
        return copy_table(self._active)

    @property
    def is_running(self) -> bool:
        """Check if the tracker thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def exit_error(self) -> Exception | None:
        """Get the error that ended the tracker thread, if any."""
        return self._exit_error

    def start(self) -> None:
        """Start the tracking thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._exit_error = None
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="JobTracker",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the tracking thread.

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
                self.poll_once()
            except ChannelClosedError as exc:
                # Nobody is listening anymore
                logger.error("Stopping job tracker: %s", exc)
                self._exit_error = exc
                return
            except Exception as exc:
                logger.exception("Job tracker crashed")
                self._exit_error = exc
                return

            self._stop_event.wait(timeout=self._poll_interval)

    def poll_once(self) -> bool:
        """
        Run a single tick: scan, update the table, publish on change.

        Returns:
            True if the table changed and was published.

        Raises:
            ChannelClosedError: The table could not be published.
        """
        try:
            snapshot = self._scanner.refresh()
        except ScanError as exc:
            logger.warning("Error updating processes, skipping tick: %s", exc)
            return False

        changed = self.update(snapshot)
        job_count = sum(len(jobs) for jobs in self._active.values())
        if not changed:
            logger.debug("Job list unchanged (%d items)", job_count)
            return False

        logger.debug("Job list updated (%d items)", job_count)
        self._channel.send(copy_table(self._active))
        return True

    def update(self, snapshot: ProcessSnapshot) -> bool:
        """
        Match a snapshot against the job table.

        Args:
            snapshot: Freshly taken process snapshot.

        Returns:
            True if the table changed.
        """
        changed = self._prune(snapshot)

        if self._grouped and self._discover_invocations(snapshot):
            changed = True

        for info in snapshot.processes.values():
            if not is_phase_runner(info.cmdline, self._phase_runner):
                continue
            logger.debug("Found ebuild process: %d", info.pid)
            if self._track(info, snapshot):
                changed = True

        return changed

    def _prune(self, snapshot: ProcessSnapshot) -> bool:
        """Drop invocations and jobs whose process is gone or was replaced."""
        changed = False

        for invocation in list(self._active):
            if self._grouped:
                started = self._invocation_started.get(invocation)
                if snapshot.created_at(invocation) != started:
                    logger.debug("Invocation %d finished", invocation)
                    del self._active[invocation]
                    self._invocation_started.pop(invocation, None)
                    changed = True
                    continue

            jobs = self._active[invocation]
            for pid in list(jobs):
                if snapshot.created_at(pid) != jobs[pid].create_time:
                    logger.debug("Job %s (%d) finished", jobs[pid].atom, pid)
                    del jobs[pid]
                    changed = True

        return changed

    def _discover_invocations(self, snapshot: ProcessSnapshot) -> bool:
        """Add build tool invocations not yet in the table."""
        changed = False

        for info in snapshot.processes.values():
            if info.pid in self._active or not is_build_tool(info.cmdline, self._tool_name):
                continue
            logger.debug("Found %s invocation: %d", self._tool_name, info.pid)
            self._add_invocation(info, snapshot)
            changed = True

        return changed

    def _add_invocation(self, info: ProcessInfo, snapshot: ProcessSnapshot) -> None:
        self._active[info.pid] = {}
        self._invocation_started[info.pid] = snapshot.wall_clock(info.started)

    def _track(self, worker: ProcessInfo, snapshot: ProcessSnapshot) -> bool:
        """
        Resolve a phase worker to its job and store it.

        Returns:
            True if the table changed.
        """
        ancestors = self._scanner.ancestors_of(worker.pid, worker.started)

        sandbox: ProcessInfo | None = None
        match: SandboxMatch | None = None
        for ancestor in ancestors:
            logger.debug("Parsing process %d", ancestor.pid)
            match = match_sandbox(ancestor.command_line, self._phase_runner, self._sandbox_marker)
            if match is not None:
                sandbox = ancestor
                break

        # Job not fully set up yet
        if sandbox is None or match is None:
            return False

        job = self._build_job(sandbox, match, snapshot)
        if job is None:
            return False

        invocation = UNGROUPED
        if self._grouped:
            found = self._find_invocation(ancestors, snapshot)
            if found is None:
                logger.debug("Ignoring unmanaged job %s (%d)", job.atom, job.pid)
                return False
            invocation = found

        jobs = self._active.setdefault(invocation, {})
        if jobs.get(job.pid) == job:
            return False

        logger.debug("Job %s (%d) is in phase %s", job.atom, job.pid, job.phase)
        jobs[job.pid] = job
        return True

    def _build_job(
        self, sandbox: ProcessInfo, match: SandboxMatch, snapshot: ProcessSnapshot
    ) -> BuildJob | None:
        atom = parse_atom(match.tag)
        if atom is None:
            return None

        category, package, version = atom
        return BuildJob(
            category=category,
            package=package,
            version=version,
            phase=match.phase,
            create_time=snapshot.wall_clock(sandbox.started),
            pid=sandbox.pid,
        )

    def _find_invocation(
        self, ancestors: Iterator[ProcessInfo], snapshot: ProcessSnapshot
    ) -> int | None:
        """
        Continue an ancestor walk up to the first build tool invocation.

        The first match wins, so ``sudo emerge`` resolves to emerge itself.
        """
        for ancestor in ancestors:
            if not is_build_tool(ancestor.command_line.split(), self._tool_name):
                continue
            if ancestor.pid not in self._active:
                self._add_invocation(ancestor, snapshot)
            return ancestor.pid
        return None
