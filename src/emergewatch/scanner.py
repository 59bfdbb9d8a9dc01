"""Process table access for emergewatch."""

import logging
import time
from collections.abc import Iterator

import psutil

from emergewatch.errors import ScanError
from emergewatch.models import ProcessInfo, ProcessSnapshot

logger = logging.getLogger(__name__)


class ProcessScanner:
    """
    Enumerates processes using psutil.

    All calls block on /proc reads, so the scanner is meant to be driven from
    a worker thread. Processes that vanish or cannot be read are skipped.
    """

    # Attributes to fetch per process
    ATTRS = ["pid", "ppid", "cmdline", "create_time"]

    def __init__(self) -> None:
        """Initialize the ProcessScanner."""
        self._boot_time: float | None = None

    def refresh(self) -> ProcessSnapshot:
        """
        Take a fresh snapshot of all live processes.

        Raises:
            ScanError: The process table itself could not be enumerated.
        """
        try:
            boot_time = psutil.boot_time()
            taken_at = time.time()
            processes = self._collect_processes(boot_time)
        except (psutil.Error, OSError) as exc:
            raise ScanError(f"could not enumerate processes: {exc}") from exc

        self._boot_time = boot_time
        return ProcessSnapshot(
            processes=processes,
            uptime=taken_at - boot_time,
            taken_at=taken_at,
        )

    def _collect_processes(self, boot_time: float) -> dict[int, ProcessInfo]:
        """Collect every process with a readable command line."""
        processes: dict[int, ProcessInfo] = {}

        for proc in psutil.process_iter(attrs=self.ATTRS, ad_value=None):
            try:
                info = proc.info
                cmdline = info.get("cmdline")
                create_time = info.get("create_time")

                # Kernel threads have no command line
                if not cmdline or create_time is None:
                    continue

                processes[info["pid"]] = ProcessInfo(
                    pid=info["pid"],
                    ppid=info.get("ppid"),
                    cmdline=tuple(cmdline),
                    started=create_time - boot_time,
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        return processes

    def ancestors_of(self, pid: int, started: float | None = None) -> Iterator[ProcessInfo]:
        """
        Walk up the process tree starting at the parent of ``pid``.

        Each ancestor is read live, so a recycled pid is never mistaken for
        the process that was there during the snapshot. The walk ends at the
        root or when a parent can no longer be resolved. Ancestors without a
        readable command line are skipped rather than ending the walk.

        Args:
            pid: Process to start from.
            started: Boot-relative creation time ``pid`` had in the snapshot.
                If the live process was created at another time, the pid was
                recycled and nothing is yielded.
        """
        boot_time = self._boot_time
        if boot_time is None:
            boot_time = psutil.boot_time()

        try:
            current = psutil.Process(pid)
            if started is not None and abs(current.create_time() - boot_time - started) > 0.01:
                logger.debug("Process %d was replaced since the scan", pid)
                return
        except psutil.Error:
            return

        while True:
            try:
                # psutil returns None for a parent that exited or was recycled
                current = current.parent()
            except psutil.Error:
                return
            if current is None:
                return

            info = self._read(current, boot_time)
            if info is None:
                logger.debug("Skipping unreadable ancestor %d of %d", current.pid, pid)
                continue
            yield info

    @staticmethod
    def _read(proc: psutil.Process, boot_time: float) -> ProcessInfo | None:
        """Read a single process, or None if it has nothing to read."""
        try:
            with proc.oneshot():
                cmdline = proc.cmdline()
                ppid = proc.ppid()
                started = proc.create_time() - boot_time
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None

        if not cmdline:
            return None

        return ProcessInfo(pid=proc.pid, ppid=ppid, cmdline=tuple(cmdline), started=started)
