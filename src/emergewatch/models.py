"""Data models for emergewatch."""

from collections.abc import Iterator
from dataclasses import dataclass, field

# Invocation key used when jobs are not grouped by their emerge process.
UNGROUPED = 0


@dataclass(slots=True, frozen=True)
class ProcessInfo:
    """Immutable view of one process as seen during a scan."""

    pid: int
    ppid: int | None
    cmdline: tuple[str, ...]
    started: float  # Seconds since boot

    @property
    def command_line(self) -> str:
        """Full command line joined on spaces."""
        return " ".join(self.cmdline)


@dataclass(slots=True)
class ProcessSnapshot:
    """Point-in-time enumeration of all readable processes."""

    processes: dict[int, ProcessInfo]
    uptime: float
    taken_at: float  # Wall clock, seconds since the epoch

    def __contains__(self, pid: int) -> bool:
        return pid in self.processes

    def wall_clock(self, started: float) -> int:
        """
        Convert a boot-relative creation time to whole wall-clock seconds.

        Args:
            started: Seconds since boot at which the process was created.
        """
        # Uptime and wall time are sampled separately; rounding the boot time
        # keeps an unchanged process at the same creation time across scans.
        boot_time = round(self.taken_at - self.uptime, 3)
        return int(boot_time + started)

    def created_at(self, pid: int) -> int | None:
        """Wall-clock creation time of a live process, or None if absent."""
        info = self.processes.get(pid)
        if info is None:
            return None
        return self.wall_clock(info.started)


@dataclass(slots=True, frozen=True)
class BuildJob:
    """
    One in-progress build phase of one package.

    Equality ignores ``pid`` so that an unchanged job compares equal across
    ticks no matter which worker led to it.
    """

    category: str
    package: str
    version: str
    phase: str
    create_time: int  # Wall clock, seconds since the epoch
    pid: int = field(default=0, compare=False)

    @property
    def atom(self) -> str:
        """Versioned package atom, e.g. ``dev-lang/python-3.11.9``."""
        return f"{self.category}/{self.package}-{self.version}"


ActiveJobTable = dict[int, dict[int, BuildJob]]


def copy_table(table: ActiveJobTable) -> ActiveJobTable:
    """Copy both levels of a job table; jobs themselves are immutable."""
    return {invocation: dict(jobs) for invocation, jobs in table.items()}


def iter_jobs(table: ActiveJobTable) -> Iterator[BuildJob]:
    """Iterate over every job of every invocation."""
    for jobs in table.values():
        yield from jobs.values()
